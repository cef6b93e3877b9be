"""Per-segment public-key encryption and ASCII armor.

Every segment is sealed to the recipient's X25519 key with a fresh
ephemeral key pair: ECDH -> HKDF-SHA256 -> AES-256-GCM. The binary envelope
is armored so it can be embedded in a text container. The envelope is not
OpenPGP, so the armor carries its own label.

Envelope layout:
    magic "PGM1" (4) | key id (8) | ephemeral public key (32) | nonce (12) | ciphertext + tag

The key id is the first 8 bytes of SHA-256 over the raw recipient public key,
which lets a keyring holding several private keys pick the right one without
trial decryption.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
import re

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from pgpmanifest.errors import CryptoError, DecryptionError

ARMOR_BEGIN = "-----BEGIN PGPMANIFEST SEGMENT-----"
ARMOR_END = "-----END PGPMANIFEST SEGMENT-----"
ARMOR_LINE_LENGTH = 64

MAGIC = b"PGM1"
KEY_ID_SIZE = 8
PUBLIC_KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
HKDF_INFO = b"pgpmanifest segment v1"

_HEADER_SIZE = len(MAGIC) + KEY_ID_SIZE + PUBLIC_KEY_SIZE
_PEM_BLOCK = re.compile(
    rb"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----", re.DOTALL
)


def _raw_public(public_key: X25519PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def _as_bytes(value: bytes | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def key_id(public_key: X25519PublicKey) -> bytes:
    """Short identifier of a public key."""
    return hashlib.sha256(_raw_public(public_key)).digest()[:KEY_ID_SIZE]


def generate_keypair(passphrase: str | bytes | None = None) -> tuple[bytes, bytes]:
    """Generate a new key pair.

    Returns:
        Tuple of (private_key_pem, public_key_pem); the private key is
        encrypted with passphrase when one is given
    """
    private_key = X25519PrivateKey.generate()
    if passphrase:
        encryption: serialization.KeySerializationEncryption = serialization.BestAvailableEncryption(
            _as_bytes(passphrase)
        )
    else:
        encryption = serialization.NoEncryption()

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


def load_public_key(data: bytes | str | X25519PublicKey) -> X25519PublicKey:
    """Load a recipient public key from PEM.

    Raises:
        CryptoError: If data is not an X25519 public key
    """
    if isinstance(data, X25519PublicKey):
        return data
    try:
        key = serialization.load_pem_public_key(_as_bytes(data))
    except (ValueError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Invalid public key: {e}") from e
    if not isinstance(key, X25519PublicKey):
        raise CryptoError(f"Unsupported public key type: {type(key).__name__}")
    return key


class Keyring:
    """Unlocked private keys, indexed by key id.

    Unlocking happens once; afterwards the keyring is only read.
    """

    def __init__(self, keys: list[X25519PrivateKey] | None = None) -> None:
        self._keys: dict[bytes, X25519PrivateKey] = {}
        for key in keys or []:
            self.add(key)

    def add(self, private_key: X25519PrivateKey) -> None:
        self._keys[key_id(private_key.public_key())] = private_key

    def get(self, kid: bytes) -> X25519PrivateKey | None:
        return self._keys.get(kid)

    @property
    def key_ids(self) -> list[str]:
        return sorted(kid.hex() for kid in self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    @classmethod
    def unlock(cls, data: bytes | str, passphrase: str | bytes | None = None) -> Keyring:
        """Load and unlock every private key in a PEM bundle.

        Raises:
            CryptoError: If no key is found, a key is malformed, or the
                passphrase is wrong or missing
        """
        blocks = _PEM_BLOCK.findall(_as_bytes(data))
        if not blocks:
            raise CryptoError("No private key found")

        password = _as_bytes(passphrase) if passphrase else None
        keyring = cls()
        for block in blocks:
            try:
                key = serialization.load_pem_private_key(block, password=password)
            except TypeError as e:
                # Raised for a missing passphrase, or one given for an unencrypted key
                raise CryptoError(f"Cannot unlock private key: {e}") from e
            except (ValueError, UnsupportedAlgorithm) as e:
                raise CryptoError(f"Cannot unlock private key (bad passphrase or key): {e}") from e
            if not isinstance(key, X25519PrivateKey):
                raise CryptoError(f"Unsupported private key type: {type(key).__name__}")
            keyring.add(key)
        return keyring


def armor(data: bytes) -> str:
    """ASCII-armor binary data."""
    encoded = base64.b64encode(data).decode("ascii")
    lines = [encoded[i:i + ARMOR_LINE_LENGTH] for i in range(0, len(encoded), ARMOR_LINE_LENGTH)]
    return "\n".join([ARMOR_BEGIN, "", *lines, ARMOR_END]) + "\n"


def dearmor(text: bytes | str) -> bytes:
    """Strip ASCII armor.

    Raises:
        CryptoError: If the armor block is missing or its payload is not base64
    """
    if isinstance(text, bytes):
        text = text.decode("ascii", errors="replace")
    lines = [line.strip() for line in text.strip().splitlines()]

    try:
        start = lines.index(ARMOR_BEGIN)
        end = lines.index(ARMOR_END, start + 1)
    except ValueError:
        raise CryptoError("Armor block not found") from None

    # Armor headers ("Key: value") precede the payload
    payload = [line for line in lines[start + 1:end] if line and ":" not in line]
    try:
        return base64.b64decode("".join(payload), validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"Invalid armor payload: {e}") from e


def _derive_key(shared: bytes, ephemeral_public: bytes, recipient_public: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=ephemeral_public + recipient_public,
        info=HKDF_INFO,
    ).derive(shared)


def encrypt(plaintext: bytes, public_key: bytes | str | X25519PublicKey) -> str:
    """Seal plaintext to a recipient and return the armored envelope.

    Raises:
        CryptoError: If the public key is invalid
    """
    recipient = load_public_key(public_key)
    recipient_raw = _raw_public(recipient)

    ephemeral = X25519PrivateKey.generate()
    ephemeral_raw = _raw_public(ephemeral.public_key())
    key = _derive_key(ephemeral.exchange(recipient), ephemeral_raw, recipient_raw)

    header = MAGIC + key_id(recipient) + ephemeral_raw
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, header)
    return armor(header + nonce + ciphertext)


def decrypt(armored: bytes | str, keyring: Keyring) -> bytes:
    """Open an armored envelope with a key from the keyring.

    Raises:
        CryptoError: If the envelope is malformed
        DecryptionError: If no key matches or authentication fails
    """
    blob = dearmor(armored)
    if len(blob) < _HEADER_SIZE + NONCE_SIZE + TAG_SIZE or not blob.startswith(MAGIC):
        raise CryptoError("Malformed ciphertext envelope")

    header = blob[:_HEADER_SIZE]
    kid = header[len(MAGIC):len(MAGIC) + KEY_ID_SIZE]
    ephemeral_raw = header[len(MAGIC) + KEY_ID_SIZE:]
    nonce = blob[_HEADER_SIZE:_HEADER_SIZE + NONCE_SIZE]
    ciphertext = blob[_HEADER_SIZE + NONCE_SIZE:]

    private_key = keyring.get(kid)
    if private_key is None:
        raise DecryptionError(f"No private key for key id {kid.hex()}")

    try:
        shared = private_key.exchange(X25519PublicKey.from_public_bytes(ephemeral_raw))
    except ValueError as e:
        raise CryptoError(f"Invalid ephemeral key: {e}") from e

    key = _derive_key(shared, ephemeral_raw, _raw_public(private_key.public_key()))
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, header)
    except InvalidTag:
        raise DecryptionError("Ciphertext authentication failed") from None
