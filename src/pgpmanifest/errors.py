"""Error taxonomy for manifest encoding, message composition and verification."""

from __future__ import annotations


class ManifestError(Exception):
    """Base class for all pgpmanifest errors."""
    pass


class DecodingError(ManifestError):
    """Manifest bytes are malformed or have the wrong shape."""
    pass


class EncodingError(ManifestError):
    """Manifest could not be serialized."""
    pass


class AddressFormatError(ManifestError, ValueError):
    """Header value is not a valid address or address list."""
    pass


class CryptoError(ManifestError):
    """Key or ciphertext is malformed."""
    pass


class DecryptionError(CryptoError):
    """Ciphertext could not be opened with any key in the keyring."""
    pass


class IntegrityError(ManifestError):
    """Digest of a decrypted segment does not match its manifest entry."""

    def __init__(
        self,
        part_id: str,
        expected: str | None = None,
        actual: str | None = None,
        message: str | None = None,
    ):
        self.part_id = part_id
        self.expected = expected
        self.actual = actual
        super().__init__(message or f"Digest mismatch for part {part_id!r}")


class ManifestNotFoundError(ManifestError):
    """No manifest leaf was found in the segment tree."""
    pass


class StructuralError(ManifestError):
    """Manifest or segment tree violates the expected shape."""

    def __init__(self, message: str, violations: list[str] | None = None):
        super().__init__(message)
        self.violations = violations or []
