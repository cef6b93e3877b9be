"""Encrypted multi-segment messages with per-segment integrity manifests.

Every segment of a message (body, attachments) is encrypted on its own and an
encrypted manifest records the SHA-256 digest of each segment's plaintext, so
a recipient can detect tampering of any single segment.
"""

from __future__ import annotations

__version__ = "1.0.0"

from pgpmanifest.addresses import Address, parse_address, parse_address_list
from pgpmanifest.composer import ComposedMessage, MessageComposer, SegmentDescriptor
from pgpmanifest.config import Settings
from pgpmanifest.errors import (
    AddressFormatError,
    CryptoError,
    DecodingError,
    DecryptionError,
    EncodingError,
    IntegrityError,
    ManifestError,
    ManifestNotFoundError,
    StructuralError,
)
from pgpmanifest.manifest import HeaderValue, Manifest, Part, SemanticVersion
from pgpmanifest.verifier import MessageVerifier, PartResult, PartStatus, VerificationResult

__all__ = [
    "__version__",
    "Address",
    "AddressFormatError",
    "ComposedMessage",
    "CryptoError",
    "DecodingError",
    "DecryptionError",
    "EncodingError",
    "HeaderValue",
    "IntegrityError",
    "Manifest",
    "ManifestError",
    "ManifestNotFoundError",
    "MessageComposer",
    "MessageVerifier",
    "Part",
    "PartResult",
    "PartStatus",
    "SegmentDescriptor",
    "SemanticVersion",
    "Settings",
    "StructuralError",
    "VerificationResult",
    "parse_address",
    "parse_address_list",
]
