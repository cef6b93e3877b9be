"""Message verification for tamper detection.

Two passes over the received segment tree:

1. Discovery: find the manifest leaf, decrypt and parse it.
2. Verification: decrypt every other segment, hash its plaintext and compare
   the digest with the manifest part it correlates to.

Failures of a single segment are recorded against its part and do not stop
the walk; a missing manifest or a malformed tree aborts verification.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pgpmanifest import codec, crypto
from pgpmanifest.canonical import digests_equal, is_sha256_hex, sha256_hex
from pgpmanifest.errors import (
    CryptoError,
    IntegrityError,
    ManifestNotFoundError,
    StructuralError,
)
from pgpmanifest.manifest import Manifest, Part
from pgpmanifest.tree import (
    ENCRYPTED_BODY_TYPE,
    MANIFEST_FILENAME,
    MANIFEST_TYPE,
    MULTIPART_ALTERNATIVE,
    SEGMENT_SUFFIX,
    Container,
    Leaf,
    Node,
    find_leaf,
    walk,
)

logger = logging.getLogger(__name__)

Decrypt = Callable[[str, Any], bytes]


class VerifierState(Enum):
    """Progress of a verification run."""

    SEARCHING = "searching"
    MANIFEST_FOUND = "manifest_found"
    VERIFYING_SEGMENTS = "verifying_segments"
    DONE = "done"


class PartStatus(Enum):
    """Outcome for a single manifest part."""

    VERIFIED = "verified"
    INTEGRITY_ERROR = "integrity_error"
    DECRYPTION_ERROR = "decryption_error"
    MISSING = "missing"


@dataclass
class PartResult:
    """Verification outcome of one manifest part."""

    part: Part
    status: PartStatus
    error: Exception | None = None
    actual_hash: str | None = None
    content: bytes | None = None

    @property
    def ok(self) -> bool:
        return self.status is PartStatus.VERIFIED

    @property
    def id(self) -> str:
        return self.part.id

    @property
    def filename(self) -> str | None:
        return self.part.filename

    @property
    def content_type(self) -> str | None:
        return self.part.content_type

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "id": self.part.id,
            "status": self.status.value,
            "expected_hash": self.part.hash,
            "actual_hash": self.actual_hash,
        }
        if self.part.filename:
            result["filename"] = self.part.filename
        if self.part.content_type:
            result["content_type"] = self.part.content_type
        if self.error is not None:
            result["error"] = str(self.error)
        return result


@dataclass
class VerificationResult:
    """Result of message verification."""

    manifest: Manifest
    parts: list[PartResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return all(p.ok for p in self.parts)

    def get(self, part_id: str) -> PartResult | None:
        for result in self.parts:
            if result.part.id == part_id:
                return result
        return None

    @property
    def failures(self) -> list[PartResult]:
        return [p for p in self.parts if not p.ok]

    @property
    def errors(self) -> list[str]:
        """One message per failed part, in result order."""
        messages = []
        for result in self.failures:
            if result.error is not None:
                messages.append(str(result.error))
            else:
                messages.append(f"No segment found for part {result.part.id!r}")
        return messages

    @property
    def body(self) -> str | None:
        """Decoded body text, if the body segment verified."""
        result = next((p for p in self.parts if p.part.is_body), None)
        if result is None or result.content is None:
            return None
        return result.content.decode("utf-8", errors="replace")

    @property
    def attachments(self) -> list[PartResult]:
        """Verified attachments with their content."""
        return [p for p in self.parts if p.ok and not p.part.is_body]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "valid": self.valid,
            "version": str(self.manifest.version),
            "headers": {name: value.to_json() for name, value in self.manifest.headers.items()},
            "parts": [p.to_dict() for p in self.parts],
            "errors": self.errors,
            "skipped": list(self.skipped),
        }

    def to_markdown(self) -> str:
        """Generate markdown report."""
        verified = sum(1 for p in self.parts if p.ok)
        lines = [
            "# Message Verification Report",
            "",
            f"**Status:** {'VALID' if self.valid else 'INVALID'}",
            "",
            "## Summary",
            "",
            f"- **Parts Declared:** {len(self.parts)}",
            f"- **Parts Verified:** {verified}",
            f"- **Parts Failed:** {len(self.parts) - verified}",
            f"- **Segments Skipped:** {len(self.skipped)}",
            "",
        ]

        if self.failures:
            lines.extend(["## Failed Parts", ""])
            for result in self.failures:
                lines.append(f"- **{result.part.id}** ({result.status.value})")
                lines.append(f"  - Expected: `{result.part.hash}`")
                if result.actual_hash:
                    lines.append(f"  - Actual: `{result.actual_hash}`")
                if result.error is not None:
                    lines.append(f"  - Error: {result.error}")
            lines.append("")

        if self.skipped:
            lines.extend(["## Skipped Segments (Not in Manifest)", ""])
            for name in self.skipped:
                lines.append(f"- `{name}`")
            lines.append("")

        return "\n".join(lines)


def segment_id(filename: str | None) -> str | None:
    """Part id encoded in a segment filename (``<id>.pgp``)."""
    if not filename or not filename.endswith(SEGMENT_SUFFIX):
        return None
    stem = filename[:-len(SEGMENT_SUFFIX)]
    return stem or None


def _is_manifest_leaf(leaf: Leaf) -> bool:
    return leaf.media_type == MANIFEST_TYPE or leaf.filename == MANIFEST_FILENAME


def _is_body_leaf(leaf: Leaf, parent: Container | None) -> bool:
    return (
        leaf.media_type == ENCRYPTED_BODY_TYPE
        and parent is not None
        and parent.media_type == MULTIPART_ALTERNATIVE
    )


class MessageVerifier:
    """Verifier for received encrypted messages."""

    def __init__(self, keyring: Any, decrypt: Decrypt = crypto.decrypt) -> None:
        self.keyring = keyring
        self._decrypt = decrypt
        self._state = VerifierState.SEARCHING

    @classmethod
    def from_private_key(
        cls,
        key_data: bytes | str,
        passphrase: str | bytes | None = None,
    ) -> MessageVerifier:
        """Unlock the private key(s) once and build a verifier around them."""
        return cls(crypto.Keyring.unlock(key_data, passphrase))

    @property
    def state(self) -> VerifierState:
        return self._state

    def _transition(self, state: VerifierState) -> None:
        logger.debug("Verifier state %s -> %s", self._state.value, state.value)
        self._state = state

    def find_manifest(self, tree: Node) -> Manifest:
        """Locate, decrypt and parse the manifest leaf.

        Raises:
            ManifestNotFoundError: If the tree holds no manifest leaf
            CryptoError: If the manifest cannot be decrypted
            DecodingError: If the decrypted manifest is malformed
        """
        leaf = find_leaf(tree, lambda candidate: candidate.media_type == MANIFEST_TYPE)
        if leaf is None:
            raise ManifestNotFoundError("No manifest segment found in message")

        manifest = codec.parse(self._decrypt(leaf.body, self.keyring))
        self._transition(VerifierState.MANIFEST_FOUND)
        return manifest

    def check_segment(self, part: Part, armored: str) -> PartResult:
        """Decrypt one segment and compare its digest with the part's hash."""
        try:
            plaintext = self._decrypt(armored, self.keyring)
        except CryptoError as e:
            logger.warning("Cannot decrypt segment for part %r: %s", part.id, e)
            return PartResult(part=part, status=PartStatus.DECRYPTION_ERROR, error=e)

        actual = sha256_hex(plaintext)
        if not is_sha256_hex(part.hash):
            error = IntegrityError(
                part.id, part.hash, actual,
                message=f"Manifest digest for part {part.id!r} is not a SHA-256 hex digest",
            )
        elif not digests_equal(part.hash, actual):
            error = IntegrityError(part.id, part.hash, actual)
        else:
            return PartResult(part=part, status=PartStatus.VERIFIED, actual_hash=actual, content=plaintext)

        logger.warning("%s", error)
        return PartResult(part=part, status=PartStatus.INTEGRITY_ERROR, error=error, actual_hash=actual)

    def verify(self, tree: Node) -> VerificationResult:
        """Verify every segment of a received message.

        Returns:
            VerificationResult with one entry per manifest part, body first

        Raises:
            ManifestNotFoundError: If there is no manifest segment
            StructuralError: If the manifest repeats part ids, or a body
                segment is present without a body part
        """
        self._state = VerifierState.SEARCHING
        manifest = self.find_manifest(tree)

        seen: set[str] = set()
        for part in manifest.parts:
            if part.id in seen:
                raise StructuralError(f"Manifest declares part {part.id!r} more than once")
            seen.add(part.id)

        self._transition(VerifierState.VERIFYING_SEGMENTS)
        checked: dict[str, PartResult] = {}
        skipped: list[str] = []

        for leaf, parent in walk(tree):
            if _is_manifest_leaf(leaf):
                continue

            if _is_body_leaf(leaf, parent):
                part = manifest.body_part
                if part is None:
                    raise StructuralError("Message has a body segment but the manifest has no 'body' part")
            else:
                part_id = segment_id(leaf.filename)
                if part_id is None:
                    continue
                part = manifest.get_part(part_id)
                # The body is only ever correlated through the alternative container
                if part is None or part.is_body:
                    logger.debug("Skipping segment %r: no matching manifest part", leaf.filename)
                    skipped.append(leaf.filename or "")
                    continue

            if part.id in checked:
                logger.warning("Ignoring repeated segment for part %r", part.id)
                continue
            checked[part.id] = self.check_segment(part, leaf.body)

        ordered = sorted(manifest.parts, key=lambda p: not p.is_body)
        results = []
        for part in ordered:
            result = checked.get(part.id)
            if result is None:
                logger.warning("No segment found for part %r", part.id)
                result = PartResult(part=part, status=PartStatus.MISSING)
            results.append(result)

        self._transition(VerifierState.DONE)
        return VerificationResult(manifest=manifest, parts=results, skipped=skipped)

    def verify_bytes(self, data: bytes | str) -> VerificationResult:
        """Parse a serialized message and verify it."""
        from pgpmanifest import mime

        return self.verify(mime.parse(data))
