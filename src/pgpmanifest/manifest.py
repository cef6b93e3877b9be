"""Manifest data model.

A manifest declares, for every encrypted segment of a message, an opaque id
and the SHA-256 digest of the segment's plaintext. ``headers`` is the
serialization source of truth; ``sender``/``to``/``cc``/``subject``/
``content_type`` are typed views projected from it by the codec.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pgpmanifest.addresses import Address
from pgpmanifest.canonical import is_sha256_hex
from pgpmanifest.errors import StructuralError

BODY_PART_ID = "body"

_SEMVER = re.compile(
    r"(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
)


def _precedence(prerelease: str) -> tuple:
    # A release sorts after all of its pre-releases; numeric identifiers sort before alphanumeric ones
    if not prerelease:
        return (1,)
    return (0, tuple((0, int(i), "") if i.isdigit() else (1, 0, i) for i in prerelease.split(".")))


@dataclass(frozen=True, order=True)
class SemanticVersion:
    """Manifest schema revision.

    Build metadata is kept for round-tripping but ignored when comparing.
    """

    major: int
    minor: int
    patch: int
    prerelease: str = field(default="", compare=False)
    build: str = field(default="", compare=False)
    _rank: tuple = field(default=(), init=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "_rank", _precedence(self.prerelease))

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            version += f"-{self.prerelease}"
        if self.build:
            version += f"+{self.build}"
        return version

    @classmethod
    def parse(cls, version: str) -> SemanticVersion:
        """Parse a version string into a SemanticVersion."""
        match = _SEMVER.fullmatch(version) if isinstance(version, str) else None
        if match is None:
            raise ValueError(
                f"Invalid version format: {version}. Expected MAJOR.MINOR.PATCH[-PRERELEASE][+BUILD]"
            )
        major, minor, patch, prerelease, build = match.groups()
        return cls(
            major=int(major),
            minor=int(minor),
            patch=int(patch),
            prerelease=prerelease or "",
            build=build or "",
        )

    def to_json(self) -> str:
        return str(self)


MANIFEST_VERSION = SemanticVersion(1, 0, 0)


class HeaderKind(Enum):
    """How a header value was serialized."""

    SCALAR = "scalar"
    LIST = "list"


@dataclass(frozen=True)
class HeaderValue:
    """Header value that is either a single string or a list of strings.

    Older manifest producers wrote address headers as one comma-joined
    string, newer ones as a JSON array; both forms must survive a round trip.
    """

    kind: HeaderKind
    values: tuple[str, ...]

    @classmethod
    def scalar(cls, value: str) -> HeaderValue:
        return cls(HeaderKind.SCALAR, (value,))

    @classmethod
    def of_list(cls, values: Iterable[str]) -> HeaderValue:
        return cls(HeaderKind.LIST, tuple(values))

    @classmethod
    def from_json(cls, data: Any) -> HeaderValue:
        """Build from a decoded JSON value.

        Raises:
            TypeError: If data is neither a string nor a list of strings
        """
        if isinstance(data, HeaderValue):
            return data
        if isinstance(data, str):
            return cls.scalar(data)
        if isinstance(data, (list, tuple)) and all(isinstance(v, str) for v in data):
            return cls.of_list(data)
        raise TypeError(f"Header value must be a string or list of strings, got {type(data).__name__}")

    @property
    def is_scalar(self) -> bool:
        return self.kind is HeaderKind.SCALAR

    @property
    def is_list(self) -> bool:
        return self.kind is HeaderKind.LIST

    def as_scalar(self) -> str:
        """Scalar value, or list items joined with a comma."""
        if self.is_scalar:
            return self.values[0]
        return ", ".join(self.values)

    def to_json(self) -> str | list[str]:
        if self.is_scalar:
            return self.values[0]
        return list(self.values)


@dataclass
class Part:
    """Manifest entry for a single encrypted segment."""

    id: str
    hash: str
    size: int | None = None
    content_type: str | None = None
    filename: str | None = None

    @property
    def is_body(self) -> bool:
        return self.id == BODY_PART_ID

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary, omitting unset optional fields."""
        result: dict[str, Any] = {
            "id": self.id,
            "hash": self.hash,
        }
        if self.size is not None:
            result["size"] = self.size
        if self.content_type:
            result["content_type"] = self.content_type
        if self.filename:
            result["filename"] = self.filename
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Part:
        """Create from a wire dictionary."""
        size = data.get("size")
        return cls(
            id=data["id"],
            hash=data["hash"],
            size=int(size) if size is not None else None,
            content_type=data.get("content_type") or None,
            filename=data.get("filename") or None,
        )


@dataclass
class Manifest:
    """Encrypted metadata document describing every segment of a message."""

    version: SemanticVersion = MANIFEST_VERSION
    headers: dict[str, HeaderValue] = field(default_factory=dict)
    parts: list[Part] = field(default_factory=list)

    # Typed projections of headers
    sender: Address | None = None
    to: list[Address] = field(default_factory=list)
    cc: list[Address] = field(default_factory=list)
    subject: str = ""
    content_type: str = ""

    def add_part(self, part: Part) -> None:
        """Append a part.

        Raises:
            StructuralError: If a part with the same id is already present
        """
        if self.get_part(part.id) is not None:
            raise StructuralError(f"Duplicate part id: {part.id!r}")
        self.parts.append(part)

    def get_part(self, part_id: str) -> Part | None:
        for part in self.parts:
            if part.id == part_id:
                return part
        return None

    @property
    def body_part(self) -> Part | None:
        return self.get_part(BODY_PART_ID)

    @property
    def attachment_parts(self) -> list[Part]:
        return [p for p in self.parts if not p.is_body]

    def header(self, name: str) -> HeaderValue | None:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower())

    def validate(self) -> list[str]:
        """Check the manifest invariants.

        Returns:
            List of violation messages (empty if valid)
        """
        violations = []
        seen: set[str] = set()
        for index, part in enumerate(self.parts):
            label = f"parts[{index}] ({part.id!r})"
            if not part.id:
                violations.append(f"{label}: empty id")
            if part.id in seen:
                violations.append(f"{label}: duplicate id")
            seen.add(part.id)
            if not is_sha256_hex(part.hash):
                violations.append(f"{label}: hash is not a 64-character hex digest")
            if part.is_body and part.filename:
                violations.append(f"{label}: body part must not carry a filename")
            if not part.is_body and not part.filename:
                violations.append(f"{label}: attachment part requires a filename")
            if part.size is not None and part.size < 0:
                violations.append(f"{label}: negative size")
        return violations

    def check(self) -> None:
        """Raise StructuralError if any invariant is violated."""
        violations = self.validate()
        if violations:
            raise StructuralError(
                f"Manifest violates {len(violations)} invariant(s)", violations
            )

    def to_dict(self) -> dict[str, Any]:
        """Wire dictionary of the current headers and parts.

        Typed fields are not projected here; use ``codec.write`` for that.
        """
        return {
            "version": str(self.version),
            "headers": {name: value.to_json() for name, value in self.headers.items()},
            "parts": [p.to_dict() for p in self.parts],
        }
