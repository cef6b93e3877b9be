"""Canonical JSON serialization and segment digests.

Design decisions:
- Digest algorithm: SHA-256, lowercase hex (64 chars), computed over plaintext
- JSON: sorted keys, compact separators, UTF-8 output (non-ASCII kept as-is)
- Arrays: preserved order (part order is the authoring order)
- Floats: rejected, the manifest schema has none
"""

from __future__ import annotations

import hashlib
import hmac
import json
import re
from typing import Any

SHA256_HEX = re.compile(r"[0-9a-fA-F]{64}")


class CanonicalJSONEncoder(json.JSONEncoder):
    """JSON encoder that produces deterministic manifest output.

    Guarantees:
    - Sorted keys at all levels
    - No whitespace
    - Objects exposing ``to_json()`` or ``to_dict()`` are serialized through it
    """

    def __init__(self, **kwargs: Any) -> None:
        kwargs["sort_keys"] = True
        kwargs["separators"] = (",", ":")
        kwargs["ensure_ascii"] = False
        kwargs["allow_nan"] = False
        super().__init__(**kwargs)

    def default(self, o: Any) -> Any:
        """Handle manifest value types."""
        if hasattr(o, "to_json"):
            return o.to_json()
        if hasattr(o, "to_dict"):
            return o.to_dict()
        return super().default(o)

    def encode(self, o: Any) -> str:
        return super().encode(self._normalize(o))

    def _normalize(self, obj: Any) -> Any:
        if obj is None or isinstance(obj, (bool, int, str)):
            return obj
        if isinstance(obj, float):
            raise ValueError(f"Floats are not allowed in canonical output: {obj}")
        if isinstance(obj, dict):
            return {k: self._normalize(v) for k, v in sorted(obj.items())}
        if isinstance(obj, (list, tuple)):
            return [self._normalize(item) for item in obj]
        if hasattr(obj, "to_json"):
            return self._normalize(obj.to_json())
        if hasattr(obj, "to_dict"):
            return self._normalize(obj.to_dict())
        return obj


_encoder = CanonicalJSONEncoder()


def canonical_json(data: Any) -> str:
    """Produce canonical JSON string from data.

    Raises:
        ValueError: If data contains floats
        TypeError: If data contains values that cannot be serialized
    """
    return _encoder.encode(data)


def sha256_hex(data: bytes | str) -> str:
    """Lowercase hex SHA-256 of data (str is encoded as UTF-8)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def is_sha256_hex(value: Any) -> bool:
    """Whether value is a 64-character hex string (either case)."""
    return isinstance(value, str) and SHA256_HEX.fullmatch(value) is not None


def digests_equal(expected: str, actual: str) -> bool:
    """Case-insensitive, constant-time digest comparison."""
    return hmac.compare_digest(
        expected.lower().encode("ascii", "replace"),
        actual.lower().encode("ascii", "replace"),
    )
