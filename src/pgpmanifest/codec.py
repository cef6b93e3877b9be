"""Manifest codec: typed fields <-> header map <-> UTF-8 JSON.

Normalization rule used on write:
- header names are lower-cased
- values of address headers are re-formatted through the address parser
  (values that do not parse are left as they are)
- every other header value is left untouched

Wire spelling is fixed to ``parts`` and ``content_type``. The legacy
spellings ``part`` and ``content-type`` are accepted on parse only.
"""

from __future__ import annotations

import json
from typing import Any

from jsonschema import Draft7Validator

from pgpmanifest.addresses import (
    format_address,
    format_address_list,
    parse_address,
    parse_address_list,
)
from pgpmanifest.canonical import canonical_json
from pgpmanifest.errors import AddressFormatError, DecodingError, EncodingError
from pgpmanifest.manifest import HeaderValue, Manifest, Part, SemanticVersion

ADDRESS_HEADERS = frozenset({"from", "to", "cc", "bcc", "reply-to", "sender"})

MANIFEST_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "pgp-manifest",
    "type": "object",
    "required": ["version"],
    "properties": {
        "version": {"type": "string"},
        "headers": {
            "type": ["object", "null"],
            "additionalProperties": {
                "anyOf": [
                    {"type": "string"},
                    {"type": "array", "items": {"type": "string"}},
                ]
            },
        },
        "parts": {
            "type": ["array", "null"],
            "items": {
                "type": "object",
                "required": ["id", "hash"],
                "properties": {
                    "id": {"type": "string"},
                    "hash": {"type": "string"},
                    "content_type": {"type": ["string", "null"]},
                    "filename": {"type": ["string", "null"]},
                    "size": {"type": ["integer", "null"], "minimum": 0},
                },
            },
        },
    },
}

_validator = Draft7Validator(MANIFEST_SCHEMA)


def _normalize_address_value(value: HeaderValue) -> HeaderValue:
    try:
        if value.is_list:
            return HeaderValue.of_list(format_address(parse_address(v)) for v in value.values)
        return HeaderValue.scalar(format_address_list(parse_address_list(value.values[0])))
    except AddressFormatError:
        return value


def normalize_headers(headers: dict[str, Any]) -> dict[str, HeaderValue]:
    """Lower-case header names and canonicalize address header values.

    Raises:
        EncodingError: If a header value is neither a string nor a list of strings
    """
    result: dict[str, HeaderValue] = {}
    for name, raw in headers.items():
        key = name.strip().lower()
        try:
            value = HeaderValue.from_json(raw)
        except TypeError as e:
            raise EncodingError(f"Header {name!r}: {e}") from e
        if key in ADDRESS_HEADERS:
            value = _normalize_address_value(value)
        result[key] = value
    return result


def write(manifest: Manifest) -> bytes:
    """Project typed fields into headers and serialize the manifest.

    The manifest's ``headers`` are replaced by their normalized form.

    Raises:
        EncodingError: If serialization fails
    """
    headers = normalize_headers(manifest.headers)

    if manifest.sender is not None:
        headers["from"] = HeaderValue.scalar(format_address(manifest.sender))
    if manifest.to:
        headers["to"] = HeaderValue.scalar(format_address_list(manifest.to))
    if manifest.cc:
        headers["cc"] = HeaderValue.scalar(format_address_list(manifest.cc))
    if manifest.subject:
        headers["subject"] = HeaderValue.scalar(manifest.subject)
    if manifest.content_type:
        headers["content-type"] = HeaderValue.scalar(manifest.content_type)

    manifest.headers = headers

    content = {
        "version": str(manifest.version),
        "headers": headers,
        "parts": [p.to_dict() for p in manifest.parts],
    }
    try:
        return canonical_json(content).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Cannot serialize manifest: {e}") from e


def _upgrade_legacy_fields(data: dict[str, Any]) -> dict[str, Any]:
    if data.get("parts") is None and "part" in data:
        data["parts"] = data.pop("part")
    parts = data.get("parts")
    if isinstance(parts, list):
        for item in parts:
            if isinstance(item, dict) and "content_type" not in item and "content-type" in item:
                item["content_type"] = item.pop("content-type")
    return data


def _project_headers(manifest: Manifest) -> None:
    value = manifest.headers.get("from")
    if value is not None:
        if value.is_list:
            raise AddressFormatError("'from' header must be a single address, got a list")
        manifest.sender = parse_address(value.values[0])

    for name in ("to", "cc"):
        value = manifest.headers.get(name)
        if value is None:
            continue
        if value.is_list:
            addresses = [parse_address(v) for v in value.values]
        else:
            addresses = parse_address_list(value.values[0])
        setattr(manifest, name, addresses)

    value = manifest.headers.get("subject")
    if value is not None and value.is_scalar:
        manifest.subject = value.values[0]

    value = manifest.headers.get("content-type")
    if value is not None and value.is_scalar:
        manifest.content_type = value.values[0]


def parse(data: bytes | str) -> Manifest:
    """Reconstruct a manifest from its decrypted bytes.

    Part hashes are not checked here; the verifier does that.

    Raises:
        DecodingError: On malformed JSON, wrong shape or invalid version
        AddressFormatError: If an address header does not parse
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodingError(f"Manifest is not valid UTF-8: {e}") from e

    try:
        obj = json.loads(data)
    except json.JSONDecodeError as e:
        raise DecodingError(f"Invalid manifest JSON: {e}") from e

    if not isinstance(obj, dict):
        raise DecodingError(f"Manifest must be a JSON object, got {type(obj).__name__}")

    obj = _upgrade_legacy_fields(obj)

    errors = sorted(_validator.iter_errors(obj), key=lambda e: list(e.absolute_path))
    if errors:
        messages = [
            f"{'/'.join(str(p) for p in e.absolute_path) or '<root>'}: {e.message}"
            for e in errors
        ]
        raise DecodingError("Manifest does not match schema: " + "; ".join(messages))

    try:
        version = SemanticVersion.parse(obj["version"])
    except ValueError as e:
        raise DecodingError(str(e)) from e

    headers: dict[str, HeaderValue] = {}
    for name, value in (obj.get("headers") or {}).items():
        key = name.lower()
        if key in headers:
            raise DecodingError(f"Header {name!r} appears more than once (names are case-insensitive)")
        headers[key] = HeaderValue.from_json(value)

    manifest = Manifest(
        version=version,
        headers=headers,
        parts=[Part.from_dict(p) for p in (obj.get("parts") or [])],
    )
    _project_headers(manifest)
    return manifest
