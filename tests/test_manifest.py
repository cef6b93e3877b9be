"""Tests for the manifest data model."""

from __future__ import annotations

import pytest

from pgpmanifest.addresses import Address
from pgpmanifest.canonical import sha256_hex
from pgpmanifest.errors import StructuralError
from pgpmanifest.manifest import (
    MANIFEST_VERSION,
    HeaderKind,
    HeaderValue,
    Manifest,
    Part,
    SemanticVersion,
)

BODY_HASH = sha256_hex(b"hello")
FILE_HASH = sha256_hex(b"secret")


class TestSemanticVersion:
    """Test schema version handling."""

    def test_parse(self):
        assert SemanticVersion.parse("1.0.0") == SemanticVersion(1, 0, 0)
        assert str(SemanticVersion.parse("2.10.3")) == "2.10.3"

    def test_ordering(self):
        assert SemanticVersion(1, 0, 0) < SemanticVersion(1, 1, 0)
        assert SemanticVersion(2, 0, 0) > SemanticVersion(1, 9, 9)
        assert SemanticVersion(1, 0, 0) <= MANIFEST_VERSION

    def test_prerelease_and_build(self):
        version = SemanticVersion.parse("1.0.0-rc.1+build.5")
        assert version.prerelease == "rc.1"
        assert version.build == "build.5"
        assert str(version) == "1.0.0-rc.1+build.5"

    def test_prerelease_precedence(self):
        """Pre-releases sort before their release; build metadata is ignored."""
        ordered = ["1.0.0-alpha", "1.0.0-alpha.1", "1.0.0-alpha.beta", "1.0.0-beta.2", "1.0.0-beta.11", "1.0.0"]
        versions = [SemanticVersion.parse(v) for v in ordered]
        assert sorted(reversed(versions)) == versions
        assert SemanticVersion.parse("1.0.0+a") == SemanticVersion.parse("1.0.0+b")
        assert SemanticVersion.parse("1.0.0-rc.1") != MANIFEST_VERSION

    @pytest.mark.parametrize("value", ["1.0", "1.0.0.0", "1.a.0", "", "v1.0.0", "01.0.0", "1.0.0-", "1.0.0+"])
    def test_invalid(self, value: str):
        with pytest.raises(ValueError):
            SemanticVersion.parse(value)


class TestHeaderValue:
    """Test the scalar/list header variant."""

    def test_scalar(self):
        value = HeaderValue.from_json("Hi")
        assert value.kind is HeaderKind.SCALAR
        assert value.is_scalar
        assert value.as_scalar() == "Hi"
        assert value.to_json() == "Hi"

    def test_list(self):
        value = HeaderValue.from_json(["a@x.com", "b@y.com"])
        assert value.is_list
        assert value.values == ("a@x.com", "b@y.com")
        assert value.as_scalar() == "a@x.com, b@y.com"
        assert value.to_json() == ["a@x.com", "b@y.com"]

    @pytest.mark.parametrize("data", [5, None, {"a": "b"}, ["a", 1]])
    def test_invalid(self, data):
        with pytest.raises(TypeError):
            HeaderValue.from_json(data)

    def test_from_json_passthrough(self):
        value = HeaderValue.scalar("x")
        assert HeaderValue.from_json(value) is value


class TestPart:
    """Test the Part class."""

    def test_to_dict_omits_unset(self):
        """Optional fields are left out of the wire form."""
        assert Part(id="body", hash=BODY_HASH).to_dict() == {"id": "body", "hash": BODY_HASH}

    def test_to_dict_full(self):
        part = Part(id="abc", hash=FILE_HASH, size=6, content_type="text/plain", filename="notes.txt")
        assert part.to_dict() == {
            "id": "abc",
            "hash": FILE_HASH,
            "size": 6,
            "content_type": "text/plain",
            "filename": "notes.txt",
        }

    def test_from_dict_keeps_zero_size(self):
        part = Part.from_dict({"id": "body", "hash": BODY_HASH, "size": 0, "content_type": ""})
        assert part.size == 0
        assert part.content_type is None

    def test_is_body(self):
        assert Part(id="body", hash=BODY_HASH).is_body
        assert not Part(id="x", hash=BODY_HASH, filename="f").is_body


class TestManifest:
    """Test the Manifest class."""

    def _manifest(self) -> Manifest:
        manifest = Manifest(sender=Address("", "alice@example.org"), subject="Hi")
        manifest.add_part(Part(id="body", hash=BODY_HASH))
        manifest.add_part(Part(id="abc", hash=FILE_HASH, filename="notes.txt"))
        return manifest

    def test_defaults(self):
        manifest = Manifest()
        assert manifest.version == MANIFEST_VERSION
        assert manifest.headers == {}
        assert manifest.parts == []
        assert manifest.body_part is None

    def test_lookup(self):
        manifest = self._manifest()
        assert manifest.body_part.id == "body"
        assert manifest.get_part("abc").filename == "notes.txt"
        assert manifest.get_part("missing") is None
        assert [p.id for p in manifest.attachment_parts] == ["abc"]

    def test_add_duplicate(self):
        manifest = self._manifest()
        with pytest.raises(StructuralError):
            manifest.add_part(Part(id="abc", hash=FILE_HASH, filename="other.txt"))

    def test_valid(self):
        manifest = self._manifest()
        assert manifest.validate() == []
        manifest.check()

    def test_violations(self):
        """Every invariant is reported."""
        manifest = Manifest(parts=[
            Part(id="body", hash="abc", filename="body.txt"),
            Part(id="x", hash=FILE_HASH),
            Part(id="x", hash=FILE_HASH, filename="f"),
        ])
        violations = manifest.validate()
        assert any("64-character" in v for v in violations)
        assert any("must not carry a filename" in v for v in violations)
        assert any("requires a filename" in v for v in violations)
        assert any("duplicate id" in v for v in violations)

        with pytest.raises(StructuralError) as excinfo:
            manifest.check()
        assert excinfo.value.violations == violations

    def test_header_lookup_is_case_insensitive(self):
        manifest = Manifest(headers={"subject": HeaderValue.scalar("Hi")})
        assert manifest.header("Subject").as_scalar() == "Hi"

    def test_to_dict(self):
        manifest = self._manifest()
        manifest.headers["x-mailer"] = HeaderValue.of_list(["a", "b"])
        data = manifest.to_dict()
        assert data["version"] == "1.0.0"
        assert data["headers"] == {"x-mailer": ["a", "b"]}
        assert [p["id"] for p in data["parts"]] == ["body", "abc"]
