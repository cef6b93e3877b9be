"""Tests for message verification."""

from __future__ import annotations

import json

import pytest

from pgpmanifest import codec, crypto
from pgpmanifest.canonical import sha256_hex
from pgpmanifest.composer import MessageComposer
from pgpmanifest.errors import (
    CryptoError,
    DecryptionError,
    IntegrityError,
    ManifestNotFoundError,
    StructuralError,
)
from pgpmanifest.manifest import Manifest, Part
from pgpmanifest.tree import (
    ATTACHMENT_TYPE,
    ENCRYPTED_BODY_TYPE,
    MANIFEST_TYPE,
    MULTIPART_ALTERNATIVE,
    MULTIPART_MIXED,
    Container,
    Leaf,
)
from pgpmanifest.verifier import (
    MessageVerifier,
    PartStatus,
    VerifierState,
    segment_id,
)


def _attachment_leaf(tree: Container) -> Leaf:
    return tree.children[1]


def _manifest_leaf(tree: Container) -> Leaf:
    return tree.children[-1]


def _rewrite_manifest(tree: Container, keyring, public_key, mutate) -> None:
    """Decrypt the manifest, let mutate() change it, and seal it again."""
    leaf = _manifest_leaf(tree)
    manifest = codec.parse(crypto.decrypt(leaf.body, keyring))
    mutate(manifest)
    leaf.body = crypto.encrypt(codec.write(manifest), public_key)


def _seal_raw_manifest(tree: Container, public_key, data: dict) -> None:
    _manifest_leaf(tree).body = crypto.encrypt(json.dumps(data).encode("utf-8"), public_key)


class TestSegmentId:
    """Test part id extraction from segment filenames."""

    @pytest.mark.parametrize("filename,expected", [
        ("Xk3.pgp", "Xk3"),
        ("manifest.pgp", "manifest"),
        (".pgp", None),
        ("notes.txt", None),
        (None, None),
        ("", None),
    ])
    def test_segment_id(self, filename, expected):
        assert segment_id(filename) == expected


class TestVerify:
    """Test verification of untampered messages."""

    def test_valid_message(self, message, verifier):
        result = verifier.verify(message.to_tree())

        assert result.valid
        assert [p.status for p in result.parts] == [PartStatus.VERIFIED, PartStatus.VERIFIED]
        assert result.body == "hello"
        assert [a.filename for a in result.attachments] == ["notes.txt"]
        assert result.attachments[0].content == b"secret"
        assert result.skipped == []
        assert result.manifest.subject == "Hi"

    def test_state_reaches_done(self, message, verifier):
        assert verifier.state is VerifierState.SEARCHING
        verifier.verify(message.to_tree())
        assert verifier.state is VerifierState.DONE

    def test_no_attachments(self, composer, verifier):
        message = composer.compose(sender="a@x.com", to="b@y.com", subject="s", body="only body")
        result = verifier.verify(message.to_tree())
        assert result.valid
        assert len(result.parts) == 1
        assert result.body == "only body"

    def test_many_attachments(self, composer, verifier):
        attachments = [(f"file{i}.bin", bytes([i]) * (i + 1)) for i in range(5)]
        message = composer.compose(sender="a@x.com", to="b@y.com", subject="s", body="b", attachments=attachments)
        result = verifier.verify(message.to_tree())
        assert result.valid
        assert [a.content for a in result.attachments] == [content for _, content in attachments]

    def test_from_private_key_with_passphrase(self):
        private_pem, public_pem = crypto.generate_keypair("pass")
        message = MessageComposer(public_pem).compose(sender="a@x.com", to="b@y.com", subject="s", body="b")
        verifier = MessageVerifier.from_private_key(private_pem, "pass")
        assert verifier.verify(message.to_tree()).valid

    def test_results_body_first_in_manifest_order(self, message, keyring, public_key, verifier):
        tree = message.to_tree()
        _rewrite_manifest(tree, keyring, public_key, lambda m: m.parts.reverse())

        result = verifier.verify(tree)
        assert result.valid
        assert result.parts[0].part.is_body


class TestTampering:
    """Test detection of altered segments."""

    def test_replaced_attachment(self, message, public_key, verifier):
        tree = message.to_tree()
        _attachment_leaf(tree).body = crypto.encrypt(b"tampered", public_key)

        result = verifier.verify(tree)
        assert not result.valid
        attachment = result.parts[1]
        assert attachment.status is PartStatus.INTEGRITY_ERROR
        assert isinstance(attachment.error, IntegrityError)
        assert attachment.actual_hash == sha256_hex(b"tampered")
        assert attachment.content is None
        assert result.parts[0].ok

    def test_altered_manifest_hash(self, message, keyring, public_key, verifier):
        tree = message.to_tree()

        def alter(manifest: Manifest) -> None:
            manifest.body_part.hash = sha256_hex(b"something else")

        _rewrite_manifest(tree, keyring, public_key, alter)

        result = verifier.verify(tree)
        assert not result.valid
        assert result.parts[0].status is PartStatus.INTEGRITY_ERROR
        assert result.body is None
        assert result.parts[1].ok

    def test_uppercase_hash_accepted(self, message, keyring, public_key, verifier):
        tree = message.to_tree()

        def upper(manifest: Manifest) -> None:
            for part in manifest.parts:
                part.hash = part.hash.upper()

        _rewrite_manifest(tree, keyring, public_key, upper)
        assert verifier.verify(tree).valid

    def test_malformed_manifest_hash(self, message, keyring, public_key, verifier):
        tree = message.to_tree()

        def truncate(manifest: Manifest) -> None:
            manifest.parts[1].hash = manifest.parts[1].hash[:10]

        _rewrite_manifest(tree, keyring, public_key, truncate)

        result = verifier.verify(tree)
        assert result.parts[0].ok
        assert result.parts[1].status is PartStatus.INTEGRITY_ERROR
        assert "not a SHA-256" in str(result.parts[1].error)

    def test_undecryptable_segment(self, message, other_key_pair, verifier):
        tree = message.to_tree()
        _attachment_leaf(tree).body = crypto.encrypt(b"secret", other_key_pair[1])

        result = verifier.verify(tree)
        attachment = result.parts[1]
        assert attachment.status is PartStatus.DECRYPTION_ERROR
        assert isinstance(attachment.error, DecryptionError)

    def test_garbage_body_segment(self, message, verifier):
        tree = message.to_tree()
        tree.children[0].children[0].body = "not armored at all"

        result = verifier.verify(tree)
        assert result.parts[0].status is PartStatus.DECRYPTION_ERROR
        assert isinstance(result.parts[0].error, CryptoError)
        assert result.parts[1].ok

    def test_removed_segment_is_missing(self, message, verifier):
        tree = message.to_tree()
        del tree.children[1]

        result = verifier.verify(tree)
        assert not result.valid
        assert result.parts[1].status is PartStatus.MISSING
        assert result.parts[1].error is None

    def test_repeated_segment_ignored(self, message, public_key, verifier):
        """The first segment for a part wins."""
        tree = message.to_tree()
        original = _attachment_leaf(tree)
        tree.children.insert(2, Leaf(
            content_type=ATTACHMENT_TYPE,
            body=crypto.encrypt(b"tampered", public_key),
            filename=original.filename,
            disposition=original.disposition,
        ))

        assert verifier.verify(tree).valid

    def test_foreign_segment_skipped(self, message, public_key, verifier):
        tree = message.to_tree()
        tree.children.insert(2, Leaf(
            content_type=ATTACHMENT_TYPE,
            body=crypto.encrypt(b"extra", public_key),
            filename="unknown.pgp",
        ))

        result = verifier.verify(tree)
        assert result.valid
        assert result.skipped == ["unknown.pgp"]

    def test_body_not_correlated_by_filename(self, message, public_key, verifier):
        tree = message.to_tree()
        tree.children.insert(2, Leaf(
            content_type=ATTACHMENT_TYPE,
            body=crypto.encrypt(b"tampered", public_key),
            filename="body.pgp",
        ))

        result = verifier.verify(tree)
        assert result.valid
        assert result.skipped == ["body.pgp"]

    def test_unnamed_leaves_ignored(self, message, verifier):
        tree = message.to_tree()
        tree.append(Leaf(content_type="text/plain", body="footer added by a relay"))
        assert verifier.verify(tree).valid


class TestStructure:
    """Test conditions that abort verification."""

    def test_no_manifest(self, message, verifier):
        tree = message.to_tree()
        tree.children.pop()
        with pytest.raises(ManifestNotFoundError):
            verifier.verify(tree)

    def test_manifest_of_other_recipient(self, message, other_key_pair):
        verifier = MessageVerifier(crypto.Keyring.unlock(other_key_pair[0]))
        with pytest.raises(DecryptionError):
            verifier.verify(message.to_tree())

    def test_body_segment_without_body_part(self, message, keyring, public_key, verifier):
        tree = message.to_tree()

        def drop_body(manifest: Manifest) -> None:
            manifest.parts = [p for p in manifest.parts if not p.is_body]

        _rewrite_manifest(tree, keyring, public_key, drop_body)
        with pytest.raises(StructuralError):
            verifier.verify(tree)

    def test_duplicate_part_ids(self, message, public_key, verifier):
        body = message.manifest.body_part
        tree = message.to_tree()
        _seal_raw_manifest(tree, public_key, {
            "version": "1.0.0",
            "headers": {},
            "parts": [body.to_dict(), body.to_dict()],
        })
        with pytest.raises(StructuralError):
            verifier.verify(tree)

    def test_manifest_found_by_content_type(self, message, verifier):
        """The manifest is located by media type wherever it sits."""
        tree = message.to_tree()
        manifest = tree.children.pop()
        tree.children.insert(0, manifest)
        assert manifest.media_type == MANIFEST_TYPE
        assert verifier.verify(tree).valid


class TestInjectedDecryption:
    """Test the verifier with a swapped decryption collaborator."""

    def test_plaintext_passthrough(self):
        manifest = Manifest(parts=[
            Part(id="body", hash=sha256_hex(b"hello")),
            Part(id="abc", hash=sha256_hex(b"data"), filename="a.bin"),
        ])
        tree = Container(MULTIPART_MIXED, children=[
            Container(MULTIPART_ALTERNATIVE, children=[Leaf(ENCRYPTED_BODY_TYPE, body="hello")]),
            Leaf(ATTACHMENT_TYPE, body="data", filename="abc.pgp"),
            Leaf(MANIFEST_TYPE, body=codec.write(manifest).decode("utf-8"), filename="manifest.pgp"),
        ])
        verifier = MessageVerifier(None, decrypt=lambda armored, keyring: armored.encode("utf-8"))
        assert verifier.verify(tree).valid


class TestReports:
    """Test result serialization."""

    def test_to_dict(self, message, public_key, verifier):
        tree = message.to_tree()
        _attachment_leaf(tree).body = crypto.encrypt(b"tampered", public_key)

        data = verifier.verify(tree).to_dict()
        assert data["valid"] is False
        assert data["version"] == "1.0.0"
        assert data["headers"]["subject"] == "Hi"
        assert data["parts"][0]["status"] == "verified"
        assert data["parts"][1]["status"] == "integrity_error"
        assert data["parts"][1]["filename"] == "notes.txt"
        assert "error" in data["parts"][1]
        assert len(data["errors"]) == 1
        json.dumps(data)

    def test_errors(self, composer, public_key, verifier):
        message = composer.compose(
            sender="a@x.com", to="b@y.com", subject="s", body="b",
            attachments=[("one.txt", b"1"), ("two.txt", b"2")],
        )
        one, two = message.manifest.attachment_parts
        tree = message.to_tree()
        tree.children[1].body = crypto.encrypt(b"tampered", public_key)
        del tree.children[2]

        result = verifier.verify(tree)
        assert result.errors == [
            f"Digest mismatch for part {one.id!r}",
            f"No segment found for part {two.id!r}",
        ]

    def test_no_errors_when_valid(self, message, verifier):
        assert verifier.verify(message.to_tree()).errors == []

    def test_to_markdown(self, message, public_key, verifier):
        tree = message.to_tree()
        _attachment_leaf(tree).body = crypto.encrypt(b"tampered", public_key)
        tree.append(Leaf(ATTACHMENT_TYPE, body="x", filename="stray.pgp"))

        report = verifier.verify(tree).to_markdown()
        assert "**Status:** INVALID" in report
        assert "- **Parts Failed:** 1" in report
        assert "## Failed Parts" in report
        assert "`stray.pgp`" in report

    def test_valid_markdown(self, message, verifier):
        report = verifier.verify(message.to_tree()).to_markdown()
        assert "**Status:** VALID" in report
        assert "## Failed Parts" not in report
