"""Shared fixtures: one recipient key pair per session, composers and verifiers built on it."""

from __future__ import annotations

import pytest

from pgpmanifest import crypto
from pgpmanifest.composer import ComposedMessage, MessageComposer
from pgpmanifest.verifier import MessageVerifier


@pytest.fixture(scope="session")
def key_pair() -> tuple[bytes, bytes]:
    """Unencrypted (private_pem, public_pem)."""
    return crypto.generate_keypair()


@pytest.fixture(scope="session")
def other_key_pair() -> tuple[bytes, bytes]:
    """A second, unrelated key pair."""
    return crypto.generate_keypair()


@pytest.fixture
def public_key(key_pair) -> bytes:
    return key_pair[1]


@pytest.fixture
def keyring(key_pair) -> crypto.Keyring:
    return crypto.Keyring.unlock(key_pair[0])


@pytest.fixture
def composer(public_key) -> MessageComposer:
    return MessageComposer(public_key)


@pytest.fixture
def verifier(keyring) -> MessageVerifier:
    return MessageVerifier(keyring)


@pytest.fixture
def message(composer) -> ComposedMessage:
    """The reference message: one body and one attachment."""
    return composer.compose(
        sender="alice@example.org",
        to="bob@example.org",
        subject="Hi",
        body="hello",
        attachments=[("notes.txt", b"secret")],
    )
