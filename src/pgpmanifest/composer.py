"""Message composition.

Builds the segment tree of an encrypted message: the body and every
attachment are encrypted on their own, their plaintext digests go into the
manifest, and the manifest itself is encrypted and placed last.
"""

from __future__ import annotations

import logging
import mimetypes
import secrets
import string
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from pgpmanifest import codec, crypto
from pgpmanifest.addresses import (
    Address,
    coerce_address,
    coerce_address_list,
    format_address,
    format_address_list,
)
from pgpmanifest.canonical import sha256_hex
from pgpmanifest.config import Settings
from pgpmanifest.errors import AddressFormatError
from pgpmanifest.manifest import BODY_PART_ID, Manifest, Part
from pgpmanifest.tree import (
    ATTACHMENT_TYPE,
    ENCRYPTED_BODY_TYPE,
    HTML_NOTICE_TYPE,
    MANIFEST_FILENAME,
    MANIFEST_TYPE,
    MULTIPART_ALTERNATIVE,
    MULTIPART_MIXED,
    SEGMENT_SUFFIX,
    TEXT_NOTICE_TYPE,
    Container,
    Leaf,
)

logger = logging.getLogger(__name__)

BODY_CONTENT_TYPE = "text/plain; charset=utf-8"
TOKEN_ALPHABET = string.ascii_letters + string.digits
RESERVED_IDS = frozenset({BODY_PART_ID, "manifest"})

HTML_NOTICE = """<!DOCTYPE html>
<html>
<body>
<p>This is an encrypted email, <a href="{url}">
open it here if your email client doesn't support PGP manifests
</a></p>
</body>
</html>
"""

TEXT_NOTICE = """This is an encrypted email, open it here if your email client
doesn't support PGP manifests:

{url}
"""

Encrypt = Callable[[bytes, Any], str]


@dataclass
class SegmentDescriptor:
    """One leaf of the outgoing container, in emission order."""

    content_type: str
    body: str
    disposition: str | None = None
    container: str = MULTIPART_MIXED

    @property
    def filename(self) -> str | None:
        if self.disposition and 'filename="' in self.disposition:
            return self.disposition.split('filename="', 1)[1].split('"', 1)[0]
        return None


@dataclass
class ComposedMessage:
    """Result of composition: outer headers, manifest and ordered segments."""

    message_id: str
    boundaries: tuple[str, str]
    headers: dict[str, str]
    manifest: Manifest
    segments: list[SegmentDescriptor] = field(default_factory=list)

    def to_tree(self) -> Container:
        """Build the container tree consumed by the container encoder."""
        outer, inner = self.boundaries
        root = Container(MULTIPART_MIXED, boundary=outer, headers=dict(self.headers))
        alternative = Container(MULTIPART_ALTERNATIVE, boundary=inner)
        root.append(alternative)

        for segment in self.segments:
            leaf = Leaf(
                content_type=segment.content_type,
                body=segment.body,
                filename=segment.filename,
                disposition=segment.disposition,
            )
            if segment.container == MULTIPART_ALTERNATIVE:
                alternative.append(leaf)
            else:
                root.append(leaf)
        return root


def _attachment_disposition(filename: str) -> str:
    return f'attachment; filename="{filename}"'


def _base_name(filename: str) -> str:
    return filename.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]


class MessageComposer:
    """Composes encrypted multi-segment messages for one recipient key."""

    def __init__(
        self,
        public_key: Any,
        settings: Settings | None = None,
        encrypt: Encrypt = crypto.encrypt,
    ) -> None:
        self.public_key = public_key
        self.settings = settings or Settings()
        self._encrypt = encrypt

    def _token(self) -> str:
        return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(self.settings.token_length))

    def _part_id(self, used: set[str]) -> str:
        while True:
            token = self._token()
            if token not in used and token not in RESERVED_IDS:
                used.add(token)
                return token

    def encrypt_segment(self, plaintext: bytes) -> str:
        """Encrypt one segment for the recipient."""
        return self._encrypt(plaintext, self.public_key)

    def compose(
        self,
        sender: str | Address,
        to: str | Address | Sequence[str | Address],
        subject: str,
        body: str | bytes,
        attachments: Iterable[tuple[str, bytes | str]] = (),
        cc: str | Address | Sequence[str | Address] | None = None,
    ) -> ComposedMessage:
        """Encrypt body and attachments and assemble the message.

        Any failure aborts the whole composition.

        Args:
            sender: Sender address
            to: Recipient address(es)
            subject: Subject, stored only in the encrypted manifest
            body: Body plaintext (str is encoded as UTF-8)
            attachments: (filename, content) pairs; only the base name is kept
            cc: Carbon-copy address(es)

        Returns:
            ComposedMessage

        Raises:
            AddressFormatError: If an address does not parse or there are no recipients
            CryptoError: If encryption fails
            EncodingError: If the manifest cannot be serialized
            StructuralError: If the resulting manifest violates its invariants
        """
        sender_address = coerce_address(sender)
        to_addresses = coerce_address_list(to)
        cc_addresses = coerce_address_list(cc)
        if not to_addresses:
            raise AddressFormatError("At least one recipient is required")

        if isinstance(body, str):
            body = body.encode("utf-8")

        message_id = self._token()
        boundaries = (self._token(), self._token())

        manifest = Manifest(
            version=self.settings.version,
            sender=sender_address,
            to=to_addresses,
            cc=cc_addresses,
            subject=subject,
        )
        segments: list[SegmentDescriptor] = []

        # Body goes into the alternative container next to the notices
        segments.append(SegmentDescriptor(
            content_type=ENCRYPTED_BODY_TYPE,
            body=self.encrypt_segment(body),
            container=MULTIPART_ALTERNATIVE,
        ))
        manifest.add_part(Part(
            id=BODY_PART_ID,
            hash=sha256_hex(body),
            size=len(body),
            content_type=BODY_CONTENT_TYPE,
        ))
        url = self.settings.notice_url
        segments.append(SegmentDescriptor(
            content_type=HTML_NOTICE_TYPE,
            body=HTML_NOTICE.format(url=url),
            container=MULTIPART_ALTERNATIVE,
        ))
        segments.append(SegmentDescriptor(
            content_type=TEXT_NOTICE_TYPE,
            body=TEXT_NOTICE.format(url=url),
            container=MULTIPART_ALTERNATIVE,
        ))

        used_ids: set[str] = set()
        for filename, content in attachments:
            if isinstance(content, str):
                content = content.encode("utf-8")
            name = _base_name(filename)
            part_id = self._part_id(used_ids)

            segments.append(SegmentDescriptor(
                content_type=ATTACHMENT_TYPE,
                body=self.encrypt_segment(content),
                disposition=_attachment_disposition(part_id + SEGMENT_SUFFIX),
            ))
            manifest.add_part(Part(
                id=part_id,
                hash=sha256_hex(content),
                size=len(content),
                content_type=mimetypes.guess_type(name)[0] or ATTACHMENT_TYPE,
                filename=name,
            ))

        manifest.check()

        # Manifest is always the last segment
        segments.append(SegmentDescriptor(
            content_type=MANIFEST_TYPE,
            body=self.encrypt_segment(codec.write(manifest)),
            disposition=_attachment_disposition(MANIFEST_FILENAME),
        ))

        headers = {
            "From": format_address(sender_address),
            "To": format_address_list(to_addresses),
        }
        if cc_addresses:
            headers["Cc"] = format_address_list(cc_addresses)
        headers["Subject"] = f"Encrypted message ({message_id})"

        logger.info(
            "Composed message %s with %d part(s)", message_id, len(manifest.parts)
        )
        return ComposedMessage(
            message_id=message_id,
            boundaries=boundaries,
            headers=headers,
            manifest=manifest,
            segments=segments,
        )
