"""Serialize composed messages to RFC 5322 bytes and parse them back into a segment tree."""

from __future__ import annotations

import email
from email.header import Header
from email.message import Message

from pgpmanifest.composer import ComposedMessage
from pgpmanifest.errors import StructuralError
from pgpmanifest.tree import Container, Leaf, Node


def _to_message(node: Node) -> Message:
    msg = Message()
    if isinstance(node, Leaf):
        msg["Content-Type"] = node.content_type
        if node.disposition:
            msg["Content-Disposition"] = node.disposition
        msg.set_payload(node.body)
        return msg

    # Without a boundary the generator picks one
    params = {"boundary": node.boundary} if node.boundary else {}
    msg.add_header("Content-Type", node.media_type, **params)
    for child in node.children:
        msg.attach(_to_message(child))
    return msg


def render_tree(tree: Container, headers: dict[str, str] | None = None) -> bytes:
    """Serialize a container tree with the given top-level headers."""
    msg = _to_message(tree)
    top = Message()
    for name, value in (headers or {}).items():
        if name.lower() != "content-type":
            top[name] = value if value.isascii() else Header(value, "utf-8")
    top["MIME-Version"] = "1.0"
    for name, value in msg.items():
        top[name] = value
    top.set_payload(msg.get_payload())
    return top.as_bytes()


def render(message: ComposedMessage) -> bytes:
    """Serialize a composed message."""
    return render_tree(message.to_tree(), message.headers)


def _leaf_body(part: Message) -> str:
    payload = part.get_payload(decode=True)
    if payload is None:
        return ""
    charset = part.get_content_charset() or "ascii"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("ascii", errors="replace")


def _headers(part: Message) -> dict[str, str]:
    return {name: str(value) for name, value in part.items()}


def _container(part: Message) -> Container:
    return Container(
        content_type=part.get_content_type(),
        children=[_from_message(child) for child in part.get_payload()],
        boundary=part.get_boundary(),
        headers=_headers(part),
    )


def _from_message(part: Message) -> Node:
    if part.is_multipart():
        return _container(part)
    return Leaf(
        content_type=part.get("Content-Type", "text/plain"),
        body=_leaf_body(part),
        filename=part.get_filename(),
        disposition=part.get("Content-Disposition"),
        headers=_headers(part),
    )


def parse(data: bytes | str) -> Container:
    """Parse a serialized message into its segment tree.

    Top-level message headers are available as ``Container.headers``.

    Raises:
        StructuralError: If the message is not multipart
    """
    if isinstance(data, str):
        msg = email.message_from_string(data)
    else:
        msg = email.message_from_bytes(data)

    if not msg.is_multipart():
        raise StructuralError(f"Message is not multipart: {msg.get_content_type()}")

    return _container(msg)
