"""Segment tree: containers holding sub-containers and leaves."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Union

# Content types of the message container
MULTIPART_MIXED = "multipart/mixed"
MULTIPART_ALTERNATIVE = "multipart/alternative"
ENCRYPTED_BODY_TYPE = "application/pgp-encrypted"
ATTACHMENT_TYPE = "application/octet-stream"
MANIFEST_TYPE = "application/x-pgp-manifest+json"
HTML_NOTICE_TYPE = 'text/html; charset="UTF-8"'
TEXT_NOTICE_TYPE = 'text/plain; charset="UTF-8"'

SEGMENT_SUFFIX = ".pgp"
MANIFEST_FILENAME = "manifest" + SEGMENT_SUFFIX


def media_type(content_type: str) -> str:
    """Lower-cased ``type/subtype`` without parameters."""
    return content_type.split(";", 1)[0].strip().lower()


@dataclass
class Leaf:
    """A single body part of the container."""

    content_type: str
    body: str = ""
    filename: str | None = None
    disposition: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def media_type(self) -> str:
        return media_type(self.content_type)


@dataclass
class Container:
    """A multipart node."""

    content_type: str
    children: list[Node] = field(default_factory=list)
    boundary: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def media_type(self) -> str:
        return media_type(self.content_type)

    def append(self, node: Node) -> None:
        self.children.append(node)


Node = Union[Container, Leaf]


def walk(node: Node, parent: Container | None = None) -> Iterator[tuple[Leaf, Container | None]]:
    """Depth-first traversal yielding every leaf with its enclosing container."""
    if isinstance(node, Leaf):
        yield node, parent
        return
    for child in node.children:
        yield from walk(child, node)


def find_leaf(node: Node, predicate: Callable[[Leaf], bool]) -> Leaf | None:
    """First leaf (depth-first) matching predicate."""
    for leaf, _ in walk(node):
        if predicate(leaf):
            return leaf
    return None
