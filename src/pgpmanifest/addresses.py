"""Mail address parsing and formatting.

Thin layer over ``email.utils`` that adds the strictness the manifest needs:
``getaddresses`` happily returns half-parsed fragments for garbage input, so
every result is checked before it is handed back.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from email.utils import getaddresses
from typing import NamedTuple

from pgpmanifest.errors import AddressFormatError

# Characters that force a display name to be quoted (RFC 5322 specials)
_SPECIALS = re.compile(r'[()<>\[\]:;@\\,."]')
_FORBIDDEN_IN_ADDR = re.compile(r'[\s<>(),;:"\[\]\\]')


class Address(NamedTuple):
    """A single mailbox: display name plus addr-spec."""

    name: str
    address: str

    def __str__(self) -> str:
        return format_address(self)


def _check(name: str, addr: str, raw: str) -> Address:
    if not addr or addr.count("@") != 1:
        raise AddressFormatError(f"Invalid address: {raw!r}")
    local, domain = addr.split("@")
    if not local or not domain or _FORBIDDEN_IN_ADDR.search(addr):
        raise AddressFormatError(f"Invalid address: {raw!r}")
    if domain.startswith(".") or domain.endswith(".") or ".." in domain:
        raise AddressFormatError(f"Invalid domain in address: {raw!r}")
    return Address(name=name.strip(), address=addr)


def parse_address(value: str) -> Address:
    """Parse exactly one address.

    Raises:
        AddressFormatError: If value is empty, malformed or holds several addresses
    """
    if not isinstance(value, str) or not value.strip():
        raise AddressFormatError(f"Empty or non-string address: {value!r}")

    pairs = getaddresses([value])
    if len(pairs) != 1:
        raise AddressFormatError(f"Expected a single address, got {len(pairs)}: {value!r}")

    name, addr = pairs[0]
    return _check(name, addr, value)


def parse_address_list(value: str) -> list[Address]:
    """Parse a comma-separated address list.

    Commas inside quoted display names are not treated as delimiters.
    A blank value yields an empty list.
    """
    if not isinstance(value, str):
        raise AddressFormatError(f"Address list must be a string, got {type(value).__name__}")
    if not value.strip():
        return []

    result = []
    for name, addr in getaddresses([value]):
        result.append(_check(name, addr, value))
    return result


def format_address(address: Address) -> str:
    """Format as ``Name <addr>``, or bare ``addr`` when there is no name."""
    name = address.name.strip()
    addr = address.address.strip().strip("<>").strip()
    if not name:
        return addr
    if _SPECIALS.search(name):
        escaped = name.replace("\\", "\\\\").replace('"', '\\"')
        name = f'"{escaped}"'
    return f"{name} <{addr}>"


def format_address_list(addresses: Iterable[Address]) -> str:
    """Comma-join formatted addresses."""
    return ", ".join(format_address(a) for a in addresses)


def coerce_address(value: str | Address) -> Address:
    """Accept either a parsed Address or a string to parse."""
    if isinstance(value, Address):
        return value
    return parse_address(value)


def coerce_address_list(value: str | Address | Iterable[str | Address] | None) -> list[Address]:
    """Accept a comma-separated string, a single Address or a sequence of either."""
    if value is None:
        return []
    if isinstance(value, Address):
        return [value]
    if isinstance(value, str):
        return parse_address_list(value)

    result: list[Address] = []
    for item in value:
        if isinstance(item, Address):
            result.append(item)
        else:
            result.extend(parse_address_list(item))
    return result
