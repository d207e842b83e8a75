"""Distinguished names: parsing and matching."""

from __future__ import annotations

import string
from dataclasses import dataclass, field
from typing import Callable

from .ber import BERError, decode_packet

_ESCAPABLE = frozenset(b' "#+,;<=>\\')
_BACKSLASH = ord("\\")
_EQUALS = ord("=")
_HASH = ord("#")
_SPACE = ord(" ")
_PLUS = ord("+")
_SEPARATORS = frozenset(b",+;")


class DNParseError(ValueError):
    """Raised when a string is not a valid distinguished name."""


def _fold(text: str) -> str:
    return text.casefold()


@dataclass
class AttributeTypeAndValue:
    """A single type=value pair."""

    type: str
    value: str

    def equal(self, other: AttributeTypeAndValue) -> bool:
        """Match ignoring the case of the type only."""
        return _fold(self.type) == _fold(other.type) and self.value == other.value

    def equal_fold(self, other: AttributeTypeAndValue) -> bool:
        """Match ignoring the case of both type and value."""
        return _fold(self.type) == _fold(other.type) and _fold(self.value) == _fold(other.value)


_AttrMatch = Callable[[AttributeTypeAndValue, AttributeTypeAndValue], bool]


def _covers(
    mine: list[AttributeTypeAndValue], theirs: list[AttributeTypeAndValue], match: _AttrMatch
) -> bool:
    return all(any(match(own, attr) for own in mine) for attr in theirs)


@dataclass
class RelativeDN:
    """One RDN: a set of type=value pairs joined with '+'."""

    attributes: list[AttributeTypeAndValue] = field(default_factory=list)

    def _matches(self, other: RelativeDN, match: _AttrMatch) -> bool:
        if len(self.attributes) != len(other.attributes):
            return False
        return _covers(self.attributes, other.attributes, match) and _covers(
            other.attributes, self.attributes, match
        )

    def equal(self, other: RelativeDN) -> bool:
        """Same attributes in any order; type case is not significant."""
        return self._matches(other, AttributeTypeAndValue.equal)

    def equal_fold(self, other: RelativeDN) -> bool:
        """Same attributes in any order; case is not significant."""
        return self._matches(other, AttributeTypeAndValue.equal_fold)


@dataclass
class DN:
    """A distinguished name: a sequence of RDNs, most specific first."""

    rdns: list[RelativeDN] = field(default_factory=list)

    def _equal_by(self, other: DN, match: Callable[[RelativeDN, RelativeDN], bool]) -> bool:
        if len(self.rdns) != len(other.rdns):
            return False
        return all(match(mine, theirs) for mine, theirs in zip(self.rdns, other.rdns))

    def _ancestor_by(self, other: DN, match: Callable[[RelativeDN, RelativeDN], bool]) -> bool:
        if len(self.rdns) >= len(other.rdns):
            return False
        tail = other.rdns[len(other.rdns) - len(self.rdns):]
        return all(match(mine, theirs) for mine, theirs in zip(self.rdns, tail))

    def equal(self, other: DN) -> bool:
        """Distinguished name match; type case is not significant."""
        return self._equal_by(other, RelativeDN.equal)

    def equal_fold(self, other: DN) -> bool:
        """Distinguished name match ignoring case of types and values."""
        return self._equal_by(other, RelativeDN.equal_fold)

    def ancestor_of(self, other: DN) -> bool:
        """True if ``other`` is this DN with at least one more leading RDN."""
        return self._ancestor_by(other, RelativeDN.equal)

    def ancestor_of_fold(self, other: DN) -> bool:
        """Like ancestor_of, ignoring case of types and values."""
        return self._ancestor_by(other, RelativeDN.equal_fold)


def _describe_byte(byte: int) -> str:
    char = chr(byte)
    if char.isprintable():
        return f"U+{byte:04X} '{char}'"
    return f"U+{byte:04X}"


def _hex_digit(byte: int) -> int:
    char = chr(byte)
    if char in string.hexdigits:
        return int(char, 16)
    raise ValueError(f"invalid byte: {_describe_byte(byte)}")


def _decode_hex(raw: bytes) -> bytes:
    pairs = len(raw) // 2
    out = bytearray(
        (_hex_digit(high) << 4) | _hex_digit(low)
        for high, low in zip(raw[0 : 2 * pairs : 2], raw[1 : 2 * pairs : 2])
    )
    if len(raw) % 2:
        _hex_digit(raw[-1])
        raise ValueError("odd length hex string")
    return bytes(out)


def _find_value_end(raw: bytes) -> int:
    positions = [pos for pos in (raw.find(b","), raw.find(b"+")) if pos >= 0]
    return min(positions) if positions else -1


def parse_dn(text: str) -> DN:
    """Parse a string representation of a distinguished name."""
    raw = text.encode("utf-8", "surrogateescape")
    rdns: list[RelativeDN] = []
    attributes: list[AttributeTypeAndValue] = []
    buffer = bytearray()
    attr_type = ""
    trailing_spaces = 0
    escaping = False

    def take() -> str:
        nonlocal trailing_spaces
        value = bytes(buffer[: len(buffer) - trailing_spaces])
        buffer.clear()
        trailing_spaces = 0
        return value.decode("utf-8", "surrogateescape")

    i = 0
    while i < len(raw):
        char = raw[i]
        if escaping:
            trailing_spaces = 0
            escaping = False
            if char in _ESCAPABLE:
                buffer.append(char)
            else:
                if i + 1 == len(raw):
                    raise DNParseError("got corrupted escaped character")
                try:
                    buffer += _decode_hex(raw[i : i + 2])
                except ValueError as exc:
                    raise DNParseError(f"failed to decode escaped character: {exc}") from None
                i += 1
        elif char == _BACKSLASH:
            trailing_spaces = 0
            escaping = True
        elif char == _EQUALS:
            attr_type = take()
            if i + 1 < len(raw) and raw[i + 1] == _HASH:
                i += 2
                rest = raw[i:]
                end = _find_value_end(rest)
                data = rest[:end] if end > 0 else rest
                try:
                    encoded = _decode_hex(data)
                except ValueError as exc:
                    raise DNParseError(f"failed to decode BER encoding: {exc}") from None
                try:
                    packet = decode_packet(encoded)
                except BERError as exc:
                    raise DNParseError(f"failed to decode BER packet: {exc}") from None
                buffer += packet.data
                i += len(data) - 1
        elif char in _SEPARATORS:
            if not attr_type:
                raise DNParseError("incomplete type, value pair")
            attributes.append(AttributeTypeAndValue(attr_type, take()))
            attr_type = ""
            if char != _PLUS:
                rdns.append(RelativeDN(attributes))
                attributes = []
        elif char == _SPACE and not buffer:
            pass
        else:
            trailing_spaces = trailing_spaces + 1 if char == _SPACE else 0
            buffer.append(char)
        i += 1

    if buffer:
        if not attr_type:
            raise DNParseError("DN ended with incomplete type, value pair")
        attributes.append(AttributeTypeAndValue(attr_type, take()))
        rdns.append(RelativeDN(attributes))
    return DN(rdns)