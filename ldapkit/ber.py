"""Basic Encoding Rules packets, as carried on the LDAP wire."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Iterator, Union

CLASS_UNIVERSAL = 0x00
CLASS_APPLICATION = 0x40
CLASS_CONTEXT = 0x80
CLASS_PRIVATE = 0xC0

TAG_EOC = 0x00
TAG_BOOLEAN = 0x01
TAG_INTEGER = 0x02
TAG_BIT_STRING = 0x03
TAG_OCTET_STRING = 0x04
TAG_NULL = 0x05
TAG_OBJECT_IDENTIFIER = 0x06
TAG_OBJECT_DESCRIPTOR = 0x07
TAG_EXTERNAL = 0x08
TAG_REAL = 0x09
TAG_ENUMERATED = 0x0A
TAG_EMBEDDED_PDV = 0x0B
TAG_UTF8_STRING = 0x0C
TAG_RELATIVE_OID = 0x0D
TAG_SEQUENCE = 0x10
TAG_SET = 0x11
TAG_NUMERIC_STRING = 0x12
TAG_PRINTABLE_STRING = 0x13
TAG_T61_STRING = 0x14
TAG_VIDEOTEX_STRING = 0x15
TAG_IA5_STRING = 0x16
TAG_UTC_TIME = 0x17
TAG_GENERALIZED_TIME = 0x18
TAG_GRAPHIC_STRING = 0x19
TAG_VISIBLE_STRING = 0x1A
TAG_GENERAL_STRING = 0x1B
TAG_UNIVERSAL_STRING = 0x1C
TAG_CHARACTER_STRING = 0x1D
TAG_BMP_STRING = 0x1E

MAX_PACKET_LENGTH = 2**31 - 1

_MAX_TAG_BYTES = 9
_MAX_LENGTH_BYTES = 8

_CLASS_NAMES = {
    CLASS_UNIVERSAL: "Universal",
    CLASS_APPLICATION: "Application",
    CLASS_CONTEXT: "Context",
    CLASS_PRIVATE: "Private",
}

_TAG_NAMES = {
    TAG_EOC: "EOC (End-of-Content)",
    TAG_BOOLEAN: "Boolean",
    TAG_INTEGER: "Integer",
    TAG_BIT_STRING: "Bit String",
    TAG_OCTET_STRING: "Octet String",
    TAG_NULL: "NULL",
    TAG_OBJECT_IDENTIFIER: "Object Identifier",
    TAG_OBJECT_DESCRIPTOR: "Object Descriptor",
    TAG_EXTERNAL: "External",
    TAG_REAL: "Real (float)",
    TAG_ENUMERATED: "Enumerated",
    TAG_EMBEDDED_PDV: "Embedded PDV",
    TAG_UTF8_STRING: "UTF8 String",
    TAG_RELATIVE_OID: "Relative-OID",
    TAG_SEQUENCE: "Sequence and Sequence of",
    TAG_SET: "Set and Set OF",
    TAG_NUMERIC_STRING: "Numeric String",
    TAG_PRINTABLE_STRING: "Printable String",
    TAG_T61_STRING: "T61 String",
    TAG_VIDEOTEX_STRING: "Videotex String",
    TAG_IA5_STRING: "IA5 String",
    TAG_UTC_TIME: "UTC Time",
    TAG_GENERALIZED_TIME: "Generalized Time",
    TAG_GRAPHIC_STRING: "Graphic String",
    TAG_VISIBLE_STRING: "Visible String",
    TAG_GENERAL_STRING: "General String",
    TAG_UNIVERSAL_STRING: "Universal String",
    TAG_CHARACTER_STRING: "Character String",
    TAG_BMP_STRING: "BMP String",
}

_TEXT_TAGS = frozenset(
    {
        TAG_OCTET_STRING,
        TAG_OBJECT_DESCRIPTOR,
        TAG_UTF8_STRING,
        TAG_NUMERIC_STRING,
        TAG_PRINTABLE_STRING,
        TAG_T61_STRING,
        TAG_VIDEOTEX_STRING,
        TAG_IA5_STRING,
        TAG_UTC_TIME,
        TAG_GENERALIZED_TIME,
        TAG_GRAPHIC_STRING,
        TAG_VISIBLE_STRING,
        TAG_GENERAL_STRING,
    }
)

_logger = logging.getLogger("ldapkit")


class BERError(ValueError):
    """Raised when bytes cannot be decoded as a BER packet."""


@dataclass(eq=False)
class Packet:
    """One BER element: a primitive value or a constructed list of children."""

    tag_class: int
    constructed: bool
    tag: int
    value: Any = None
    description: str = ""
    data: bytes = b""
    children: list[Packet] = field(default_factory=list)

    def append(self, child: Packet) -> None:
        """Add a child element."""
        self.children.append(child)

    def _content(self) -> bytes:
        if self.children:
            return b"".join(child.to_bytes() for child in self.children)
        return self.data

    def to_bytes(self) -> bytes:
        """Encode this element with definite lengths."""
        content = self._content()
        return (
            _encode_identifier(self.tag_class, self.constructed, self.tag)
            + _encode_length(len(content))
            + content
        )


def _encode_identifier(tag_class: int, constructed: bool, tag: int) -> bytes:
    first = tag_class | (0x20 if constructed else 0x00)
    if tag < 0x1F:
        return bytes([first | tag])
    groups = []
    remaining = tag
    while True:
        groups.append(remaining & 0x7F)
        remaining >>= 7
        if not remaining:
            break
    groups.reverse()
    encoded = [group | 0x80 for group in groups[:-1]] + [groups[-1]]
    return bytes([first | 0x1F, *encoded])


def _encode_length(length: int) -> bytes:
    if length < 0x80:
        return bytes([length])
    size = (length.bit_length() + 7) // 8
    return bytes([0x80 | size]) + length.to_bytes(size, "big")


def _encode_integer(value: int) -> bytes:
    size = (value + (value < 0)).bit_length() // 8 + 1
    return value.to_bytes(size, "big", signed=True)


def new_string(tag_class: int, tag: int, value: Union[str, bytes], description: str) -> Packet:
    """Create a primitive element holding a string."""
    if isinstance(value, bytes):
        data = value
    else:
        data = value.encode("utf-8", "surrogateescape")
    return Packet(tag_class, False, tag, value=value, description=description, data=data)


def new_integer(tag_class: int, tag: int, value: int, description: str) -> Packet:
    """Create a primitive element holding an integer in two's complement."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected an int, got {type(value).__name__}")
    return Packet(
        tag_class, False, tag, value=value, description=description, data=_encode_integer(value)
    )


def new_boolean(tag_class: int, tag: int, value: bool, description: str) -> Packet:
    """Create a primitive element holding a boolean."""
    return Packet(
        tag_class,
        False,
        tag,
        value=bool(value),
        description=description,
        data=_encode_integer(1 if value else 0),
    )


def new_constructed(tag_class: int, tag: int, description: str) -> Packet:
    """Create an empty constructed element."""
    return Packet(tag_class, True, tag, description=description)


class _Reader:
    def __init__(self, read: Callable[[int], bytes]) -> None:
        self._read = read
        self.consumed = 0

    def take(self, count: int) -> bytes:
        buffer = bytearray()
        while len(buffer) < count:
            chunk = self._read(count - len(buffer))
            if not chunk:
                if self.consumed == 0 and not buffer:
                    raise EOFError("no more data")
                raise BERError("unexpected end of data")
            buffer += chunk
        self.consumed += count
        return bytes(buffer)


def _read_length(reader: _Reader) -> int | None:
    first = reader.take(1)[0]
    if first == 0x80:
        return None
    if first == 0xFF:
        raise BERError("invalid length byte 0xff")
    if first < 0x80:
        return first
    size = first & 0x7F
    if size > _MAX_LENGTH_BYTES:
        raise BERError(f"length uses {size} bytes, more than allowed")
    length = int.from_bytes(reader.take(size), "big")
    if length > MAX_PACKET_LENGTH:
        raise BERError(f"length {length} exceeds maximum of {MAX_PACKET_LENGTH}")
    return length


def _decode_value(tag_class: int, tag: int, data: bytes) -> Any:
    if tag_class != CLASS_UNIVERSAL:
        return None
    if tag == TAG_BOOLEAN:
        return any(data)
    if tag in (TAG_INTEGER, TAG_ENUMERATED):
        return int.from_bytes(data, "big", signed=True)
    if tag in _TEXT_TAGS:
        return data.decode("utf-8", "surrogateescape")
    return None


def _is_end_of_content(packet: Packet) -> bool:
    return (
        packet.tag_class == CLASS_UNIVERSAL
        and not packet.constructed
        and packet.tag == TAG_EOC
        and not packet.data
    )


def _parse(reader: _Reader) -> Packet:
    first = reader.take(1)[0]
    tag_class = first & 0xC0
    constructed = bool(first & 0x20)
    tag = first & 0x1F
    if tag == 0x1F:
        tag = 0
        for count in range(1, _MAX_TAG_BYTES + 2):
            if count > _MAX_TAG_BYTES:
                raise BERError("tag number too large")
            byte = reader.take(1)[0]
            tag = (tag << 7) | (byte & 0x7F)
            if not byte & 0x80:
                break
    length = _read_length(reader)
    packet = Packet(tag_class, constructed, tag)

    if constructed:
        if length is None:
            while True:
                child = _parse(reader)
                if _is_end_of_content(child):
                    break
                packet.children.append(child)
        else:
            start = reader.consumed
            while reader.consumed - start < length:
                packet.children.append(_parse(reader))
            if reader.consumed - start != length:
                raise BERError("constructed content overruns its declared length")
        packet.data = b"".join(child.to_bytes() for child in packet.children)
        return packet

    if length is None:
        raise BERError("indefinite length on a primitive element")
    packet.data = reader.take(length)
    packet.value = _decode_value(tag_class, tag, packet.data)
    return packet


def decode_packet(data: bytes) -> Packet:
    """Decode the first BER element in ``data``."""
    try:
        return _parse(_Reader(io.BytesIO(data).read))
    except EOFError:
        raise BERError("no data to decode") from None


def read_packet(stream: BinaryIO) -> Packet:
    """Read one BER element from a binary stream.

    Raises EOFError when the stream ends before the element starts, and
    BERError when it ends in the middle of one.
    """
    return _parse(_Reader(stream.read))


def _format_lines(packet: Packet, depth: int) -> Iterator[str]:
    description = f"{packet.description}: " if packet.description else ""
    class_name = _CLASS_NAMES.get(packet.tag_class, f"0x{packet.tag_class:02X}")
    kind = "Constructed" if packet.constructed else "Primitive"
    if packet.tag_class == CLASS_UNIVERSAL:
        tag_name = _TAG_NAMES.get(packet.tag, f"0x{packet.tag:02X}")
    else:
        tag_name = f"0x{packet.tag:02X}"
    value = f" {packet.value!r}" if packet.value is not None else ""
    length = len(packet._content())
    yield f"{' ' * depth}{description}({class_name}, {kind}, {tag_name}) Len={length}{value}\n"
    for child in packet.children:
        yield from _format_lines(child, depth + 1)


def format_packet(packet: Packet) -> str:
    """Render a packet tree as indented text, one element per line."""
    return "".join(_format_lines(packet, 0))


@dataclass
class Debug:
    """Switchable debug output sent to the package logger."""

    enabled: bool = False
    logger: logging.Logger = field(default=_logger, repr=False)

    def __bool__(self) -> bool:
        return self.enabled

    def enable(self, on: bool) -> None:
        """Turn debug output on or off."""
        self.enabled = bool(on)

    def log(self, message: str, *args: Any) -> None:
        """Log a printf-style message when enabled."""
        if self.enabled:
            self.logger.debug(message, *args)

    def print_packet(self, packet: Packet) -> None:
        """Log a dump of the packet when enabled."""
        if self.enabled:
            self.logger.debug("%s", format_packet(packet).rstrip("\n"))