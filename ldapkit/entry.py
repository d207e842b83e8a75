"""Search entries, results and request parameters."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

from .ber import Packet


class Scope(enum.IntEnum):
    """How far below the base DN a search reaches."""

    BASE_OBJECT = 0
    SINGLE_LEVEL = 1
    WHOLE_SUBTREE = 2

    @property
    def description(self) -> str:
        """Human readable name of the scope."""
        return _SCOPE_DESCRIPTIONS[self]


_SCOPE_DESCRIPTIONS = {
    Scope.BASE_OBJECT: "Base Object",
    Scope.SINGLE_LEVEL: "Single Level",
    Scope.WHOLE_SUBTREE: "Whole Subtree",
}


class DerefAliases(enum.IntEnum):
    """When the server dereferences aliases during a search."""

    NEVER = 0
    IN_SEARCHING = 1
    FINDING_BASE_OBJ = 2
    ALWAYS = 3

    @property
    def description(self) -> str:
        """Human readable name of the choice."""
        return _DEREF_DESCRIPTIONS[self]


_DEREF_DESCRIPTIONS = {
    DerefAliases.NEVER: "NeverDerefAliases",
    DerefAliases.IN_SEARCHING: "DerefInSearching",
    DerefAliases.FINDING_BASE_OBJ: "DerefFindingBaseObj",
    DerefAliases.ALWAYS: "DerefAlways",
}


def _fold(text: str) -> str:
    return text.casefold()


def _format_values(values: Iterable[str]) -> str:
    return "[" + " ".join(values) + "]"


@dataclass
class EntryAttribute:
    """One attribute of an entry with its string and raw values."""

    name: str
    values: list[str] = field(default_factory=list)
    byte_values: list[bytes] = field(default_factory=list)

    def print(self) -> None:
        """Write a one-line description to standard output."""
        print(f"{self.name}: {_format_values(self.values)}")

    def pretty_print(self, indent: int) -> None:
        """Write a one-line description, indented, to standard output."""
        print(f"{' ' * indent}{self.name}: {_format_values(self.values)}")


def new_entry_attribute(name: str, values: Sequence[str]) -> EntryAttribute:
    """Build an attribute whose raw values are the UTF-8 form of ``values``."""
    values = list(values)
    return EntryAttribute(
        name=name,
        values=values,
        byte_values=[value.encode("utf-8", "surrogateescape") for value in values],
    )


@dataclass
class Entry:
    """A single search result entry."""

    dn: str
    attributes: list[EntryAttribute] = field(default_factory=list)

    def _find(self, attribute: str, fold: bool) -> Optional[EntryAttribute]:
        wanted = _fold(attribute) if fold else attribute
        for attr in self.attributes:
            name = _fold(attr.name) if fold else attr.name
            if name == wanted:
                return attr
        return None

    def get_attribute_values(self, attribute: str) -> list[str]:
        """Values of the named attribute, or an empty list."""
        attr = self._find(attribute, fold=False)
        return attr.values if attr is not None else []

    def get_equal_fold_attribute_values(self, attribute: str) -> list[str]:
        """Values of the named attribute matched without regard to case."""
        attr = self._find(attribute, fold=True)
        return attr.values if attr is not None else []

    def get_raw_attribute_values(self, attribute: str) -> list[bytes]:
        """Raw values of the named attribute, or an empty list."""
        attr = self._find(attribute, fold=False)
        return attr.byte_values if attr is not None else []

    def get_equal_fold_raw_attribute_values(self, attribute: str) -> list[bytes]:
        """Raw values of the named attribute matched without regard to case."""
        attr = self._find(attribute, fold=True)
        return attr.byte_values if attr is not None else []

    def get_attribute_value(self, attribute: str) -> str:
        """First value of the named attribute, or an empty string."""
        values = self.get_attribute_values(attribute)
        return values[0] if values else ""

    def get_equal_fold_attribute_value(self, attribute: str) -> str:
        """First value of the named attribute matched without regard to case."""
        values = self.get_equal_fold_attribute_values(attribute)
        return values[0] if values else ""

    def get_raw_attribute_value(self, attribute: str) -> bytes:
        """First raw value of the named attribute, or empty bytes."""
        values = self.get_raw_attribute_values(attribute)
        return values[0] if values else b""

    def get_equal_fold_raw_attribute_value(self, attribute: str) -> bytes:
        """First raw value of the named attribute matched without regard to case."""
        values = self.get_equal_fold_raw_attribute_values(attribute)
        return values[0] if values else b""

    def print(self) -> None:
        """Write a description of the entry to standard output."""
        print(f"DN: {self.dn}")
        for attr in self.attributes:
            attr.print()

    def pretty_print(self, indent: int) -> None:
        """Write an indented description of the entry to standard output."""
        print(f"{' ' * indent}DN: {self.dn}")
        for attr in self.attributes:
            attr.pretty_print(indent + 2)


def new_entry(dn: str, attributes: Mapping[str, Sequence[str]]) -> Entry:
    """Build an entry whose attributes are ordered by name."""
    return Entry(
        dn=dn,
        attributes=[new_entry_attribute(name, attributes[name]) for name in sorted(attributes)],
    )


@dataclass
class SearchResult:
    """The server's answer to a search request."""

    entries: list[Entry] = field(default_factory=list)
    referrals: list[str] = field(default_factory=list)
    controls: list[Any] = field(default_factory=list)

    def print(self) -> None:
        """Write every entry to standard output."""
        for entry in self.entries:
            entry.print()

    def pretty_print(self, indent: int) -> None:
        """Write every entry, indented, to standard output."""
        for entry in self.entries:
            entry.pretty_print(indent)


@dataclass
class SearchRequest:
    """Parameters of a search sent to the server."""

    base_dn: str
    scope: Scope = Scope.WHOLE_SUBTREE
    deref_aliases: DerefAliases = DerefAliases.NEVER
    size_limit: int = 0
    time_limit: int = 0
    types_only: bool = False
    filter: str = "(objectClass=*)"
    attributes: list[str] = field(default_factory=list)
    controls: list[Any] = field(default_factory=list)


def _packet_text(packet: Packet) -> str:
    if isinstance(packet.value, str):
        return packet.value
    return packet.data.decode("utf-8", "surrogateescape")


def unpack_attributes(children: Iterable[Packet]) -> list[EntryAttribute]:
    """Extract attributes and their values from PartialAttribute packets."""
    attributes = []
    for child in children:
        value_packets = child.children[1].children
        attributes.append(
            EntryAttribute(
                name=_packet_text(child.children[0]),
                values=[_packet_text(value) for value in value_packets],
                byte_values=[value.data for value in value_packets],
            )
        )
    return attributes