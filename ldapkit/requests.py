"""Write operations sent to a directory server: add, delete, modify, rename, compare, unbind."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from .ber import (
    CLASS_APPLICATION,
    CLASS_CONTEXT,
    CLASS_UNIVERSAL,
    TAG_BOOLEAN,
    TAG_ENUMERATED,
    TAG_OCTET_STRING,
    TAG_SEQUENCE,
    TAG_SET,
    Packet,
    new_boolean,
    new_constructed,
    new_integer,
    new_string,
)

APPLICATION_UNBIND_REQUEST = 2
APPLICATION_MODIFY_REQUEST = 6
APPLICATION_ADD_REQUEST = 8
APPLICATION_DEL_REQUEST = 10
APPLICATION_MODIFY_DN_REQUEST = 12
APPLICATION_COMPARE_REQUEST = 14


class _Control(Protocol):
    def encode(self) -> Packet:
        ...


def _encode_controls(controls: Sequence[_Control]) -> Packet:
    packet = new_constructed(CLASS_CONTEXT, 0, "Controls")
    for control in controls:
        packet.append(control.encode())
    return packet


def _finish(envelope: Packet, packet: Packet, controls: Sequence[_Control]) -> None:
    envelope.append(packet)
    if controls:
        envelope.append(_encode_controls(controls))


def _encode_attribute(description: str, attr_type: str, values: Sequence[str]) -> Packet:
    seq = new_constructed(CLASS_UNIVERSAL, TAG_SEQUENCE, description)
    seq.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, attr_type, "Type"))
    value_set = new_constructed(CLASS_UNIVERSAL, TAG_SET, "AttributeValue")
    for value in values:
        value_set.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, value, "Vals"))
    seq.append(value_set)
    return seq


class Operation(enum.IntEnum):
    """Kinds of change in a modify request."""

    ADD = 0
    DELETE = 1
    REPLACE = 2
    INCREMENT = 3


@dataclass
class PartialAttribute:
    """An attribute type with the values a change applies to."""

    type: str
    vals: list[str] = field(default_factory=list)

    def encode(self) -> Packet:
        """Encode as a PartialAttribute sequence."""
        return _encode_attribute("PartialAttribute", self.type, self.vals)


@dataclass
class Change:
    """One modification of a modify request."""

    operation: Operation
    modification: PartialAttribute

    def encode(self) -> Packet:
        """Encode as a change sequence."""
        change = new_constructed(CLASS_UNIVERSAL, TAG_SEQUENCE, "Change")
        change.append(
            new_integer(CLASS_UNIVERSAL, TAG_ENUMERATED, int(self.operation), "Operation")
        )
        change.append(self.modification.encode())
        return change


@dataclass
class ModifyRequest:
    """Changes to apply to the attributes of one entry."""

    dn: str
    changes: list[Change] = field(default_factory=list)
    controls: list = field(default_factory=list)

    def _append_change(self, operation: Operation, attr_type: str, attr_vals: Sequence[str]) -> None:
        self.changes.append(Change(operation, PartialAttribute(attr_type, list(attr_vals))))

    def add(self, attr_type: str, attr_vals: Sequence[str]) -> None:
        """Queue adding values to an attribute."""
        self._append_change(Operation.ADD, attr_type, attr_vals)

    def delete(self, attr_type: str, attr_vals: Sequence[str]) -> None:
        """Queue deleting values (or the whole attribute when empty)."""
        self._append_change(Operation.DELETE, attr_type, attr_vals)

    def replace(self, attr_type: str, attr_vals: Sequence[str]) -> None:
        """Queue replacing all values of an attribute."""
        self._append_change(Operation.REPLACE, attr_type, attr_vals)

    def increment(self, attr_type: str, attr_val: str) -> None:
        """Queue incrementing a numeric attribute by the given amount."""
        self._append_change(Operation.INCREMENT, attr_type, [attr_val])

    def append_to(self, envelope: Packet) -> None:
        """Add the encoded request and its controls to a message envelope."""
        pkt = new_constructed(CLASS_APPLICATION, APPLICATION_MODIFY_REQUEST, "Modify Request")
        pkt.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, self.dn, "DN"))
        changes = new_constructed(CLASS_UNIVERSAL, TAG_SEQUENCE, "Changes")
        for change in self.changes:
            changes.append(change.encode())
        pkt.append(changes)
        _finish(envelope, pkt, self.controls)


@dataclass
class ModifyDNRequest:
    """Rename an entry and optionally move it under a new parent.

    Leave ``new_superior`` empty to only change the RDN.
    """

    dn: str
    new_rdn: str
    delete_old_rdn: bool = True
    new_superior: str = ""
    controls: list = field(default_factory=list)

    def append_to(self, envelope: Packet) -> None:
        """Add the encoded request and its controls to a message envelope."""
        pkt = new_constructed(CLASS_APPLICATION, APPLICATION_MODIFY_DN_REQUEST, "Modify DN Request")
        pkt.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, self.dn, "DN"))
        pkt.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, self.new_rdn, "New RDN"))
        if self.delete_old_rdn:
            pkt.append(
                Packet(
                    CLASS_UNIVERSAL,
                    False,
                    TAG_BOOLEAN,
                    value=True,
                    description="Delete old RDN",
                    data=b"\xff",
                )
            )
        else:
            pkt.append(new_boolean(CLASS_UNIVERSAL, TAG_BOOLEAN, False, "Delete old RDN"))
        if self.new_superior:
            pkt.append(new_string(CLASS_CONTEXT, 0, self.new_superior, "New Superior"))
        _finish(envelope, pkt, self.controls)


@dataclass
class Attribute:
    """An attribute of an entry being added."""

    type: str
    vals: list[str] = field(default_factory=list)

    def encode(self) -> Packet:
        """Encode as an Attribute sequence."""
        return _encode_attribute("Attribute", self.type, self.vals)


@dataclass
class AddRequest:
    """Create a new entry with the given attributes."""

    dn: str
    attributes: list[Attribute] = field(default_factory=list)
    controls: list = field(default_factory=list)

    def attribute(self, attr_type: str, attr_vals: Sequence[str]) -> None:
        """Add an attribute with the given type and values."""
        self.attributes.append(Attribute(attr_type, list(attr_vals)))

    def append_to(self, envelope: Packet) -> None:
        """Add the encoded request and its controls to a message envelope."""
        pkt = new_constructed(CLASS_APPLICATION, APPLICATION_ADD_REQUEST, "Add Request")
        pkt.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, self.dn, "DN"))
        attributes = new_constructed(CLASS_UNIVERSAL, TAG_SEQUENCE, "Attributes")
        for attribute in self.attributes:
            attributes.append(attribute.encode())
        pkt.append(attributes)
        _finish(envelope, pkt, self.controls)


@dataclass
class DelRequest:
    """Delete one entry."""

    dn: str
    controls: list = field(default_factory=list)

    def append_to(self, envelope: Packet) -> None:
        """Add the encoded request and its controls to a message envelope."""
        pkt = new_string(CLASS_APPLICATION, APPLICATION_DEL_REQUEST, self.dn, "Del Request")
        _finish(envelope, pkt, self.controls)


@dataclass
class CompareRequest:
    """Ask whether an attribute of an entry holds a value."""

    dn: str
    attribute: str
    value: str

    def append_to(self, envelope: Packet) -> None:
        """Add the encoded request to a message envelope."""
        pkt = new_constructed(CLASS_APPLICATION, APPLICATION_COMPARE_REQUEST, "Compare Request")
        pkt.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, self.dn, "DN"))
        ava = new_constructed(CLASS_UNIVERSAL, TAG_SEQUENCE, "AttributeValueAssertion")
        ava.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, self.attribute, "AttributeDesc"))
        ava.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, self.value, "AssertionValue"))
        pkt.append(ava)
        envelope.append(pkt)


@dataclass
class UnbindRequest:
    """End the session; the connection is unusable afterwards."""

    def append_to(self, envelope: Packet) -> None:
        """Add the encoded request to a message envelope."""
        envelope.append(
            Packet(
                CLASS_APPLICATION,
                False,
                APPLICATION_UNBIND_REQUEST,
                description="Unbind Request",
            )
        )