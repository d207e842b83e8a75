"""Bind request encodings and the DIGEST-MD5 challenge/response helpers."""

from __future__ import annotations

import enum
import hashlib
import secrets
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .ber import (
    CLASS_APPLICATION,
    CLASS_CONTEXT,
    CLASS_UNIVERSAL,
    TAG_INTEGER,
    TAG_OCTET_STRING,
    Packet,
    new_constructed,
    new_integer,
    new_string,
)
from .requests import _encode_controls

APPLICATION_BIND_REQUEST = 0
LDAP_VERSION = 3
SASL_AUTH_TAG = 3

_NONCE_COUNT = "00000001"
_QOP = "auth"


def _bind_envelope(username: str) -> Packet:
    request = new_constructed(CLASS_APPLICATION, APPLICATION_BIND_REQUEST, "Bind Request")
    request.append(new_integer(CLASS_UNIVERSAL, TAG_INTEGER, LDAP_VERSION, "Version"))
    request.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, username, "User Name"))
    return request


def _sasl_bind(mechanism: str, credentials: Optional[str] = None) -> Packet:
    """Build a SASL bind request for ``mechanism`` with optional credentials."""
    request = _bind_envelope("")
    auth = new_constructed(CLASS_CONTEXT, SASL_AUTH_TAG, "authentication")
    auth.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, mechanism, "SASL Mech"))
    if credentials is not None:
        auth.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, credentials, "Credentials"))
    request.append(auth)
    return request


def _finish(envelope: Packet, request: Packet, controls: list) -> None:
    envelope.append(request)
    if controls:
        envelope.append(_encode_controls(controls))


@dataclass
class SimpleBindRequest:
    """A name and password bind."""

    username: str
    password: str = ""
    controls: list = field(default_factory=list)
    allow_empty_password: bool = False

    def append_to(self, envelope: Packet) -> None:
        """Add the encoded bind request and its controls to a message envelope."""
        request = _bind_envelope(self.username)
        request.append(new_string(CLASS_CONTEXT, 0, self.password, "Password"))
        _finish(envelope, request, self.controls)


@dataclass
class DigestMD5BindRequest:
    """A SASL DIGEST-MD5 bind; the first message carries only the mechanism."""

    host: str
    username: str
    password: str = ""
    controls: list = field(default_factory=list)

    def append_to(self, envelope: Packet) -> None:
        """Add the initial DIGEST-MD5 bind request to a message envelope."""
        _finish(envelope, _sasl_bind("DIGEST-MD5"), self.controls)


@dataclass
class ExternalBindRequest:
    """A SASL EXTERNAL bind, authenticated by the transport."""

    def append_to(self, envelope: Packet) -> None:
        """Add the EXTERNAL bind request with empty credentials to a message envelope."""
        request = _bind_envelope("")
        auth = new_constructed(CLASS_CONTEXT, SASL_AUTH_TAG, "authentication")
        auth.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, "EXTERNAL", "SASL Mech"))
        auth.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, "", "SASL Cred"))
        request.append(auth)
        envelope.append(request)


class _State(enum.Enum):
    KEY = enum.auto()
    VALUE = enum.auto()
    QUOTED = enum.auto()


def parse_params(text: str) -> dict[str, str]:
    """Parse a digest challenge of comma separated key=value pairs.

    Values may be wrapped in double quotes. Raises ValueError on bad syntax.
    """
    params: dict[str, str] = {}
    key = ""
    value = ""
    state = _State.KEY
    for index, char in enumerate(text):
        if state is _State.KEY:
            if char == "=":
                state = _State.VALUE
            else:
                key += char
        elif state is _State.VALUE:
            if char == ",":
                params[key] = value
                key = ""
                value = ""
                state = _State.KEY
            elif char == '"':
                if value:
                    raise ValueError(f"syntax error on {index}")
                state = _State.QUOTED
            else:
                value += char
        elif char == '"':
            state = _State.VALUE
        else:
            value += char
    if state is not _State.VALUE:
        raise ValueError(f"syntax error on {len(text)}")
    params[key] = value
    return params


def _md5(data: bytes) -> bytes:
    return hashlib.md5(data).digest()


def compute_response(params: Mapping[str, str], uri: str, username: str, password: str) -> str:
    """Answer a DIGEST-MD5 challenge with qop=auth and a fresh client nonce."""
    realm = params.get("realm", "")
    nonce = params.get("nonce", "")
    authzid = params.get("authzid", "")
    cnonce = secrets.token_hex(16)

    a1 = _md5(f"{username}:{realm}:{password}".encode()) + f":{nonce}:{cnonce}".encode()
    if authzid:
        a1 += f":{authzid}".encode()
    a2 = f"AUTHENTICATE:{uri}".encode()
    ha1 = _md5(a1).hex()
    ha2 = _md5(a2).hex()

    kd = f"{ha1}:{nonce}:{_NONCE_COUNT}:{cnonce}:{_QOP}:{ha2}"
    response = _md5(kd.encode()).hex()
    return (
        f'username="{username}",realm="{realm}",nonce="{nonce}",cnonce="{cnonce}",'
        f'nc={_NONCE_COUNT},qop={_QOP},digest-uri="{uri}",response={response}'
    )