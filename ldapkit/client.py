"""High-level LDAP operations on a connection: binds, writes, compare, unbind."""

from __future__ import annotations

import logging
from typing import Optional

from .ber import TAG_ENUMERATED, TAG_OBJECT_DESCRIPTOR, Packet
from .conn import (
    ERROR_EMPTY_PASSWORD,
    ERROR_NETWORK,
    RESULT_COMPARE_FALSE,
    RESULT_COMPARE_TRUE,
    Conn,
    LDAPError,
    LDAPResultError,
    _envelope,
    _Request,
    check_result,
)
from .requests import (
    AddRequest,
    CompareRequest,
    DelRequest,
    ModifyDNRequest,
    ModifyRequest,
    UnbindRequest,
)
from .sasl import (
    DigestMD5BindRequest,
    ExternalBindRequest,
    SimpleBindRequest,
    _sasl_bind,
    compute_response,
    parse_params,
)

APPLICATION_BIND_RESPONSE = 1
APPLICATION_MODIFY_RESPONSE = 7
APPLICATION_ADD_RESPONSE = 9
APPLICATION_DEL_RESPONSE = 11
APPLICATION_MODIFY_DN_RESPONSE = 13
APPLICATION_COMPARE_RESPONSE = 15

RESULT_SASL_BIND_IN_PROGRESS = 14

_logger = logging.getLogger("ldapkit")


def _empty_password_error() -> LDAPError:
    return LDAPError(ERROR_EMPTY_PASSWORD, "ldap: empty password not allowed by the client")


def _packet_int(packet: Packet) -> Optional[int]:
    if isinstance(packet.value, int) and not isinstance(packet.value, bool):
        return packet.value
    return None


class Client(Conn):
    """An LDAP connection with the directory operations on top."""

    def _exchange(self, request: _Request) -> Packet:
        msg_ctx = self.do_request(request)
        try:
            return self.read_packet(msg_ctx)
        finally:
            self.finish_message(msg_ctx)

    def _simple_operation(self, request: _Request, response_tag: int) -> None:
        packet = self._exchange(request)
        tag = packet.children[1].tag
        if tag == response_tag:
            check_result(packet)
        else:
            _logger.warning("Unexpected Response: %d", tag)

    def add(self, request: AddRequest) -> None:
        """Create the entry described by the request."""
        self._simple_operation(request, APPLICATION_ADD_RESPONSE)

    def delete(self, request: DelRequest) -> None:
        """Delete the entry named by the request."""
        self._simple_operation(request, APPLICATION_DEL_RESPONSE)

    def modify(self, request: ModifyRequest) -> None:
        """Apply the request's changes to its entry."""
        self._simple_operation(request, APPLICATION_MODIFY_RESPONSE)

    def modify_dn(self, request: ModifyDNRequest) -> None:
        """Rename an entry and optionally move it under a new superior."""
        self._simple_operation(request, APPLICATION_MODIFY_DN_RESPONSE)

    def compare(self, dn: str, attribute: str, value: str) -> bool:
        """Return whether the attribute of ``dn`` holds ``value``."""
        packet = self._exchange(CompareRequest(dn, attribute, value))
        tag = packet.children[1].tag
        if tag != APPLICATION_COMPARE_RESPONSE:
            raise LDAPError(ERROR_NETWORK, f"unexpected Response: {tag}", packet=packet)
        try:
            check_result(packet)
        except LDAPResultError as exc:
            if exc.code == RESULT_COMPARE_TRUE:
                return True
            if exc.code == RESULT_COMPARE_FALSE:
                return False
            raise
        return False

    def simple_bind(self, request: SimpleBindRequest) -> list[Packet]:
        """Bind with a name and password; return the raw response controls."""
        if not request.password and not request.allow_empty_password:
            raise _empty_password_error()
        packet = self._exchange(request)
        controls: list[Packet] = []
        if len(packet.children) == 3:
            controls.extend(packet.children[2].children)
        check_result(packet)
        return controls

    def bind(self, username: str, password: str) -> None:
        """Bind with a name and a non-empty password."""
        self.simple_bind(SimpleBindRequest(username, password, allow_empty_password=False))

    def unauthenticated_bind(self, username: str) -> None:
        """Bind with an empty password; the name is only for tracing."""
        self.simple_bind(SimpleBindRequest(username, "", allow_empty_password=True))

    def md5_bind(self, host: str, username: str, password: str) -> None:
        """Bind with SASL DIGEST-MD5."""
        self.digest_md5_bind(DigestMD5BindRequest(host, username, password))

    def _digest_challenge(self, packet: Packet) -> Optional[dict[str, str]]:
        if len(packet.children) != 2 or len(packet.children[1].children) != 4:
            return None
        status = packet.children[1].children[0]
        if status.tag != TAG_ENUMERATED or _packet_int(status) != RESULT_SASL_BIND_IN_PROGRESS:
            check_result(packet)
            return None
        creds = packet.children[1].children[3]
        if creds.tag != TAG_OBJECT_DESCRIPTOR or not creds.data:
            check_result(packet)
            return None
        text = creds.data.decode("utf-8", "surrogateescape")
        try:
            return parse_params(text)
        except ValueError as exc:
            raise ValueError(f"parsing digest-challenge: {exc}") from exc

    def digest_md5_bind(self, request: DigestMD5BindRequest) -> None:
        """Run the DIGEST-MD5 challenge and response exchange."""
        if not request.password:
            raise _empty_password_error()
        packet = self._exchange(request)
        params = self._digest_challenge(packet)

        if params is not None:
            answer = compute_response(
                params, "ldap/" + request.host.lower(), request.username, request.password
            )
            envelope = _envelope(self.next_message_id())
            envelope.append(_sasl_bind("DIGEST-MD5", answer))
            try:
                msg_ctx = self.send_message(envelope)
            except LDAPError as exc:
                raise LDAPError(exc.code, f"send message: {exc.message}") from exc
            try:
                response = msg_ctx.responses.get()
                if response is None:
                    raise LDAPError(ERROR_NETWORK, "ldap: response channel closed")
                try:
                    packet = response.read_packet()
                except LDAPError as exc:
                    raise LDAPError(exc.code, f"read packet: {exc.message}") from exc
                self.debug.log("%d: got response", msg_ctx.id)
            finally:
                self.finish_message(msg_ctx)

        check_result(packet)

    def external_bind(self) -> None:
        """Bind with SASL EXTERNAL, relying on the transport's identity."""
        check_result(self._exchange(ExternalBindRequest()))

    def unbind(self) -> None:
        """Send an unbind request and close the connection."""
        if self.is_closing():
            raise LDAPError(ERROR_NETWORK, "ldap: connection is closed")
        self.do_request(UnbindRequest())
        self.close()