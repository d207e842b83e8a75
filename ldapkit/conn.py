"""Connection to a directory server: message framing, dispatch and timeouts."""

from __future__ import annotations

import logging
import queue
import socket
import ssl
import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol
from urllib.parse import unquote, urlsplit

from .ber import (
    CLASS_APPLICATION,
    CLASS_CONTEXT,
    CLASS_UNIVERSAL,
    TAG_INTEGER,
    TAG_SEQUENCE,
    BERError,
    Debug,
    Packet,
    new_constructed,
    new_integer,
    new_string,
    read_packet,
)

ERROR_NETWORK = 200
ERROR_EMPTY_PASSWORD = 206

RESULT_SUCCESS = 0
RESULT_COMPARE_FALSE = 5
RESULT_COMPARE_TRUE = 6

DEFAULT_LDAP_PORT = 389
DEFAULT_LDAPS_PORT = 636
DEFAULT_LDAPI_PATH = "/var/run/slapd/ldapi"
DEFAULT_TIMEOUT = 60.0

APPLICATION_EXTENDED_REQUEST = 23
START_TLS_OID = "1.3.6.1.4.1.1466.20037"

_logger = logging.getLogger("ldapkit")


class LDAPError(Exception):
    """An error with an LDAP result code, raised by the client or the server."""

    def __init__(
        self,
        code: int,
        message: str,
        *,
        matched_dn: str = "",
        packet: Optional[Packet] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.matched_dn = matched_dn
        self.packet = packet

    def __str__(self) -> str:
        return f"LDAP Result Code {self.code}: {self.message}"


class LDAPResultError(LDAPError):
    """A result code other than success returned by the server."""


def _as_int(packet: Packet) -> int:
    if isinstance(packet.value, int) and not isinstance(packet.value, bool):
        return packet.value
    return int.from_bytes(packet.data, "big", signed=True)


def _as_text(packet: Packet) -> str:
    if isinstance(packet.value, str):
        return packet.value
    return packet.data.decode("utf-8", "surrogateescape")


def check_result(packet: Packet) -> None:
    """Raise if the response packet carries anything but a success result."""
    if len(packet.children) >= 2:
        response = packet.children[1]
        if (
            response.tag_class == CLASS_APPLICATION
            and response.constructed
            and len(response.children) >= 3
        ):
            code = _as_int(response.children[0])
            if code == RESULT_SUCCESS:
                return
            raise LDAPResultError(
                code,
                _as_text(response.children[2]),
                matched_dn=_as_text(response.children[1]),
                packet=packet,
            )
    raise LDAPError(ERROR_NETWORK, "Invalid packet format", packet=packet)


@dataclass
class PacketResponse:
    """A packet read from the server, or the error met while waiting for it."""

    packet: Optional[Packet] = None
    error: Optional[Exception] = None

    def read_packet(self) -> Packet:
        """Return the packet, raising the stored error if there is one."""
        if self.error is not None:
            raise self.error
        if self.packet is None:
            raise LDAPError(ERROR_NETWORK, "ldap: could not retrieve response")
        return self.packet


@dataclass
class MessageContext:
    """Bookkeeping for one outstanding request.

    ``responses`` yields PacketResponse objects; ``None`` marks that no more
    responses will arrive.
    """

    id: int
    responses: queue.Queue = field(default_factory=queue.Queue)
    done: threading.Event = field(default_factory=threading.Event)

    def _deliver(self, response: PacketResponse) -> None:
        if not self.done.is_set():
            self.responses.put(response)

    def _close(self) -> None:
        self.responses.put(None)


class _Request(Protocol):
    def append_to(self, envelope: Packet) -> None:
        ...


def _envelope(message_id: int) -> Packet:
    packet = new_constructed(CLASS_UNIVERSAL, TAG_SEQUENCE, "LDAP Request")
    packet.append(new_integer(CLASS_UNIVERSAL, TAG_INTEGER, message_id, "MessageID"))
    return packet


class Conn:
    """An LDAP connection over a connected socket."""

    def __init__(
        self,
        sock: Optional[socket.socket],
        is_tls: bool = False,
        *,
        server_hostname: Optional[str] = None,
    ) -> None:
        self.sock = sock
        self.is_tls = is_tls
        self.server_hostname = server_hostname
        self.debug = Debug()
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._closing = threading.Event()
        self._close_error: Optional[Exception] = None
        self._contexts: dict[int, MessageContext] = {}
        self._outstanding = 0
        self._starting_tls = False
        self._next_id = 1
        self._request_timeout = 0.0
        self._reader: Optional[threading.Thread] = None

    def __enter__(self) -> Conn:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def start(self) -> None:
        """Start the thread that reads and dispatches responses."""
        self._start_reader()

    def _start_reader(self) -> None:
        self._reader = threading.Thread(
            target=self._read_loop, args=(self.sock,), name="ldapkit-reader", daemon=True
        )
        self._reader.start()

    def _join_reader(self) -> None:
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join()

    def is_closing(self) -> bool:
        """Whether the connection is closing or closed."""
        return self._closing.is_set()

    def close(self) -> None:
        """Close the connection, ending every outstanding request."""
        with self._lock:
            if self._closing.is_set():
                return
            self._closing.set()
            contexts = list(self._contexts.values())
            self._contexts.clear()
        self.debug.log("Closing outstanding requests")
        for ctx in contexts:
            if self._close_error is not None:
                ctx._deliver(PacketResponse(error=self._close_error))
            self.debug.log("Closing channel for MessageID %d", ctx.id)
            ctx._close()
        if self.sock is None:
            return
        self.debug.log("Closing network connection")
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.sock.close()
        except OSError as exc:
            _logger.warning("%s", exc)

    def set_timeout(self, timeout: float) -> None:
        """Set the seconds after which an unanswered request times out."""
        if timeout > 0:
            self._request_timeout = float(timeout)

    def next_message_id(self) -> int:
        """Return the next message ID, or 0 once the connection is closing."""
        with self._lock:
            if self._closing.is_set():
                return 0
            message_id = self._next_id
            self._next_id += 1
            return message_id

    def start_tls(self, ssl_context: ssl.SSLContext) -> None:
        """Ask the server to start TLS and upgrade the connection."""
        if self.is_tls:
            raise LDAPError(ERROR_NETWORK, "ldap: already encrypted")
        packet = _envelope(self.next_message_id())
        request = new_constructed(CLASS_APPLICATION, APPLICATION_EXTENDED_REQUEST, "Start TLS")
        request.append(new_string(CLASS_CONTEXT, 0, START_TLS_OID, "TLS Extended Command"))
        packet.append(request)
        self.debug.print_packet(packet)

        msg_ctx = self._send_message(packet, start_tls=True)
        try:
            response = self.read_packet(msg_ctx)
            try:
                check_result(response)
            except LDAPError:
                self._join_reader()
                if not self.is_closing():
                    self._start_reader()
                raise
            self._join_reader()
            try:
                wrapped = ssl_context.wrap_socket(self.sock, server_hostname=self.server_hostname)
            except (OSError, ValueError) as exc:
                self.close()
                raise LDAPError(ERROR_NETWORK, f"TLS handshake failed ({exc})") from exc
            self.sock = wrapped
            self.is_tls = True
            self._start_reader()
        finally:
            self.finish_message(msg_ctx)

    def send_message(self, packet: Packet) -> MessageContext:
        """Write a request packet and register it for responses."""
        return self._send_message(packet, start_tls=False)

    def _send_message(self, packet: Packet, *, start_tls: bool) -> MessageContext:
        if self.is_closing():
            raise LDAPError(ERROR_NETWORK, "ldap: connection closed")
        with self._lock:
            if self._starting_tls:
                raise LDAPError(ERROR_NETWORK, "ldap: connection is in startls phase")
            if start_tls:
                if self._outstanding:
                    raise LDAPError(
                        ERROR_NETWORK, "ldap: cannot StartTLS with outstanding requests"
                    )
                self._starting_tls = True
            self._outstanding += 1

        message_id = packet.children[0].value
        msg_ctx = MessageContext(message_id)
        with self._lock:
            if self._closing.is_set():
                raise LDAPError(ERROR_NETWORK, "ldap: connection closed")
            self._contexts[message_id] = msg_ctx

        self.debug.log("Sending message %d", message_id)
        try:
            with self._write_lock:
                self.sock.sendall(packet.to_bytes())
        except OSError as exc:
            self.debug.log("Error Sending Message: %s", exc)
            with self._lock:
                self._contexts.pop(message_id, None)
            msg_ctx._deliver(
                PacketResponse(error=LDAPError(ERROR_NETWORK, f"unable to send request: {exc}"))
            )
            msg_ctx._close()
            return msg_ctx

        if self._request_timeout > 0:
            timer = threading.Timer(self._request_timeout, self._expire, args=(message_id,))
            timer.daemon = True
            timer.start()
        return msg_ctx

    def _expire(self, message_id: int) -> None:
        with self._lock:
            msg_ctx = self._contexts.pop(message_id, None)
        if msg_ctx is None:
            return
        self.debug.log("Receiving message timeout for %d", message_id)
        msg_ctx._deliver(
            PacketResponse(error=LDAPError(ERROR_NETWORK, "ldap: connection timed out"))
        )
        msg_ctx._close()

    def finish_message(self, msg_ctx: MessageContext) -> None:
        """Mark a request as handled; further responses to it are dropped."""
        msg_ctx.done.set()
        if self.is_closing():
            return
        with self._lock:
            self._outstanding -= 1
            self._starting_tls = False
            removed = self._contexts.pop(msg_ctx.id, None)
        self.debug.log("Finished message %d", msg_ctx.id)
        if removed is not None:
            removed._close()

    def do_request(self, request: _Request) -> MessageContext:
        """Wrap a request in a message envelope and send it."""
        if self.sock is None:
            raise LDAPError(ERROR_NETWORK, "ldap: conn is nil, expected a socket")
        packet = _envelope(self.next_message_id())
        request.append_to(packet)
        self.debug.print_packet(packet)
        msg_ctx = self.send_message(packet)
        self.debug.log("%d: returning", msg_ctx.id)
        return msg_ctx

    def read_packet(self, msg_ctx: MessageContext) -> Packet:
        """Wait for the next response to a request."""
        self.debug.log("%d: waiting for response", msg_ctx.id)
        response = msg_ctx.responses.get()
        if response is None:
            raise LDAPError(ERROR_NETWORK, "ldap: response channel closed")
        packet = response.read_packet()
        self.debug.print_packet(packet)
        return packet

    def _dispatch(self, packet: Packet) -> None:
        message_id = packet.children[0].value
        with self._lock:
            msg_ctx = self._contexts.get(message_id) if isinstance(message_id, int) else None
        self.debug.log("Receiving message %s", message_id)
        if msg_ctx is not None:
            msg_ctx._deliver(PacketResponse(packet=packet))
        else:
            _logger.warning("Received unexpected message %s, %s", message_id, self.is_closing())
            self.debug.print_packet(packet)

    def _read_loop(self, sock: socket.socket) -> None:
        clean_stop = False
        try:
            with sock.makefile("rb") as stream:
                while not clean_stop:
                    try:
                        packet = read_packet(stream)
                    except (EOFError, BERError, OSError, ValueError) as exc:
                        if not self.is_closing():
                            self._close_error = LDAPError(
                                ERROR_NETWORK, f"unable to read LDAP response packet: {exc}"
                            )
                            self.debug.log("reader error: %s", exc)
                        break
                    if not packet.children:
                        self.debug.log("Received bad ldap packet")
                        continue
                    with self._lock:
                        if self._starting_tls:
                            clean_stop = True
                    self._dispatch(packet)
        except Exception:
            _logger.exception("ldap: unexpected failure in reader")
            clean_stop = False
        finally:
            if clean_stop:
                self.debug.log("reader clean stopping (without closing the connection)")
            else:
                self.close()


def dial_url(
    addr: str,
    ssl_context: Optional[ssl.SSLContext] = None,
    timeout: Optional[float] = None,
) -> Conn:
    """Connect to an ldap://, ldaps:// or ldapi:// URL and start the connection."""
    timeout = DEFAULT_TIMEOUT if timeout is None else timeout
    try:
        parts = urlsplit(addr)
    except ValueError as exc:
        raise LDAPError(ERROR_NETWORK, str(exc)) from exc
    scheme = parts.scheme
    hostname: Optional[str] = None
    try:
        if scheme == "ldapi":
            path = unquote(parts.path)
            if path in ("", "/"):
                path = DEFAULT_LDAPI_PATH
            family = getattr(socket, "AF_UNIX", None)
            if family is None:
                raise LDAPError(ERROR_NETWORK, "unix sockets are not supported here")
            sock = socket.socket(family, socket.SOCK_STREAM)
            try:
                sock.settimeout(timeout)
                sock.connect(path)
            except OSError:
                sock.close()
                raise
        elif scheme in ("ldap", "ldaps"):
            host = parts.hostname or ""
            try:
                port = parts.port
            except ValueError:
                port = None
            if port is None:
                port = DEFAULT_LDAP_PORT if scheme == "ldap" else DEFAULT_LDAPS_PORT
            hostname = host or None
            sock = socket.create_connection((host, port), timeout)
            if scheme == "ldaps":
                context = ssl_context if ssl_context is not None else ssl.create_default_context()
                try:
                    sock = context.wrap_socket(sock, server_hostname=hostname)
                except (OSError, ValueError):
                    sock.close()
                    raise
        else:
            raise LDAPError(ERROR_NETWORK, f"Unknown scheme '{scheme}'")
    except (OSError, ValueError) as exc:
        raise LDAPError(ERROR_NETWORK, str(exc)) from exc

    sock.settimeout(None)
    conn = Conn(sock, scheme == "ldaps", server_hostname=hostname)
    conn.start()
    return conn