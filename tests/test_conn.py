import queue
import socket
import ssl
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from ldapkit.ber import (
    CLASS_APPLICATION,
    CLASS_UNIVERSAL,
    TAG_ENUMERATED,
    TAG_INTEGER,
    TAG_OCTET_STRING,
    TAG_SEQUENCE,
    decode_packet,
    new_constructed,
    new_integer,
    new_string,
    read_packet,
)
from ldapkit.conn import (
    ERROR_NETWORK,
    START_TLS_OID,
    Conn,
    LDAPError,
    LDAPResultError,
    PacketResponse,
    check_result,
    dial_url,
)
from ldapkit.requests import DelRequest

WAIT = 5


def _request_packet(message_id):
    packet = new_constructed(CLASS_UNIVERSAL, TAG_SEQUENCE, "LDAP Request")
    packet.append(new_integer(CLASS_UNIVERSAL, TAG_INTEGER, message_id, "MessageID"))
    return packet


def _response(message_id, op_tag, code=0, matched="", message=""):
    packet = new_constructed(CLASS_UNIVERSAL, TAG_SEQUENCE, "LDAP Response")
    packet.append(new_integer(CLASS_UNIVERSAL, TAG_INTEGER, message_id, "MessageID"))
    body = new_constructed(CLASS_APPLICATION, op_tag, "Response")
    body.append(new_integer(CLASS_UNIVERSAL, TAG_ENUMERATED, code, "resultCode"))
    body.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, matched, "matchedDN"))
    body.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, message, "diagnosticMessage"))
    packet.append(body)
    return packet


@pytest.fixture
def pair():
    client, server = socket.socketpair()
    server.settimeout(WAIT)
    conn = Conn(client)
    conn.start()
    server_file = server.makefile("rb")
    yield conn, server, server_file
    conn.close()
    server_file.close()
    server.close()


def test_unresponsive_connection_times_out(pair):
    conn, _server, _file = pair
    conn.set_timeout(0.001)
    packet = _request_packet(conn.next_message_id())
    bind = new_constructed(CLASS_APPLICATION, 0, "Bind Request")
    bind.append(new_integer(CLASS_UNIVERSAL, TAG_INTEGER, 3, "Version"))
    packet.append(bind)

    msg_ctx = conn.send_message(packet)
    response = msg_ctx.responses.get(timeout=WAIT)
    with pytest.raises(LDAPError) as info:
        response.read_packet()
    assert info.value.code == ERROR_NETWORK
    assert info.value.message == "ldap: connection timed out"
    assert msg_ctx.responses.get(timeout=WAIT) is None
    conn.finish_message(msg_ctx)


def _exchange(conn, server, server_file, read_lock, write_lock):
    message_id = conn.next_message_id()
    msg_ctx = conn.send_message(_request_packet(message_id))
    with read_lock:
        request = read_packet(server_file)
    assert request.children[0].value > 0

    with write_lock:
        server.sendall(_request_packet(message_id).to_bytes())
    response = msg_ctx.responses.get(timeout=WAIT)
    assert response.read_packet().children[0].value == message_id

    for _ in range(5):
        with write_lock:
            server.sendall(_request_packet(message_id).to_bytes())
    conn.finish_message(msg_ctx)
    return message_id


def test_finish_message_with_unhandled_responses(pair):
    conn, server, server_file = pair
    read_lock, write_lock = threading.Lock(), threading.Lock()

    serial = [_exchange(conn, server, server_file, read_lock, write_lock) for _ in range(5)]
    assert serial == [1, 2, 3, 4, 5]

    with ThreadPoolExecutor(max_workers=5) as pool:
        futures = [
            pool.submit(_exchange, conn, server, server_file, read_lock, write_lock)
            for _ in range(5)
        ]
        parallel = sorted(future.result(timeout=WAIT * 2) for future in futures)
    assert parallel == [6, 7, 8, 9, 10]

    conn.close()
    assert conn.is_closing()


def test_nil_connection():
    conn = Conn(None)
    with pytest.raises(LDAPError) as info:
        conn.do_request(DelRequest("cn=x"))
    assert info.value.message == "ldap: conn is nil, expected a socket"


def test_do_request_and_read_packet_round_trip(pair):
    conn, server, server_file = pair
    msg_ctx = conn.do_request(DelRequest("cn=gone,dc=example,dc=com"))
    request = read_packet(server_file)
    assert request.children[0].value == msg_ctx.id
    assert request.children[1].tag == 10
    assert request.children[1].data == b"cn=gone,dc=example,dc=com"

    server.sendall(_response(msg_ctx.id, 11).to_bytes())
    packet = conn.read_packet(msg_ctx)
    conn.finish_message(msg_ctx)
    assert packet.children[1].tag == 11
    assert check_result(packet) is None


def test_check_result_raises_server_error():
    packet = decode_packet(
        _response(7, 11, code=32, matched="dc=example,dc=com", message="no such object").to_bytes()
    )
    with pytest.raises(LDAPResultError) as info:
        check_result(packet)
    assert info.value.code == 32
    assert info.value.message == "no such object"
    assert info.value.matched_dn == "dc=example,dc=com"


def test_check_result_invalid_format():
    with pytest.raises(LDAPError) as info:
        check_result(_request_packet(3))
    assert info.value.code == ERROR_NETWORK
    assert info.value.message == "Invalid packet format"


def test_packet_response_read_packet():
    with pytest.raises(LDAPError) as info:
        PacketResponse().read_packet()
    assert info.value.message == "ldap: could not retrieve response"

    packet = _request_packet(1)
    assert PacketResponse(packet=packet).read_packet() is packet


def test_next_message_id_increments(pair):
    conn, _server, _file = pair
    first = conn.next_message_id()
    second = conn.next_message_id()
    assert (first, second) == (1, 2)
    conn.close()
    assert conn.next_message_id() == 0


def test_send_after_close_raises(pair):
    conn, _server, _file = pair
    conn.close()
    assert conn.is_closing()
    with pytest.raises(LDAPError, match="ldap: connection closed"):
        conn.send_message(_request_packet(1))


def test_close_ends_pending_requests(pair):
    conn, _server, _file = pair
    msg_ctx = conn.send_message(_request_packet(conn.next_message_id()))
    conn.close()
    with pytest.raises(LDAPError) as info:
        conn.read_packet(msg_ctx)
    assert info.value.message == "ldap: response channel closed"


def test_server_disconnect_reports_error(pair):
    conn, server, _file = pair
    msg_ctx = conn.send_message(_request_packet(conn.next_message_id()))
    server.shutdown(socket.SHUT_RDWR)
    response = msg_ctx.responses.get(timeout=WAIT)
    with pytest.raises(LDAPError) as info:
        response.read_packet()
    assert info.value.message.startswith("unable to read LDAP response packet")
    assert conn.is_closing()


def test_non_positive_timeout_is_ignored(pair):
    conn, _server, _file = pair
    conn.set_timeout(0)
    msg_ctx = conn.send_message(_request_packet(conn.next_message_id()))
    with pytest.raises(queue.Empty):
        msg_ctx.responses.get(timeout=0.1)
    conn.finish_message(msg_ctx)


def test_start_tls_refused_with_outstanding_requests(pair):
    conn, _server, _file = pair
    conn.send_message(_request_packet(conn.next_message_id()))
    with pytest.raises(LDAPError) as info:
        conn.start_tls(ssl.create_default_context())
    assert info.value.message == "ldap: cannot StartTLS with outstanding requests"


def test_start_tls_when_already_encrypted():
    client, server = socket.socketpair()
    try:
        conn = Conn(client, is_tls=True)
        with pytest.raises(LDAPError) as info:
            conn.start_tls(ssl.create_default_context())
        assert info.value.message == "ldap: already encrypted"
    finally:
        client.close()
        server.close()


def test_start_tls_refused_by_server_keeps_connection(pair):
    conn, server, server_file = pair
    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(conn.start_tls, ssl.create_default_context())
        request = read_packet(server_file)
        assert request.children[1].tag == 23
        assert request.children[1].children[0].data == START_TLS_OID.encode()
        server.sendall(
            _response(request.children[0].value, 24, code=2, message="unsupported").to_bytes()
        )
        with pytest.raises(LDAPResultError) as info:
            future.result(timeout=WAIT)
    assert info.value.code == 2
    assert conn.is_tls is False

    msg_ctx = conn.do_request(DelRequest("cn=after,dc=example,dc=com"))
    request = read_packet(server_file)
    server.sendall(_response(request.children[0].value, 11).to_bytes())
    packet = conn.read_packet(msg_ctx)
    conn.finish_message(msg_ctx)
    assert packet.children[0].value == msg_ctx.id


def test_dial_url_unknown_scheme():
    with pytest.raises(LDAPError) as info:
        dial_url("http://localhost")
    assert info.value.code == ERROR_NETWORK
    assert info.value.message == "Unknown scheme 'http'"


def test_dial_url_connects_to_tcp_server():
    listener = socket.create_server(("127.0.0.1", 0))
    listener.settimeout(WAIT)
    port = listener.getsockname()[1]
    conn = dial_url(f"ldap://127.0.0.1:{port}", timeout=WAIT)
    accepted, _ = listener.accept()
    accepted.settimeout(WAIT)
    server_file = accepted.makefile("rb")
    try:
        assert conn.is_tls is False
        msg_ctx = conn.do_request(DelRequest("cn=x,dc=example,dc=com"))
        request = read_packet(server_file)
        assert request.children[1].tag == 10
        assert request.children[0].value == msg_ctx.id
    finally:
        conn.close()
        server_file.close()
        accepted.close()
        listener.close()


def test_context_manager_closes():
    client, server = socket.socketpair()
    try:
        with Conn(client) as conn:
            conn.start()
            assert not conn.is_closing()
        assert conn.is_closing()
    finally:
        server.close()