import io
import socket
import threading

import pytest

from revtun.net.conn import Conn
from revtun.net.listener import listen_tcp
from revtun.vhost.https import HttpsMuxer, get_https_hostname, read_handshake
from revtun.vhost.vhost import VhostRouteConfig


def _len2(data):
    return len(data).to_bytes(2, "big")


def _sni_ext(name):
    entry = b"\x00" + _len2(name) + name
    body = _len2(entry) + entry
    return b"\x00\x00" + _len2(body) + body


def client_hello(
    name=b"example.com",
    session_id=b"",
    ciphers=b"\x00\x2f",
    compression=b"\x00",
    extensions=None,
):
    if extensions is None:
        extensions = _sni_ext(name)
    body = b"\x03\x03" + bytes(32) + bytes([len(session_id)]) + session_id
    body += _len2(ciphers) + ciphers + bytes([len(compression)]) + compression
    if extensions != b"":
        body += _len2(extensions) + extensions
    hs = b"\x01" + len(body).to_bytes(3, "big") + body
    return b"\x16\x03\x01" + _len2(hs) + hs


def _read_n(conn, n):
    data = bytearray()
    while len(data) < n:
        chunk = conn.read(n - len(data))
        if not chunk:
            break
        data += chunk
    return bytes(data)


def test_read_handshake_server_name():
    assert read_handshake(io.BytesIO(client_hello())) == "example.com"


def test_read_handshake_strips_spaces():
    assert read_handshake(io.BytesIO(client_hello(b" example.com "))) == "example.com"


def test_read_handshake_with_session_and_renegotiation():
    reneg = b"\xff\x01\x00\x01\x00"
    hello = client_hello(session_id=bytes(32), extensions=reneg + _sni_ext(b"example.com"))
    assert read_handshake(io.BytesIO(hello)) == "example.com"


def test_bad_renegotiation_info_rejected():
    reneg = b"\xff\x01\x00\x01\x05"
    hello = client_hello(extensions=reneg + _sni_ext(b"example.com"))
    with pytest.raises(ValueError):
        read_handshake(io.BytesIO(hello))


def test_not_client_hello():
    hello = bytearray(client_hello())
    hello[5] = 2
    with pytest.raises(ValueError, match="not clientHello"):
        read_handshake(io.BytesIO(bytes(hello)))


def test_short_stream():
    with pytest.raises(EOFError):
        read_handshake(io.BytesIO(client_hello()[:20]))


def test_session_id_too_long():
    with pytest.raises(ValueError):
        read_handshake(io.BytesIO(client_hello(session_id=bytes(33))))


def test_odd_cipher_suite_length():
    with pytest.raises(ValueError):
        read_handshake(io.BytesIO(client_hello(ciphers=b"\x00\x2f\x00")))


def test_no_extensions():
    with pytest.raises(ValueError, match="no extension data"):
        read_handshake(io.BytesIO(client_hello(extensions=b"", session_id=bytes(8))))


def test_no_server_name_extension():
    other = b"\x00\x0a\x00\x04\x00\x02\x00\x17"
    with pytest.raises(ValueError):
        read_handshake(io.BytesIO(client_hello(extensions=other)))


def test_get_https_hostname_replays_bytes():
    hello = client_hello()
    a, b = socket.socketpair()
    try:
        b.settimeout(5)
        a.sendall(hello)
        conn, info = get_https_hostname(Conn(b))
        assert info == {"Host": "example.com", "Scheme": "https"}
        assert _read_n(conn, len(hello)) == hello
        a.sendall(b"more")
        assert _read_n(conn, 4) == b"more"
    finally:
        a.close()
        b.close()


def test_muxer_routes_by_server_name():
    hello = client_hello()
    result = {}
    with listen_tcp("127.0.0.1", 0) as tcp:
        mux = HttpsMuxer(tcp, 5)
        routed = mux.listen(VhostRouteConfig(domain="example.com"))

        def take():
            conn = routed.accept()
            result["data"] = _read_n(conn, len(hello))
            conn.close()

        worker = threading.Thread(target=take, daemon=True)
        worker.start()
        with socket.create_connection(tcp.addr, timeout=5) as client:
            client.sendall(hello)
            worker.join(5)
        routed.close()
    assert result["data"] == hello


def test_muxer_unknown_name_gets_not_found():
    with listen_tcp("127.0.0.1", 0) as tcp:
        HttpsMuxer(tcp, 5)
        with socket.create_connection(tcp.addr, timeout=5) as client:
            client.sendall(client_hello(b"other.example.org"))
            data = bytearray()
            while True:
                chunk = client.recv(4096)
                if not chunk:
                    break
                data += chunk
    assert bytes(data).startswith(b"HTTP/1.0 404")