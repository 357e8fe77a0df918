import queue
import socket
import threading

import pytest

from revtun.net.conn import Conn
from revtun.net.listener import CustomListener
from revtun.vhost.resource import no_auth_response, not_found_response
from revtun.vhost.vhost import VhostMuxer, VhostRouteConfig


@pytest.fixture
def source():
    listener = CustomListener()
    yield listener
    listener.close()


def _line_vhost(conn):
    data = b""
    while not data.endswith(b"\n"):
        chunk = conn.read(1)
        if not chunk:
            raise ConnectionError("request line incomplete")
        data += chunk
    fields = data.decode().split()
    info = {"Host": fields[0], "Path": fields[1]}
    if len(fields) > 2:
        info["Authorization"] = fields[2]
    return conn, info


def _failing_vhost(conn):
    raise ValueError("cannot parse request")


def _connect(source, request):
    client, server = socket.socketpair()
    client.settimeout(5)
    client.sendall(request)
    conn = Conn(server)
    source.put_conn(conn)
    return client, conn


def _recv_all(sock):
    chunks = []
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


def _accept(listener):
    box = queue.Queue()

    def run():
        try:
            box.put(listener.accept())
        except Exception as exc:
            box.put(exc)

    threading.Thread(target=run, daemon=True).start()
    item = box.get(timeout=5)
    if isinstance(item, Exception):
        raise item
    return item


def test_routes_by_host_and_path(source):
    mux = VhostMuxer(source, _line_vhost, None, None, 5.0)
    listener = mux.listen(VhostRouteConfig(domain="example.com", location="/api"))
    client, server_conn = _connect(source, b"Example.COM /API/items\n")
    accepted = _accept(listener)
    assert accepted is server_conn
    accepted.write(b"pong")
    assert client.recv(4) == b"pong"
    client.close()


def test_wildcard_domain(source):
    mux = VhostMuxer(source, _line_vhost, None, None, 5.0)
    listener = mux.listen(VhostRouteConfig(domain="*.example.com"))
    client, server_conn = _connect(source, b"a.b.example.com /\n")
    assert _accept(listener) is server_conn
    client.close()


def test_two_label_domain_has_no_wildcard(source):
    mux = VhostMuxer(source, _line_vhost, None, None, 5.0)
    mux.listen(VhostRouteConfig(domain="*.com"))
    client, _ = _connect(source, b"example.com /\n")
    assert _recv_all(client) == not_found_response()
    client.close()


def test_unknown_host_gets_not_found(source):
    mux = VhostMuxer(source, _line_vhost, None, None, 5.0)
    mux.listen(VhostRouteConfig(domain="example.com"))
    client, _ = _connect(source, b"other.example.org /\n")
    assert _recv_all(client) == not_found_response()
    client.close()


def test_duplicate_listen_rejected(source):
    mux = VhostMuxer(source, _line_vhost, None, None, 5.0)
    mux.listen(VhostRouteConfig(domain="example.com", location="/api"))
    with pytest.raises(ValueError, match="already registered"):
        mux.listen(VhostRouteConfig(domain="example.com", location="/api"))


def test_auth_rejects_and_accepts(source):
    calls = []

    def auth(conn, user, secret, authorization):
        calls.append((user, secret, authorization))
        return authorization == "token"

    password = "password"
    mux = VhostMuxer(source, _line_vhost, auth, None, 5.0)
    listener = mux.listen(VhostRouteConfig(domain="example.com", username="user", password=password))

    client, _ = _connect(source, b"example.com / wrong\n")
    assert _recv_all(client) == no_auth_response()
    client.close()
    assert calls == [("user", password, "wrong")]

    client, server_conn = _connect(source, b"example.com / token\n")
    assert _accept(listener) is server_conn
    client.close()


def test_auth_skipped_without_password(source):
    calls = []

    def auth(conn, user, secret, authorization):
        calls.append(user)
        return False

    mux = VhostMuxer(source, _line_vhost, auth, None, 5.0)
    listener = mux.listen(VhostRouteConfig(domain="example.com", username="user"))
    client, server_conn = _connect(source, b"example.com /\n")
    assert _accept(listener) is server_conn
    assert calls == []
    client.close()


def test_rewrite_applied_on_accept(source):
    rewritten = []

    def rewrite(conn, host):
        rewritten.append(host)
        return Conn(conn)

    mux = VhostMuxer(source, _line_vhost, None, rewrite, 5.0)
    listener = mux.listen(VhostRouteConfig(domain="example.com", rewrite_host="backend.local"))
    client, server_conn = _connect(source, b"example.com /\n")
    accepted = _accept(listener)
    assert accepted.stream is server_conn
    assert rewritten == ["backend.local"]
    client.close()


def test_rewrite_failure_raises(source):
    def rewrite(conn, host):
        raise ValueError("bad request")

    mux = VhostMuxer(source, _line_vhost, None, rewrite, 5.0)
    listener = mux.listen(VhostRouteConfig(domain="example.com"))
    client, _ = _connect(source, b"example.com /\n")
    with pytest.raises(OSError) as excinfo:
        listener.accept()
    assert "host header rewrite failed" in str(excinfo.value)
    client.close()


def test_listener_prefixes_copied_to_conn(source):
    mux = VhostMuxer(source, _line_vhost, None, None, 5.0)
    listener = mux.listen(VhostRouteConfig(domain="example.com"))
    listener.add_log_prefix("web")
    client, _ = _connect(source, b"example.com /\n")
    accepted = _accept(listener)
    assert accepted.all_prefix == ["web"]
    client.close()


def test_closed_listener(source):
    mux = VhostMuxer(source, _line_vhost, None, None, 5.0)
    listener = mux.listen(VhostRouteConfig(domain="example.com"))
    assert listener.name == "example.com"
    listener.close()
    with pytest.raises(OSError, match="Listener closed"):
        listener.accept()
    client, _ = _connect(source, b"example.com /\n")
    assert _recv_all(client) == not_found_response()
    client.close()
    relisten = mux.listen(VhostRouteConfig(domain="example.com"))
    assert relisten.name == "example.com"