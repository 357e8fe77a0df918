import socket

import pytest

from revtun.net.udp import UdpPacket, listen_udp


@pytest.fixture
def listener():
    udp = listen_udp("127.0.0.1", 0)
    yield udp
    udp.close()


@pytest.fixture
def client():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(5)
    yield sock
    sock.close()


def test_round_trip(listener, client):
    client.sendto(b"ping", listener.addr)
    conn = listener.accept()
    assert conn.read(1450) == b"ping"
    assert conn.remote_addr == client.getsockname()
    assert conn.local_addr == listener.addr
    assert conn.write(b"pong") == 4
    data, sender = client.recvfrom(1450)
    assert data == b"pong"
    assert sender == listener.addr


def test_same_sender_same_conn(listener, client):
    client.sendto(b"one", listener.addr)
    first = listener.accept()
    client.sendto(b"two", listener.addr)
    second = listener.accept()
    assert first is second
    assert first.read(1450) == b"one"
    assert first.read(1450) == b"two"


def test_read_cut_to_size(listener, client):
    client.sendto(b"abcdef", listener.addr)
    conn = listener.accept()
    assert conn.read(3) == b"abc"


def test_write_msg(listener, client):
    listener.write_msg(b"hello", client.getsockname())
    data, _ = client.recvfrom(1450)
    assert data == b"hello"


def test_closed_fake_conn(listener, client):
    client.sendto(b"queued", listener.addr)
    conn = listener.accept()
    conn.close()
    assert conn.is_closed()
    assert conn.read(1450) == b"queued"
    assert conn.read(1450) == b""
    with pytest.raises(BrokenPipeError):
        conn.write(b"late")


def test_new_conn_after_close(listener, client):
    client.sendto(b"first", listener.addr)
    old = listener.accept()
    old.close()
    client.sendto(b"second", listener.addr)
    new = listener.accept()
    assert not new.is_closed()
    assert new.read(1450) == b"second"
    assert old.is_closed()


def test_closed_listener():
    udp = listen_udp("127.0.0.1", 0)
    udp.close()
    with pytest.raises(OSError, match="udp listener closed"):
        udp.accept()
    with pytest.raises(OSError, match="udp write closed listener"):
        udp.write_msg(b"x", ("127.0.0.1", 9))


def test_udp_packet_fields():
    packet = UdpPacket(b"data", remote_addr=("127.0.0.1", 9))
    assert packet.buf == b"data"
    assert packet.local_addr is None
    assert packet.remote_addr == ("127.0.0.1", 9)