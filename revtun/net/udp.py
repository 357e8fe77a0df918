"""A UDP listener that presents each remote address as a connection."""

from __future__ import annotations

import contextlib
import socket
import threading
import time
from dataclasses import dataclass
from typing import Any

from ..log import PrefixLogger
from .listener import _Channel, _ChannelClosed

_READ_BUF_SIZE = 1450
_PACKET_QUEUE_SIZE = 20
_WRITE_QUEUE_SIZE = 1000
_READ_POLL = 0.2


@dataclass
class UdpPacket:
    buf: bytes
    local_addr: Any = None
    remote_addr: Any = None


class FakeUdpConn(PrefixLogger):
    """Packets from one remote address, read like a connection.

    Closes itself after a period without reads or writes.
    """

    check_interval = 5.0
    idle_timeout = 10.0

    def __init__(self, listener: "UdpListener", local_addr: Any, remote_addr: Any) -> None:
        super().__init__("")
        self._listener = listener
        self.local_addr = local_addr
        self.remote_addr = remote_addr
        self._packets = _Channel(_PACKET_QUEUE_SIZE)
        self._lock = threading.Lock()
        self._last_active = time.monotonic()
        self._stop = threading.Event()
        threading.Thread(target=self._watch_idle, daemon=True).start()

    def _watch_idle(self) -> None:
        while not self._stop.wait(self.check_interval):
            with self._lock:
                idle = time.monotonic() - self._last_active
            if idle > self.idle_timeout:
                self.close()
                return

    def _touch(self) -> None:
        with self._lock:
            self._last_active = time.monotonic()

    def _put_packet(self, content: bytes) -> None:
        with contextlib.suppress(_ChannelClosed):
            self._packets.put(content, block=False)

    def read(self, size: int = _READ_BUF_SIZE) -> bytes:
        """Return the next packet, cut to ``size``; ``b""`` once closed."""
        try:
            content = self._packets.get()
        except _ChannelClosed:
            return b""
        self._touch()
        return content[:size]

    def write(self, data: bytes) -> int:
        if self.is_closed():
            raise BrokenPipeError("io: read/write on closed pipe")
        packet = UdpPacket(bytes(data), self.local_addr, self.remote_addr)
        with contextlib.suppress(OSError):
            self._listener._write_udp_packet(packet)
        self._touch()
        return len(data)

    def close(self) -> None:
        self._packets.close()
        self._stop.set()

    def is_closed(self) -> bool:
        return self._packets.closed

    def set_deadline(self, deadline: float | None) -> None:
        """Deadlines are accepted and ignored."""

    def __enter__(self) -> "FakeUdpConn":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class UdpListener(PrefixLogger):
    """Receives datagrams and hands out one :class:`FakeUdpConn` per sender.

    Every datagram makes :meth:`accept` return the sender's connection,
    so the same connection may be returned many times.
    """

    def __init__(self, bind_addr: str, bind_port: int) -> None:
        super().__init__("")
        family, socktype, proto, _, sockaddr = socket.getaddrinfo(
            bind_addr or None,
            bind_port,
            type=socket.SOCK_DGRAM,
            flags=socket.AI_PASSIVE,
        )[0]
        self._sock = socket.socket(family, socktype, proto)
        try:
            self._sock.bind(sockaddr)
        except OSError:
            self._sock.close()
            raise
        self._sock.settimeout(_READ_POLL)
        self.addr = self._sock.getsockname()
        self._accept = _Channel(1)
        self._write_ch = _Channel(_WRITE_QUEUE_SIZE)
        self._closed = False
        self._fake_conns: dict[Any, FakeUdpConn] = {}
        threading.Thread(target=self._read_loop, daemon=True).start()
        threading.Thread(target=self._write_loop, daemon=True).start()

    def _read_loop(self) -> None:
        try:
            while True:
                try:
                    data, remote = self._sock.recvfrom(_READ_BUF_SIZE)
                except TimeoutError:
                    if self._closed:
                        return
                    continue
                except OSError:
                    return
                fake = self._fake_conns.get(remote)
                if fake is None or fake.is_closed():
                    fake = FakeUdpConn(self, self.addr, remote)
                    self._fake_conns[remote] = fake
                fake._put_packet(data)
                try:
                    self._accept.put(fake)
                except _ChannelClosed:
                    return
        finally:
            self._accept.close()
            self._write_ch.close()

    def _write_loop(self) -> None:
        while True:
            try:
                packet = self._write_ch.get()
            except _ChannelClosed:
                return
            if isinstance(packet.remote_addr, tuple):
                with contextlib.suppress(OSError):
                    self._sock.sendto(packet.buf, packet.remote_addr)

    def _write_udp_packet(self, packet: UdpPacket) -> None:
        try:
            self._write_ch.put(packet)
        except _ChannelClosed:
            self.info("udp write closed listener")
            raise OSError("udp write closed listener") from None

    def write_msg(self, buf: bytes, remote_addr: Any) -> None:
        """Send ``buf`` to ``remote_addr`` from the listening socket."""
        self._write_udp_packet(UdpPacket(bytes(buf), remote_addr=remote_addr))

    def accept(self) -> FakeUdpConn:
        try:
            return self._accept.get()
        except _ChannelClosed:
            raise OSError("channel for udp listener closed") from None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._accept.close()
        self._write_ch.close()
        self._sock.close()

    def __enter__(self) -> "UdpListener":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def listen_udp(bind_addr: str, bind_port: int) -> UdpListener:
    return UdpListener(bind_addr, bind_port)