"""Listeners that hand out wrapped connections."""

from __future__ import annotations

import socket
import threading
from collections import deque
from typing import Any

from ..log import PrefixLogger
from .conn import Conn

_CUSTOM_QUEUE_SIZE = 64
_ACCEPT_POLL = 0.5


class _ChannelClosed(Exception):
    pass


class _Channel:
    """A bounded, closable queue; items put before closing can still be taken."""

    def __init__(self, capacity: int) -> None:
        self._items: deque = deque()
        self._capacity = max(capacity, 1)
        self._closed = False
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def put(self, item: Any, block: bool = True) -> bool:
        """Add an item; False if full and not blocking. Raises when closed."""
        with self._cond:
            while True:
                if self._closed:
                    raise _ChannelClosed()
                if len(self._items) < self._capacity:
                    self._items.append(item)
                    self._cond.notify_all()
                    return True
                if not block:
                    return False
                self._cond.wait()

    def get(self) -> Any:
        with self._cond:
            while not self._items and not self._closed:
                self._cond.wait()
            if self._items:
                item = self._items.popleft()
                self._cond.notify_all()
                return item
            raise _ChannelClosed()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class CustomListener(PrefixLogger):
    """A listener fed by hand through :meth:`put_conn`."""

    def __init__(self) -> None:
        super().__init__("")
        self._conns = _Channel(_CUSTOM_QUEUE_SIZE)

    def accept(self) -> Conn:
        try:
            conn = self._conns.get()
        except _ChannelClosed:
            raise OSError("listener closed") from None
        conn.add_log_prefix(self.prefix)
        return conn

    def put_conn(self, conn: Conn) -> None:
        """Queue a connection; it is closed if the queue is full."""
        try:
            queued = self._conns.put(conn, block=False)
        except _ChannelClosed:
            raise OSError("listener closed") from None
        if not queued:
            conn.close()

    def close(self) -> None:
        self._conns.close()

    @property
    def addr(self) -> None:
        return None

    def __enter__(self) -> "CustomListener":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class TcpListener(PrefixLogger):
    """A TCP server socket whose accepted connections are :class:`Conn`."""

    def __init__(self, bind_addr: str, bind_port: int) -> None:
        super().__init__("")
        self._sock = socket.create_server((bind_addr, bind_port))
        self._sock.settimeout(_ACCEPT_POLL)
        self._closed = False
        self.addr = self._sock.getsockname()

    def accept(self) -> Conn:
        """Wait for a connection; raises OSError once the listener is closed."""
        while True:
            if self._closed:
                raise OSError("channel for tcp listener closed")
            try:
                sock, _ = self._sock.accept()
            except TimeoutError:
                continue
            except OSError as exc:
                if self._closed:
                    raise OSError("channel for tcp listener closed") from exc
                continue
            sock.settimeout(None)
            return Conn(sock)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._sock.close()

    def __enter__(self) -> "TcpListener":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def listen_tcp(bind_addr: str, bind_port: int) -> TcpListener:
    return TcpListener(bind_addr, bind_port)