"""Connection wrappers with log prefixes, TLS negotiation and dialing helpers."""

from __future__ import annotations

import base64
import socket
import ssl
import threading
import time
from typing import Any, Callable
from urllib.parse import unquote, urlsplit

from ..log import PrefixLogger

FRP_TLS_HEAD_BYTE = 0x17
_PROXY_HEADER_LIMIT = 64 * 1024
_DEFAULT_READ_SIZE = 32 * 1024


def _sock_addr(obj: Any, local: bool) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Conn):
        return obj.local_addr if local else obj.remote_addr
    getter = getattr(obj, "getsockname" if local else "getpeername", None)
    if getter is None:
        return None
    try:
        return getter()
    except OSError:
        return None


class Conn(PrefixLogger):
    """A byte stream with its own log prefixes.

    ``stream`` is either a socket (``recv``/``sendall``) or any object with
    ``read``/``write``/``close``. ``under_conn`` is the socket that carries
    the stream, used for addresses and deadlines when the stream has none.
    """

    def __init__(self, stream: Any, under_conn: Any = None) -> None:
        super().__init__("")
        self._stream = stream
        self._under_conn = under_conn

    @property
    def stream(self) -> Any:
        return self._stream

    def read(self, size: int = _DEFAULT_READ_SIZE) -> bytes:
        """Read up to ``size`` bytes; ``b""`` means end of stream."""
        recv = getattr(self._stream, "recv", None)
        if recv is not None:
            return recv(size)
        return self._stream.read(size)

    def write(self, data: bytes) -> int:
        sendall = getattr(self._stream, "sendall", None)
        if sendall is not None:
            sendall(data)
            return len(data)
        written = self._stream.write(data)
        return len(data) if written is None else written

    def close(self) -> None:
        self._stream.close()

    def set_deadline(self, deadline: float | None) -> None:
        """Set an absolute ``time.time()`` deadline, or clear it with None."""
        target = self._under_conn if self._under_conn is not None else self._stream
        setter = getattr(target, "set_deadline", None)
        if setter is not None:
            setter(deadline)
            return
        settimeout = getattr(target, "settimeout", None)
        if settimeout is None:
            raise OSError("set wrap: deadline not supported")
        if deadline is None:
            settimeout(None)
        else:
            settimeout(max(deadline - time.time(), 1e-6))

    @property
    def local_addr(self) -> Any:
        source = self._under_conn if self._under_conn is not None else self._stream
        return _sock_addr(source, True)

    @property
    def remote_addr(self) -> Any:
        source = self._under_conn if self._under_conn is not None else self._stream
        return _sock_addr(source, False)

    def __enter__(self) -> "Conn":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SharedConn(Conn):
    """A connection whose first bytes can be inspected and then read again."""

    def __init__(self, conn: Any) -> None:
        super().__init__(conn)
        self._buffer = bytearray()

    def peek(self, size: int) -> bytes:
        """Return up to ``size`` leading bytes without consuming them."""
        while len(self._buffer) < size:
            chunk = super().read(size - len(self._buffer))
            if not chunk:
                break
            self._buffer += chunk
        return bytes(self._buffer[:size])

    def read(self, size: int = _DEFAULT_READ_SIZE) -> bytes:
        if self._buffer:
            out = bytes(self._buffer[:size])
            del self._buffer[:size]
            return out
        return super().read(size)


class CloseNotifyConn(Conn):
    """Calls ``close_fn`` once, the first time the connection is closed."""

    def __init__(self, stream: Any, close_fn: Callable[[], None] | None = None) -> None:
        super().__init__(stream)
        self._close_fn = close_fn
        self._closed = False
        self._lock = threading.Lock()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            super().close()
        finally:
            if self._close_fn is not None:
                self._close_fn()


class StatsConn(Conn):
    """Counts bytes read and written and reports them once on close."""

    def __init__(
        self,
        conn: Any,
        stats_func: Callable[[int, int], None] | None = None,
    ) -> None:
        super().__init__(conn)
        self._stats_func = stats_func
        self.total_read = 0
        self.total_write = 0
        self._closed = False
        self._lock = threading.Lock()

    def read(self, size: int = _DEFAULT_READ_SIZE) -> bytes:
        data = super().read(size)
        self.total_read += len(data)
        return data

    def write(self, data: bytes) -> int:
        written = super().write(data)
        self.total_write += written
        return written

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            super().close()
        finally:
            if self._stats_func is not None:
                self._stats_func(self.total_read, self.total_write)


def _split_host_port(addr: str) -> tuple[str, int]:
    host, sep, port_text = addr.rpartition(":")
    if not sep:
        raise ValueError(f"address {addr}: missing port in address")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not port_text.isdigit():
        raise ValueError(f"address {addr}: invalid port")
    port = int(port_text)
    if port > 65535:
        raise ValueError(f"address {addr}: invalid port")
    return host, port


def _dial(addr: str) -> socket.socket:
    host, port = _split_host_port(addr)
    return socket.create_connection((host or "localhost", port))


def connect_tcp_server(addr: str) -> Conn:
    """Open a TCP connection to ``host:port``."""
    return Conn(_dial(addr))


def connect_server(protocol: str, addr: str) -> Conn:
    if protocol == "tcp":
        return connect_tcp_server(addr)
    if protocol == "kcp":
        raise ValueError("kcp protocol is not available")
    raise ValueError(f"unsupport protocol: {protocol}")


def _read_proxy_status(sock: socket.socket) -> int:
    data = bytearray()
    while not data.endswith(b"\r\n\r\n"):
        if len(data) > _PROXY_HEADER_LIMIT:
            raise ConnectionError("proxy response header too large")
        chunk = sock.recv(1)
        if not chunk:
            raise ConnectionError("proxy closed the connection")
        data += chunk
    status_line = bytes(data).split(b"\r\n", 1)[0].decode("latin-1")
    fields = status_line.split()
    if len(fields) < 2 or not fields[0].startswith("HTTP/") or not fields[1].isdigit():
        raise ConnectionError(f"malformed proxy response: {status_line!r}")
    return int(fields[1])


def dial_tcp_by_proxy(proxy_url: str, addr: str) -> socket.socket:
    """Connect to ``addr`` directly, or through an HTTP CONNECT proxy."""
    if not proxy_url:
        return _dial(addr)
    parts = urlsplit(proxy_url)
    if parts.scheme != "http":
        raise ValueError(f"proxy scheme {parts.scheme!r} is not supported")
    if not parts.hostname:
        raise ValueError(f"proxy url {proxy_url!r} has no host")
    sock = socket.create_connection((parts.hostname, parts.port or 80))
    try:
        lines = [f"CONNECT {addr} HTTP/1.1", f"Host: {addr}"]
        if parts.username is not None:
            credentials = f"{unquote(parts.username)}:{unquote(parts.password or '')}"
            encoded = base64.b64encode(credentials.encode()).decode()
            lines.append(f"Proxy-Authorization: Basic {encoded}")
        sock.sendall(("\r\n".join(lines) + "\r\n\r\n").encode())
        status = _read_proxy_status(sock)
        if status != 200:
            raise ConnectionError(f"proxy CONNECT failed with status {status}")
    except BaseException:
        sock.close()
        raise
    return sock


def connect_server_by_proxy(proxy_url: str, protocol: str, addr: str) -> Conn:
    if protocol == "tcp":
        return Conn(dial_tcp_by_proxy(proxy_url, addr))
    if protocol == "kcp":
        # proxies are not used for kcp
        return connect_server(protocol, addr)
    if protocol == "websocket":
        raise ValueError("websocket protocol is not available")
    raise ValueError(f"unsupport protocol: {protocol}")


def connect_server_by_proxy_with_tls(
    proxy_url: str,
    protocol: str,
    addr: str,
    tls_context: ssl.SSLContext | None,
) -> Conn:
    conn = connect_server_by_proxy(proxy_url, protocol, addr)
    if tls_context is None:
        return conn
    return wrap_tls_client_conn(conn, tls_context)


def _raw_socket(conn: Any) -> socket.socket:
    obj = conn
    while True:
        if isinstance(obj, socket.socket):
            return obj
        if isinstance(obj, Conn):
            obj = obj.stream
            continue
        raise TypeError("TLS needs a connection backed by a socket")


def wrap_tls_client_conn(conn: Any, tls_context: ssl.SSLContext) -> Conn:
    """Announce TLS with the head byte, then start a client TLS session."""
    wrapped = conn if isinstance(conn, Conn) else Conn(conn)
    wrapped.write(bytes([FRP_TLS_HEAD_BYTE]))
    tls_sock = tls_context.wrap_socket(
        _raw_socket(wrapped),
        server_side=False,
        do_handshake_on_connect=False,
    )
    return Conn(tls_sock)


def check_and_enable_tls_server_conn(conn: Any, tls_context: ssl.SSLContext) -> Conn:
    """Start server TLS if the peer sent the head byte, else replay the bytes."""
    wrapped = conn if isinstance(conn, Conn) else Conn(conn)
    shared = SharedConn(wrapped)
    try:
        head = shared.peek(1)
    except OSError:
        head = b""
    if head == bytes([FRP_TLS_HEAD_BYTE]):
        tls_sock = tls_context.wrap_socket(
            _raw_socket(wrapped),
            server_side=True,
            do_handshake_on_connect=False,
        )
        return Conn(tls_sock)
    return shared