"""HTTP reverse proxy that forwards requests and relays upgraded connections."""

from __future__ import annotations

import contextlib
import http.client
import io
import socket
import ssl
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import SplitResult, urlsplit

from .. import log
from ..net.conn import Conn
from .resource import NOT_FOUND

_COPY_SIZE = 32 * 1024

# Hop-by-hop headers, removed when a message is passed on.
HOP_HEADERS = (
    "Connection",
    "Proxy-Connection",
    "Keep-Alive",
    "Proxy-Authenticate",
    "Proxy-Authorization",
    "Te",
    "Trailer",
    "Transfer-Encoding",
    "Upgrade",
)

_BODY_METHODS = ("POST", "PUT", "PATCH")


class _LimitedReader:
    """Reads at most ``remaining`` bytes from an underlying file."""

    def __init__(self, raw: Any, remaining: int) -> None:
        self._raw = raw
        self._remaining = remaining

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        want = self._remaining if size < 0 else min(size, self._remaining)
        data = self._raw.read(want)
        self._remaining -= len(data)
        return data


def _read_chunked(rfile: Any) -> bytes:
    body = bytearray()
    while True:
        line = rfile.readline()
        if not line:
            raise ValueError("unexpected end of chunked body")
        size = int(line.split(b";", 1)[0].strip(), 16)
        if size == 0:
            while rfile.readline() not in (b"\r\n", b"\n", b""):
                pass
            return bytes(body)
        chunk = rfile.read(size)
        if len(chunk) != size:
            raise ValueError("unexpected end of chunked body")
        body += chunk
        rfile.readline()


def _clone_headers(src: Any) -> http.client.HTTPMessage:
    clone = http.client.HTTPMessage()
    for name, value in src.items():
        clone[name] = value
    return clone


def _remove_hop_headers(headers: Any) -> None:
    listed = headers.get("Connection")
    if listed:
        for token in listed.split(","):
            token = token.strip()
            if token:
                del headers[token]
    for name in HOP_HEADERS:
        del headers[name]


@dataclass
class ProxyRequest:
    """A request on its way to the backend.

    ``host`` is the Host header to send; ``url_host`` is the address the
    request is sent to. ``context`` carries the original path (``url``) and
    host (``host``) for dialers.
    """

    method: str
    path: str
    query: str = ""
    headers: http.client.HTTPMessage = field(default_factory=http.client.HTTPMessage)
    host: str = ""
    scheme: str = "http"
    url_host: str = ""
    body: Any = None
    content_length: int = 0
    remote_addr: Any = None
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_handler(cls, handler: Any) -> "ProxyRequest":
        """Build a request from a ``BaseHTTPRequestHandler`` that parsed one."""
        target = handler.path
        netloc = ""
        if target.startswith("/"):
            path, _, query = target.partition("?")
        else:
            parts = urlsplit(target)
            netloc, path, query = parts.netloc, parts.path, parts.query
        headers = _clone_headers(handler.headers)
        body: Any = None
        length = 0
        if "chunked" in headers.get("Transfer-Encoding", "").lower():
            data = _read_chunked(handler.rfile)
            body, length = io.BytesIO(data), len(data)
        else:
            raw_length = headers.get("Content-Length")
            if raw_length is not None:
                raw_length = raw_length.strip()
                if not raw_length.isdigit():
                    raise ValueError(f"bad Content-Length {raw_length!r}")
                length = int(raw_length)
                if length > 0:
                    body = _LimitedReader(handler.rfile, length)
        return cls(
            method=handler.command,
            path=path or "/",
            query=query,
            headers=headers,
            host=headers.get("Host") or netloc,
            body=body,
            content_length=length,
            remote_addr=getattr(handler, "client_address", None),
        )

    @property
    def request_uri(self) -> str:
        uri = self.path or "/"
        return f"{uri}?{self.query}" if self.query else uri

    def head(self, close: bool = False) -> bytes:
        """Serialize the request line and headers."""
        lines = [f"{self.method} {self.request_uri} HTTP/1.1", f"Host: {self.host or self.url_host}"]
        for name, value in self.headers.items():
            lowered = name.lower()
            if lowered in ("host", "content-length", "transfer-encoding"):
                continue
            if lowered == "user-agent" and not value:
                continue
            if close and lowered == "connection":
                continue
            lines.append(f"{name}: {value}")
        if self.body is not None:
            lines.append(f"Content-Length: {self.content_length}")
        elif self.method in _BODY_METHODS:
            lines.append("Content-Length: 0")
        if close:
            lines.append("Connection: close")
        return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")

    def write_to(self, conn: Conn, close: bool = False) -> None:
        conn.write(self.head(close))
        if self.body is None:
            return
        while True:
            chunk = self.body.read(_COPY_SIZE)
            if not chunk:
                return
            conn.write(chunk)


class _ConnReader(io.RawIOBase):
    def __init__(self, conn: Conn) -> None:
        self._conn = conn

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        data = self._conn.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)

    def close(self) -> None:
        if not self.closed:
            with contextlib.suppress(OSError):
                self._conn.close()
        super().close()


class _SockAdapter:
    """Lets ``http.client.HTTPResponse`` read from a :class:`Conn`."""

    def __init__(self, conn: Conn) -> None:
        self._conn = conn

    def makefile(self, mode: str = "rb", *args: Any, **kwargs: Any) -> io.BufferedReader:
        return io.BufferedReader(_ConnReader(self._conn))


def _default_dial(req: ProxyRequest) -> socket.socket:
    if not req.url_host:
        raise ValueError("http: no Host in request URL")
    host, sep, port_text = req.url_host.rpartition(":")
    if not sep or not port_text.isdigit() or "]" in port_text:
        host, port = req.url_host, 443 if req.scheme == "https" else 80
    else:
        port = int(port_text)
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    sock = socket.create_connection((host, port))
    if req.scheme == "https":
        return ssl.create_default_context().wrap_socket(sock, server_hostname=host)
    return sock


class HttpTransport:
    """Sends one request per connection and returns the backend's response.

    ``dial`` opens the connection for a request; by default it connects to
    ``req.url_host``. ``response_header_timeout`` bounds the wait for the
    response head, in seconds.
    """

    def __init__(
        self,
        dial: Callable[[ProxyRequest], Any] | None = None,
        response_header_timeout: float | None = None,
    ) -> None:
        self.dial = dial or _default_dial
        self.response_header_timeout = response_header_timeout

    def __call__(self, req: ProxyRequest) -> http.client.HTTPResponse:
        raw = self.dial(req)
        conn = raw if isinstance(raw, Conn) else Conn(raw)
        try:
            req.write_to(conn, close=True)
            if self.response_header_timeout:
                with contextlib.suppress(OSError):
                    conn.set_deadline(time.time() + self.response_header_timeout)
            response = http.client.HTTPResponse(_SockAdapter(conn), method=req.method)
            response.begin()
            if self.response_header_timeout:
                with contextlib.suppress(OSError):
                    conn.set_deadline(None)
        except BaseException:
            with contextlib.suppress(OSError):
                conn.close()
            raise
        return response


_DEFAULT_TRANSPORT = HttpTransport()


def single_joining_slash(a: str, b: str) -> str:
    a_slash = a.endswith("/")
    b_slash = b.startswith("/")
    if a_slash and b_slash:
        return a + b[1:]
    if not a_slash and not b_slash:
        return a + "/" + b
    return a + b


def new_single_host_reverse_proxy(target: str | SplitResult) -> "ReverseProxy":
    """A proxy sending every request to ``target``, under its path and query.

    The Host header is left as the client sent it.
    """
    parts = urlsplit(target) if isinstance(target, str) else target

    def director(req: ProxyRequest) -> None:
        req.scheme = parts.scheme
        req.url_host = parts.netloc
        req.path = single_joining_slash(parts.path, req.path)
        if not parts.query or not req.query:
            req.query = parts.query + req.query
        else:
            req.query = f"{parts.query}&{req.query}"
        if "User-Agent" not in req.headers:
            # an empty value keeps the transport from sending one
            req.headers["User-Agent"] = ""

    return ReverseProxy(director=director)


def is_websocket_request(headers: Any) -> bool:
    def contains(name: str, value: str) -> bool:
        items = (headers.get(name) or "").split(",")
        return any(item.strip().lower() == value for item in items)

    return contains("Connection", "upgrade") and contains("Upgrade", "websocket")


def _send_simple(handler: Any, code: int, body: bytes = b"", content_type: str | None = None) -> None:
    handler.send_response_only(code)
    if content_type:
        handler.send_header("Content-Type", content_type)
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    if body:
        handler.wfile.write(body)


@dataclass
class ReverseProxy:
    """Forwards requests received by an ``http.server`` handler.

    ``director`` rewrites each :class:`ProxyRequest` before it is sent;
    ``transport`` sends it and returns an ``http.client.HTTPResponse``;
    ``websocket_dial`` opens the backend connection for upgrade requests.
    ``modify_response`` may change the response, or raise to answer 502.
    """

    director: Callable[[ProxyRequest], None]
    transport: Callable[[ProxyRequest], Any] | None = None
    flush_interval: float = 0.0
    error_log: Callable[[str], None] | None = None
    buffer_pool: Any = None
    modify_response: Callable[[Any], None] | None = None
    websocket_dial: Callable[[ProxyRequest], Any] | None = None

    def serve_http(self, handler: Any) -> None:
        """Answer the request that ``handler`` has parsed."""
        try:
            req = ProxyRequest.from_handler(handler)
        except ValueError:
            handler.close_connection = True
            _send_simple(handler, 400)
            return
        req.context["url"] = req.path
        req.context["host"] = req.host
        if is_websocket_request(req.headers):
            self._serve_websocket(handler, req)
        else:
            self._serve_http(handler, req)

    def _logf(self, message: str) -> None:
        if self.error_log is not None:
            self.error_log(message)
        else:
            log.warn(message)

    def _serve_websocket(self, handler: Any, req: ProxyRequest) -> None:
        if self.websocket_dial is None:
            _send_simple(handler, 500)
            return
        try:
            raw = self.websocket_dial(req)
        except Exception:
            _send_simple(handler, 501)
            return
        target = raw if isinstance(raw, Conn) else Conn(raw)
        handler.close_connection = True
        try:
            self.director(req)
            req.write_to(target)
            self._join(handler, target)
        except OSError as exc:
            self._logf(f"http: websocket proxy error: {exc}")
        finally:
            with contextlib.suppress(OSError):
                target.close()

    @staticmethod
    def _join(handler: Any, target: Conn) -> None:
        client_sock = handler.connection

        def shut_both() -> None:
            with contextlib.suppress(OSError):
                target.close()
            with contextlib.suppress(OSError):
                client_sock.shutdown(socket.SHUT_RDWR)

        def client_to_target() -> None:
            try:
                while True:
                    data = handler.rfile.read1(_COPY_SIZE)
                    if not data:
                        break
                    target.write(data)
            except (OSError, ValueError):
                pass
            finally:
                shut_both()

        def target_to_client() -> None:
            try:
                while True:
                    data = target.read(_COPY_SIZE)
                    if not data:
                        break
                    handler.wfile.write(data)
            except (OSError, ValueError):
                pass
            finally:
                shut_both()

        worker = threading.Thread(target=client_to_target, daemon=True)
        worker.start()
        target_to_client()
        worker.join()

    def _serve_http(self, handler: Any, req: ProxyRequest) -> None:
        transport = self.transport or _DEFAULT_TRANSPORT
        self.director(req)
        _remove_hop_headers(req.headers)

        remote = req.remote_addr
        client_ip = remote[0] if isinstance(remote, tuple) and remote else None
        if client_ip:
            prior = req.headers.get_all("X-Forwarded-For")
            if prior:
                client_ip = ", ".join(prior) + ", " + client_ip
            del req.headers["X-Forwarded-For"]
            req.headers["X-Forwarded-For"] = client_ip

        try:
            res = transport(req)
        except Exception as exc:
            self._logf(f"http: proxy error: {exc}")
            _send_simple(handler, 404, NOT_FOUND.encode(), "text/html; charset=utf-8")
            return

        try:
            _remove_hop_headers(res.headers)
            if self.modify_response is not None:
                try:
                    self.modify_response(res)
                except Exception as exc:
                    self._logf(f"http: proxy error: {exc}")
                    _send_simple(handler, 502)
                    return

            handler.send_response_only(res.status, res.reason or None)
            for name, value in res.headers.items():
                handler.send_header(name, value)
            if "Content-Length" not in res.headers:
                handler.send_header("Connection", "close")
                handler.close_connection = True
            handler.end_headers()
            self._copy_response(handler.wfile, res)
        finally:
            res.close()

    def _copy_response(self, dst: Any, src: Any) -> None:
        buf = self.buffer_pool.get() if self.buffer_pool is not None else None
        try:
            self._copy_buffer(dst, src, buf)
        finally:
            if self.buffer_pool is not None:
                self.buffer_pool.put(buf)

    def _copy_buffer(self, dst: Any, src: Any, buf: Any) -> int:
        if not buf:
            buf = bytearray(_COPY_SIZE)
        view = memoryview(buf)
        written = 0
        last_flush = time.monotonic()
        while True:
            try:
                count = src.readinto(view)
            except Exception as exc:
                self._logf(f"httputil: ReverseProxy read error during body copy: {exc}")
                return written
            if not count:
                return written
            try:
                dst.write(view[:count])
            except OSError:
                return written
            written += count
            if self.flush_interval and time.monotonic() - last_flush >= self.flush_interval:
                with contextlib.suppress(OSError):
                    dst.flush()
                last_flush = time.monotonic()