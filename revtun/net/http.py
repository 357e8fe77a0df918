"""WSGI middleware for HTTP basic authentication and gzip compression."""

from __future__ import annotations

import base64
import binascii
import gzip
import io
from http import HTTPStatus
from typing import Any, Callable, Iterable

WsgiApp = Callable[[dict, Callable], Iterable[bytes]]

_REALM_HEADER = ("WWW-Authenticate", 'Basic realm="Restricted"')
_BASIC_PREFIX = "basic "


def _request_basic_auth(environ: dict) -> tuple[str, str] | None:
    """Credentials from the request's Authorization header, if well formed."""
    header = environ.get("HTTP_AUTHORIZATION", "")
    if header[: len(_BASIC_PREFIX)].lower() != _BASIC_PREFIX:
        return None
    try:
        decoded = base64.b64decode(header[len(_BASIC_PREFIX):], validate=True)
    except (binascii.Error, ValueError):
        return None
    text = decoded.decode("utf-8", "surrogateescape")
    parts = text.partition(":")
    if not parts[1]:
        return None
    return parts[0], parts[2]


def _authorized(environ: dict, user: str, passwd: str) -> bool:
    if not user and not passwd:
        return True
    return _request_basic_auth(environ) == (user, passwd)


def _unauthorized(start_response: Callable) -> list[bytes]:
    status = HTTPStatus.UNAUTHORIZED
    body = f"{status.phrase}\n".encode()
    start_response(
        f"{status.value} {status.phrase}",
        [
            _REALM_HEADER,
            ("Content-Type", "text/plain; charset=utf-8"),
            ("X-Content-Type-Options", "nosniff"),
            ("Content-Length", str(len(body))),
        ],
    )
    return [body]


class BasicAuthMiddleware:
    """Lets a request through only with the configured basic credentials.

    With an empty user and password every request is let through.
    """

    def __init__(self, app: WsgiApp, user: str, passwd: str) -> None:
        self.app = app
        self.user = user
        self.passwd = passwd

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        if _authorized(environ, self.user, self.passwd):
            return self.app(environ, start_response)
        return _unauthorized(start_response)


def http_basic_auth(app: WsgiApp, user: str, passwd: str) -> WsgiApp:
    """Wrap a WSGI callable in a basic-auth check."""

    def handler(environ: dict, start_response: Callable) -> Iterable[bytes]:
        if _authorized(environ, user, passwd):
            return app(environ, start_response)
        return _unauthorized(start_response)

    return handler


class GzipMiddleware:
    """Compresses the response body when the client accepts gzip."""

    def __init__(self, app: WsgiApp) -> None:
        self.app = app

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        if "gzip" not in environ.get("HTTP_ACCEPT_ENCODING", ""):
            return self.app(environ, start_response)

        buffer = io.BytesIO()
        compressor = gzip.GzipFile(fileobj=buffer, mode="wb")

        def gzip_start_response(status: str, headers: list, exc_info: Any = None):
            kept = [
                (name, value)
                for name, value in headers
                if name.lower() not in ("content-length", "content-encoding")
            ]
            kept.append(("Content-Encoding", "gzip"))
            start_response(status, kept, exc_info)
            return compressor.write

        result = self.app(environ, gzip_start_response)
        try:
            for chunk in result:
                compressor.write(chunk)
        finally:
            close = getattr(result, "close", None)
            if close is not None:
                close()
        compressor.close()
        return [buffer.getvalue()]


def make_gzip_handler(app: WsgiApp) -> GzipMiddleware:
    return GzipMiddleware(app)