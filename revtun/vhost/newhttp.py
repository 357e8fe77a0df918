"""HTTP virtual hosting: route requests by domain and path to backends."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler
from typing import Any
from urllib.parse import urlsplit

from .. import log
from ..net.http import _request_basic_auth
from .reverseproxy import HttpTransport, ProxyRequest, ReverseProxy
from .router import VhostRouter, VhostRouters
from .vhost import VhostRouteConfig

_DEFAULT_RESPONSE_HEADER_TIMEOUT_S = 60


class RouterConfigConflictError(ValueError):
    """A route for the same domain and location already exists."""


class NoDomainError(LookupError):
    """No route matches the requested domain and location."""


def get_host_from_addr(addr: str) -> str:
    """Drop anything from the first colon on."""
    parts = addr.split(":")
    return parts[0] if len(parts) > 1 else addr


@dataclass
class HttpReverseProxyOptions:
    response_header_timeout_s: int = 0


class HttpReverseProxy:
    """Reverse proxy whose backends are chosen by registered routes."""

    def __init__(self, options: HttpReverseProxyOptions | None = None) -> None:
        options = options or HttpReverseProxyOptions()
        timeout_s = options.response_header_timeout_s
        if timeout_s <= 0:
            timeout_s = _DEFAULT_RESPONSE_HEADER_TIMEOUT_S
        self.response_header_timeout = float(timeout_s)
        self._router = VhostRouters()
        self._lock = threading.RLock()
        self.proxy = ReverseProxy(
            director=self._direct,
            transport=HttpTransport(
                dial=self._dial,
                response_header_timeout=self.response_header_timeout,
            ),
            websocket_dial=self._dial,
            error_log=self._log_error,
        )

    @staticmethod
    def _log_error(message: str) -> None:
        log.warn("%s", message.rstrip("\n"))

    def _direct(self, req: ProxyRequest) -> None:
        req.scheme = "http"
        url = req.context.get("url", "")
        old_host = get_host_from_addr(req.context.get("host", ""))
        host = self.get_real_host(old_host, url)
        if host:
            req.host = host
        req.url_host = req.host
        for name, value in self.get_headers(old_host, url).items():
            del req.headers[name]
            req.headers[name] = value

    def _dial(self, req: ProxyRequest) -> Any:
        url = req.context.get("url", "")
        host = get_host_from_addr(req.context.get("host", ""))
        return self.create_connection(host, url)

    def register(self, route_cfg: VhostRouteConfig) -> None:
        with self._lock:
            if self._router.exist(route_cfg.domain, route_cfg.location) is not None:
                raise RouterConfigConflictError("router config conflict")
            self._router.add(route_cfg.domain, route_cfg.location, route_cfg)

    def unregister(self, domain: str, location: str) -> None:
        with self._lock:
            self._router.delete(domain, location)

    def _get_vhost(self, domain: str, location: str) -> VhostRouter | None:
        with self._lock:
            route = self._router.get(domain, location)
            if route is not None:
                return route
            # fall back to wildcard domains such as *.example.com
            labels = domain.split(".")
            while len(labels) >= 3:
                labels[0] = "*"
                route = self._router.get(".".join(labels), location)
                if route is not None:
                    return route
                labels = labels[1:]
            return None

    def get_real_host(self, domain: str, location: str) -> str:
        route = self._get_vhost(domain, location)
        return route.payload.rewrite_host if route is not None else ""

    def get_headers(self, domain: str, location: str) -> dict[str, str]:
        route = self._get_vhost(domain, location)
        if route is None or not route.payload.headers:
            return {}
        return route.payload.headers

    def create_connection(self, domain: str, location: str) -> Any:
        """Open a backend connection for the route, or raise NoDomainError."""
        route = self._get_vhost(domain, location)
        if route is not None and route.payload.create_conn_fn is not None:
            return route.payload.create_conn_fn()
        raise NoDomainError(f"no such domain: {domain} {location}")

    def check_auth(self, domain: str, location: str, user: str, passwd: str) -> bool:
        route = self._get_vhost(domain, location)
        if route is None:
            return True
        cfg = route.payload
        if (cfg.username or cfg.password) and (cfg.username != user or cfg.password != passwd):
            return False
        return True

    def serve_http(self, handler: Any) -> None:
        """Answer the request parsed by a ``BaseHTTPRequestHandler``."""
        target = handler.path
        if target.startswith("/"):
            path, netloc = target.partition("?")[0], ""
        else:
            parts = urlsplit(target)
            path, netloc = parts.path, parts.netloc
        domain = get_host_from_addr(handler.headers.get("Host") or netloc)
        creds = _request_basic_auth(
            {"HTTP_AUTHORIZATION": handler.headers.get("Authorization", "")}
        ) or ("", "")
        if not self.check_auth(domain, path, creds[0], creds[1]):
            body = b"Unauthorized\n"
            handler.close_connection = True
            handler.send_response_only(401)
            handler.send_header("WWW-Authenticate", 'Basic realm="Restricted"')
            handler.send_header("Content-Type", "text/plain; charset=utf-8")
            handler.send_header("X-Content-Type-Options", "nosniff")
            handler.send_header("Content-Length", str(len(body)))
            handler.end_headers()
            handler.wfile.write(body)
            return
        self.proxy.serve_http(handler)

    def handler_class(self) -> type[BaseHTTPRequestHandler]:
        """A request handler class for ``http.server`` that uses this proxy."""
        proxy = self

        class _Handler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def _dispatch(self) -> None:
                proxy.serve_http(self)

            do_GET = do_POST = do_PUT = do_DELETE = _dispatch
            do_HEAD = do_OPTIONS = do_PATCH = do_TRACE = _dispatch

            def log_message(self, fmt: str, *args: Any) -> None:
                log.debug(fmt, *args)

        return _Handler