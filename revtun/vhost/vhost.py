"""Dispatch incoming connections to listeners by host name and path."""

from __future__ import annotations

import contextlib
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .. import log
from ..log import PrefixLogger
from ..net.listener import _Channel, _ChannelClosed
from .resource import no_auth_response, not_found_response
from .router import VhostRouters

MuxFunc = Callable[[Any], "tuple[Any, dict[str, str]]"]
HttpAuthFunc = Callable[[Any, str, str, str], bool]
HostRewriteFunc = Callable[[Any, str], Any]


@dataclass
class VhostRouteConfig:
    domain: str = ""
    location: str = ""
    rewrite_host: str = ""
    username: str = ""
    password: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    create_conn_fn: Callable[[], Any] | None = None


class VhostMuxer:
    """Accepts connections and routes each to the listener for its host.

    ``vhost_func`` inspects a connection and returns the connection to hand
    on together with request details (``Host``, ``Path``, ``Authorization``).
    ``timeout`` is in seconds and bounds that inspection.
    """

    def __init__(
        self,
        listener: Any,
        vhost_func: MuxFunc,
        auth_func: HttpAuthFunc | None,
        rewrite_func: HostRewriteFunc | None,
        timeout: float,
    ) -> None:
        self._listener = listener
        self._vhost_func = vhost_func
        self._auth_func = auth_func
        self._rewrite_func = rewrite_func
        self.timeout = timeout
        self._router = VhostRouters()
        self._lock = threading.Lock()
        threading.Thread(target=self._run, daemon=True).start()

    def listen(self, cfg: VhostRouteConfig) -> "Listener":
        """Register a domain and location; raises ValueError if taken."""
        with self._lock:
            if self._router.exist(cfg.domain, cfg.location) is not None:
                raise ValueError(
                    f"hostname [{cfg.domain}] location [{cfg.location}] is already registered"
                )
            listener = Listener(self, cfg)
            self._router.add(cfg.domain, cfg.location, listener)
            return listener

    def _find_listener(self, name: str, path: str) -> "Listener | None":
        with self._lock:
            route = self._router.get(name, path)
            if route is not None:
                return route.payload
            # fall back to wildcard domains such as *.example.com
            labels = name.split(".")
            while len(labels) >= 3:
                labels[0] = "*"
                route = self._router.get(".".join(labels), path)
                if route is not None:
                    return route.payload
                labels = labels[1:]
            return None

    def _run(self) -> None:
        while True:
            try:
                conn = self._listener.accept()
            except OSError:
                return
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn: Any) -> None:
        try:
            conn.set_deadline(time.time() + self.timeout)
        except OSError:
            conn.close()
            return

        try:
            shared, req_info = self._vhost_func(conn)
        except Exception as exc:
            log.warn("get hostname from http/https request error: %s", exc)
            conn.close()
            return

        name = req_info.get("Host", "").lower()
        path = req_info.get("Path", "").lower()
        listener = self._find_listener(name, path)
        if listener is None:
            with contextlib.suppress(OSError):
                conn.write(not_found_response())
            log.debug("http request for host [%s] path [%s] not found", name, path)
            conn.close()
            return

        if self._auth_func is not None and listener.username and listener.password:
            try:
                allowed = self._auth_func(
                    conn, listener.username, listener.password, req_info.get("Authorization", "")
                )
            except Exception:
                allowed = False
            if not allowed:
                listener.debug("check http Authorization failed")
                with contextlib.suppress(OSError):
                    conn.write(no_auth_response())
                conn.close()
                return

        try:
            shared.set_deadline(None)
        except OSError:
            conn.close()
            return

        listener.debug("get new http request host [%s] path [%s]", name, path)
        if not listener._deliver(shared):
            listener.warn("listener is already closed, ignore this request")
            shared.close()


class Listener(PrefixLogger):
    """Connections routed to one domain and location."""

    def __init__(self, mux: VhostMuxer, cfg: VhostRouteConfig) -> None:
        super().__init__("")
        self.name = cfg.domain
        self.location = cfg.location
        self.rewrite_host = cfg.rewrite_host
        self.username = cfg.username
        self.password = cfg.password
        self._mux = mux
        self._accept = _Channel(1)

    def _deliver(self, conn: Any) -> bool:
        try:
            self._accept.put(conn)
        except _ChannelClosed:
            return False
        return True

    def accept(self) -> Any:
        """Wait for a routed connection, rewriting its host if configured."""
        try:
            conn = self._accept.get()
        except _ChannelClosed:
            raise OSError("Listener closed") from None

        rewrite = self._mux._rewrite_func
        if rewrite is not None:
            try:
                conn = rewrite(conn, self.rewrite_host)
            except Exception as exc:
                self.warn("host header rewrite failed: %s", exc)
                raise OSError("host header rewrite failed") from exc
            self.debug("rewrite host to [%s] success", self.rewrite_host)

        for prefix in self.all_prefix:
            conn.add_log_prefix(prefix)
        return conn

    def close(self) -> None:
        self._mux._router.delete(self.name, self.location)
        self._accept.close()

    def __enter__(self) -> "Listener":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()