"""Routing table from (domain, location prefix) to a payload."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from operator import attrgetter
from typing import Any


@dataclass
class VhostRouter:
    domain: str
    location: str
    payload: Any = None


class VhostRouters:
    """Routes per domain, kept sorted so longer locations match first."""

    def __init__(self) -> None:
        self.router_by_domain: dict[str, list[VhostRouter]] = {}
        self._lock = threading.RLock()

    def add(self, domain: str, location: str, payload: Any) -> None:
        with self._lock:
            routers = [*self.router_by_domain.get(domain, []), VhostRouter(domain, location, payload)]
            routers.sort(key=attrgetter("location"), reverse=True)
            self.router_by_domain[domain] = routers

    def delete(self, domain: str, location: str) -> None:
        with self._lock:
            routers = self.router_by_domain.get(domain)
            if routers is None:
                return
            self.router_by_domain[domain] = [r for r in routers if r.location != location]

    def get(self, host: str, path: str) -> VhostRouter | None:
        """The first route of ``host`` whose location is a prefix of ``path``."""
        with self._lock:
            for router in self.router_by_domain.get(host, []):
                if path.startswith(router.location):
                    return router
            return None

    def exist(self, host: str, path: str) -> VhostRouter | None:
        """The route of ``host`` whose location equals ``path`` exactly."""
        with self._lock:
            for router in self.router_by_domain.get(host, []):
                if router.location == path:
                    return router
            return None