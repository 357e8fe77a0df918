"""Version string and client compatibility checks."""

from __future__ import annotations

import re

_VERSION = "0.25.1"
_INT_RE = re.compile(r"[+-]?[0-9]+")


def full() -> str:
    return _VERSION


def _sub_version(v: str, position: int) -> int:
    parts = v.split(".")
    if len(parts) < 3:
        return 0
    text = parts[position]
    return int(text) if _INT_RE.fullmatch(text) else 0


def proto(v: str) -> int:
    return _sub_version(v, 0)


def major(v: str) -> int:
    return _sub_version(v, 1)


def minor(v: str) -> int:
    return _sub_version(v, 2)


def compat(client: str) -> tuple[bool, str]:
    """Whether a client version is accepted, with a message when it is not."""
    if less_than(client, "0.18.0"):
        return False, "Please upgrade your frpc version to at least 0.18.0"
    return True, ""


def less_than(client: str, server: str) -> bool:
    key_c = (proto(client), major(client), minor(client))
    key_s = (proto(server), major(server), minor(server))
    return key_c < key_s