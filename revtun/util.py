"""Small helpers: random ids, auth keys, addresses and port ranges."""

from __future__ import annotations

import hashlib
import re
import secrets

_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def rand_id() -> str:
    """Return a random 16-character hex id."""
    return rand_id_with_len(8)


def rand_id_with_len(id_len: int) -> str:
    """Return the hex encoding of ``id_len`` random bytes."""
    return secrets.token_hex(id_len)


def get_auth_key(token: str, timestamp: int) -> str:
    """MD5 hex digest of the token followed by the decimal timestamp."""
    return hashlib.md5(f"{token}{timestamp}".encode()).hexdigest()


def canonical_addr(host: str, port: int) -> str:
    """Drop the port when it is 80 or 443."""
    if port in (80, 443):
        return host
    return f"{host}:{port}"


def _parse_int(text: str) -> int:
    text = text.strip()
    if not _INT_RE.fullmatch(text):
        raise ValueError(f"range number is invalid, invalid syntax: {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"range number is invalid, value out of range: {text!r}")
    return value


def parse_range_numbers(range_str: str) -> list[int]:
    """Expand a list such as ``"1000-2000,2001,3000-4000"`` into numbers."""
    numbers: list[int] = []
    for part in range_str.strip().split(","):
        bounds = part.split("-")
        if len(bounds) == 1:
            numbers.append(_parse_int(bounds[0]))
        elif len(bounds) == 2:
            low = _parse_int(bounds[0])
            high = _parse_int(bounds[1])
            if high < low:
                raise ValueError("range number is invalid")
            numbers.extend(range(low, high + 1))
        else:
            raise ValueError("range number is invalid")
    return numbers