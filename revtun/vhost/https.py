"""Route TLS connections by the server name in their ClientHello."""

from __future__ import annotations

from enum import IntEnum
from typing import Any

from ..net.conn import Conn
from .vhost import VhostMuxer

TYPE_CLIENT_HELLO = 1

_HEAD_SIZE = 47
_HANDSHAKE_BUF = 1024
_DEFAULT_READ_SIZE = 32 * 1024


class TlsExtension(IntEnum):
    SERVER_NAME = 0
    STATUS_REQUEST = 5
    SUPPORTED_CURVES = 10
    SUPPORTED_POINTS = 11
    SIGNATURE_ALGORITHMS = 13
    ALPN = 16
    SCT = 18
    SESSION_TICKET = 35
    NEXT_PROTO_NEG = 13172  # not IANA assigned
    RENEGOTIATION_INFO = 0xFF01


def _read_exact(reader: Any, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = reader.read(size - len(data))
        if not chunk:
            raise EOFError("unexpected EOF")
        data += chunk
    return bytes(data)


def _u16(data: bytes, offset: int = 0) -> int:
    return data[offset] << 8 | data[offset + 1]


def _server_name(d: bytes) -> str | None:
    if len(d) < 2:
        raise ValueError(f"read handshake: remaining data length [{len(d)}] is short")
    names_len = _u16(d)
    d = d[2:]
    if len(d) != names_len:
        raise ValueError(
            f"read handshake: name list length [{names_len}] is not equal to data length [{len(d)}]"
        )
    while d:
        if len(d) < 3:
            raise ValueError(f"read handshake: extension server name length [{len(d)}] is short")
        name_type = d[0]
        name_len = _u16(d, 1)
        d = d[3:]
        if len(d) < name_len:
            raise ValueError(
                f"read handshake: name length [{name_len}] is not equal to data length [{len(d)}]"
            )
        if name_type == 0:
            return d[:name_len].decode("utf-8", "replace").strip()
        d = d[name_len:]
    return None


def read_handshake(reader: Any) -> str:
    """Return the server name from a TLS ClientHello read from ``reader``.

    Reads 47 bytes, then at most one further read of the rest of a 1 KiB
    buffer. Raises EOFError on a short stream and ValueError on bad data.
    """
    data = _read_exact(reader, _HEAD_SIZE)
    rest = reader.read(_HANDSHAKE_BUF - _HEAD_SIZE)
    if not rest:
        raise EOFError("EOF")
    data += bytes(rest)

    if data[5] != TYPE_CLIENT_HELLO:
        raise ValueError(f"read handshake: type[{data[5]}] is not clientHello")

    session_id_len = data[43]
    if session_id_len > 32 or len(data) < 44 + session_id_len:
        raise ValueError(f"read handshake: session id length [{session_id_len}] is long")
    data = data[44 + session_id_len:]
    if len(data) < 2:
        raise ValueError(f"read handshake: data length [{len(data)}] after session is short")

    cipher_suite_len = _u16(data)
    if cipher_suite_len % 2 == 1 or len(data) < 2 + cipher_suite_len:
        raise ValueError(
            f"read handshake: data length [{len(data)}] after cipher suite is short"
        )
    data = data[2 + cipher_suite_len:]
    if len(data) < 1:
        raise ValueError(f"read handshake: cipher suite length [{cipher_suite_len}] is long")

    compression_len = data[0]
    if len(data) < 1 + compression_len:
        raise ValueError(
            f"read handshake: compression methods length [{compression_len}] is long"
        )
    data = data[1 + compression_len:]
    if not data:
        raise ValueError("read handshake: there is no extension data to get servername")
    if len(data) < 2:
        raise ValueError(f"read handshake: extension data length [{len(data)}] is too short")

    extensions_len = _u16(data)
    data = data[2:]
    if extensions_len != len(data):
        raise ValueError(
            f"read handshake: extensions length [{extensions_len}] is not equal to "
            f"data length [{len(data)}]"
        )

    while data:
        if len(data) < 4:
            raise ValueError(f"read handshake: extensions data length [{len(data)}] is too short")
        extension = _u16(data)
        length = _u16(data, 2)
        data = data[4:]
        if len(data) < length:
            raise ValueError(f"read handshake: extension length [{length}] is long")
        if extension == TlsExtension.RENEGOTIATION_INFO:
            if length != 1 or data[0] != 0:
                raise ValueError(
                    f"read handshake: extension renegotiation info length [{length}] is short"
                )
        elif extension == TlsExtension.SERVER_NAME:
            host = _server_name(data[:length])
            if host is not None:
                return host
        data = data[length:]
    raise ValueError("read handshake: unknown error")


class _RecordingReader:
    def __init__(self, conn: Any) -> None:
        self._conn = conn
        self.recorded = bytearray()

    def read(self, size: int) -> bytes:
        data = self._conn.read(size)
        self.recorded += data
        return data


class _ReplayConn(Conn):
    """Gives back bytes already consumed before reading further."""

    def __init__(self, conn: Any, prefix: bytes) -> None:
        super().__init__(conn)
        self._pending = bytearray(prefix)

    def read(self, size: int = _DEFAULT_READ_SIZE) -> bytes:
        if self._pending:
            out = bytes(self._pending[:size])
            del self._pending[:size]
            return out
        return super().read(size)


def get_https_hostname(conn: Any) -> tuple[Conn, dict[str, str]]:
    """Read the server name; the returned connection replays what was read."""
    recorder = _RecordingReader(conn)
    host = read_handshake(recorder)
    info = {"Host": host, "Scheme": "https"}
    return _ReplayConn(conn, bytes(recorder.recorded)), info


class HttpsMuxer(VhostMuxer):
    """Routes TLS connections to listeners by their SNI host name."""

    def __init__(self, listener: Any, timeout: float) -> None:
        super().__init__(listener, get_https_hostname, None, None, timeout)