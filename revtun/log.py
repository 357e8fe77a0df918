"""Process-wide logging with optional per-object message prefixes."""

from __future__ import annotations

import logging
import logging.handlers
import sys

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOGGER_NAME = "revtun"
logger = logging.getLogger(LOGGER_NAME)
logger.setLevel(logging.WARNING)

_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}
_FORMAT = "%(asctime)s [%(levelname).1s] %(message)s"
_handler: logging.Handler | None = None


def init_log(log_way: str, log_file: str, log_level: str, max_days: int) -> None:
    """Configure the log destination and level in one call."""
    set_log_file(log_way, log_file, max_days)
    set_log_level(log_level)


def set_log_file(log_way: str, log_file: str, max_days: int) -> logging.Handler:
    """Send log output to the console or to a daily rotated file.

    ``log_way`` is ``"console"`` for standard error; any other value writes
    to ``log_file``, keeping at most ``max_days`` old files.
    """
    global _handler
    new_handler: logging.Handler
    if log_way == "console":
        new_handler = logging.StreamHandler(sys.stderr)
    else:
        new_handler = logging.handlers.TimedRotatingFileHandler(
            log_file,
            when="midnight",
            backupCount=max(int(max_days), 0),
            encoding="utf-8",
        )
    new_handler.setFormatter(logging.Formatter(_FORMAT))
    if _handler is not None:
        logger.removeHandler(_handler)
        _handler.close()
    logger.addHandler(new_handler)
    _handler = new_handler
    return new_handler


def set_log_level(log_level: str) -> int:
    """Set the level from a name (error, warn, info, debug, trace).

    Unknown names fall back to warn. Returns the level applied.
    """
    level = _LEVELS.get(log_level, logging.WARNING)
    logger.setLevel(level)
    return level


def _emit(level: int, msg: str, args: tuple) -> None:
    logger.log(level, msg, *args, stacklevel=3)


def error(msg: str, *args) -> None:
    _emit(logging.ERROR, msg, args)


def warn(msg: str, *args) -> None:
    _emit(logging.WARNING, msg, args)


def info(msg: str, *args) -> None:
    _emit(logging.INFO, msg, args)


def debug(msg: str, *args) -> None:
    _emit(logging.DEBUG, msg, args)


def trace(msg: str, *args) -> None:
    _emit(TRACE, msg, args)


class PrefixLogger:
    """Logger that puts ``[prefix] `` markers in front of every message."""

    def __init__(self, prefix: str = "") -> None:
        self.prefix = ""
        self.all_prefix: list[str] = []
        self.add_log_prefix(prefix)

    def add_log_prefix(self, prefix: str) -> None:
        if not prefix:
            return
        self.prefix += f"[{prefix}] "
        self.all_prefix.append(prefix)

    def clear_log_prefix(self) -> None:
        self.prefix = ""
        self.all_prefix = []

    def _log(self, level: int, msg: str, args: tuple) -> None:
        prefix = self.prefix.replace("%", "%%") if args else self.prefix
        logger.log(level, prefix + msg, *args, stacklevel=3)

    def error(self, msg: str, *args) -> None:
        self._log(logging.ERROR, msg, args)

    def warn(self, msg: str, *args) -> None:
        self._log(logging.WARNING, msg, args)

    def info(self, msg: str, *args) -> None:
        self._log(logging.INFO, msg, args)

    def debug(self, msg: str, *args) -> None:
        self._log(logging.DEBUG, msg, args)

    def trace(self, msg: str, *args) -> None:
        self._log(TRACE, msg, args)