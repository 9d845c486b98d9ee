"""Levelled diagnostic output written to standard error."""

from __future__ import annotations

import sys
from enum import IntEnum

__all__ = [
    "LogLevel",
    "logging_print",
    "pr_warn",
    "pr_info",
    "pr_debug",
    "set_log_level",
    "get_log_level",
    "increase_log_level",
]


class LogLevel(IntEnum):
    """Message levels, from most to least important."""

    WARN = 0
    INFO = 1
    DEBUG = 2
    VERBOSE = 3


_log_level = LogLevel.INFO


def _emit(level: int, indent: int, fmt: str, args: tuple) -> int:
    if level > _log_level:
        return 0
    text = " " * indent + (fmt % args if args else fmt)
    sys.stderr.write(text)
    return len(text)


def logging_print(level: int, fmt: str, *args: object) -> int:
    """Write a printf-style message if *level* is enabled.

    Returns the number of characters written (0 when suppressed).
    """
    return _emit(level, 0, fmt, args)


def pr_warn(fmt: str, *args: object) -> int:
    """Print a warning message."""
    return logging_print(LogLevel.WARN, fmt, *args)


def pr_info(fmt: str, *args: object) -> int:
    """Print an informational message."""
    return logging_print(LogLevel.INFO, fmt, *args)


def pr_debug(fmt: str, *args: object) -> int:
    """Print a debug message."""
    return logging_print(LogLevel.DEBUG, fmt, *args)


def set_log_level(level: int) -> LogLevel:
    """Set the current level and return the previous one."""
    global _log_level
    old = _log_level
    _log_level = LogLevel(level)
    return old


def get_log_level() -> LogLevel:
    """Return the current level."""
    return _log_level


def increase_log_level() -> LogLevel:
    """Raise verbosity by one step, stopping at VERBOSE; return the new level."""
    global _log_level
    if _log_level < LogLevel.VERBOSE:
        _log_level = LogLevel(_log_level + 1)
    return _log_level