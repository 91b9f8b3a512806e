# src/wshandler/core/level.py
from __future__ import annotations

import logging
from enum import IntEnum

from wshandler.core.errors import InvalidLevelError

# Status strings double as payload status values ("error" marks a failed call).
PANIC_LEVEL = "panic"
FATAL_LEVEL = "fatal"
ERROR_LEVEL = "error"
WARN_LEVEL = "warning"
INFO_LEVEL = "info"
DEBUG_LEVEL = "debug"
TRACE_LEVEL = "trace"

TRACE = 5
logging.addLevelName(TRACE, "TRACE")


class Level(IntEnum):
    """Severity, most severe first. A record passes when level <= threshold."""
    PANIC = 0
    FATAL = 1
    ERROR = 2
    WARN = 3
    INFO = 4
    DEBUG = 5
    TRACE = 6

    @classmethod
    def parse(cls, value: str) -> "Level":
        return parse_level(value)

    def to_logging(self) -> int:
        return _TO_LOGGING[self]

    def __str__(self) -> str:
        return self.name.lower()


_NAMES = {
    "panic": Level.PANIC,
    "fatal": Level.FATAL,
    "error": Level.ERROR,
    "warn": Level.WARN,
    "warning": Level.WARN,
    "info": Level.INFO,
    "debug": Level.DEBUG,
    "trace": Level.TRACE,
}

_TO_LOGGING = {
    Level.PANIC: logging.CRITICAL,
    Level.FATAL: logging.CRITICAL,
    Level.ERROR: logging.ERROR,
    Level.WARN: logging.WARNING,
    Level.INFO: logging.INFO,
    Level.DEBUG: logging.DEBUG,
    Level.TRACE: TRACE,
}


def parse_level(value: str) -> Level:
    """Case-insensitive lookup; raises InvalidLevelError on unknown names."""
    try:
        return _NAMES[str(value).lower()]
    except KeyError:
        raise InvalidLevelError(value) from None
