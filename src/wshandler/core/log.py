from __future__ import annotations

import logging
import os
import sys
import json
import threading
from typing import Any, Optional

from wshandler.core.contracts import LogEntry
from wshandler.core.level import Level, parse_level

_configured = False


def _maybe_load_dotenv() -> None:
    try:
        # Optional: load .env if python-dotenv is installed
        from dotenv import load_dotenv  # type: ignore
    except ImportError:
        return
    load_dotenv()


class JsonHandler(logging.StreamHandler):
    """Lightweight JSON logger for stdout."""
    def __init__(self):
        super().__init__(stream=sys.stdout)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            obj = {
                "ts": record.created,
                "lvl": record.levelname,
                "name": record.name,
                "msg": record.getMessage(),
            }
            for k in ("filename", "lineno", "funcName"):
                obj[k] = getattr(record, k, None)
            # structured entries from LeveledLogger
            for k in ("log_id", "log_module"):
                if hasattr(record, k):
                    obj[k] = getattr(record, k)
            if hasattr(record, "body"):
                obj["body"] = [repr(b) for b in record.body]
            self.stream.write(json.dumps(obj, ensure_ascii=False) + "\n")
            self.flush()
        except Exception:  # pragma: no cover
            self.handleError(record)


def setup(level: Optional[str] = None, json_mode: Optional[bool] = None, *, force: bool = False) -> None:
    """Configure root logger.
    - Reads LOG_LEVEL, LOG_JSON from env if args are None
    - If already configured, do nothing unless force=True
    """
    global _configured
    if _configured and not force:
        return

    _maybe_load_dotenv()

    lvl = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    py_level = logging.getLevelName(lvl)
    if not isinstance(py_level, int):
        py_level = logging.INFO

    json_flag = json_mode if json_mode is not None else (os.getenv("LOG_JSON", "0") == "1")

    root = logging.getLogger()
    # Reset handlers to avoid duplicate logs (pytest re-runs etc.)
    root.handlers.clear()
    root.setLevel(py_level)

    if json_flag:
        root.addHandler(JsonHandler())
    else:
        fmt = "[%(asctime)s] %(levelname)s %(name)s | %(message)s"
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=fmt))
        root.addHandler(handler)

    _configured = True


def get(name: str) -> logging.Logger:
    """Helper to get a namespaced logger."""
    return logging.getLogger(name)


def set_level(level: str) -> None:
    """Dynamically adjust root log level (e.g., during tests)."""
    py_level = logging.getLevelName(level.upper())
    logging.getLogger().setLevel(py_level if isinstance(py_level, int) else logging.INFO)


class LeveledLogger:
    """Severity gate in front of a logging.Logger.

    Builds a LogEntry per call and prints it only when its level is at or
    above the configured severity (numerically <= threshold).
    """

    def __init__(self, logger: Optional[logging.Logger] = None, level: Level = Level.INFO,
                 module: str = "wshandler"):
        self.logger = logger or get(module)
        self.module = module
        self._level = level
        self._lock = threading.Lock()

    @property
    def level(self) -> Level:
        return self._level

    def set_level(self, level: Level | str) -> None:
        if not isinstance(level, Level):
            level = parse_level(level)
        with self._lock:
            self._level = level

    def enabled(self, level: Level) -> bool:
        return level <= self._level

    def log(self, level: Level, event: Any, *body: Any, exc_info: Any = None) -> Optional[LogEntry]:
        if not self.enabled(level):
            return None
        entry = LogEntry(event=event, level=level, module=self.module, body=body)
        self.print(entry, exc_info=exc_info)
        return entry

    def print(self, entry: LogEntry, exc_info: Any = None) -> None:
        msg = "%s [%s] %s"
        args = [entry.module, entry.id, entry.event]
        if entry.body:
            msg += " | %s"
            args.append(", ".join(repr(b) for b in entry.body))
        self.logger.log(
            Level(entry.level).to_logging(), msg, *args,
            exc_info=exc_info,
            extra={"log_id": entry.id, "log_module": entry.module, "body": entry.body},
        )
