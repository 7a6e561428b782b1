"""Process-wide logging setup shared by the library and its CLIs.

Console output is human-readable with ``extra`` fields appended as
``key=value`` pairs; the rotating file under ``log/`` (or
``$THUMBFORGE_LOG_DIR``) holds one JSON object per record. Worker threads log
through the same handlers, so every record carries its thread name.
"""

from __future__ import annotations

import json
import logging
import os
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict

_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_LOG_FILENAME = "thumbforge.log"
_LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s %(message)s"
_RESERVED_KEYS = frozenset(logging.makeLogRecord({}).__dict__) | {"stack_info", "asctime", "message"}


def _log_root() -> Path:
    override = os.getenv("THUMBFORGE_LOG_DIR")
    if override:
        return Path(override).expanduser()
    return _PROJECT_ROOT / "log"


def _log_level() -> int:
    level = logging.getLevelName(os.getenv("THUMBFORGE_LOG_LEVEL", "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields attached to ``record`` through ``extra=``."""

    return {key: value for key, value in record.__dict__.items() if key not in _RESERVED_KEYS}


def _json_safe(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.name.lower()
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (str, int, float, bool, type(None))):
        return value
    return str(value)


class _JsonLinesFormatter(logging.Formatter):
    """One JSON object per record, extras flattened into the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        payload.update(_json_safe(_record_extras(record)))
        return json.dumps(payload, ensure_ascii=False, sort_keys=True)


class _KeyValueFormatter(logging.Formatter):
    """Console formatter that appends ``extra`` fields as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = _record_extras(record)
        if not extras:
            return base
        return base + " | " + " ".join(f"{key}={value!r}" for key, value in sorted(extras.items()))


def _configure_root_logger() -> None:
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(_log_level())

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(_KeyValueFormatter(_LOG_FORMAT))
    root.addHandler(console_handler)

    log_root = _log_root()
    try:
        log_root.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_root / _LOG_FILENAME,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        # Read-only installs still get console logging.
        root.warning("file_logging_unavailable", extra={"log_root": str(log_root), "error": str(exc)})
        return

    file_handler.setFormatter(_JsonLinesFormatter())
    root.addHandler(file_handler)


class _MergingAdapter(logging.LoggerAdapter):
    """Adapter whose base ``extra`` is combined with per-call ``extra`` fields."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str, extra: Dict[str, Any] | None = None) -> logging.LoggerAdapter:
    """Return a structured logger adapter for ``name``.

    The first call configures the root logger. ``extra`` is attached to every
    record emitted through the adapter; fields passed at the call site are
    added on top of it.
    """

    _configure_root_logger()
    return _MergingAdapter(logging.getLogger(name), extra or {})


__all__ = ["get_logger"]
