"""Application-level structured logging configuration utilities."""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone, tzinfo
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_ctx_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)

_LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
_LOG_FILE_BACKUPS = 5

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


def _resolve_zone(name: str | None) -> tzinfo:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


class _JsonLogFormatter(logging.Formatter):
    """Serialize log records into single-line JSON objects."""

    def __init__(self, zone: tzinfo, service: str, env: str) -> None:
        super().__init__()
        self._zone = zone
        self._service = service
        self._env = env

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, self._zone).isoformat(
            timespec="milliseconds"
        )

        message: str
        try:
            message = record.getMessage()
        except Exception:  # pragma: no cover - malformed format args
            message = str(record.msg)

        payload: dict[str, Any] = {
            "ts": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
            "message": message,
            "service": self._service,
            "env": self._env,
            "request_id": get_log_context().get("request_id"),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in payload:
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


_configured = False
_formatter: _JsonLogFormatter | None = None
_file_handlers: list[RotatingFileHandler] = []
_active_log_dir: str | None = None


def _set_file_sinks(log_dir: str | None, level: int) -> None:
    """Replace the rotating file sinks so they write under ``log_dir``."""

    global _active_log_dir
    root_logger = logging.getLogger()
    for file_handler in _file_handlers:
        root_logger.removeHandler(file_handler)
        file_handler.close()
    _file_handlers.clear()
    _active_log_dir = log_dir

    if not log_dir:
        return

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    for filename, file_level in (("combined.log", level), ("error.log", logging.ERROR)):
        file_handler = RotatingFileHandler(
            directory / filename,
            maxBytes=_LOG_FILE_MAX_BYTES,
            backupCount=_LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(_formatter)
        root_logger.addHandler(file_handler)
        _file_handlers.append(file_handler)


def configure_logging(
    level: int | str = logging.INFO,
    *,
    tz: str | None = None,
    env: str = "development",
    log_dir: str | None = None,
    service: str = "restored-relay",
) -> None:
    """Configure the root logger to emit JSON logs with shared context.

    When ``log_dir`` is given, rotating ``combined.log`` and ``error.log``
    sinks are added next to the stdout handler. Calling this again adjusts
    the level and moves the file sinks to the new ``log_dir`` (``None``
    removes them); the stdout handler and its formatter are kept.
    """

    global _configured, _formatter
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    if _configured:
        logging.getLogger().setLevel(level)
        if log_dir != _active_log_dir:
            _set_file_sinks(log_dir, level)
        return

    _formatter = _JsonLogFormatter(_resolve_zone(tz), service, env)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_formatter)
    root_logger.addHandler(handler)

    _set_file_sinks(log_dir, level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.setLevel(level)
        uvicorn_logger.propagate = True

    _configured = True


def set_request_id(value: str | None) -> None:
    """Set the current request identifier in the logging context."""

    _ctx_request_id.set(value)


def get_log_context() -> dict[str, Any]:
    """Return a shallow copy of the current logging context values."""

    return {"request_id": _ctx_request_id.get()}
