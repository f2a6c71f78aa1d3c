"""Structured, context-carried logging built on the stdlib ``logging`` module.

A :class:`LogEntry` pairs a logger with an immutable set of fields. The
per-request :class:`ContextLogger` wrapper lives on the :class:`Context` and
may be updated in place, so fields added deep in the call stack show up on
later log lines for the same request.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import IO, Any

from rpcruntime.context import Context, ContextKey
from rpcruntime.errors import ConfigError

__all__ = [
    "LEVEL_KEY",
    "MESSAGE_KEY",
    "SERVICE_KEY",
    "TIMESTAMP_KEY",
    "ContextLogger",
    "JsonLogFormatter",
    "LogEntry",
    "TextLogFormatter",
    "create_logger",
    "logger_from_context",
    "parse_level",
    "set_logger",
]

SERVICE_KEY = "svc"
LEVEL_KEY = "lvl"
MESSAGE_KEY = "msg"
TIMESTAMP_KEY = "t"

_FIELDS_ATTR = "fields"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LogEntry:
    """A logger plus structured fields. ``with_*`` helpers return new entries."""

    __slots__ = ("logger", "fields")

    def __init__(self, logger: logging.Logger, fields: Mapping[str, Any] | None = None) -> None:
        self.logger = logger
        self.fields: dict[str, Any] = dict(fields or {})

    def with_field(self, key: str, value: Any) -> LogEntry:
        return LogEntry(self.logger, {**self.fields, key: value})

    def with_fields(self, fields: Mapping[str, Any] | None = None, **extra: Any) -> LogEntry:
        return LogEntry(self.logger, {**self.fields, **(fields or {}), **extra})

    def with_error(self, err: BaseException) -> LogEntry:
        return self.with_field("error", str(err) or type(err).__name__)

    def log(self, level: int, msg: str, *, exc_info: Any = None) -> None:
        self.logger.log(level, msg, exc_info=exc_info, extra={_FIELDS_ATTR: dict(self.fields)})

    def debug(self, msg: str) -> None:
        self.log(logging.DEBUG, msg)

    def info(self, msg: str) -> None:
        self.log(logging.INFO, msg)

    def warning(self, msg: str) -> None:
        self.log(logging.WARNING, msg)

    def error(self, msg: str, *, exc_info: Any = None) -> None:
        self.log(logging.ERROR, msg, exc_info=exc_info)

    def __repr__(self) -> str:
        return f"LogEntry({self.logger.name!r}, {self.fields!r})"


class ContextLogger:
    """Mutable holder for the current request's :class:`LogEntry`."""

    __slots__ = ("_entry", "_lock")

    def __init__(self, entry: LogEntry) -> None:
        self._entry = entry
        self._lock = threading.Lock()

    @property
    def entry(self) -> LogEntry:
        return self._entry

    def update(self, entry: LogEntry) -> None:
        with self._lock:
            self._entry = entry


LOGGER_KEY: ContextKey[ContextLogger] = ContextKey("ctxlogger")

_fallback_lock = threading.Lock()
_fallback_warned = False


def set_logger(ctx: Context, entry: LogEntry) -> Context:
    """Return a context carrying a fresh :class:`ContextLogger` for ``entry``."""

    return ctx.with_value(LOGGER_KEY, ContextLogger(entry))


def logger_from_context(ctx: Context) -> ContextLogger:
    """Return the request logger, or a tagged fallback when none is attached."""

    global _fallback_warned

    ctx_logger = ctx.value(LOGGER_KEY)
    if ctx_logger is not None:
        return ctx_logger

    fallback = logging.getLogger("rpcruntime")
    with _fallback_lock:
        if not _fallback_warned:
            _fallback_warned = True
            fallback.warning("context safe logger not set, using fallback logger")
    return ContextLogger(LogEntry(fallback, {"W A R N I N G": "context safe logger not set"}))


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = getattr(record, _FIELDS_ATTR, None)
    return dict(fields) if isinstance(fields, Mapping) else {}


class JsonLogFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = _record_fields(record)
        payload[TIMESTAMP_KEY] = ts.isoformat().replace("+00:00", "Z")
        payload[LEVEL_KEY] = record.levelname.lower()
        payload[MESSAGE_KEY] = record.getMessage()
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)


class TextLogFormatter(logging.Formatter):
    """Render records as ``level message key=value ...``."""

    def format(self, record: logging.LogRecord) -> str:
        fields = _record_fields(record)
        parts = [f"{record.levelname.lower():<7}", record.getMessage()]
        parts.extend(f"{key}={fields[key]!s}" for key in sorted(fields))
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def parse_level(level: str) -> int:
    try:
        return _LEVELS[level.strip().lower()]
    except KeyError:
        raise ConfigError(f"unknown log level {level!r}") from None


def create_logger(
    service_name: str,
    fmt: str = "json",
    level: str = "info",
    *,
    stream: IO[str] | None = None,
) -> LogEntry:
    """Configure the service logger and return an entry tagged with ``svc``."""

    if fmt not in {"json", "text"}:
        raise ConfigError(f"unknown log format {fmt!r}")
    logger = logging.getLogger(f"rpcruntime.{service_name}")
    if not logger.handlers:
        handler = logging.StreamHandler(stream)
        logger.addHandler(handler)
    for handler in logger.handlers:
        handler.setFormatter(JsonLogFormatter() if fmt == "json" else TextLogFormatter())
    logger.setLevel(parse_level(level))
    return LogEntry(logger, {SERVICE_KEY: service_name})
