"""Centralized logging configuration for render contexts."""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Iterator, Optional

LOGGER_NAME = "render_context"
DEFAULT_LOG_LEVEL = logging.INFO

_logger: Optional[logging.Logger] = None
_log_context: contextvars.ContextVar[Dict[str, object]] = contextvars.ContextVar(
    "render_context_log_context", default={}
)


class JSONLogFormatter(logging.Formatter):
    """Render log records as structured JSON strings."""

    DEFAULT_FIELDS: tuple[str, ...] = (
        "render_id",
        "fragment_id",
        "event",
        "outcome",
        "duration_ms",
        "pending",
    )

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for attr in self.DEFAULT_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                payload[attr] = value

        extra_attributes = _extract_extra_attributes(record)
        if extra_attributes:
            payload["extra"] = extra_attributes

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


_RESERVED_ATTRIBUTES: frozenset[str] = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
        "console_suppress",
    }
)


def _extract_extra_attributes(record: logging.LogRecord) -> Dict[str, object]:
    extra: Dict[str, object] = {}
    for key, value in record.__dict__.items():
        if key in _RESERVED_ATTRIBUTES or key in JSONLogFormatter.DEFAULT_FIELDS:
            continue
        extra[key] = value
    return extra


class LogContextFilter(logging.Filter):
    """Inject values from context variables into log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class ConsoleSuppressFilter(logging.Filter):
    """Drop records flagged with ``console_suppress`` from console output."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        return not bool(getattr(record, "console_suppress", False))


def _parse_level(raw: object) -> int:
    if isinstance(raw, int):
        return raw
    normalized = str(raw or "").strip().upper()
    level = logging.getLevelName(normalized)
    return level if isinstance(level, int) else DEFAULT_LOG_LEVEL


def _configure_handlers(logger: logging.Logger) -> None:
    formatter = JSONLogFormatter()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(ConsoleSuppressFilter())
    logger.addHandler(stream_handler)

    log_file = os.environ.get("RENDER_CONTEXT_LOG_FILE")
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def setup_logging(log_level: Optional[int | str] = None) -> logging.Logger:
    """Configure package-wide logging; repeated calls only adjust the level."""
    global _logger

    if log_level is None:
        log_level = os.environ.get("RENDER_CONTEXT_LOG_LEVEL", DEFAULT_LOG_LEVEL)

    if _logger is not None:
        configure_logging_level(log_level=_parse_level(log_level))
        return _logger

    logger = logging.getLogger(LOGGER_NAME)
    logger.propagate = False
    logger.addFilter(LogContextFilter())
    _configure_handlers(logger)

    _logger = logger
    configure_logging_level(log_level=_parse_level(log_level))
    return logger


def get_logger() -> logging.Logger:
    """Return the configured logger instance, initializing if necessary."""
    global _logger
    if _logger is None:
        _logger = setup_logging()
    return _logger


def configure_logging_level(log_level: int) -> int:
    """Set the package logger and its handlers to ``log_level``."""
    logger = get_logger()
    logger.setLevel(log_level)
    for handler in logger.handlers:
        handler.setLevel(log_level)
    return log_level


def get_log_context() -> Dict[str, object]:
    """Return the active structured logging context."""

    return dict(_log_context.get())


def push_log_context(**values: object) -> contextvars.Token[Dict[str, object]]:
    """Merge ``values`` into the structured logging context and return a token."""

    current = dict(_log_context.get())
    current.update({key: value for key, value in values.items() if value is not None})
    return _log_context.set(current)


def pop_log_context(token: contextvars.Token[Dict[str, object]]) -> None:
    """Restore the logging context from ``token``."""

    _log_context.reset(token)


@contextlib.contextmanager
def log_context(**values: object) -> Iterator[None]:
    """Context manager that temporarily enriches log context with ``values``."""

    token = push_log_context(**values)
    try:
        yield
    finally:
        pop_log_context(token)


__all__ = [
    "JSONLogFormatter",
    "configure_logging_level",
    "get_log_context",
    "get_logger",
    "log_context",
    "pop_log_context",
    "push_log_context",
    "setup_logging",
]
