# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""
Structured logger with context injection.

Wraps the standard library logger so every record carries the active
observability context, and typed events can be logged with ``logger.event``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional, TextIO, Union

from pydantic import BaseModel
from src.core.observability.context import ObservabilityContextManager
from src.core.observability.events import LogLevel

_EVENT_ATTR = "event_data"
_CONTEXT_ATTR = "context"

_LEVEL_MAP = {
    LogLevel.DEBUG.value: logging.DEBUG,
    LogLevel.INFO.value: logging.INFO,
    LogLevel.WARN.value: logging.WARNING,
    LogLevel.ERROR.value: logging.ERROR,
}


class ContextFilter(logging.Filter):
    """Attach the current observability context to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, _CONTEXT_ATTR):
            setattr(record, _CONTEXT_ATTR, ObservabilityContextManager.instance().get_all())
        return True


class LogFormatter(logging.Formatter):
    """Base formatter exposing the context and event payload of a record."""

    @staticmethod
    def context_of(record: logging.LogRecord) -> dict[str, Any]:
        return dict(getattr(record, _CONTEXT_ATTR, None) or {})

    @staticmethod
    def event_of(record: logging.LogRecord) -> dict[str, Any]:
        return dict(getattr(record, _EVENT_ATTR, None) or {})


class JSONFormatter(LogFormatter):
    """One JSON object per line, suitable for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(self.context_of(record))
        event = self.event_of(record)
        if event:
            event.pop("timestamp", None)
            event.pop("level", None)
            entry.update(event)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(LogFormatter):
    """Human-readable single-line output for local runs."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = self.context_of(record)
        event = self.event_of(record)
        for key in ("timestamp", "level", "stream", "event", "correlation_id"):
            event.pop(key, None)
        extras.update(event)
        if extras:
            rendered = " ".join(f"{k}={v}" for k, v in extras.items())
            line = f"{line} [{rendered}]"
        return line


class StructuredLogger:
    """Logger facade that understands typed events."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def stdlib_logger(self) -> logging.Logger:
        return self._logger

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.exception(msg, *args, **kwargs)

    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.critical(msg, *args, **kwargs)

    def event(self, event: BaseModel) -> None:
        """Log a typed event at the level it declares.

        :param event: SchedulerEvent or ExecutionEvent instance
        :type event: BaseModel
        """
        data = event.model_dump(mode="json", exclude_none=True)
        level = _LEVEL_MAP.get(str(data.get("level", LogLevel.INFO.value)), logging.INFO)
        self._logger.log(level, data.get("event", "event"), extra={_EVENT_ATTR: data})


class LoggerFactory:
    """Configures the root handler once and hands out StructuredLoggers."""

    _handler: Optional[logging.Handler] = None
    _loggers: dict[str, StructuredLogger] = {}

    @classmethod
    def initialize(
        cls,
        level: Union[int, str] = logging.INFO,
        log_format: str = "console",
        stream: Optional[TextIO] = None,
    ) -> logging.Handler:
        """Install (or replace) the scheduler's root log handler.

        :param level: Root log level
        :param log_format: ``json`` or ``console``
        :param stream: Output stream, defaults to stderr
        :returns: The installed handler
        """
        root = logging.getLogger()
        if cls._handler is not None:
            root.removeHandler(cls._handler)

        handler = logging.StreamHandler(stream or sys.stderr)
        handler.addFilter(ContextFilter())
        if log_format.lower() == "json":
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(ConsoleFormatter())

        root.addHandler(handler)
        root.setLevel(level.upper() if isinstance(level, str) else level)
        cls._handler = handler
        return handler

    @classmethod
    def get_logger(cls, name: str) -> StructuredLogger:
        if name not in cls._loggers:
            cls._loggers[name] = StructuredLogger(logging.getLogger(name))
        return cls._loggers[name]

    @classmethod
    def reset(cls) -> None:
        """Remove the installed handler (for testing only)."""
        if cls._handler is not None:
            logging.getLogger().removeHandler(cls._handler)
        cls._handler = None


def initialize_logging(
    level: Union[int, str] = logging.INFO,
    log_format: str = "console",
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """Configure logging for the process."""
    return LoggerFactory.initialize(level=level, log_format=log_format, stream=stream)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger by name."""
    return LoggerFactory.get_logger(name)

