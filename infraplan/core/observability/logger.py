# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""
Structured logging with automatic context injection.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel
from infraplan.core.observability.context import ObservabilityContextManager
from infraplan.core.observability.events import LogLevel

_LEVEL_MAP: dict[str, int] = {
    LogLevel.DEBUG.value: logging.DEBUG,
    LogLevel.INFO.value: logging.INFO,
    LogLevel.WARN.value: logging.WARNING,
    LogLevel.ERROR.value: logging.ERROR,
}

_ROOT_LOGGER_NAME = "infraplan"


class LogFormatter(logging.Formatter):
    """
    Base formatter that merges observability context into the record.
    """

    @staticmethod
    def _context(record: logging.LogRecord) -> dict[str, Any]:
        """Collect context and event fields attached to a record.

        :param record: Log record
        :type record: logging.LogRecord
        :returns: Context fields merged with event payload
        :rtype: dict[str, Any]
        """
        fields: dict[str, Any] = dict(getattr(record, "context", None) or {})
        event_data = getattr(record, "event_data", None)
        if event_data:
            fields.update(event_data)
        return fields


class JSONFormatter(LogFormatter):
    """Formats records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a record as JSON.

        :param record: Log record
        :type record: logging.LogRecord
        :returns: JSON string
        :rtype: str
        """
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(self._context(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ConsoleFormatter(LogFormatter):
    """Human-readable formatter for local development."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a record as a console line.

        :param record: Log record
        :type record: logging.LogRecord
        :returns: Formatted line
        :rtype: str
        """
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
            "%Y-%m-%d %H:%M:%S"
        )
        line = f"{timestamp} {record.levelname:<7} [{record.name}] {record.getMessage()}"
        fields = {
            k: v
            for k, v in self._context(record).items()
            if k not in ("timestamp", "stream", "level", "event")
        }
        if fields:
            line += " | " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger:
    """
    Logger wrapper that injects observability context into every record
    and accepts typed events.
    """

    def __init__(self, logger: logging.Logger) -> None:
        """Wrap a stdlib logger.

        :param logger: Underlying logger
        :type logger: logging.Logger
        """
        self._logger = logger

    @property
    def name(self) -> str:
        """Name of the underlying logger."""
        return self._logger.name

    def _log(self, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
        extra = kwargs.pop("extra", None) or {}
        extra.setdefault("context", ObservabilityContextManager.instance().get_all())
        self._logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log at DEBUG level."""
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log at INFO level."""
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log at WARNING level."""
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log at ERROR level."""
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log at ERROR level with exception info."""
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, *args, **kwargs)

    def event(self, event: BaseModel) -> None:
        """Log a typed event.

        The event's ``level`` selects the log level and its ``event`` field
        becomes the message; all non-empty fields are attached to the record.

        :param event: ServiceEvent or ExecutionEvent
        :type event: BaseModel
        """
        data = event.model_dump(mode="json", exclude_none=True)
        level = _LEVEL_MAP.get(str(data.get("level", LogLevel.INFO.value)), logging.INFO)
        self._log(level, str(data.get("event", "event")), extra={"event_data": data})


class LoggerFactory:
    """
    Factory that configures the package root logger once and hands out
    StructuredLogger instances.
    """

    _initialized: bool = False
    _loggers: dict[str, StructuredLogger] = {}

    @classmethod
    def initialize(
        cls,
        level: Union[int, str] = logging.INFO,
        log_format: str = "console",
        stream: Optional[Any] = None,
    ) -> None:
        """Configure handlers and formatter for the package root logger.

        :param level: Log level
        :param log_format: "json" or "console"
        :param stream: Output stream (defaults to stdout)
        """
        root = logging.getLogger(_ROOT_LOGGER_NAME)
        for handler in list(root.handlers):
            root.removeHandler(handler)

        handler = logging.StreamHandler(stream or sys.stdout)
        formatter: logging.Formatter = (
            JSONFormatter() if log_format.lower() == "json" else ConsoleFormatter()
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)
        root.setLevel(level)
        root.propagate = False
        cls._initialized = True

    @classmethod
    def get_logger(cls, name: str) -> StructuredLogger:
        """Get (or create) a structured logger.

        :param name: Logger name, usually ``__name__``
        :type name: str
        :returns: StructuredLogger instance
        :rtype: StructuredLogger
        """
        if name not in cls._loggers:
            cls._loggers[name] = StructuredLogger(logging.getLogger(name))
        return cls._loggers[name]

    @classmethod
    def reset(cls) -> None:
        """Reset factory state (for testing only)."""
        cls._initialized = False
        cls._loggers = {}


def initialize_logging(
    level: Union[int, str] = logging.INFO,
    log_format: str = "console",
) -> None:
    """Initialize logging for the service.

    :param level: Log level
    :param log_format: "json" or "console"
    """
    LoggerFactory.initialize(level=level, log_format=log_format)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module."""
    return LoggerFactory.get_logger(name)

