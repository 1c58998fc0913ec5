"""
Logging module for kql-console.

Provides structured logging with support for:
- Workspace and template context on every record
- Query execution tracking
- JSON and human-readable output formats
- Console and file handlers
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, TextIO


# Context variables for structured logging
_workspace_context: ContextVar[str | None] = ContextVar("workspace", default=None)
_template_context: ContextVar[str | None] = ContextVar("template", default=None)
_backend_context: ContextVar[str | None] = ContextVar("backend", default=None)


class LogFormat(Enum):
    """Log output format options."""

    TEXT = "text"
    JSON = "json"


class LogLevel(Enum):
    """Log level options with numeric values."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


@dataclass
class LogConfig:
    """Configuration for the logging system.

    Attributes:
        level: Minimum log level to output.
        format: Output format (text or JSON).
        log_file: Optional file path for log output (always JSON).
        include_timestamp: Whether to include timestamps.
        include_context: Whether to include workspace/template context.
        colorize: Whether to colorize console output (text format only).
        stream: Console stream; stderr keeps log lines apart from tables.
    """

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.TEXT
    log_file: Path | None = None
    include_timestamp: bool = True
    include_context: bool = True
    colorize: bool = True
    stream: TextIO | None = None


class LoggingError(Exception):
    """Raised when logging configuration or operations fail."""
    pass


class _Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"
    BOLD = "\033[1m"


_LEVEL_COLORS = {
    logging.DEBUG: _Colors.GRAY,
    logging.INFO: _Colors.GREEN,
    logging.WARNING: _Colors.YELLOW,
    logging.ERROR: _Colors.RED,
    logging.CRITICAL: f"{_Colors.BOLD}{_Colors.RED}",
}


def _context_fields() -> dict[str, str]:
    fields = {}
    workspace = _workspace_context.get()
    if workspace:
        fields["workspace"] = workspace
    backend = _backend_context.get()
    if backend:
        fields["backend"] = backend
    template = _template_context.get()
    if template:
        fields["template"] = template
    return fields


class ContextFormatter(logging.Formatter):
    """Human-readable formatter that includes context variables."""

    _SHORT_KEYS = {"workspace": "ws", "backend": "be", "template": "tpl"}

    def __init__(
        self,
        include_timestamp: bool = True,
        include_context: bool = True,
        colorize: bool = False,
    ):
        self.include_timestamp = include_timestamp
        self.include_context = include_context
        self.colorize = colorize
        super().__init__()

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{_Colors.RESET}" if self.colorize else text

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with context information."""
        parts = []

        if self.include_timestamp:
            timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
            parts.append(self._paint(timestamp, _Colors.GRAY))

        parts.append(self._paint(record.levelname.ljust(8), _LEVEL_COLORS.get(record.levelno, "")))

        if self.include_context:
            fields = _context_fields()
            if fields:
                context_str = " ".join(
                    f"{self._SHORT_KEYS[key]}={value}" for key, value in fields.items()
                )
                parts.append(self._paint(f"[{context_str}]", _Colors.CYAN))

        parts.append(self._paint(record.name, _Colors.MAGENTA))
        parts.append(record.getMessage())

        if record.exc_info:
            parts.append(self.formatException(record.exc_info))

        return " ".join(parts)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured log output."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(_context_fields())

        extra_data = getattr(record, "extra_data", None)
        if extra_data is not None:
            log_data["data"] = extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if record.levelno == logging.DEBUG:
            log_data["location"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class LogContext:
    """Context manager for adding logging context.

    Usage:
        with LogContext(workspace="law-prod", template="SigninFailures"):
            logger.info("Running query")  # Includes workspace/template context
    """

    def __init__(
        self,
        workspace: str | None = None,
        template: str | None = None,
        backend: str | None = None,
    ):
        self._values = (
            (_workspace_context, workspace),
            (_template_context, template),
            (_backend_context, backend),
        )
        self._tokens: list = []

    def __enter__(self) -> LogContext:
        for var, value in self._values:
            if value is not None:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, *args) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


class QueryLogger:
    """Specialized logger for query operations.

    Provides convenience methods for common query logging patterns.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def query_started(self, template_name: str, time_range: str | None = None) -> None:
        """Log query execution start."""
        msg = f"Running query: {template_name}"
        if time_range:
            msg += f" (range: {time_range})"
        self._logger.info(msg)

    def query_completed(
        self,
        template_name: str,
        row_count: int = 0,
        duration_seconds: float = 0,
    ) -> None:
        """Log successful query completion."""
        self._logger.info(
            f"Query completed: {template_name} ({row_count} rows in {duration_seconds:.2f}s)"
        )

    def query_empty(self, template_name: str) -> None:
        """Log a query that returned nothing to export."""
        self._logger.info(f"Query returned no rows: {template_name}")

    def query_failed(self, template_name: str, error: str | Exception) -> None:
        """Log query failure."""
        self._logger.error(f"Query failed: {template_name} - {error}")


_root_logger: logging.Logger | None = None
_query_logger: QueryLogger | None = None


def setup_logging(config: LogConfig | None = None) -> logging.Logger:
    """Initialize the logging system.

    Args:
        config: Logging configuration. Uses defaults if not provided.

    Returns:
        Configured root logger for kql-console.

    Raises:
        LoggingError: If logging setup fails.
    """
    global _root_logger, _query_logger

    if config is None:
        config = LogConfig()

    logger = logging.getLogger("kql_console")
    logger.setLevel(config.level.value)
    logger.handlers.clear()
    logger.propagate = False

    stream = config.stream if config.stream is not None else sys.stderr

    formatter: logging.Formatter
    if config.format == LogFormat.JSON:
        formatter = JSONFormatter()
    else:
        supports_color = (
            config.colorize
            and hasattr(stream, "isatty")
            and stream.isatty()
        )
        formatter = ContextFormatter(
            include_timestamp=config.include_timestamp,
            include_context=config.include_context,
            colorize=supports_color,
        )

    console_handler = logging.StreamHandler(stream)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if config.log_file:
        try:
            config.log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
            file_handler.setFormatter(JSONFormatter())
            logger.addHandler(file_handler)
        except OSError as e:
            raise LoggingError(f"Failed to create log file: {e}") from e

    _root_logger = logger
    _query_logger = QueryLogger(logger)

    logger.debug(f"Logging initialized (level={config.level.name}, format={config.format.value})")

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name. If None, returns the root kql-console logger.
              If provided, returns a child logger (e.g., "kql_console.client").
    """
    if _root_logger is None:
        setup_logging()

    assert _root_logger is not None

    if name is None:
        return _root_logger

    return logging.getLogger(f"kql_console.{name}")


def get_query_logger() -> QueryLogger:
    """Get the specialized query logger."""
    if _query_logger is None:
        setup_logging()

    assert _query_logger is not None

    return _query_logger


def log_with_data(
    level: int,
    message: str,
    data: dict[str, Any] | None = None,
    logger: logging.Logger | None = None,
) -> None:
    """Log a message with additional structured data.

    The data lands under "data" in JSON output and is ignored by the
    text formatter.
    """
    if logger is None:
        logger = get_logger()
    if not logger.isEnabledFor(level):
        return

    record = logger.makeRecord(
        logger.name,
        level,
        "(unknown file)",
        0,
        message,
        (),
        None,
    )

    if data:
        record.extra_data = data

    logger.handle(record)


__all__ = [
    "LogConfig",
    "LogFormat",
    "LogLevel",
    "LoggingError",
    "LogContext",
    "QueryLogger",
    "ContextFormatter",
    "JSONFormatter",
    "setup_logging",
    "get_logger",
    "get_query_logger",
    "log_with_data",
]
