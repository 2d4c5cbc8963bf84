"""Logging configuration for the workflow engine."""

import logging
import sys
import json
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from pathlib import Path

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(funcName)s:%(lineno)d] - %(message)s"

# Third-party loggers that are too chatty at the service level
_LIBRARY_LEVELS = {
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "asyncio": logging.WARNING,
}

# Fields attached to every record logged from the current request or run.
# A context variable keeps concurrent requests from seeing each other's fields.
_log_context: ContextVar[Dict[str, Any]] = ContextVar("workflow_core_log_context", default={})


class StructuredFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        entry.update(getattr(record, "extra_fields", {}))

        return json.dumps(entry, default=str)


class LogContextFilter(logging.Filter):
    """Merge the current logging context into each record.

    Fields passed explicitly through :func:`log_with_context` take precedence
    over the ambient context.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        explicit = getattr(record, "extra_fields", {})
        record.extra_fields = {**_log_context.get(), **explicit}
        return True


_context_filter = LogContextFilter()


def _build_handlers(
    formatter: logging.Formatter,
    log_file: Optional[str],
    max_size: int,
    backup_count: int
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        from logging.handlers import RotatingFileHandler

        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(_context_filter)
    return handlers


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure the root logger for the service.

    Replaces any handlers already installed on the root logger, so calling it
    again (for example once per test app) does not duplicate output.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path of a rotating log file
        log_format: Format string for plain text output
        structured: Emit JSON lines instead of plain text
        max_size: Log file size in bytes before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Root logger instance
    """
    level_value = getattr(logging, level.upper())

    if structured:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(fmt=log_format or DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in _build_handlers(formatter, log_file, max_size, backup_count):
        root_logger.addHandler(handler)

    for name, library_level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)

    # Node-level tracing from the engine is only wanted when debugging
    logging.getLogger("workflow_core.core").setLevel(min(level_value, logging.INFO))

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


def set_logging_context(**kwargs):
    """Add fields to every subsequent record in the current context."""
    _log_context.set({**_log_context.get(), **kwargs})


def clear_logging_context():
    """Drop all context fields of the current context."""
    _log_context.set({})


@contextmanager
def logging_context(**kwargs):
    """Attach fields to records logged inside the ``with`` block only."""
    token = _log_context.set({**_log_context.get(), **kwargs})
    try:
        yield
    finally:
        _log_context.reset(token)


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with additional structured fields."""
    logger.log(level, message, extra={"extra_fields": context})
