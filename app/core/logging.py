"""
app/core/logging.py

Purpose: Logging configuration

- JSON lines in production, colored lines in development
- Per-request context (telegram_id, start_param) kept in a ContextVar,
  so concurrent relays never see each other's fields
- attempt / state / strategy come from `extra=` at the call site
"""

import logging
import sys
import json
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple
from app.core.config import settings


CONTEXT_FIELDS = ("telegram_id", "start_param", "attempt", "state", "strategy")

_log_context: ContextVar[Dict[str, Any]] = ContextVar("tgbridge_log_context", default={})


def current_context() -> Dict[str, Any]:
    """Fields bound by the innermost active LogContext of this task."""
    return dict(_log_context.get())


def _context_items(record: logging.LogRecord) -> List[Tuple[str, Any]]:
    return [
        (field, getattr(record, field))
        for field in CONTEXT_FIELDS
        if hasattr(record, field)
    ]


class ContextFilter(logging.Filter):
    """
    Stamps the bound context onto records passing through a handler.

    Fields already set on the record via `extra=` win.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class StructuredFormatter(logging.Formatter):
    """JSON line per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        log_data.update(_context_items(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """
    Human-readable formatter for development environment.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        line = f"{color}[{timestamp}] {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        context = _context_items(record)
        if context:
            line += " [" + ", ".join(f"{k}={v}" for k, v in context) + "]"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


def setup_logging():
    """
    Installs a single stdout handler on the root logger.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if settings.is_production else DevelopmentFormatter())
    handler.addFilter(ContextFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Request lines are logged by our own middleware
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger("tgbridge")
    logger.info(f"Logging configured (environment={settings.ENVIRONMENT}, level={settings.LOG_LEVEL})")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the `tgbridge` namespace."""
    return logging.getLogger(f"tgbridge.{name}")


class LogContext:
    """
    Binds context fields for the current task until the block exits.

    Usage:
        with LogContext(telegram_id="123", start_param="camp1"):
            logger.info("Relaying attribution")

    Nested contexts merge with the outer one. Each asyncio task works on
    its own copy, so overlapping requests keep their own fields.
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self._token = None

    def __enter__(self):
        self._token = _log_context.set({**_log_context.get(), **self.context})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _log_context.reset(self._token)
        self._token = None
