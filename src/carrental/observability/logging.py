"""Structured JSON logging with correlation ID support.

One JSON object per line on stdout. Structured fields go through
`extra={"extra_fields": safe_log_context(...)}`.

Config:
    LOG_LEVEL: default INFO
    SERVICE_NAME: value of the "service" field (default car-booking-service)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
SERVICE_NAME = os.environ.get("SERVICE_NAME", "car-booking-service")

# Third-party loggers routed through the JSON handler by configure_root_logging
_LIBRARY_LOGGERS = ("apscheduler", "uvicorn.error")


def _level() -> int:
    return getattr(logging, LOG_LEVEL, logging.INFO)


class JsonFormatter(logging.Formatter):
    """Formats a record as JSON with correlation ID and thread name."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_obj["correlationId"] = correlation_id

        # Feed workers and the scheduler log from named threads
        if record.threadName and record.threadName != "MainThread":
            log_obj["thread"] = record.threadName

        if record.exc_info:
            log_obj["exceptionType"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            log_obj["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_obj.update(record.extra_fields)

        return json.dumps(log_obj, default=str)


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    return handler


def get_logger(name: str) -> logging.Logger:
    """Get a logger configured for JSON output."""
    logger = logging.getLogger(name)

    # Only configure if no handlers (avoid duplicate handlers)
    if not logger.handlers:
        logger.addHandler(_json_handler())
        logger.setLevel(_level())
        logger.propagate = False

    return logger


def configure_root_logging() -> None:
    """Send library logs (APScheduler, uvicorn) through the JSON handler.

    Called by process entry points; our own loggers are configured by
    get_logger and do not propagate.
    """
    root = logging.getLogger()
    if not any(isinstance(h.formatter, JsonFormatter) for h in root.handlers):
        root.addHandler(_json_handler())
    root.setLevel(_level())
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(max(_level(), logging.INFO))
