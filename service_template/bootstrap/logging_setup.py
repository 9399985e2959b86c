"""Logging configuration utilities for the service."""

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from service_template.domain.request_context import RequestContextLoggerAdapter
from service_template.errors import LoggingSetupError
from service_template.version import __version__

LOGGER_NAME = "service_template"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

LEVEL_ALIASES = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

EXTRA_KEYS = (
    "client",
    "method",
    "route",
    "path",
    "status_code",
    "duration_ms",
    "error",
    "error_type",
    "signal",
    "host",
    "port",
    "env",
    "log_level",
    "config",
    "state",
    "remaining_connections",
    "grace_seconds",
    "checks",
)

SENSITIVE_PATTERNS = [
    re.compile(r"(?i)(authorization|token|signature|password|secret|api[_-]?key)"),
    re.compile(r"\b[A-Fa-f0-9]{32,}\b"),
]


def redact_sensitive(value: str) -> str:
    """Redact secret-looking values before they reach the log stream."""
    if not value:
        return value

    for pattern in SENSITIVE_PATTERNS:
        if pattern.search(value):
            return "[REDACTED]"

    return value


class RequestIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Ensure request_id field exists in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = "-"
        return True


class JsonFormatter(logging.Formatter):
    """JSON formatter with stable key ordering for structured logging."""

    def __init__(self, datefmt: Optional[str] = None, version: str = __version__):
        super().__init__(datefmt=datefmt)
        self._version = version

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "request_id": getattr(record, "request_id", "-"),
            "component": getattr(record, "component", record.name),
            "message": record.getMessage(),
            "version": self._version,
        }

        if hasattr(record, "event"):
            log_data["event"] = record.event

        for key in EXTRA_KEYS:
            if hasattr(record, key):
                value = getattr(record, key)
                if isinstance(value, str) and key != "request_id":
                    value = redact_sensitive(value)
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, sort_keys=True, default=str)


def resolve_level(level_name: str) -> int:
    """Translate text level names into logging module numeric levels."""
    return LEVEL_ALIASES.get(level_name.strip().lower(), logging.INFO)


def _build_handler(
    destination: Optional[str], level: int, use_json: bool = True
) -> logging.Handler:
    """Create a stdout or rotating file handler for the configured logger."""
    if destination and destination.lower() != "stdout":
        target_path = Path(destination)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            target_path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if use_json:
        handler.setFormatter(JsonFormatter(DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))

    handler.addFilter(RequestIdFilter())
    return handler


def configure_logging(
    level: str = "info", destination: Optional[str] = None, use_json: bool = True
) -> RequestContextLoggerAdapter:
    """Configure the service logger and return an adapter for it.

    Calling it again replaces the previous handler, which is how the
    controller re-levels logging once settings have been loaded.

    Raises:
        LoggingSetupError: Raised when the destination cannot be opened;
            the previously installed handler is left in place.
    """
    logger = logging.getLogger(LOGGER_NAME)
    numeric_level = resolve_level(level)
    try:
        handler = _build_handler(destination, numeric_level, use_json)
    except OSError as error:
        raise LoggingSetupError(
            f"cannot open log destination {destination}: {error}"
        ) from error

    logger.setLevel(numeric_level)
    logger.propagate = False
    for previous in list(logger.handlers):
        previous.close()
    logger.handlers.clear()
    logger.addHandler(handler)
    return RequestContextLoggerAdapter(logger, {})
