"""Logging configuration utilities for the IP echo server."""

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from ipecho.domain.correlation_id import LOGGER_ROOT, CorrelationLoggerAdapter

LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

SENSITIVE_PATTERNS = [
    re.compile(r"(?i)(authorization|token|password|secret|api[_-]?key)"),
    re.compile(r"\b[A-Fa-f0-9]{32,}\b"),
    re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----"),
]

EXTRA_KEYS = [
    "bind",
    "family",
    "url",
    "client",
    "connection_id",
    "protocol",
    "alpn",
    "status_code",
    "error_type",
    "error",
    "errno",
    "signal",
    "interval_rps",
    "total_rps",
    "total_requests",
    "interval_requests",
    "interval_seconds",
    "elapsed_seconds",
    "log_interval",
    "listeners",
    "remaining_workers",
    "grace_seconds",
    "http2_only",
    "log_level",
    "log_destination",
    "use_json",
    "destination",
    "certificates",
    "key_encoding",
    "socket_timeout",
    "shutdown_grace_seconds",
    "exit_code",
]


def redact_sensitive(value: str) -> str:
    """Return ``[REDACTED]`` for values that look like credentials or key material."""
    if value and any(pattern.search(value) for pattern in SENSITIVE_PATTERNS):
        return "[REDACTED]"
    return value


class CorrelationIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Give records logged outside a connection a ``-`` correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = getattr(record, "correlation_id", "-")
        return True


def _event_fields(record: logging.LogRecord) -> dict:
    fields = {}
    for key in ("event", *EXTRA_KEYS):
        if not hasattr(record, key):
            continue
        value = getattr(record, key)
        fields[key] = redact_sensitive(value) if isinstance(value, str) else value
    return fields


class JsonFormatter(logging.Formatter):
    """One JSON object per record, keys sorted so lines diff cleanly."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
            **_event_fields(record),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, default=str)


def _resolve_level(level_name: str) -> int:
    """Map a level name to its numeric value, falling back to INFO."""
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def _open_destination(destination: Optional[str]) -> logging.Handler:
    if not destination or destination.lower() == "stdout":
        return logging.StreamHandler(sys.stdout)
    path = Path(destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT)


def _build_handler(
    destination: Optional[str], level: int, use_json: bool = True
) -> logging.Handler:
    """Create the stdout or rotating file handler with the chosen format."""
    handler = _open_destination(destination)
    handler.setLevel(level)
    handler.setFormatter(
        JsonFormatter(datefmt=DATE_FORMAT)
        if use_json
        else logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    )
    handler.addFilter(CorrelationIdFilter())
    return handler


def configure_logging(
    level: str = "INFO", destination: Optional[str] = None, use_json: bool = True
) -> CorrelationLoggerAdapter:
    """Route the ``ip_echo`` logger tree to a single handler and return its adapter.

    Calling it again replaces the previous handler rather than adding one.
    """
    numeric_level = _resolve_level(level)
    logger = logging.getLogger(LOGGER_ROOT)
    logger.setLevel(numeric_level)
    logger.propagate = False
    while logger.handlers:
        stale = logger.handlers[0]
        logger.removeHandler(stale)
        stale.close()
    logger.addHandler(_build_handler(destination, numeric_level, use_json))

    adapter = CorrelationLoggerAdapter(logger, {})
    adapter.info(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "destination": destination or "stdout",
            "use_json": use_json,
        },
    )
    return adapter
