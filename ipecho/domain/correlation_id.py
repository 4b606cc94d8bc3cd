"""Per-connection correlation ids carried through logging via contextvars."""

import contextvars
import logging
import uuid
from typing import Any, MutableMapping, Optional

LOGGER_ROOT = "ip_echo"

# Set by the worker thread that owns the connection; None outside one.
_CONNECTION_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "ip_echo_connection_id", default=None
)


def generate_correlation_id() -> str:
    """Return a fresh random id for a new connection."""
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    """Return the id of the connection being served, if any."""
    return _CONNECTION_ID.get()


def set_correlation_id(correlation_id: str) -> None:
    """Bind ``correlation_id`` to the current thread's context."""
    _CONNECTION_ID.set(correlation_id)


def clear_correlation_id() -> None:
    """Forget the connection id once the connection is closed."""
    _CONNECTION_ID.set(None)


def component_name(logger_name: str) -> str:
    """Return the logger name relative to the project root logger."""
    root, dot, rest = logger_name.partition(".")
    return rest if root == LOGGER_ROOT and dot else logger_name


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Tags every record with the current connection id and its component."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["correlation_id"] = get_correlation_id() or "-"
        extra["component"] = component_name(self.logger.name)
        kwargs["extra"] = extra
        return msg, kwargs
