"""Server lifecycle state management."""

import enum
import logging
import threading
from typing import Optional

from ipecho.domain.correlation_id import CorrelationLoggerAdapter

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("ip_echo.lifecycle"), {}
)


class LifecycleState(enum.Enum):
    """Process-level lifecycle states."""

    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ServerLifecycle:
    """Holds the ``Running -> ShuttingDown -> Stopped`` state machine.

    The shutdown request is level-triggered: once set it stays set, and
    only the first request performs the transition.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._state = LifecycleState.RUNNING
        self._reason: Optional[str] = None

    @property
    def state(self) -> LifecycleState:
        """Return the current lifecycle state."""
        with self._lock:
            return self._state

    @property
    def reason(self) -> Optional[str]:
        """Return what triggered the shutdown, if anything has."""
        with self._lock:
            return self._reason

    def should_stop(self) -> bool:
        """Check if shutdown has been requested."""
        return self._shutdown_event.is_set()

    def begin_shutdown(self, reason: str) -> bool:
        """Move from Running to ShuttingDown; return False if already past Running."""
        with self._lock:
            if self._state is not LifecycleState.RUNNING:
                return False
            self._state = LifecycleState.SHUTTING_DOWN
            self._reason = reason
        self._shutdown_event.set()
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown",
            extra={"event": "shutdown_started", "signal": reason},
        )
        return True

    def mark_stopped(self) -> None:
        """Record that every unit has confirmed termination."""
        with self._lock:
            self._state = LifecycleState.STOPPED
        self._shutdown_event.set()

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Block until shutdown is requested or ``timeout`` elapses."""
        return self._shutdown_event.wait(timeout)
