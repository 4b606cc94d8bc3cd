"""Signal-driven, all-at-once shutdown of listeners and the telemetry loop."""

import logging
import signal
import time
from typing import Optional, Protocol, Sequence

from ipecho.bootstrap.config import POLL_INTERVAL_SECONDS
from ipecho.domain.correlation_id import CorrelationLoggerAdapter
from ipecho.lifecycle.state import ServerLifecycle

SHUTDOWN_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("ip_echo.lifecycle.shutdown"), {}
)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)

# Extra time past the drain grace period before a unit is reported as stuck.
JOIN_MARGIN_SECONDS = 5.0


class ServiceUnit(Protocol):
    """A concurrently running component the coordinator starts and stops."""

    name: str

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def is_alive(self) -> bool: ...

    def join(self, timeout: Optional[float] = None) -> bool: ...


class ShutdownCoordinator:
    """Runs every unit until a termination signal, then stops them together."""

    def __init__(
        self,
        lifecycle: ServerLifecycle,
        listeners: Sequence[ServiceUnit],
        telemetry: Optional[ServiceUnit],
        grace_seconds: float,
    ) -> None:
        self._lifecycle = lifecycle
        self._listeners = list(listeners)
        self._telemetry = telemetry
        self._grace_seconds = grace_seconds

    @property
    def units(self) -> list[ServiceUnit]:
        """Return every managed unit, listeners first."""
        units = list(self._listeners)
        if self._telemetry is not None:
            units.append(self._telemetry)
        return units

    def handle_signal(self, signum: int, _frame=None) -> None:
        """Start shutdown on the first termination signal; ignore the rest."""
        name = signal.Signals(signum).name
        if self._lifecycle.begin_shutdown(name):
            SHUTDOWN_LOGGER.info(
                f"Received {name}. Exiting...",
                extra={"event": "shutdown_signal", "signal": name},
            )
        else:
            SHUTDOWN_LOGGER.debug(
                "Shutdown already in progress",
                extra={"event": "shutdown_signal_ignored", "signal": name},
            )

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to :meth:`handle_signal`."""
        for signum in SHUTDOWN_SIGNALS:
            signal.signal(signum, self.handle_signal)

    def _listeners_exited(self) -> bool:
        return bool(self._listeners) and not any(
            listener.is_alive() for listener in self._listeners
        )

    def wait(self) -> bool:
        """Block until shutdown is requested or every listener has exited.

        Returns True when shutdown was requested.
        """
        while not self._lifecycle.wait_for_shutdown(POLL_INTERVAL_SECONDS):
            if self._listeners_exited():
                SHUTDOWN_LOGGER.error(
                    "All listeners exited unexpectedly",
                    extra={"event": "listeners_exited"},
                )
                return False
        return True

    def shutdown(self) -> list[str]:
        """Stop every unit, then wait for each; return names of units still running."""
        self._lifecycle.begin_shutdown("listeners_exited")
        units = self.units
        for unit in units:
            unit.stop()

        deadline = time.monotonic() + self._grace_seconds + JOIN_MARGIN_SECONDS
        stuck = []
        for unit in units:
            if not unit.join(max(0.0, deadline - time.monotonic())):
                stuck.append(unit.name)
        if stuck:
            SHUTDOWN_LOGGER.warning(
                "Units did not stop within the grace period",
                extra={"event": "shutdown_incomplete", "remaining_workers": stuck},
            )
        self._lifecycle.mark_stopped()
        SHUTDOWN_LOGGER.info(
            "Shutdown complete", extra={"event": "shutdown_complete"}
        )
        return stuck

    def run(self) -> int:
        """Start all units, block until shutdown, and return the exit code."""
        for unit in self.units:
            unit.start()
        SHUTDOWN_LOGGER.info(
            "Server started",
            extra={"event": "server_started", "listeners": len(self._listeners)},
        )
        requested = self.wait()
        self.shutdown()
        return 0 if requested else 1
