"""Periodic throughput reporting from the shared request counter."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ipecho.domain.correlation_id import CorrelationLoggerAdapter
from ipecho.domain.counter import RequestCounter
from ipecho.domain.errors import TelemetryArithmeticError

TELEMETRY_LOGGER = CorrelationLoggerAdapter(logging.getLogger("ip_echo.telemetry"), {})


def per_second(count: int, seconds: float) -> float:
    """Return ``count / seconds``; a non-positive duration has no rate."""
    if seconds <= 0:
        raise TelemetryArithmeticError(f"cannot compute a rate over {seconds}s")
    return count / seconds


def _rate_or_zero(count: int, seconds: float) -> float:
    try:
        return per_second(count, seconds)
    except TelemetryArithmeticError:
        TELEMETRY_LOGGER.debug(
            "Zero-length telemetry interval",
            extra={"event": "telemetry_degenerate", "interval_seconds": seconds},
        )
        return 0.0


@dataclass(frozen=True)
class TelemetrySample:
    """Throughput derived from one counter snapshot."""

    interval_count: int
    interval_seconds: float
    total_count: int
    elapsed_seconds: float

    @property
    def interval_rate(self) -> float:
        """Requests per second since the previous sample."""
        return _rate_or_zero(self.interval_count, self.interval_seconds)

    @property
    def total_rate(self) -> float:
        """Requests per second since the loop started."""
        return _rate_or_zero(self.total_count, self.elapsed_seconds)


class TelemetryLoop:
    """Samples the request counter every ``interval`` seconds and logs rates.

    The baseline taken at launch is never reported. Stopping during the
    wait between ticks exits without emitting a sample.
    """

    def __init__(
        self,
        counter: RequestCounter,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._counter = counter
        self._interval = interval
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._start_time = 0.0
        self._prev_elapsed = 0.0
        self._prev_total = 0

    @property
    def name(self) -> str:
        """Return a readable identifier for logs and thread names."""
        return "telemetry"

    def establish_baseline(self) -> None:
        """Record time zero and the counter value the first sample is measured from."""
        self._start_time = self._clock()
        self._prev_elapsed = 0.0
        self._prev_total = self._counter.snapshot()

    def take_sample(self) -> TelemetrySample:
        """Snapshot the counter and advance the baseline to now."""
        total = self._counter.snapshot()
        elapsed = self._clock() - self._start_time
        sample = TelemetrySample(
            interval_count=total - self._prev_total,
            interval_seconds=elapsed - self._prev_elapsed,
            total_count=total,
            elapsed_seconds=elapsed,
        )
        self._prev_total = total
        self._prev_elapsed = elapsed
        return sample

    def start(self) -> None:
        """Run the loop on a dedicated thread."""
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Request the loop to exit at its next wake-up."""
        self._stop_event.set()

    def is_alive(self) -> bool:
        """Return True while the loop thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the loop to finish; return True if it has."""
        if self._thread is not None:
            self._thread.join(timeout)
        return not self.is_alive()

    def run(self) -> None:
        """Report a sample on every tick until stopped."""
        self.establish_baseline()
        ticks = 0
        while True:
            ticks += 1
            next_tick = self._start_time + ticks * self._interval
            if self._stop_event.wait(max(0.0, next_tick - self._clock())):
                break
            report_sample(self.take_sample())
        TELEMETRY_LOGGER.info(
            "Telemetry loop stopped", extra={"event": "telemetry_stopped"}
        )


def report_sample(sample: TelemetrySample) -> None:
    """Log one throughput line for ``sample``."""
    TELEMETRY_LOGGER.info(
        "Requests per second: %.2f, total requests per second: %.2f, "
        "total requests: %d",
        sample.interval_rate,
        sample.total_rate,
        sample.total_count,
        extra={
            "event": "telemetry_sample",
            "interval_rps": round(sample.interval_rate, 2),
            "total_rps": round(sample.total_rate, 2),
            "total_requests": sample.total_count,
            "interval_requests": sample.interval_count,
            "interval_seconds": round(sample.interval_seconds, 3),
            "elapsed_seconds": round(sample.elapsed_seconds, 3),
        },
    )
