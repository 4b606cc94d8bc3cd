"""Process-wide request counter shared by listeners and telemetry."""

import itertools
import threading


class RequestCounter:
    """Monotonic request counter with lock-free increments.

    ``next()`` on an ``itertools.count`` is a single atomic operation, so
    any number of worker threads may call :meth:`increment` without
    coordination. Reads consume one tick from the same iterator and
    subtract the ticks consumed by earlier reads; only readers share the
    small read lock, which never blocks writers.

    The atomicity of ``next()`` comes from the GIL. On a free-threaded
    build concurrent increments can lose ticks, and :meth:`increment` would
    need to take a lock as well.
    """

    def __init__(self) -> None:
        self._ticks = itertools.count()
        self._reads = 0
        self._read_lock = threading.Lock()

    def increment(self) -> None:
        """Add one completed request."""
        next(self._ticks)

    def snapshot(self) -> int:
        """Return the number of requests counted so far."""
        with self._read_lock:
            value = next(self._ticks) - self._reads
            self._reads += 1
        return value
