"""Unit tests for correlation ID functionality."""

import logging
import threading
import uuid

from ipecho.domain.correlation_id import (
    CorrelationLoggerAdapter,
    clear_correlation_id,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


class TestCorrelationIdContext:
    """Test correlation ID context management."""

    def test_generate_correlation_id_returns_uuid(self):
        """Generated IDs are UUID strings."""
        correlation_id = generate_correlation_id()
        assert isinstance(correlation_id, str)
        uuid.UUID(correlation_id)

    def test_generate_correlation_id_returns_unique_values(self):
        """Successive IDs should differ."""
        assert generate_correlation_id() != generate_correlation_id()

    def test_set_get_and_clear(self):
        """Setters reflect via getter until cleared."""
        set_correlation_id("conn-1")
        assert get_correlation_id() == "conn-1"
        clear_correlation_id()
        assert get_correlation_id() is None

    def test_ids_are_isolated_per_thread(self):
        """Each connection thread sees only its own ID."""
        seen = {}
        barrier = threading.Barrier(2)

        def worker(name):
            set_correlation_id(name)
            barrier.wait()
            seen[name] = get_correlation_id()
            clear_correlation_id()

        threads = [threading.Thread(target=worker, args=(n,)) for n in ("a", "b")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert seen == {"a": "a", "b": "b"}
        assert get_correlation_id() is None


class TestCorrelationLoggerAdapter:
    """Test the adapter used by every module logger."""

    def test_records_carry_connection_id(self, caplog):
        """Log records emitted inside a connection carry its ID."""
        adapter = CorrelationLoggerAdapter(logging.getLogger("ip_echo.test"), {})
        set_correlation_id("conn-42")
        try:
            with caplog.at_level("INFO", logger="ip_echo"):
                adapter.info("hello", extra={"event": "test_event"})
        finally:
            clear_correlation_id()

        record = caplog.records[-1]
        assert record.correlation_id == "conn-42"
        assert record.component == "test"
        assert record.event == "test_event"
