"""Tests for logging configuration helpers and the correlation adapter."""

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from ipecho.bootstrap.logging_setup import (
    CorrelationIdFilter,
    JsonFormatter,
    configure_logging,
)
from ipecho.domain.correlation_id import (
    CorrelationLoggerAdapter,
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def restore_project_logger():
    """Put the project logger back the way the test found it."""
    logger = logging.getLogger("ip_echo")
    handlers = list(logger.handlers)
    level = logger.level
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)


def test_configure_logging_stream_handler():
    """Configure stdout handler with the JSON formatter."""
    logger = configure_logging("DEBUG", "stdout")

    assert logger.logger.name == "ip_echo"
    assert logger.logger.level == logging.DEBUG
    assert len(logger.logger.handlers) == 1

    handler = logger.logger.handlers[0]
    assert isinstance(handler, logging.StreamHandler)
    assert isinstance(handler.formatter, JsonFormatter)
    assert any(isinstance(f, CorrelationIdFilter) for f in handler.filters)


def test_configure_logging_file_handler(tmp_path: Path):
    """A file destination writes JSON lines through a rotating handler."""
    log_file = tmp_path / "logs" / "server.log"

    logger = configure_logging("INFO", str(log_file))
    logger.info("hello", extra={"event": "test_event", "bind": "127.0.0.1:1"})
    for handler in logger.logger.handlers:
        handler.flush()

    assert isinstance(logger.logger.handlers[0], RotatingFileHandler)
    lines = [json.loads(line) for line in log_file.read_text().splitlines()]
    assert lines[0]["event"] == "logging_configured"
    assert lines[0]["destination"] == str(log_file)
    assert lines[-1]["event"] == "test_event"
    assert lines[-1]["bind"] == "127.0.0.1:1"


def test_configure_logging_text_format(tmp_path: Path):
    """Text mode uses the plain formatter with the correlation id column."""
    log_file = tmp_path / "server.log"

    logger = configure_logging("INFO", str(log_file), use_json=False)
    for handler in logger.logger.handlers:
        handler.flush()

    content = log_file.read_text()
    assert "Logging configured" in content
    assert "[-] ip_echo ::" in content


def test_configure_logging_replaces_handlers():
    """Reconfiguring never stacks handlers."""
    configure_logging("INFO", "stdout")
    logger = configure_logging("WARNING", "stdout")

    assert len(logger.logger.handlers) == 1
    assert logger.logger.level == logging.WARNING


def test_unknown_level_falls_back_to_info():
    """An unrecognised level name configures INFO."""
    logger = configure_logging("chatty", "stdout")

    assert logger.logger.level == logging.INFO


def test_correlation_id_filter_sets_default():
    """Records without a correlation id get a placeholder."""
    record = logging.LogRecord("ip_echo", logging.INFO, "x.py", 1, "m", (), None)

    assert CorrelationIdFilter().filter(record) is True
    assert record.correlation_id == "-"


def test_adapter_injects_correlation_id_and_component():
    """The adapter strips the project prefix to form the component."""
    adapter = CorrelationLoggerAdapter(
        logging.getLogger("ip_echo.transport.worker"), {}
    )
    set_correlation_id("abc")
    try:
        _, kwargs = adapter.process("msg", {"extra": {"event": "e"}})
    finally:
        clear_correlation_id()

    assert kwargs["extra"] == {
        "event": "e",
        "correlation_id": "abc",
        "component": "transport.worker",
    }
    assert get_correlation_id() is None


def test_adapter_defaults_without_context():
    """Outside a connection the correlation id is a placeholder."""
    adapter = CorrelationLoggerAdapter(logging.getLogger("other.module"), {})

    _, kwargs = adapter.process("msg", {})

    assert kwargs["extra"]["correlation_id"] == "-"
    assert kwargs["extra"]["component"] == "other.module"
