"""Unit tests for logging configuration."""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from io import StringIO
from pathlib import Path

import pytest
import structlog

from gamedeck.config import LoggingConfig
from gamedeck.logging import (
    bind_session_context,
    clear_session_context,
    get_logger,
    setup_logging,
)


@pytest.fixture(autouse=True)
def reset_logging() -> None:
    """Reset logging configuration before each test."""
    logging.getLogger().handlers.clear()
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def capture_stream() -> StringIO:
    """Create a StringIO stream for capturing log output."""
    return StringIO()


@pytest.fixture
def json_config() -> LoggingConfig:
    """Create a LoggingConfig for JSON output to stderr."""
    return LoggingConfig(level="INFO", format="json", file=None)


def _capture(stream: StringIO) -> None:
    logging.getLogger().handlers[0].stream = stream


def test_json_output_format(json_config: LoggingConfig, capture_stream: StringIO) -> None:
    """Test that JSON format produces valid JSON output."""
    setup_logging(json_config)
    _capture(capture_stream)

    logger = get_logger("test.module")
    logger.info("game_launching", game_id="apex", attempts=1)

    log_entry = json.loads(capture_stream.getvalue().strip())
    assert log_entry["event"] == "game_launching"
    assert log_entry["game_id"] == "apex"
    assert log_entry["attempts"] == 1
    assert log_entry["level"] == "info"
    assert log_entry["logger"] == "test.module"
    assert "timestamp" in log_entry


def test_console_output_format(capture_stream: StringIO) -> None:
    """Test that console format produces human-readable output."""
    setup_logging(LoggingConfig(level="DEBUG", format="console"))
    _capture(capture_stream)

    get_logger("test.module").debug("shutdown_plan", apps=["obs"])

    output = capture_stream.getvalue()
    assert "shutdown_plan" in output
    assert "obs" in output
    with pytest.raises(json.JSONDecodeError):
        json.loads(output.strip())


def test_default_handler_writes_to_stderr(json_config: LoggingConfig) -> None:
    """The summary table owns stdout, so logs go to stderr."""
    setup_logging(json_config)

    handler = logging.getLogger().handlers[0]
    assert isinstance(handler, logging.StreamHandler)
    assert handler.stream is sys.stderr


def test_log_level_filtering(json_config: LoggingConfig, capture_stream: StringIO) -> None:
    """Test that log level filtering works correctly."""
    setup_logging(json_config)
    _capture(capture_stream)
    logger = get_logger("test.module")

    logger.debug("debug_message")
    assert capture_stream.getvalue() == ""

    logger.warning("warning_message")
    assert "warning_message" in capture_stream.getvalue()


def test_session_context_binding(json_config: LoggingConfig, capture_stream: StringIO) -> None:
    """Test that session context is bound to every entry until cleared."""
    setup_logging(json_config)
    _capture(capture_stream)
    logger = get_logger("test.module")

    bind_session_context(session_id="3f2a9c", game_id="apex")
    logger.info("session_started")
    clear_session_context()
    logger.info("session_completed")

    first, second = (json.loads(line) for line in capture_stream.getvalue().splitlines())
    assert first["session_id"] == "3f2a9c"
    assert first["game_id"] == "apex"
    assert "session_id" not in second
    assert "game_id" not in second


def test_file_rotation_handler_configuration(tmp_path: Path) -> None:
    """Test that file rotation handler is configured correctly."""
    log_file = tmp_path / "logs" / "gamedeck.log"
    config = LoggingConfig(
        level="INFO",
        format="json",
        file=log_file,
        rotation_size_mb=10,
        retention_count=3,
    )

    setup_logging(config)

    root = logging.getLogger()
    assert len(root.handlers) == 1
    handler = root.handlers[0]
    assert isinstance(handler, logging.handlers.RotatingFileHandler)
    assert handler.maxBytes == 10 * 1024 * 1024
    assert handler.backupCount == 3

    get_logger("test.module").info("test_file_write", data="test")
    handler.flush()

    log_entry = json.loads(log_file.read_text(encoding="utf-8").strip())
    assert log_entry["event"] == "test_file_write"
    assert log_entry["data"] == "test"


def test_exception_formatting(json_config: LoggingConfig, capture_stream: StringIO) -> None:
    """Test that exceptions are rendered into the entry."""
    setup_logging(json_config)
    _capture(capture_stream)
    logger = get_logger("test.module")

    try:
        raise RuntimeError("recorder vanished")
    except RuntimeError:
        logger.exception("session_failed")

    log_entry = json.loads(capture_stream.getvalue().strip())
    assert log_entry["event"] == "session_failed"
    assert log_entry["level"] == "error"
    assert "RuntimeError: recorder vanished" in log_entry["exception"]
