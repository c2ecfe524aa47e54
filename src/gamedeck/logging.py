"""Structured logging configuration for gamedeck.

This module configures structlog with support for:
- JSON and console output formats
- File rotation based on size
- Session context binding

The logging system integrates structlog with Python's stdlib logging
for handlers (file rotation), while using structlog exclusively for
actual log emission.

Example usage:
    >>> from gamedeck.config import LoggingConfig
    >>> from gamedeck.logging import setup_logging, get_logger, bind_session_context
    >>>
    >>> setup_logging(LoggingConfig(level="INFO", format="json"))
    >>> bind_session_context(session_id="3f2a9c", game_id="apex")
    >>> logger = get_logger(__name__)
    >>> logger.info("session_started", phase="setup")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys

import structlog

from gamedeck.config import LoggingConfig


def bind_session_context(session_id: str, game_id: str) -> None:
    """Bind session and game context to all subsequent logs.

    Args:
        session_id: Session identifier to bind
        game_id: Game identifier to bind
    """
    structlog.contextvars.bind_contextvars(session_id=session_id, game_id=game_id)


def clear_session_context() -> None:
    """Remove session context bound by ``bind_session_context``."""
    structlog.contextvars.unbind_contextvars("session_id", "game_id")


def setup_logging(config: LoggingConfig) -> None:
    """Configure structlog with the given configuration.

    This function sets up the complete logging pipeline including:
    - JSON or console rendering based on config.format
    - File rotation if config.file is specified
    - Timestamp, log level, and logger name processors

    Args:
        config: Logging configuration from GamedeckConfig
    """
    log_level = getattr(logging, config.level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    if config.file is not None:
        config.file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.handlers.RotatingFileHandler(
            filename=config.file,
            maxBytes=config.rotation_size_mb * 1024 * 1024,
            backupCount=config.retention_count,
            encoding="utf-8",
        )
    else:
        # stderr keeps stdout free for the rich session summary
        handler = logging.StreamHandler(sys.stderr)

    handler.setLevel(log_level)
    root_logger.addHandler(handler)

    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            # session_id / game_id from bind_session_context
            structlog.contextvars.merge_contextvars,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured structlog BoundLogger instance
    """
    return structlog.get_logger(name)
