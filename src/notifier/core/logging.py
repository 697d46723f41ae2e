"""Structured logging configuration for the mail notifier.

Uses structlog for JSON-formatted (or console) logs to stdout. Supports a
correlation ID (poll_cycle_id) via contextvars so every entry logged while a
poll cycle runs can be traced back to it.

Usage:
    from notifier.core.logging import get_logger, set_correlation_id

    logger = get_logger(__name__)

    # In the poll engine:
    set_correlation_id(str(uuid.uuid4()))

    logger.info("message_classified", message_id="18c2...", tag="FYI")
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog

# Context variable for correlation ID (poll_cycle_id)
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID for the current context.

    Call this at the start of each poll cycle with a new UUID, and with
    None when the cycle ends.

    Args:
        correlation_id: UUID string for this poll cycle, or None to clear
    """
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    """Get the current correlation ID, if set."""
    return _correlation_id.get()


def add_poll_cycle_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor stamping entries with the running poll cycle's id."""
    cycle_id = get_correlation_id()
    if cycle_id is not None:
        event_dict.setdefault("poll_cycle_id", cycle_id)
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable format
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        add_poll_cycle_id,
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        A structlog BoundLogger instance
    """
    return structlog.get_logger(name)
