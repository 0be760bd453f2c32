"""Structured logging utilities for enroll.

All logs emitted while an enrollment session is alive carry ``session_id`` so
that the listener, the browser launcher and the waiting CLI can be correlated
in a single stream.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Optional

import structlog
from structlog.types import EventDict, Processor

# Context variable for session tracking
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)


def add_session_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add session_id to log context if available."""
    session_id = session_id_var.get()
    if session_id:
        event_dict["session_id"] = session_id
    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add epoch timestamp to log entries."""
    event_dict["timestamp"] = time.time()
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False
) -> None:
    """Configure structured logging for the command-line process.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON lines. If False, use console format.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_session_id,
        add_timestamp,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        # stdout belongs to the CLI's own output
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "enroll") -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def set_session_id(session_id: str) -> None:
    """Set session ID in context for all subsequent logs."""
    session_id_var.set(session_id)


def clear_session_id() -> None:
    """Clear session ID from context."""
    session_id_var.set(None)


# Quiet defaults until the CLI reconfigures from LOG_LEVEL / JSON_LOGS
configure_logging(log_level="WARNING")
