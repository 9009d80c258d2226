"""Structured logging for the verification path using structlog."""

import os
import sys
from typing import Any, Optional

import structlog
from structlog.contextvars import merge_contextvars
from structlog.processors import JSONRenderer

IS_TTY = sys.stderr.isatty()
LOG_FORMAT = os.getenv("TRUTH_ENGINE_LOG_FORMAT", "console").lower()
LOG_LEVEL = os.getenv("TRUTH_ENGINE_LOG_LEVEL", "INFO").upper()


def configure_structured_logging(level: Optional[str] = None) -> None:
    """
    Configure structlog processors and renderer.

    Console renderer in an interactive terminal, JSON lines otherwise.
    """
    processors = [
        merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if IS_TTY and LOG_FORMAT == "console":
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    else:
        processors.append(JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger((level or LOG_LEVEL).upper()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_structured_logger(
    name: str,
    session_id: Optional[str] = None,
    **additional_context: Any,
) -> structlog.BoundLogger:
    """
    Get a structured logger with bound context.

    Args:
        name: Component name, bound as ``component``
        session_id: Optional verification session to bind
        **additional_context: Additional context to bind

    Example:
        >>> log = get_structured_logger("ExecutionEngine", session_id="stream_1")
        >>> log.info("task_completed", task="tier1:authority", confidence=1.0)
    """
    logger = structlog.get_logger().bind(component=name)
    if session_id:
        logger = logger.bind(session_id=session_id)
    if additional_context:
        logger = logger.bind(**additional_context)
    return logger


def bind_session_context(
    logger: structlog.BoundLogger,
    session_id: str,
    correlation_id: Optional[str] = None,
) -> structlog.BoundLogger:
    """Bind session context (and an optional correlation id) to a logger."""
    bound = logger.bind(session_id=session_id)
    if correlation_id:
        bound = bound.bind(correlation_id=correlation_id)
    return bound


configure_structured_logging()


__all__ = [
    "get_structured_logger",
    "bind_session_context",
    "configure_structured_logging",
]
