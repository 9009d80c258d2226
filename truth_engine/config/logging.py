"""Logging configuration using loguru with automatic dev/prod detection."""

import sys
from loguru import logger

from truth_engine.config.settings import settings


def configure_logging(level: str | None = None) -> None:
    """
    Configure loguru based on environment settings.

    Behavior:
    - Development (TTY + console format): Colorized, human-readable output
    - Production (non-TTY or json format): JSON-structured logs to stdout

    Args:
        level: Optional override for the configured log level
    """
    logger.remove()

    log_level = (level or settings.log_level).upper()
    is_tty = sys.stderr.isatty()
    use_console_format = settings.log_format.lower() == "console"

    if is_tty and use_console_format:
        logger.add(
            sys.stderr,
            format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{extra[component]}</cyan> | <level>{message}</level>",
            level=log_level,
            colorize=True,
        )
    else:
        logger.add(
            sys.stdout,
            format="{message}",
            level=log_level,
            serialize=True,
            diagnose=False,
        )


def get_logger(component: str):
    """
    Get a logger instance bound to a component name.

    Example:
        >>> log = get_logger("server.websocket")
        >>> log.info("Client connected")
    """
    return logger.bind(component=component)


configure_logging()

__all__ = ["logger", "get_logger", "configure_logging"]
