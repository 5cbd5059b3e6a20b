"""Structured logging setup for the lifecycle engine."""

import logging
import sys
from typing import TYPE_CHECKING, Optional

import structlog

if TYPE_CHECKING:
    from task_lifecycle.config import LoggingConfig


_LOGGER_NAME = "task_lifecycle"


def get_logger(component: Optional[str] = None) -> "structlog.stdlib.BoundLogger":
    """Return a structlog logger bound to the engine namespace."""
    if component:
        return structlog.get_logger(_LOGGER_NAME, component=component)
    return structlog.get_logger(_LOGGER_NAME)


def configure_logging(config: Optional["LoggingConfig"] = None) -> None:
    """
    Configure structlog on top of a stdlib handler.

    Args:
        config: Logging configuration; defaults to ``LoggingConfig()``
    """
    if config is None:
        from task_lifecycle.config import LoggingConfig

        config = LoggingConfig()

    level = logging.getLevelName(config.log_level.upper())

    renderer = (
        structlog.processors.JSONRenderer()
        if config.json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger(_LOGGER_NAME)
    root_logger.setLevel(level)
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(handler)


__all__ = ["get_logger", "configure_logging"]
