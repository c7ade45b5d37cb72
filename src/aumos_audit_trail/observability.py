"""Structured logging for the audit trail engine.

All modules obtain their logger via get_logger(__name__) and log event-style
messages with keyword context, e.g.:

    logger.info("Audit record persisted", entity_type="User", version=3)

Change-set values are never passed to the logger, only attribute names.
"""

import sys
from typing import Any, cast

import structlog

_LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}


def setup_logging(level: str = "INFO", format: str = "json") -> None:
    """Configure structlog for the process.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format: "json" for production, "console" for development.
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_LEVELS.get(level.upper(), 20)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound to the given module name.

    Args:
        name: Logger name (typically __name__ of the module).

    Returns:
        A bound structlog logger.
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
