"""Structured logging for the compliance evidence toolkit.

Every module obtains its logger through get_logger(__name__) and logs an
event string plus keyword context:

    logger.info("Merged test evidence manifests", manifests=2, tests=5)

configure_logging() is called once per CLI invocation. Output goes to stderr
so that stdout stays reserved for command results (e.g. validation summaries).
"""

from __future__ import annotations

import logging
import sys

import structlog

_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog rendering for command-line runs.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR). Unknown
            names fall back to INFO.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _LEVELS.get(level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Return a structlog logger bound to the given module name.

    Args:
        name: Usually the calling module's __name__.

    Returns:
        A bound logger accepting keyword context on every call.
    """
    return structlog.get_logger(name)
