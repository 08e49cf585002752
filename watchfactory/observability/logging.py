"""Structured logging for watchfactory.

watchfactory itself logs through structlog as JSON lines on stderr.  The
Kubernetes client and its HTTP stack log through the standard library; they
are sent to the same stream and held at WARNING unless debug logging is on.
"""

from __future__ import annotations

import logging
import sys

import structlog

_NOISY_LOGGERS = ("kubernetes_asyncio", "aiohttp", "asyncio")


def setup_logging(level: str = "info") -> None:
    """Configure structlog for JSON output to stderr."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=log_level, stream=sys.stderr, format="%(name)s %(levelname)s %(message)s")
    library_level = log_level if log_level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def get_logger(component: str, **context: object) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name and optional context."""
    return structlog.get_logger(component=component, **context)  # type: ignore[return-value]
