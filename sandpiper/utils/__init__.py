"""Structured logging configuration using structlog.

Logs go to stderr so CLI reports on stdout stay machine-readable.
"""

from __future__ import annotations

import logging
import sys

import structlog

from sandpiper.config import settings


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog for Sandpiper.

    Args:
        level: Level name override (defaults to ``settings.log_level``).
        fmt:   ``"console"`` or ``"json"`` (defaults to ``settings.log_format``).
    """
    level_name = (level or settings.log_level).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if (fmt or settings.log_format) == "json":
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, optionally bound to a component name."""
    log = structlog.get_logger()
    if name:
        log = log.bind(component=name)
    return log
