"""Structured logging configuration with structlog.

Usage:
    from onlygate.log import configure_logging

    configure_logging(fmt="json")     # one JSON object per line
    configure_logging(fmt="console")  # colored output for development

Until structlog is configured (by this function or by the host), loggers
from ``get_logger`` hand their events to the stdlib ``onlygate`` logger,
which carries only a NullHandler: a host that sets up nothing sees no
output, and a host that configures stdlib logging gets JSON lines at the
levels it enabled.
"""

from __future__ import annotations

import logging

import structlog
from structlog.typing import Processor

logging.getLogger("onlygate").addHandler(logging.NullHandler())

_STDLIB_PROCESSORS: list[Processor] = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.format_exc_info,
    structlog.processors.JSONRenderer(),
]


def configure_logging(fmt: str = "json", level: str | int = "INFO") -> None:
    """Install the processor chain used by every OnlyGate logger."""
    if isinstance(level, str):
        level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if fmt == "json":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **context: object) -> structlog.typing.BindableLogger:
    if not structlog.is_configured():
        return structlog.wrap_logger(
            logging.getLogger(name),
            processors=_STDLIB_PROCESSORS,
            wrapper_class=structlog.stdlib.BoundLogger,
        ).bind(**context)
    return structlog.get_logger(name).bind(**context)
