"""Logging setup.

Every component receives its logger explicitly. ``quiet`` only raises the
threshold of the injected logger to WARNING, so fatal errors still get through.
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.typing import FilteringBoundLogger


def configure_logging(*, json_output: bool = False) -> None:
    """Install the process-wide structlog pipeline (renders to stderr)."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            renderer,
        ],
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(quiet: bool = False, **initial_values) -> FilteringBoundLogger:
    """Get a logger that drops informational events when ``quiet`` is set."""
    level = logging.WARNING if quiet else logging.INFO
    return structlog.wrap_logger(
        None,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        **initial_values,
    )
