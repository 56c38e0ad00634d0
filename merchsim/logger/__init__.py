"""Logger module for merchsim

Structured key/value logging built on structlog.

Usage:
    from merchsim.logger import session_logger as logger

    logger.info("sim.start", consumers=10, mode="ramp")

Configuration via environment variables:
    MERCHSIM_LOG_LEVEL  – minimum level (default INFO)
    MERCHSIM_LOG_FORMAT – console | json (default console)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TextIO

import structlog
from structlog.typing import FilteringBoundLogger

Logger = FilteringBoundLogger

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def configure_logging(level: str | None = None, *, fmt: str | None = None, stream: TextIO | None = None) -> None:
    """Configure structlog output for the process.

    Safe to call more than once; the latest call wins. Output goes to
    ``stream`` (default: the current sys.stderr).
    """

    level_name = (level or os.environ.get("MERCHSIM_LOG_LEVEL", "INFO")).upper()
    if level_name not in _LEVELS:
        raise ValueError(f"unsupported log level: {level_name}")

    fmt_name = (fmt or os.environ.get("MERCHSIM_LOG_FORMAT", "console")).lower()
    if fmt_name == "json":
        renderer = structlog.processors.JSONRenderer()
    elif fmt_name == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    else:
        raise ValueError(f"unsupported log format: {fmt_name}")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_LEVELS[level_name]),
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )


# Shared logger instance for modules that just need basic console logging
session_logger: Logger = structlog.get_logger("merchsim")

__all__ = [
    "Logger",
    "configure_logging",
    "session_logger",
]
