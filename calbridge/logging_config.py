"""Structured logging configuration using structlog.

Log lines go to stderr so command output on stdout stays machine-readable.
The Google client libraries log every discovery-cache miss and token refresh
at INFO; those loggers are held at WARNING unless calbridge itself runs at
DEBUG.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import structlog

from calbridge.config import get_settings

NOISY_LOGGERS = ("googleapiclient.discovery_cache", "google.auth", "google_auth_httplib2", "httplib2")


def resolve_level(name: str) -> int:
    """Numeric level for ``name``; unknown names fall back to INFO."""
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """Configure structured logging for the entire application.

    ``level`` and ``json_output`` override the settings; by default JSON is
    written only when ``CALBRIDGE_ENV`` is ``production``.
    """
    settings = get_settings()
    log_level = resolve_level(level or settings.calbridge_log_level)
    if json_output is None:
        json_output = settings.calbridge_env == "production"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer() if json_output
            else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)
    library_level = log_level if log_level <= logging.DEBUG else max(log_level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a named structured logger."""
    return structlog.get_logger(name)
