"""Shared logging utilities for structured logging across the application.

This module provides a centralized logging configuration using structlog for
structured, JSON-formatted logs. Curation runs are long-lived batch jobs, so
every event carries enough key/value context to reconstruct a partial run
from the log stream alone.
"""

import logging
import os
import sys

import structlog

_configured = False


def _configure() -> None:
    """Configure structlog and stdlib logging once per process."""
    global _configured

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
    )

    _configured = True


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a configured structured logger instance.

    Args:
        name: Logger name (typically __name__ from the calling module).

    Returns:
        Configured structlog logger instance ready for use.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("candidate_accepted", video_id="abc123", quality_score=8.2)
        >>> logger.exception("curation_run_failed", error_type="TimeoutError")
    """
    if not _configured:
        _configure()

    return structlog.get_logger(name)
