"""Central structured logging configuration using structlog.

Other modules can do:

    from content_approval.core.logging_config import get_logger
    logger = get_logger(__name__, component="transition_engine")

All logs are JSON-formatted and include ISO timestamps. Bound values such as
``record_id`` help correlate entries for a single moderation record.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog

_configured = False


def configure_logging(level: Optional[str] = None) -> str:
    """Configure stdlib logging and structlog once; returns the level name."""
    global _configured

    if level is None:
        from content_approval.core.settings import get_settings

        level = get_settings().log_level
    level_name = level.upper()
    level_value = logging.getLevelName(level_name)
    if not isinstance(level_value, int):
        level_name, level_value = "INFO", logging.INFO

    logging.basicConfig(
        level=level_value,
        format="%(message)s",  # structlog already renders JSON with timestamp, level
        stream=sys.stderr,
    )
    logging.getLogger().setLevel(level_value)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        cache_logger_on_first_use=False,
    )
    _configured = True
    return level_name


def get_logger(name: str, **bound_values: Any) -> structlog.BoundLogger:
    """Return a JSON logger bound with *bound_values*."""
    if not _configured:
        configure_logging()
    return structlog.get_logger(name).bind(**bound_values)
