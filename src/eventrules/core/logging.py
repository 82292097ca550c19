"""Structured logging setup."""

import logging
import os
import sys
from typing import Optional

import structlog


def configure_logging(level: str = "INFO", json_format: Optional[bool] = None) -> None:
    """
    Configure structlog on top of the standard library logger.

    JSON output is used when ``json_format`` is true or, when it is not
    given, when ``LOG_FORMAT=json`` is set in the environment.
    """
    if json_format is None:
        json_format = os.getenv("LOG_FORMAT") == "json"

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

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
            structlog.processors.JSONRenderer() if json_format
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
