"""Structured logging singleton.

Reads os.environ directly: the logger must exist before pydantic Settings is
loaded so that config errors themselves can be logged.
"""

from __future__ import annotations

import logging
import os
import re
import sys

import structlog

_URL_CREDENTIALS = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)[^/@\s]+@", re.IGNORECASE)


def _setup_logging() -> structlog.stdlib.BoundLogger:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


logger = _setup_logging()


def set_level(level_name: str) -> None:
    """Apply the configured log level once Settings are available."""
    logging.getLogger().setLevel(getattr(logging, level_name.upper(), logging.INFO))


def redact_url(url: str) -> str:
    """Strip ``user:token@`` from a remote URL before it reaches logs or notices."""
    return _URL_CREDENTIALS.sub(r"\g<scheme>***@", url)
