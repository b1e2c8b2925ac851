"""Logging helpers."""

from __future__ import annotations

import logging
from typing import Optional

from motingest.errors import ConfigurationError


PACKAGE_LOGGER = "motingest"
# httpx logs every request URL at INFO.
QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "INFO") -> None:
    """Send pipeline logs to stderr at ``level``; third-party loggers stay at WARNING."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ConfigurationError(f"unknown log level: {level}")

    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger(PACKAGE_LOGGER).setLevel(numeric)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)
