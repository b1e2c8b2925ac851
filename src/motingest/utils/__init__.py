"""Utility helpers."""

from motingest.utils.logging import configure_logging, get_logger
from motingest.utils.time import format_date_filter, parse_completed_date, parse_date_filter

__all__ = [
    "configure_logging",
    "get_logger",
    "format_date_filter",
    "parse_completed_date",
    "parse_date_filter",
]
