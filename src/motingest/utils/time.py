"""Date parsing helpers for MOT test payloads."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional


DOTTED_FORMATS = ("%Y.%m.%d %H:%M:%S", "%Y.%m.%d")
DATE_FILTER_FORMAT = "%Y%m%d"


def parse_completed_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a test completion date in dotted (``2023.06.15 12:34:56``) or ISO form."""
    if not value:
        return None

    text = value.strip()
    for fmt in DOTTED_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_date_filter(value: str) -> date:
    """Parse a compact ``YYYYMMDD`` date filter."""
    text = value.strip()
    if len(text) != 8 or not text.isdigit():
        raise ValueError(f"date filter must be YYYYMMDD, got {value!r}")
    return datetime.strptime(text, DATE_FILTER_FORMAT).date()


def format_date_filter(value: date) -> str:
    """Format a date as the compact ``YYYYMMDD`` query parameter."""
    return value.strftime(DATE_FILTER_FORMAT)
