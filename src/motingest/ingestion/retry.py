"""Bounded retry with exponential backoff for page fetches."""

from __future__ import annotations

import threading
from typing import Callable, Optional, TypeVar

from motingest.errors import IngestionCancelled, RetryExhaustedError, TransientNetworkError
from motingest.utils.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[int, TransientNetworkError, float], None]


def backoff_delay(attempt: int, base: float = 1.0, maximum: float = 8.0) -> float:
    """Delay before the attempt following ``attempt`` (1-indexed)."""
    return min(base * 2 ** (attempt - 1), maximum)


def log_retry(attempt: int, error: TransientNetworkError, delay: float) -> None:
    logger.warning("fetch.retry attempt=%s delay=%.1fs error=%s", attempt, delay, error)


def with_retry(
    operation: Callable[[], T],
    max_attempts: int = 5,
    *,
    backoff_seconds: float = 1.0,
    max_backoff_seconds: float = 8.0,
    on_retry: Optional[RetryCallback] = log_retry,
    cancel_event: Optional[threading.Event] = None,
) -> T:
    """Call ``operation`` until it succeeds or ``max_attempts`` attempts failed.

    Only :class:`TransientNetworkError` is retried. Results such as a
    not-found page are returned as-is on the first attempt. When attempts
    run out, :class:`RetryExhaustedError` is raised from the last failure.
    Setting ``cancel_event`` aborts the sequence with
    :class:`IngestionCancelled` before the next attempt or during backoff.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    cancel_event = cancel_event or threading.Event()
    attempt = 0
    while True:
        if cancel_event.is_set():
            raise IngestionCancelled(f"cancelled before attempt {attempt + 1}")

        attempt += 1
        try:
            return operation()
        except TransientNetworkError as exc:
            if attempt >= max_attempts:
                raise RetryExhaustedError(
                    f"giving up after {attempt} attempts: {exc}",
                    attempts=attempt,
                    status_code=exc.status_code,
                ) from exc

            delay = backoff_delay(attempt, backoff_seconds, max_backoff_seconds)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            if cancel_event.wait(delay):
                raise IngestionCancelled(
                    f"cancelled while backing off after attempt {attempt}"
                ) from exc
