"""Exception hierarchy for the ingestion pipeline.

A 404 from the API is not an error: it is reported as an empty page
(``PageStatus.NOT_FOUND``) and never raised.
"""

from __future__ import annotations

from typing import Optional


class MotIngestError(Exception):
    """Base exception for all pipeline failures."""


class ConfigurationError(MotIngestError):
    """Raised for missing or invalid runtime configuration."""


class TransientNetworkError(MotIngestError):
    """Raised for retryable fetch failures (timeouts, connection errors, non-2xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryExhaustedError(TransientNetworkError):
    """Raised when every attempt of a retried operation failed."""

    def __init__(self, message: str, attempts: int, status_code: Optional[int] = None) -> None:
        super().__init__(message, status_code=status_code)
        self.attempts = attempts


class StorageError(MotIngestError):
    """Raised when the database cannot be opened or a transaction is rolled back."""


class IngestionCancelled(MotIngestError):
    """Raised when a cancel signal interrupts an in-flight fetch."""
