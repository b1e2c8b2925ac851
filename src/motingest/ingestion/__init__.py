"""Ingestion package."""

from motingest.ingestion.fetch_mot import MotApiClient
from motingest.ingestion.flatten import flatten_page
from motingest.ingestion.retry import with_retry
from motingest.ingestion.writer import BatchWriter

__all__ = ["MotApiClient", "flatten_page", "with_retry", "BatchWriter"]
