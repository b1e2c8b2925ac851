"""Ingestion runner."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional, Protocol

from motingest.config import Settings
from motingest.db.client import get_connection
from motingest.db.schema import create_schema
from motingest.errors import ConfigurationError, IngestionCancelled, MotIngestError
from motingest.ingestion.fetch_mot import MotApiClient
from motingest.ingestion.flatten import flatten_page
from motingest.ingestion.retry import with_retry
from motingest.ingestion.writer import BatchWriter
from motingest.models import Cursor, MotRecord, PageResult
from motingest.utils.logging import get_logger


logger = get_logger(__name__)


class RunMode(str, Enum):
    UNBOUNDED = "unbounded"
    RESUMABLE = "resumable"
    DATE_BOUNDED = "date_bounded"


class PageFetcher(Protocol):
    def fetch_page(self, cursor: Cursor) -> PageResult:
        """Fetch one page or raise TransientNetworkError."""


class RecordWriter(Protocol):
    def write_batch(self, records: list[MotRecord]) -> int:
        """Commit records atomically or raise StorageError."""


@dataclass
class IngestionSummary:
    mode: RunMode
    start_page: int
    next_page: int
    pages: int = 0
    empty_pages: int = 0
    rows_written: int = 0
    skipped_malformed: int = 0
    stop_reason: str = ""
    cancelled: bool = False


class IngestionRunner:
    """Drive the fetch -> flatten -> write loop one page at a time."""

    def __init__(
        self,
        fetcher: PageFetcher,
        writer: RecordWriter,
        settings: Optional[Settings] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.fetcher = fetcher
        self.writer = writer
        self.settings = settings or Settings()
        self.cancel_event = cancel_event or threading.Event()

    def run(
        self,
        mode: RunMode,
        start_page: int = 0,
        date_filter: Optional[date] = None,
    ) -> IngestionSummary:
        if mode is RunMode.DATE_BOUNDED and date_filter is None:
            raise ConfigurationError("date-bounded ingestion requires a date filter")
        if mode is not RunMode.DATE_BOUNDED and date_filter is not None:
            raise ConfigurationError(f"{mode.value} ingestion does not take a date filter")
        if mode is RunMode.UNBOUNDED and start_page != 0:
            raise ConfigurationError("use resumable mode to start from a later page")
        if mode is RunMode.DATE_BOUNDED and start_page >= self.settings.ingest_date_max_pages:
            raise ConfigurationError(
                f"start page {start_page} is past the last page of a day "
                f"({self.settings.ingest_date_max_pages - 1})"
            )

        cursor = Cursor(page=start_page, date_filter=date_filter)
        summary = IngestionSummary(mode=mode, start_page=start_page, next_page=start_page)
        empty_streak = 0

        logger.info(
            "ingestion.start mode=%s start_page=%s date=%s",
            mode.value,
            start_page,
            date_filter.isoformat() if date_filter else None,
        )

        while True:
            if self._stop_requested(summary):
                break

            logger.info("ingestion.page.start page=%s", cursor.page)
            try:
                page = self._fetch(cursor)
            except IngestionCancelled:
                summary.cancelled = True
                summary.stop_reason = "cancelled"
                logger.info("ingestion.cancelled page=%s during fetch", cursor.page)
                break
            except MotIngestError:
                self._log_failure(summary, cursor)
                raise

            if page.is_empty:
                empty_streak += 1
                summary.empty_pages += 1
            else:
                empty_streak = 0

            flattened = flatten_page(page.vehicles, cursor.date_filter)
            try:
                written = self.writer.write_batch(flattened.records)
            except MotIngestError:
                self._log_failure(summary, cursor)
                raise

            summary.pages += 1
            summary.rows_written += written
            summary.skipped_malformed += flattened.skipped
            logger.info(
                "ingestion.page.complete page=%s status=%s vehicles=%s rows=%s "
                "skipped=%s empty_streak=%s",
                cursor.page,
                page.status.value,
                len(page.vehicles),
                written,
                flattened.skipped,
                empty_streak,
            )

            cursor = cursor.advance()
            summary.next_page = cursor.page

            stop_reason = self._termination_reason(mode, cursor, empty_streak)
            if stop_reason:
                summary.stop_reason = stop_reason
                break

            self.cancel_event.wait(self.settings.ingest_page_delay_seconds)

        logger.info(
            "ingestion.complete mode=%s pages=%s empty_pages=%s rows=%s skipped=%s "
            "next_page=%s reason=%s",
            mode.value,
            summary.pages,
            summary.empty_pages,
            summary.rows_written,
            summary.skipped_malformed,
            summary.next_page,
            summary.stop_reason,
        )
        return summary

    def _fetch(self, cursor: Cursor) -> PageResult:
        return with_retry(
            lambda: self.fetcher.fetch_page(cursor),
            max_attempts=self.settings.mot_max_attempts,
            backoff_seconds=self.settings.mot_retry_backoff_seconds,
            max_backoff_seconds=self.settings.mot_retry_backoff_max_seconds,
            cancel_event=self.cancel_event,
        )

    def _termination_reason(self, mode: RunMode, cursor: Cursor, empty_streak: int) -> str:
        if mode is RunMode.DATE_BOUNDED:
            if cursor.page >= self.settings.ingest_date_max_pages:
                return "max_pages"
            return ""

        if empty_streak > self.settings.ingest_empty_streak_limit:
            return "empty_streak"
        return ""

    def _stop_requested(self, summary: IngestionSummary) -> bool:
        if not self.cancel_event.is_set():
            return False
        summary.cancelled = True
        summary.stop_reason = "cancelled"
        logger.info("ingestion.cancelled next_page=%s", summary.next_page)
        return True

    def _log_failure(self, summary: IngestionSummary, cursor: Cursor) -> None:
        logger.exception(
            "ingestion.failed page=%s rows_written=%s (resume with --start-page %s)",
            cursor.page,
            summary.rows_written,
            cursor.page,
        )


def run_ingest_all(
    api_key: Optional[str] = None,
    start_page: Optional[int] = None,
    settings: Optional[Settings] = None,
    cancel_event: Optional[threading.Event] = None,
) -> IngestionSummary:
    """Page forward until the API runs dry; resume from ``start_page`` if given."""
    mode = RunMode.UNBOUNDED if start_page is None else RunMode.RESUMABLE
    return _run(mode, api_key, start_page or 0, None, settings, cancel_event)


def run_ingest_date(
    date_filter: date,
    api_key: Optional[str] = None,
    start_page: int = 0,
    settings: Optional[Settings] = None,
    cancel_event: Optional[threading.Event] = None,
) -> IngestionSummary:
    """Ingest the tests completed on ``date_filter``."""
    return _run(RunMode.DATE_BOUNDED, api_key, start_page, date_filter, settings, cancel_event)


def _run(
    mode: RunMode,
    api_key: Optional[str],
    start_page: int,
    date_filter: Optional[date],
    settings: Optional[Settings],
    cancel_event: Optional[threading.Event],
) -> IngestionSummary:
    settings = settings or Settings()
    key = settings.require_api_key(api_key)

    conn = get_connection(settings)
    try:
        create_schema(conn)
        with MotApiClient(settings, api_key=key) as client:
            runner = IngestionRunner(
                fetcher=client,
                writer=BatchWriter(conn),
                settings=settings,
                cancel_event=cancel_event,
            )
            return runner.run(mode, start_page=start_page, date_filter=date_filter)
    finally:
        conn.close()


__all__ = [
    "IngestionRunner",
    "IngestionSummary",
    "RunMode",
    "run_ingest_all",
    "run_ingest_date",
]
