import sqlite3
import threading
from datetime import date

import httpx
import pytest

from motingest.config import Settings
from motingest.db.schema import create_schema
from motingest.errors import ConfigurationError, RetryExhaustedError, StorageError, TransientNetworkError
from motingest.ingestion.fetch_mot import MotApiClient
from motingest.ingestion.runner import IngestionRunner, RunMode, run_ingest_all, run_ingest_date
from motingest.ingestion.writer import BatchWriter
from motingest.models import Cursor, PageResult, PageStatus


def _settings(**overrides) -> Settings:
    values = {
        "mot_api_base_url": "https://mot.test",
        "mot_api_key": "secret-key",
        "mot_max_attempts": 5,
        "mot_retry_backoff_seconds": 0,
        "ingest_page_delay_seconds": 0,
        "ingest_empty_streak_limit": 5,
        "ingest_date_max_pages": 1440,
    }
    values.update(overrides)
    return Settings(**values)


def _vehicle(registration="AB12CDE", result="PASSED", completed="2023.06.15 10:00:00", comments=None):
    test = {"completedDate": completed, "testResult": result, "rfrAndComments": comments or []}
    return {"registration": registration, "make": "FORD", "model": "FOCUS", "motTests": [test]}


class _ScriptedFetcher:
    """Serves pages from a dict; unknown pages are 404s."""

    def __init__(self, pages=None, failures=None):
        self.pages = pages or {}
        self.failures = failures or {}
        self.calls = []

    def fetch_page(self, cursor: Cursor) -> PageResult:
        self.calls.append(cursor)
        remaining = self.failures.get(cursor.page, 0)
        if remaining:
            self.failures[cursor.page] = remaining - 1
            raise TransientNetworkError("flaky", status_code=502)
        if cursor.page not in self.pages:
            return PageResult.not_found(cursor.page)
        return PageResult(status=PageStatus.OK, page=cursor.page, vehicles=self.pages[cursor.page])


class _RecordingWriter:
    def __init__(self, fail_on_call=None):
        self.batches = []
        self.fail_on_call = fail_on_call

    def write_batch(self, records):
        if self.fail_on_call is not None and len(self.batches) == self.fail_on_call:
            raise StorageError("disk full")
        self.batches.append(list(records))
        return len(self.batches[-1])


def _fetched_pages(fetcher):
    return [cursor.page for cursor in fetcher.calls]


def test_unbounded_stops_after_sixth_consecutive_empty_page():
    fetcher = _ScriptedFetcher({page: [_vehicle()] for page in range(10)})
    writer = _RecordingWriter()

    summary = IngestionRunner(fetcher, writer, _settings()).run(RunMode.UNBOUNDED)

    assert _fetched_pages(fetcher) == list(range(16))
    assert summary.stop_reason == "empty_streak"
    assert summary.empty_pages == 6
    assert summary.pages == 16
    assert summary.next_page == 16
    assert summary.rows_written == 10
    # Empty pages still go through the writer.
    assert len(writer.batches) == 16


def test_non_empty_page_resets_the_streak():
    pages = {page: [_vehicle()] for page in range(10)}
    pages[15] = [_vehicle()]  # pages 10-14 empty, 15 interrupts the streak
    fetcher = _ScriptedFetcher(pages)

    summary = IngestionRunner(fetcher, _RecordingWriter(), _settings()).run(RunMode.UNBOUNDED)

    assert 15 in _fetched_pages(fetcher)
    assert _fetched_pages(fetcher)[-1] == 21
    assert summary.empty_pages == 11
    assert summary.rows_written == 11


def test_zero_vehicle_pages_count_as_empty():
    fetcher = _ScriptedFetcher({page: [] for page in range(6)})

    summary = IngestionRunner(fetcher, _RecordingWriter(), _settings()).run(RunMode.UNBOUNDED)

    assert _fetched_pages(fetcher) == list(range(6))
    assert summary.stop_reason == "empty_streak"


def test_resumable_mode_starts_from_given_page():
    fetcher = _ScriptedFetcher({40: [_vehicle()], 41: [_vehicle()]})

    summary = IngestionRunner(fetcher, _RecordingWriter(), _settings()).run(
        RunMode.RESUMABLE, start_page=40
    )

    assert _fetched_pages(fetcher) == list(range(40, 48))
    assert summary.start_page == 40
    assert summary.next_page == 48


def test_unbounded_mode_rejects_start_page():
    runner = IngestionRunner(_ScriptedFetcher(), _RecordingWriter(), _settings())
    with pytest.raises(ConfigurationError):
        runner.run(RunMode.UNBOUNDED, start_page=3)


def test_date_bounded_ignores_empty_streak_and_stops_at_max_pages():
    day = date(2023, 6, 15)
    pages = {
        0: [_vehicle("ON1", completed="2023.06.15 09:00:00")],
        12: [_vehicle("ON2", completed="2023.06.15 11:00:00"), _vehicle("OFF", completed="2023.06.14 11:00:00")],
    }
    fetcher = _ScriptedFetcher(pages)
    writer = _RecordingWriter()

    summary = IngestionRunner(fetcher, writer, _settings(ingest_date_max_pages=20)).run(
        RunMode.DATE_BOUNDED, date_filter=day
    )

    assert _fetched_pages(fetcher) == list(range(20))
    assert all(cursor.date_filter == day for cursor in fetcher.calls)
    assert summary.stop_reason == "max_pages"
    assert summary.rows_written == 2
    assert [r.registration for batch in writer.batches for r in batch] == ["ON1", "ON2"]


def test_date_bounded_requires_date():
    runner = IngestionRunner(_ScriptedFetcher(), _RecordingWriter(), _settings())
    with pytest.raises(ConfigurationError):
        runner.run(RunMode.DATE_BOUNDED)


def test_transient_failures_are_retried_within_a_page():
    fetcher = _ScriptedFetcher({0: [_vehicle()]}, failures={0: 2})

    summary = IngestionRunner(fetcher, _RecordingWriter(), _settings()).run(RunMode.UNBOUNDED)

    assert _fetched_pages(fetcher)[:3] == [0, 0, 0]
    assert summary.rows_written == 1


def test_retry_exhaustion_stops_the_run():
    fetcher = _ScriptedFetcher({0: [_vehicle()], 1: [_vehicle()]}, failures={1: 99})
    writer = _RecordingWriter()

    with pytest.raises(RetryExhaustedError) as exc_info:
        IngestionRunner(fetcher, writer, _settings(mot_max_attempts=3)).run(RunMode.UNBOUNDED)

    assert exc_info.value.attempts == 3
    assert _fetched_pages(fetcher) == [0, 1, 1, 1]
    assert len(writer.batches) == 1


def test_storage_error_stops_the_run():
    fetcher = _ScriptedFetcher({page: [_vehicle()] for page in range(5)})

    with pytest.raises(StorageError):
        IngestionRunner(fetcher, _RecordingWriter(fail_on_call=2), _settings()).run(
            RunMode.UNBOUNDED
        )

    assert _fetched_pages(fetcher) == [0, 1, 2]


def test_cancel_between_pages_stops_cleanly():
    cancel_event = threading.Event()
    fetcher = _ScriptedFetcher({page: [_vehicle()] for page in range(100)})

    class _CancellingWriter(_RecordingWriter):
        def write_batch(self, records):
            written = super().write_batch(records)
            if len(self.batches) == 3:
                cancel_event.set()
            return written

    summary = IngestionRunner(fetcher, _CancellingWriter(), _settings(), cancel_event).run(
        RunMode.UNBOUNDED
    )

    assert summary.cancelled
    assert summary.stop_reason == "cancelled"
    assert summary.pages == 3
    assert summary.next_page == 3


def test_cancel_during_retry_backoff_stops_cleanly():
    cancel_event = threading.Event()

    class _CancellingFetcher(_ScriptedFetcher):
        def fetch_page(self, cursor):
            cancel_event.set()
            return super().fetch_page(cursor)

    fetcher = _CancellingFetcher(failures={0: 99})
    summary = IngestionRunner(fetcher, _RecordingWriter(), _settings(), cancel_event).run(
        RunMode.UNBOUNDED
    )

    assert summary.cancelled
    assert summary.pages == 0
    assert summary.next_page == 0
    assert len(fetcher.calls) == 1


def _mock_api(pages, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        page = int(request.url.params["page"])
        if page not in pages:
            return httpx.Response(404)
        return httpx.Response(200, json=pages[page])

    return httpx.MockTransport(handler)


def test_end_to_end_failed_test_with_two_reasons(tmp_path):
    conn = sqlite3.connect(str(tmp_path / "motdata.db"))
    create_schema(conn)
    comments = [
        {"text": "Headlamp aim too high", "type": "FAIL"},
        {"text": "Exhaust leaking", "type": "MAJOR"},
    ]
    pages = {0: [_vehicle("AB12CDE", result="FAILED", comments=comments)]}
    settings = _settings()

    with MotApiClient(settings, transport=_mock_api(pages)) as client:
        summary = IngestionRunner(client, BatchWriter(conn), settings).run(RunMode.UNBOUNDED)

    rows = conn.execute(
        "select registration, make, model, date, result, reason, type from motdata"
    ).fetchall()
    conn.close()

    assert summary.rows_written == 2
    assert len(rows) == 2
    assert {row[:5] for row in rows} == {
        ("AB12CDE", "FORD", "FOCUS", "2023-06-15 10:00:00", "FAILED")
    }
    assert [row[5:] for row in rows] == [
        ("Headlamp aim too high", "FAIL"),
        ("Exhaust leaking", "MAJOR"),
    ]


def test_run_ingest_all_requires_api_key_before_touching_anything(tmp_path):
    db_path = tmp_path / "nested" / "motdata.db"
    settings = _settings(mot_api_key=None, database_url=f"sqlite:///{db_path}")

    with pytest.raises(ConfigurationError):
        run_ingest_all(settings=settings)

    assert not db_path.parent.exists()


def test_run_ingest_date_creates_schema_and_writes(tmp_path, monkeypatch):
    db_path = tmp_path / "motdata.db"
    settings = _settings(database_url=f"sqlite:///{db_path}", ingest_date_max_pages=3)
    seen = []
    pages = {1: [_vehicle("DAY1", completed="2023.06.15 12:00:00")]}
    real_init = MotApiClient.__init__

    def _init_with_mock(self, settings=None, api_key=None, transport=None):
        real_init(self, settings, api_key=api_key, transport=_mock_api(pages, seen))

    monkeypatch.setattr(MotApiClient, "__init__", _init_with_mock)

    summary = run_ingest_date(date(2023, 6, 15), settings=settings)

    assert summary.pages == 3
    assert summary.rows_written == 1
    assert [request.url.params["date"] for request in seen] == ["20230615"] * 3
    with sqlite3.connect(str(db_path)) as conn:
        assert conn.execute("select registration from motdata").fetchall() == [("DAY1",)]


class _RecordingEvent(threading.Event):
    """Event whose waits return immediately and are recorded."""

    def __init__(self):
        super().__init__()
        self.waits = []

    def wait(self, timeout=None):
        self.waits.append(timeout)
        return self.is_set()


def test_pacing_waits_between_pages_but_not_after_the_last():
    cancel_event = _RecordingEvent()
    # Every page is a 404, so the run stops after pages 0-5.
    fetcher = _ScriptedFetcher()

    summary = IngestionRunner(
        fetcher, _RecordingWriter(), _settings(ingest_page_delay_seconds=1.5), cancel_event
    ).run(RunMode.UNBOUNDED)

    assert _fetched_pages(fetcher) == list(range(6))
    assert summary.stop_reason == "empty_streak"
    assert cancel_event.waits == [1.5] * 5


def test_date_bounded_pacing_stops_at_the_last_page():
    cancel_event = _RecordingEvent()
    fetcher = _ScriptedFetcher({0: [_vehicle()]})

    IngestionRunner(
        fetcher,
        _RecordingWriter(),
        _settings(ingest_page_delay_seconds=0.25, ingest_date_max_pages=3),
        cancel_event,
    ).run(RunMode.DATE_BOUNDED, date_filter=date(2023, 6, 15))

    assert _fetched_pages(fetcher) == [0, 1, 2]
    assert cancel_event.waits == [0.25, 0.25]


def test_date_bounded_rejects_start_page_past_the_last_page():
    fetcher = _ScriptedFetcher()
    runner = IngestionRunner(fetcher, _RecordingWriter(), _settings(ingest_date_max_pages=1440))

    with pytest.raises(ConfigurationError):
        runner.run(RunMode.DATE_BOUNDED, start_page=1440, date_filter=date(2023, 6, 15))
    with pytest.raises(ConfigurationError):
        runner.run(RunMode.DATE_BOUNDED, start_page=2000, date_filter=date(2023, 6, 15))

    assert fetcher.calls == []


def test_date_bounded_from_the_last_page_fetches_it_once():
    fetcher = _ScriptedFetcher()

    summary = IngestionRunner(fetcher, _RecordingWriter(), _settings(ingest_date_max_pages=1440)).run(
        RunMode.DATE_BOUNDED, start_page=1439, date_filter=date(2023, 6, 15)
    )

    assert _fetched_pages(fetcher) == [1439]
    assert summary.stop_reason == "max_pages"
    assert summary.next_page == 1440


def test_unopenable_database_is_a_storage_error(tmp_path):
    # tmp_path is a directory, not a database file.
    settings = _settings(database_url=f"sqlite:///{tmp_path}")

    with pytest.raises(StorageError):
        run_ingest_all(settings=settings)
