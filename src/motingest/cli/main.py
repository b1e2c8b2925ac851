"""Typer CLI entry point."""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

import typer

from motingest.config import Settings
from motingest.db.client import DRIVER_ERRORS, db_cursor, get_connection
from motingest.db.schema import create_schema
from motingest.errors import ConfigurationError, MotIngestError, StorageError
from motingest.ingestion.runner import IngestionSummary, run_ingest_all, run_ingest_date
from motingest.utils.logging import configure_logging, get_logger
from motingest.utils.time import parse_date_filter


app = typer.Typer(help="MOT trade API ingestion CLI")
ingest_app = typer.Typer(help="Ingestion commands")
db_app = typer.Typer(help="Database utilities")

app.add_typer(ingest_app, name="ingest")
app.add_typer(db_app, name="db")

logger = get_logger(__name__)

T = TypeVar("T")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, help="Log level (default from LOG_LEVEL)"),
) -> None:
    """Initialize logging for all commands."""
    try:
        configure_logging(log_level or Settings().log_level)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc), param_hint="--log-level") from exc


@ingest_app.command("all")
def ingest_all(
    api_key: Optional[str] = typer.Option(None, help="API key (default from MOT_API_KEY)"),
    start_page: Optional[int] = typer.Option(
        None, min=0, help="Resume from this page instead of page 0"
    ),
) -> None:
    """Page through all MOT tests until the API runs dry."""
    settings = Settings()
    with _cancel_on_signal() as cancel_event:
        summary = _run_or_exit(
            lambda: run_ingest_all(
                api_key=api_key,
                start_page=start_page,
                settings=settings,
                cancel_event=cancel_event,
            )
        )
    _echo_summary(summary)


@ingest_app.command("date")
def ingest_date(
    date: str = typer.Option(..., help="Completion date (YYYYMMDD)"),
    api_key: Optional[str] = typer.Option(None, help="API key (default from MOT_API_KEY)"),
    start_page: int = typer.Option(0, min=0, help="First page to fetch"),
) -> None:
    """Fetch the MOT tests completed on one day."""
    try:
        date_filter = parse_date_filter(date)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--date") from exc

    settings = Settings()
    with _cancel_on_signal() as cancel_event:
        summary = _run_or_exit(
            lambda: run_ingest_date(
                date_filter,
                api_key=api_key,
                start_page=start_page,
                settings=settings,
                cancel_event=cancel_event,
            )
        )
    _echo_summary(summary)


@db_app.command("create")
def db_create() -> None:
    """Create the motdata table and index (idempotent)."""
    _run_or_exit(lambda: _create_schema(Settings()), action="Schema creation")
    typer.echo("Successful creation of the 'motdata' table")


@db_app.command("check")
def db_check() -> None:
    """Check that the database is reachable and report its backend."""
    settings = Settings()
    backend = "sqlite" if settings.is_sqlite() else "postgresql"
    _run_or_exit(lambda: _select_one(settings), action="Database check")
    logger.info("db.check.ok backend=%s", backend)
    typer.echo(f"Database reachable ({backend})")


def _create_schema(settings: Settings) -> None:
    conn = get_connection(settings)
    try:
        create_schema(conn)
    finally:
        conn.close()


def _select_one(settings: Settings) -> None:
    try:
        with db_cursor(settings) as cursor:
            cursor.execute("select 1")
    except DRIVER_ERRORS as exc:
        raise StorageError(str(exc)) from exc


def _run_or_exit(run: Callable[[], T], action: str = "Ingestion") -> T:
    try:
        return run()
    except ConfigurationError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(2)
    except MotIngestError as exc:
        typer.echo(f"{action} failed: {exc}", err=True)
        raise typer.Exit(1)


@contextmanager
def _cancel_on_signal() -> Iterator[threading.Event]:
    """Yield an event set on SIGINT/SIGTERM; the run stops at the next page boundary.

    The first signal restores the previous handlers, so a second Ctrl-C
    interrupts immediately.
    """
    cancel_event = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel_event
        return

    def _handle(signum: int, _frame: object) -> None:
        logger.warning("ingestion.signal signum=%s stopping after current page", signum)
        cancel_event.set()
        _restore(previous)

    previous = {sig: signal.signal(sig, _handle) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield cancel_event
    finally:
        _restore(previous)


def _restore(handlers: dict[int, object]) -> None:
    for sig, handler in handlers.items():
        signal.signal(sig, handler)


def _echo_summary(summary: IngestionSummary) -> None:
    state = "cancelled" if summary.cancelled else "complete"
    typer.echo(
        f"Ingestion {state}: pages={summary.pages} rows={summary.rows_written} "
        f"empty_pages={summary.empty_pages} skipped={summary.skipped_malformed} "
        f"next_page={summary.next_page} reason={summary.stop_reason}"
    )


if __name__ == "__main__":
    app()
