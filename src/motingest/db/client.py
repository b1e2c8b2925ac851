"""Database connection helpers.

``sqlite:///`` URLs open a local SQLite file; anything else is handed to
psycopg as a PostgreSQL connection string.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Union

import psycopg

from motingest.config import Settings
from motingest.errors import StorageError


Connection = Union[sqlite3.Connection, psycopg.Connection]

DRIVER_ERRORS: tuple[type[Exception], ...] = (sqlite3.Error, psycopg.Error)


def get_connection(settings: Optional[Settings] = None) -> Connection:
    """Create a new database connection."""
    settings = settings or Settings()
    try:
        if settings.is_sqlite():
            path = settings.sqlite_path()
            if str(path) != ":memory:":
                path.parent.mkdir(parents=True, exist_ok=True)
            return sqlite3.connect(str(path))
        return psycopg.connect(settings.database_url)
    except (OSError, *DRIVER_ERRORS) as exc:
        raise StorageError(f"cannot open database: {exc}") from exc


def is_sqlite(conn: Any) -> bool:
    return isinstance(conn, sqlite3.Connection)


def placeholder(conn: Any) -> str:
    """Return the positional parameter marker for the connection's driver."""
    return "?" if is_sqlite(conn) else "%s"


@contextmanager
def transaction(conn: Connection) -> Iterator[Any]:
    """Yield a cursor and commit on success, roll back on any failure."""
    cursor = conn.cursor()
    try:
        yield cursor
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        cursor.close()


@contextmanager
def db_cursor(settings: Optional[Settings] = None) -> Iterator[Any]:
    """Yield a cursor on a fresh connection with automatic commit/rollback."""
    conn = get_connection(settings)
    try:
        with transaction(conn) as cursor:
            yield cursor
    finally:
        conn.close()
