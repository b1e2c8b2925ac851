"""Transactional batch writes into motdata."""

from __future__ import annotations

from typing import Iterable, Iterator, Sequence

from motingest.db.client import DRIVER_ERRORS, Connection, is_sqlite, placeholder, transaction
from motingest.db.schema import TABLE_NAME
from motingest.errors import StorageError
from motingest.models import MotRecord
from motingest.utils.logging import get_logger


logger = get_logger(__name__)

COLUMNS = ("registration", "make", "model", "date", "result", "reason", "type")


class BatchWriter:
    """Write one page of records per transaction.

    Rows are appended without any uniqueness check, so ingesting the same
    page twice stores it twice.
    """

    def __init__(self, conn: Connection, batch_size: int = 500) -> None:
        self.conn = conn
        self.batch_size = batch_size
        # SQLite stores dates as ISO text.
        self._date_as_text = is_sqlite(conn)
        marker = placeholder(conn)
        self._insert_sql = (
            f"insert into {TABLE_NAME} ({', '.join(COLUMNS)}) values "
            f"({', '.join([marker] * len(COLUMNS))})"
        )

    def write_batch(self, records: Iterable[MotRecord]) -> int:
        """Insert all records atomically and return the row count."""
        rows = [_row_values(record, self._date_as_text) for record in records]
        if not rows:
            return 0

        try:
            with transaction(self.conn) as cursor:
                for chunk in _chunks(rows, self.batch_size):
                    cursor.executemany(self._insert_sql, chunk)
        except DRIVER_ERRORS as exc:
            logger.error("write_batch.rolled_back rows=%s error=%s", len(rows), exc)
            raise StorageError(f"batch of {len(rows)} rows rolled back: {exc}") from exc

        return len(rows)


def _row_values(record: MotRecord, date_as_text: bool) -> tuple[object, ...]:
    return (
        record.registration,
        record.make,
        record.model,
        record.date.isoformat(sep=" ") if date_as_text else record.date,
        record.result,
        record.reason,
        record.type,
    )


def _chunks(rows: Sequence[tuple[object, ...]], size: int) -> Iterator[Sequence[tuple[object, ...]]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]
