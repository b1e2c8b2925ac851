"""motdata table and index DDL."""

from __future__ import annotations

from motingest.db.client import DRIVER_ERRORS, Connection, is_sqlite, transaction
from motingest.errors import StorageError
from motingest.utils.logging import get_logger


logger = get_logger(__name__)

TABLE_NAME = "motdata"
INDEX_NAME = "motdata_registration_date_result_idx"


def _create_table_sql(date_type: str) -> str:
    return (
        f"CREATE TABLE IF NOT EXISTS {TABLE_NAME} ("
        "registration TEXT, "
        "make TEXT, "
        "model TEXT, "
        f"date {date_type}, "
        "result TEXT, "
        "reason TEXT NULL, "
        "type TEXT NULL"
        ")"
    )


CREATE_INDEX_SQL = (
    f"CREATE INDEX IF NOT EXISTS {INDEX_NAME} "
    f"ON {TABLE_NAME} (registration, date, result)"
)


def create_schema(conn: Connection) -> None:
    """Create the motdata table and its lookup index if missing."""
    # PostgreSQL has no DATETIME type.
    date_type = "DATETIME" if is_sqlite(conn) else "TIMESTAMP"
    try:
        with transaction(conn) as cursor:
            cursor.execute(_create_table_sql(date_type))
            cursor.execute(CREATE_INDEX_SQL)
    except DRIVER_ERRORS as exc:
        raise StorageError(f"cannot create {TABLE_NAME}: {exc}") from exc
    logger.info("schema.ready table=%s index=%s", TABLE_NAME, INDEX_NAME)
