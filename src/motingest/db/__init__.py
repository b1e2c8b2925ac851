"""Database package."""

from motingest.db.client import db_cursor, get_connection, transaction
from motingest.db.schema import create_schema

__all__ = ["db_cursor", "get_connection", "transaction", "create_schema"]
