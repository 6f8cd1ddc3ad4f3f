"""SQLite-backed local record store."""

from .connection import DatabaseConnection
from .exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    MigrationError,
    QueryError,
)
from .migrator import Migrator
from .repository import RecordRepository

__all__ = [
    "DatabaseConnection",
    "DatabaseConnectionError",
    "DatabaseError",
    "MigrationError",
    "QueryError",
    "Migrator",
    "RecordRepository",
]
