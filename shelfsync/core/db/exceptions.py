"""Exceptions for the local record store."""

from pathlib import Path
from typing import Optional


class DatabaseError(Exception):
    """Base exception for database errors."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when the database cannot be opened."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class MigrationError(DatabaseError):
    """Raised when a schema migration fails."""

    def __init__(
        self,
        message: str,
        version: Optional[int] = None,
        filename: Optional[str] = None,
    ):
        super().__init__(message)
        self.version = version
        self.filename = filename


class QueryError(DatabaseError):
    """Raised when a statement against the record store fails."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id

