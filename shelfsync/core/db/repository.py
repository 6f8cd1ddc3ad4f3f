"""Record repository: the local store adapter over SQLite."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional

import aiosqlite
import structlog
from pydantic import ValidationError as PydanticValidationError

from ..models import LibraryRecord
from .connection import DatabaseConnection
from .exceptions import QueryError
from .migrator import Migrator

logger = structlog.get_logger(__name__)

_UPSERT_SQL = """
    INSERT INTO records (
        id, title, file_name, file_size, last_modified, data, created_at, updated_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(id) DO UPDATE SET
        title = excluded.title,
        file_name = excluded.file_name,
        file_size = excluded.file_size,
        last_modified = excluded.last_modified,
        data = excluded.data,
        updated_at = excluded.updated_at
"""


class RecordRepository:
    """
    Stores library records keyed by id.

    Writes are last-write-wins per id. Every write method runs in its own
    transaction and is rolled back on failure, so a failed write leaves
    nothing observable.
    """

    DEFAULT_ENABLE_WAL = True
    DEFAULT_CONNECTION_TIMEOUT = 30

    def __init__(self, db_path: Path, enable_wal: bool = True, timeout: int = 30):
        self.db_path = db_path
        self._db_connection = DatabaseConnection(db_path, enable_wal, timeout)
        self._connection: Optional[aiosqlite.Connection] = None

    @classmethod
    async def open(cls, db_path: Path, enable_wal: Optional[bool] = None) -> "RecordRepository":
        """Open the store at ``db_path`` and apply pending migrations."""
        repo = cls(
            db_path=db_path,
            enable_wal=cls.DEFAULT_ENABLE_WAL if enable_wal is None else enable_wal,
            timeout=cls.DEFAULT_CONNECTION_TIMEOUT,
        )
        await repo.connect()
        await Migrator().run_migrations(repo._connection)
        logger.info("repository_initialized", db_path=str(db_path))
        return repo

    async def connect(self) -> None:
        if self._connection is None:
            self._connection = await self._db_connection.connect()

    async def close(self) -> None:
        if self._connection is not None:
            await self._db_connection.close()
            self._connection = None

    async def __aenter__(self) -> "RecordRepository":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise QueryError("No active connection")
        return self._connection

    @staticmethod
    def _row_params(record: LibraryRecord, now: str) -> tuple:
        return (
            record.id,
            record.title,
            record.file_name,
            record.file_size,
            record.last_modified,
            json.dumps(record.to_wire(), ensure_ascii=False),
            now,
            now,
        )

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> Optional[LibraryRecord]:
        try:
            return LibraryRecord.model_validate(json.loads(row["data"]))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.error("record_row_invalid", record_id=row["id"], error=str(e))
            return None

    # ==================== Reads ====================

    async def get(self, record_id: str) -> Optional[LibraryRecord]:
        """Return the record with ``record_id``, or None."""
        db = self._require_connection()
        cursor = await db.execute("SELECT id, data FROM records WHERE id = ?", (record_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    async def get_all(self) -> List[LibraryRecord]:
        """Return every record in insertion order."""
        db = self._require_connection()
        cursor = await db.execute("SELECT id, data FROM records ORDER BY rowid")
        rows = await cursor.fetchall()
        records = []
        for row in rows:
            record = self._row_to_record(row)
            if record is not None:
                records.append(record)
        return records

    async def find_by_file(self, file_name: str, file_size: Optional[int]) -> Optional[LibraryRecord]:
        """Return the first record describing the same file, or None."""
        db = self._require_connection()
        cursor = await db.execute(
            "SELECT id, data FROM records WHERE file_name = ? AND file_size IS ? ORDER BY rowid LIMIT 1",
            (file_name, file_size),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    async def count(self) -> int:
        db = self._require_connection()
        cursor = await db.execute("SELECT COUNT(*) FROM records")
        row = await cursor.fetchone()
        return row[0]

    # ==================== Writes ====================

    async def put(self, record: LibraryRecord) -> bool:
        """
        Insert or replace one record.

        Raises:
            QueryError: If the write fails (the transaction is rolled back)
        """
        db = self._require_connection()
        now = datetime.now(timezone.utc).isoformat()
        try:
            await db.execute(_UPSERT_SQL, self._row_params(record, now))
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error("record_put_failed", record_id=record.id, error=str(e))
            raise QueryError(f"Failed to store record {record.id}: {e}", record_id=record.id) from e

        logger.debug("record_put", record_id=record.id)
        return True

    async def put_many(self, records: Iterable[LibraryRecord]) -> bool:
        """
        Insert or replace several records in a single transaction.

        Either every record is written or none is.

        Raises:
            QueryError: If any write fails (the transaction is rolled back)
        """
        db = self._require_connection()
        now = datetime.now(timezone.utc).isoformat()
        records = list(records)
        try:
            await db.executemany(_UPSERT_SQL, [self._row_params(r, now) for r in records])
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error("records_put_failed", count=len(records), error=str(e))
            raise QueryError(f"Failed to store {len(records)} records: {e}") from e

        logger.info("records_put", count=len(records))
        return True

    async def delete(self, record_id: str) -> bool:
        """
        Delete one record.

        Returns:
            True if a record was removed, False if none had that id

        Raises:
            QueryError: If the delete fails
        """
        db = self._require_connection()
        try:
            cursor = await db.execute("DELETE FROM records WHERE id = ?", (record_id,))
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error("record_delete_failed", record_id=record_id, error=str(e))
            raise QueryError(f"Failed to delete record {record_id}: {e}", record_id=record_id) from e

        deleted = cursor.rowcount > 0
        logger.info("record_deleted", record_id=record_id, deleted=deleted)
        return deleted

    async def clear(self) -> int:
        """
        Delete every record.

        Returns:
            Number of records removed

        Raises:
            QueryError: If the delete fails (the transaction is rolled back)
        """
        db = self._require_connection()
        try:
            removed = await self.count()
            await db.execute("DELETE FROM records")
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error("records_clear_failed", error=str(e))
            raise QueryError(f"Failed to clear records: {e}") from e

        logger.info("records_cleared", count=removed)
        return removed
