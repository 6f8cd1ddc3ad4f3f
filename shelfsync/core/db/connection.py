"""SQLite connection handling for the record store."""

from pathlib import Path
from typing import Any, Optional

import aiosqlite
import structlog

from .exceptions import DatabaseConnectionError

logger = structlog.get_logger(__name__)


class DatabaseConnection:
    """Owns one aiosqlite connection; usable as an async context manager."""

    def __init__(self, db_path: Path, enable_wal: bool = True, timeout: int = 30):
        """
        Args:
            db_path: Path to the SQLite file
            enable_wal: Switch the journal to WAL on connect
            timeout: Seconds to wait on a locked database
        """
        self.db_path = db_path
        self.enable_wal = enable_wal
        self.timeout = timeout
        self._connection: Optional[aiosqlite.Connection] = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> aiosqlite.Connection:
        """
        Open the connection, creating the parent directory if needed.

        Raises:
            DatabaseConnectionError: If SQLite cannot open the file
        """
        if self._connection is not None:
            return self._connection

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            connection = await aiosqlite.connect(str(self.db_path), timeout=self.timeout)
            connection.row_factory = aiosqlite.Row
            if self.enable_wal:
                await connection.execute("PRAGMA journal_mode = WAL")
        except Exception as e:
            logger.error("database_connection_failed", db_path=str(self.db_path), error=str(e))
            raise DatabaseConnectionError(
                f"Failed to open record store: {e}",
                path=self.db_path,
            ) from e

        self._connection = connection
        logger.info("database_connected", db_path=str(self.db_path), wal_mode=self.enable_wal)
        return connection

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("database_closed", db_path=str(self.db_path))

    async def __aenter__(self) -> aiosqlite.Connection:
        return await self.connect()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
