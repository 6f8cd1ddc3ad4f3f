"""Schema migrations for the record store.

Migrations are numbered ``NNN_description.sql`` files applied in order and
tracked in ``schema_migrations`` together with a content checksum.
"""

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import List, NamedTuple, Set

import aiosqlite
import structlog

from .exceptions import MigrationError

logger = structlog.get_logger(__name__)

DEFAULT_MIGRATIONS_DIR = Path(__file__).parent / "migrations"


class Migration(NamedTuple):
    version: int
    filename: str
    sql: str
    checksum: str


class Migrator:
    """Applies pending migrations on an open connection."""

    def __init__(self, migrations_dir: Path = DEFAULT_MIGRATIONS_DIR):
        self.migrations_dir = migrations_dir

    async def run_migrations(self, db: aiosqlite.Connection) -> int:
        """
        Apply every migration that has not been applied yet.

        Returns:
            Number of migrations applied

        Raises:
            MigrationError: If a migration file cannot be read or executed
        """
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                filename TEXT NOT NULL,
                checksum TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
            """
        )
        await db.commit()

        pending = self.pending_migrations(await self._applied_versions(db))
        if not pending:
            logger.debug("no_pending_migrations")
            return 0

        for migration in pending:
            logger.info("migration_applying", version=migration.version, filename=migration.filename)
            try:
                await db.executescript(migration.sql)
                await db.execute(
                    """
                    INSERT INTO schema_migrations (version, filename, checksum, applied_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        migration.version,
                        migration.filename,
                        migration.checksum,
                        datetime.now(timezone.utc).isoformat(),
                    ),
                )
                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.error(
                    "migration_failed",
                    version=migration.version,
                    filename=migration.filename,
                    error=str(e),
                )
                raise MigrationError(
                    f"Migration {migration.filename} failed: {e}",
                    version=migration.version,
                    filename=migration.filename,
                ) from e

        logger.info("migrations_complete", applied=len(pending))
        return len(pending)

    async def _applied_versions(self, db: aiosqlite.Connection) -> Set[int]:
        cursor = await db.execute("SELECT version FROM schema_migrations")
        rows = await cursor.fetchall()
        return {row[0] for row in rows}

    def pending_migrations(self, applied: Set[int]) -> List[Migration]:
        """List migrations whose version is not in ``applied``, lowest first."""
        if not self.migrations_dir.exists():
            logger.warning("migrations_dir_not_found", path=str(self.migrations_dir))
            return []

        pending = []
        for sql_file in sorted(self.migrations_dir.glob("*.sql")):
            try:
                version = int(sql_file.stem.split("_")[0])
            except ValueError:
                logger.warning("migration_filename_invalid", filename=sql_file.name)
                continue
            if version in applied:
                continue

            try:
                sql = sql_file.read_text(encoding="utf-8")
            except OSError as e:
                raise MigrationError(
                    f"Failed to read migration {sql_file.name}: {e}",
                    version=version,
                    filename=sql_file.name,
                ) from e
            checksum = hashlib.sha256(sql.encode()).hexdigest()
            pending.append(Migration(version, sql_file.name, sql, checksum))

        pending.sort(key=lambda m: m.version)
        return pending
