"""Library service: importing books and covers, and saving reading state.

All writes go through the persistence retry wrapper, so a failed write is
reported as a failed outcome rather than an exception.

Example:
    >>> service = LibraryService(repository)
    >>> summary = await service.import_books([Path("dune.epub")])
    >>> summary.new
    1
"""

import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

import aiofiles
import aiofiles.os

from shelfsync.common.string_utils import normalize_string, title_from_cover_filename, title_similarity
from shelfsync.core.codec import DEFAULT_COVER_MIME_TYPE, DEFAULT_MIME_TYPE, BinaryAsset, encode_asset
from shelfsync.core.db.repository import RecordRepository
from shelfsync.core.exceptions import ValidationError
from shelfsync.core.identity import compute_record_id
from shelfsync.core.models import UNKNOWN_AUTHOR, LibraryRecord, LibrarySnapshot, now_ms
from shelfsync.core.retry import PersistenceRetry
from shelfsync.core.validation import validate_reading_state, validate_record

from .base import BaseService, NotFoundError, ServiceCallback

BOOK_EXTENSIONS = (".epub", ".pdf", ".mobi", ".azw3", ".cbz")
COVER_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif")

RIBBON_NEW = "NEW"
RIBBON_UPDATED = "UPDATED"
RIBBON_DURATION_MS = 60_000


def is_supported_book(file_name: str) -> bool:
    return file_name.lower().endswith(BOOK_EXTENSIONS)


def is_supported_cover(file_name: str) -> bool:
    return file_name.lower().endswith(COVER_EXTENSIONS)


@dataclass
class BookSource:
    """
    An input file handed to the library, already read into memory.

    Used for both book files and cover images.
    """

    file_name: str
    data: bytes
    file_type: Optional[str] = None
    last_modified: Optional[int] = None
    title: Optional[str] = None
    author: Optional[str] = None

    @property
    def file_size(self) -> int:
        return len(self.data)

    @property
    def stem(self) -> str:
        return Path(self.file_name).stem

    @classmethod
    async def from_path(
        cls,
        path: Path,
        title: Optional[str] = None,
        author: Optional[str] = None,
    ) -> "BookSource":
        """Read a file from disk, taking its MIME type from the extension."""
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        stat = await aiofiles.os.stat(path)
        mime_type, _ = mimetypes.guess_type(str(path))
        return cls(
            file_name=path.name,
            data=data,
            file_type=mime_type,
            last_modified=int(stat.st_mtime * 1000),
            title=title,
            author=author,
        )


class ImportStatus(str, Enum):
    NEW = "new"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ImportOutcome:
    """Result of importing one file."""

    status: ImportStatus
    file_name: str
    record: Optional[LibraryRecord] = None
    error: Optional[str] = None


@dataclass
class ImportSummary:
    """Aggregate result of a batch import."""

    succeeded: int = 0
    failed: int = 0
    new: int = 0
    updated: int = 0
    skipped: int = 0
    failed_items: List[Dict[str, str]] = field(default_factory=list)

    def add(self, outcome: ImportOutcome) -> None:
        if outcome.status is ImportStatus.NEW:
            self.succeeded += 1
            self.new += 1
        elif outcome.status is ImportStatus.UPDATED:
            self.succeeded += 1
            self.updated += 1
        elif outcome.status is ImportStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            self.failed_items.append(
                {"file_name": outcome.file_name, "error": outcome.error or "unknown error"}
            )


@dataclass(frozen=True)
class MatchResult:
    record: LibraryRecord
    score: float


def find_best_match(
    title: str,
    records: Iterable[LibraryRecord],
    threshold: float = 0.7,
) -> Optional[MatchResult]:
    """
    Pick the record whose title is most similar to ``title``.

    Only scores at or above ``threshold`` count. On a tie the record seen
    first wins. Records without a title are ignored.
    """
    best: Optional[MatchResult] = None
    for record in records:
        if not record.title:
            continue
        score = title_similarity(record.title, title)
        if score >= threshold and (best is None or score > best.score):
            best = MatchResult(record=record, score=score)
    return best


SourceLike = Union[Path, str, BookSource]


class LibraryService(BaseService):
    """
    Service for adding to and updating the local library.

    Batch operations isolate failures per item: one bad file is counted and
    reported through the callback, and the batch moves on.
    """

    def __init__(
        self,
        repository: RecordRepository,
        retry: Optional[PersistenceRetry] = None,
        callback: Optional[ServiceCallback] = None,
        similarity_threshold: Optional[float] = None,
    ):
        super().__init__(repository, retry, callback)
        if similarity_threshold is None:
            similarity_threshold = self._get_config().matching.similarity_threshold
        self.similarity_threshold = similarity_threshold

    async def _as_source(self, item: SourceLike) -> BookSource:
        if isinstance(item, BookSource):
            return item
        return await BookSource.from_path(Path(item))

    @staticmethod
    def _name_of(item: SourceLike) -> str:
        if isinstance(item, BookSource):
            return item.file_name
        return Path(item).name

    async def _store(self, record: LibraryRecord, label: str) -> bool:
        return await self.retry.write(
            lambda: self.repository.put(record),
            validate=lambda: validate_record(record),
            label=label,
        )

    # ==================== Books ====================

    def build_record(self, source: BookSource) -> LibraryRecord:
        """Create a new record for ``source`` with its identity hash."""
        now = now_ms()
        title = source.title or source.stem
        author = source.author or UNKNOWN_AUTHOR
        body = BinaryAsset(
            data=source.data,
            mime_type=source.file_type or DEFAULT_MIME_TYPE,
            file_name=source.file_name,
        )
        return LibraryRecord(
            id=compute_record_id(title, author, source.file_name, source.file_size),
            title=title,
            author=author,
            file_name=source.file_name,
            file_type=source.file_type,
            file_size=source.file_size,
            last_modified=source.last_modified or now,
            progress=0.0,
            last_accessed=now,
            date_added=now,
            ribbon_data=RIBBON_NEW,
            ribbon_expiry=now + RIBBON_DURATION_MS,
            original_file=encode_asset(body),
            body_asset=body,
        )

    async def import_book(
        self,
        source: SourceLike,
        seen: Optional[Set[Tuple[str, int]]] = None,
    ) -> ImportOutcome:
        """
        Import one book file.

        A file whose name and size match an existing record, or a file
        already imported in the same batch (``seen``), is skipped.
        """
        name = self._name_of(source)
        if not is_supported_book(name):
            self.logger.info("book_unsupported_format", file_name=name)
            return ImportOutcome(ImportStatus.SKIPPED, name, error="unsupported format")

        source = await self._as_source(source)
        key = (source.file_name, source.file_size)

        if (seen is not None and key in seen) or await self.repository.find_by_file(*key):
            self.logger.info("book_already_imported", file_name=source.file_name)
            return ImportOutcome(ImportStatus.SKIPPED, source.file_name)

        record = self.build_record(source)
        if not await self._store(record, "import_book"):
            return ImportOutcome(
                ImportStatus.FAILED,
                source.file_name,
                error="Failed to save book to database",
            )

        if seen is not None:
            seen.add(key)
        self.logger.info(
            "book_imported",
            record_id=record.id,
            title=record.title,
            file_name=record.file_name,
            file_size=record.file_size,
        )
        return ImportOutcome(ImportStatus.NEW, source.file_name, record=record)

    async def import_books(self, sources: Sequence[SourceLike]) -> ImportSummary:
        """Import several book files; unsupported formats are dropped up front."""
        supported = [s for s in sources if is_supported_book(self._name_of(s))]
        dropped = len(sources) - len(supported)
        if dropped:
            self.logger.info("books_unsupported_dropped", count=dropped)

        summary = ImportSummary()
        seen: Set[Tuple[str, int]] = set()
        total = len(supported)

        for index, item in enumerate(supported, start=1):
            name = self._name_of(item)
            await self._report_progress(index, total, f"Processing book {index}/{total}: {name}")
            try:
                outcome = await self.import_book(item, seen=seen)
            except Exception as e:
                self.logger.error("book_import_failed", file_name=name, error=str(e))
                outcome = ImportOutcome(ImportStatus.FAILED, name, error=str(e))

            if outcome.status is ImportStatus.FAILED:
                await self._report_failure(
                    RuntimeError(outcome.error or "import failed"),
                    {"file_name": name},
                )
            summary.add(outcome)

        self.logger.info(
            "books_import_complete",
            succeeded=summary.succeeded,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        await self._report_complete(summary)
        return summary

    # ==================== Covers ====================

    async def import_cover(
        self,
        source: SourceLike,
        records: Optional[List[LibraryRecord]] = None,
        threshold: Optional[float] = None,
    ) -> ImportOutcome:
        """
        Attach a cover image to the record whose title best matches its file name.

        Args:
            source: Cover image path or in-memory source
            records: Candidate records (defaults to the whole library)
            threshold: Minimum similarity (defaults to the configured threshold)
        """
        name = self._name_of(source)
        if not is_supported_cover(name):
            self.logger.info("cover_unsupported_format", file_name=name)
            return ImportOutcome(ImportStatus.SKIPPED, name, error="unsupported format")

        source = await self._as_source(source)
        if records is None:
            records = await self.repository.get_all()
        if threshold is None:
            threshold = self.similarity_threshold

        title = title_from_cover_filename(source.file_name)
        match = find_best_match(title, records, threshold)
        if match is None:
            self.logger.info("cover_unmatched", file_name=source.file_name, title=title, threshold=threshold)
            return ImportOutcome(
                ImportStatus.FAILED,
                source.file_name,
                error=f"No book matches '{title}'",
            )

        now = now_ms()
        cover = BinaryAsset(
            data=source.data,
            mime_type=source.file_type or DEFAULT_COVER_MIME_TYPE,
            file_name=source.file_name,
        )
        updated = match.record.with_updates(
            cover_asset=cover,
            original_cover_image=encode_asset(cover),
            last_modified=now,
            last_accessed=now,
            ribbon_data=RIBBON_UPDATED,
            ribbon_expiry=now + RIBBON_DURATION_MS,
        )
        if not await self._store(updated, "import_cover"):
            return ImportOutcome(
                ImportStatus.FAILED,
                source.file_name,
                error="Failed to save updated book cover to database",
            )

        self.logger.info(
            "cover_matched",
            file_name=source.file_name,
            record_id=updated.id,
            title=updated.title,
            score=round(match.score, 3),
        )
        return ImportOutcome(ImportStatus.UPDATED, source.file_name, record=updated)

    async def import_covers(
        self,
        sources: Sequence[SourceLike],
        threshold: Optional[float] = None,
    ) -> ImportSummary:
        """Match several cover images against the library as it was when the batch started."""
        supported = [s for s in sources if is_supported_cover(self._name_of(s))]
        records = await self.repository.get_all()
        summary = ImportSummary()
        total = len(supported)

        for index, item in enumerate(supported, start=1):
            name = self._name_of(item)
            await self._report_progress(index, total, f"Processing cover {index}/{total}: {name}")
            try:
                outcome = await self.import_cover(item, records=records, threshold=threshold)
            except Exception as e:
                self.logger.error("cover_import_failed", file_name=name, error=str(e))
                outcome = ImportOutcome(ImportStatus.FAILED, name, error=str(e))

            if outcome.status is ImportStatus.FAILED:
                await self._report_failure(
                    RuntimeError(outcome.error or "cover import failed"),
                    {"file_name": name},
                )
            summary.add(outcome)

        self.logger.info(
            "covers_import_complete",
            updated=summary.updated,
            failed=summary.failed,
        )
        await self._report_complete(summary)
        return summary

    # ==================== Reading state ====================

    async def save_progress(
        self,
        record_id: str,
        progress: Any,
        font_size: Optional[Any] = None,
    ) -> bool:
        """
        Persist reading progress and, optionally, font size.

        Out-of-range values are rejected before the store is touched.

        Returns:
            True if the new state was written
        """
        try:
            validate_reading_state(progress, font_size)
        except ValidationError as e:
            self.logger.warning(
                "progress_rejected",
                record_id=record_id,
                field=e.field,
                value=e.value,
            )
            return False

        record = await self.repository.get(record_id)
        if record is None:
            self.logger.warning("progress_record_not_found", record_id=record_id)
            return False

        now = now_ms()
        changes: Dict[str, Any] = {
            "progress": float(progress),
            "last_modified": now,
            "last_accessed": now,
        }
        if font_size is not None:
            changes["font_size"] = int(font_size)
        updated = record.with_updates(**changes)

        saved = await self._store(updated, "save_progress")
        if saved:
            self.logger.debug("progress_saved", record_id=record_id, progress=updated.progress)
        return saved

    # ==================== Metadata ====================

    async def _edit_metadata(self, record_id: str, field_name: str, value: str) -> bool:
        record = await self.repository.get(record_id)
        if record is None:
            self.logger.warning("edit_record_not_found", record_id=record_id, field=field_name)
            return False

        if value == getattr(record, field_name):
            self.logger.debug("edit_unchanged", record_id=record_id, field=field_name)
            return False

        now = now_ms()
        # the id stays as computed at import time
        updated = record.with_updates(**{field_name: value, "last_modified": now, "last_accessed": now})
        saved = await self._store(updated, f"edit_{field_name}")
        if saved:
            self.logger.info("record_edited", record_id=record_id, field=field_name, value=value)
        return saved

    async def edit_title(self, record_id: str, title: str) -> bool:
        """
        Rename a book. Surrounding whitespace is trimmed; a blank title is ignored.

        Returns:
            True if the new title was written
        """
        title = title.strip()
        if not title:
            self.logger.info("edit_title_blank", record_id=record_id)
            return False
        return await self._edit_metadata(record_id, "title", title)

    async def edit_author(self, record_id: str, author: str) -> bool:
        """Change a book's author. Unlike the title, an empty author is allowed."""
        return await self._edit_metadata(record_id, "author", author.strip())

    async def search(self, query: str) -> List[LibraryRecord]:
        """
        Find records whose title or author contains ``query``, ignoring case.

        A blank query matches nothing.
        """
        needle = normalize_string(query)
        if not needle:
            return []
        results = [
            record
            for record in await self.repository.get_all()
            if needle in normalize_string(record.title) or needle in normalize_string(record.author)
        ]
        self.logger.debug("library_searched", query=needle, count=len(results))
        return results

    async def get_record(self, record_id: str) -> LibraryRecord:
        """
        Raises:
            NotFoundError: If no record has ``record_id``
        """
        record = await self.repository.get(record_id)
        if record is None:
            raise NotFoundError(f"Record not found: {record_id}", resource_id=record_id)
        return record

    async def remove_record(self, record_id: str) -> bool:
        """Explicitly delete a record. Sync never does this on its own."""
        removed = False

        async def delete() -> bool:
            nonlocal removed
            removed = await self.repository.delete(record_id)
            return True

        if not await self.retry.write(delete, label="remove_record"):
            return False
        if removed:
            self.logger.info("record_removed", record_id=record_id)
        else:
            self.logger.info("record_remove_missing", record_id=record_id)
        return removed

    async def clear_library(self) -> Optional[int]:
        """
        Remove every record from the local library.

        Sync never clears the library by itself, and a cleared library is
        refilled from the remote on the next cycle.

        Returns:
            Number of records removed, or None if the store could not be cleared
        """
        removed = 0

        async def clear() -> bool:
            nonlocal removed
            removed = await self.repository.clear()
            return True

        if not await self.retry.write(clear, label="clear_library"):
            return None
        self.logger.info("library_cleared", count=removed)
        return removed

    async def local_snapshot(self) -> LibrarySnapshot:
        """Capture the whole local library."""
        return LibrarySnapshot.capture(await self.repository.get_all())
