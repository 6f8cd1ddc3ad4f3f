"""Two-replica merge of library snapshots.

The merge is add/update biased: a record missing from one replica is never
deleted from the other. Conflicts are raised only when the remote copy is
strictly newer than the local one; equal timestamps keep the local copy
even when the contents differ.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import structlog

from shelfsync.core.codec import DEFAULT_COVER_MIME_TYPE, decode_asset
from shelfsync.core.exceptions import ConflictDismissed, DecodeError
from shelfsync.core.models import LibraryRecord, LibrarySnapshot

from .resolver import ConflictResolver, Divergence

logger = structlog.get_logger(__name__)


@dataclass
class MergeResult:
    """Reconciled record set and how each remote record was classified."""

    records: List[LibraryRecord] = field(default_factory=list)
    added: List[LibraryRecord] = field(default_factory=list)
    updated: List[LibraryRecord] = field(default_factory=list)
    unresolved: List[Divergence] = field(default_factory=list)
    decode_failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def added_count(self) -> int:
        return len(self.added)

    @property
    def updated_count(self) -> int:
        return len(self.updated)

    @property
    def unresolved_count(self) -> int:
        return len(self.unresolved)

    @property
    def has_changes(self) -> bool:
        """True when the merged set differs from the local replica."""
        return bool(self.added or self.updated)


def restore_assets(record: LibraryRecord) -> Tuple[LibraryRecord, List[str]]:
    """
    Decode the encoded book body and cover carried by ``record``.

    A payload that fails to decode is dropped from the record; the record
    itself is always returned.

    Returns:
        Tuple of (record with assets attached, wire names of dropped fields)
    """
    changes: Dict[str, object] = {}
    dropped: List[str] = []

    if record.original_file is not None:
        try:
            changes["body_asset"] = decode_asset(
                record.original_file,
                mime_type=record.file_type,
                file_name=record.file_name,
                field="originalFile",
            )
        except DecodeError as e:
            logger.warning("asset_decode_failed", record_id=record.id, field="originalFile", error=str(e))
            changes["original_file"] = None
            changes["body_asset"] = None
            dropped.append("originalFile")

    if record.original_cover_image is not None:
        try:
            changes["cover_asset"] = decode_asset(
                record.original_cover_image,
                mime_type=DEFAULT_COVER_MIME_TYPE,
                field="originalCoverImage",
            )
        except DecodeError as e:
            logger.warning(
                "asset_decode_failed",
                record_id=record.id,
                field="originalCoverImage",
                error=str(e),
            )
            changes["original_cover_image"] = None
            changes["cover_asset"] = None
            dropped.append("originalCoverImage")

    if not changes:
        return record, dropped
    return record.with_updates(**changes), dropped


class MergeEngine:
    """
    Computes the reconciled record set of a local and a remote snapshot.

    The resolver is consulted at most once per id, and only when the remote
    record's ``lastModified`` is strictly greater than the local one's.
    """

    def __init__(self, resolver: ConflictResolver):
        self.resolver = resolver

    async def _resolve(self, divergence: Divergence) -> bool:
        try:
            return bool(await self.resolver.resolve(divergence.local, divergence.remote))
        except ConflictDismissed:
            logger.info("conflict_dismissed", record_id=divergence.record_id)
            return False

    def _finalize(self, record: LibraryRecord, result: MergeResult) -> LibraryRecord:
        restored, dropped = restore_assets(record)
        result.decode_failures.extend((record.id, name) for name in dropped)
        return restored

    async def merge(self, local: LibrarySnapshot, remote: LibrarySnapshot) -> MergeResult:
        """
        Merge ``remote`` into ``local``.

        Local order is preserved; remote-only records are appended in remote
        order. If the resolver raises anything other than ConflictDismissed
        the merge is abandoned and the error propagates.
        """
        local_index = local.by_id()
        result = MergeResult()
        overrides: Dict[str, LibraryRecord] = {}
        seen_remote: set = set()

        for remote_record in remote.books:
            if remote_record.id in seen_remote:
                logger.warning("duplicate_remote_record_ignored", record_id=remote_record.id)
                continue
            seen_remote.add(remote_record.id)

            local_record: Optional[LibraryRecord] = local_index.get(remote_record.id)
            if local_record is None:
                logger.info("remote_record_added", record_id=remote_record.id, title=remote_record.title)
                result.added.append(self._finalize(remote_record, result))
                continue

            if remote_record.modified_at <= local_record.modified_at:
                continue

            divergence = Divergence(local=local_record, remote=remote_record)
            if await self._resolve(divergence):
                logger.info("remote_record_adopted", record_id=remote_record.id, title=remote_record.title)
                restored = self._finalize(remote_record, result)
                result.updated.append(restored)
                overrides[restored.id] = restored
            else:
                logger.info("local_record_kept", record_id=local_record.id, title=local_record.title)
                result.unresolved.append(divergence)

        for record_id, local_record in local_index.items():
            result.records.append(overrides.get(record_id, local_record))
        result.records.extend(result.added)

        logger.info(
            "merge_complete",
            local_count=len(local_index),
            remote_count=len(seen_remote),
            added=result.added_count,
            updated=result.updated_count,
            unresolved=result.unresolved_count,
            decode_failures=len(result.decode_failures),
        )
        return result
