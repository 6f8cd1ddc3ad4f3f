"""Sync orchestrator: one reconcile cycle at a time, rescheduled after each.

A cycle moves through IDLE -> AUTHENTICATING -> DOWNLOADING -> MERGING
-> (AWAITING_CONFLICT_RESOLUTION)* -> UPLOADING -> IDLE. Any failure ends
the cycle with a failed SyncResult and leaves both replicas as they were
before the failing stage. Stopping sync prevents the next cycle; a cycle
that is already running is allowed to finish.
"""

import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol

import structlog

from shelfsync.common.logging_config import log_context
from shelfsync.core.db.repository import RecordRepository
from shelfsync.core.exceptions import NetworkError, TransientStorageError
from shelfsync.core.models import LibraryRecord, LibrarySnapshot, now_ms
from shelfsync.core.retry import PersistenceRetry
from shelfsync.core.validation import validate_record

from .merge import MergeEngine, MergeResult
from .remote import Authenticator, RemoteSnapshotStore
from .resolver import ConflictResolver
from .session import SyncSession

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class SyncState(str, Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    DOWNLOADING = "downloading"
    MERGING = "merging"
    AWAITING_CONFLICT_RESOLUTION = "awaiting_conflict_resolution"
    UPLOADING = "uploading"


@dataclass(frozen=True)
class Authenticated:
    token: str


@dataclass(frozen=True)
class PickerResult:
    """
    Where the remote snapshot lives.

    A picker returns either an existing ``file_id`` or a ``folder_id`` to
    create a new snapshot file in; setup() fills in the created file id.
    """

    file_id: Optional[str] = None
    folder_id: Optional[str] = None
    created: bool = False


@dataclass(frozen=True)
class UploadResult:
    file_id: str
    size: int


@dataclass
class SyncResult:
    """Outcome of one cycle. ``removed`` is always 0: deletions are not synced."""

    success: bool
    added: int = 0
    updated: int = 0
    removed: int = 0
    unresolved: int = 0
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "SyncResult":
        return cls(success=False, error=error)


class SnapshotPicker(Protocol):
    async def pick(self, token: str) -> Optional[PickerResult]:
        ...


class _StateTrackingResolver:
    """Marks the orchestrator as awaiting a decision while the resolver runs."""

    def __init__(self, orchestrator: "SyncOrchestrator", inner: ConflictResolver):
        self._orchestrator = orchestrator
        self._inner = inner

    async def resolve(self, local: LibraryRecord, remote: LibraryRecord) -> bool:
        self._orchestrator._set_state(SyncState.AWAITING_CONFLICT_RESOLUTION)
        try:
            return await self._inner.resolve(local, remote)
        finally:
            self._orchestrator._set_state(SyncState.MERGING)


class SyncOrchestrator:
    """
    Drives reconcile cycles between the local store and the remote snapshot.

    Example:
        >>> orchestrator = SyncOrchestrator(session, repository, remote, auth, resolver)
        >>> result = await orchestrator.run_cycle()
        >>> await orchestrator.start()  # keep syncing every interval
    """

    def __init__(
        self,
        session: SyncSession,
        repository: RecordRepository,
        remote: RemoteSnapshotStore,
        authenticator: Authenticator,
        resolver: ConflictResolver,
        retry: Optional[PersistenceRetry] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.session = session
        self.repository = repository
        self.remote = remote
        self.authenticator = authenticator
        self.resolver = resolver
        self.retry = retry or PersistenceRetry()
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._state = SyncState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._stop_requested = False
        self._in_cycle = False
        self.last_result: Optional[SyncResult] = None

    @property
    def state(self) -> SyncState:
        return self._state

    def _set_state(self, state: SyncState) -> None:
        if state is not self._state:
            logger.debug("sync_state_changed", previous=self._state.value, state=state.value)
            self._state = state

    # ==================== Stages ====================

    async def _authenticate(self) -> Authenticated:
        self._set_state(SyncState.AUTHENTICATING)
        token = self.session.access_token
        if token:
            return Authenticated(token)

        token = await self.authenticator.authenticate()
        if not token:
            raise NetworkError("Failed to authenticate with remote store", stage="authenticate")
        self.session.set_access_token(token)
        logger.info("sync_authenticated")
        return Authenticated(token)

    async def _download(self, auth: Authenticated, file_id: str) -> LibrarySnapshot:
        self._set_state(SyncState.DOWNLOADING)
        payload = await self.remote.download(file_id, auth.token)
        if payload is None:
            raise NetworkError("Failed to download backup file", stage="download")
        snapshot = LibrarySnapshot.from_json(payload)
        logger.info("remote_snapshot_loaded", records=len(snapshot.books), timestamp=snapshot.timestamp)
        return snapshot

    async def _merge(self, local: LibrarySnapshot, remote: LibrarySnapshot) -> MergeResult:
        self._set_state(SyncState.MERGING)
        engine = MergeEngine(_StateTrackingResolver(self, self.resolver))
        result = await engine.merge(local, remote)
        for record in result.records:
            validate_record(record)
        return result

    async def _upload(self, auth: Authenticated, file_id: str, records: List[LibraryRecord]) -> UploadResult:
        self._set_state(SyncState.UPLOADING)
        data = LibrarySnapshot.capture(records).to_bytes()
        if not await self.remote.upload(file_id, auth.token, data):
            raise NetworkError("Failed to upload merged snapshot", stage="upload")
        return UploadResult(file_id=file_id, size=len(data))

    async def _persist_local(self, records: List[LibraryRecord]) -> None:
        saved = await self.retry.write(
            lambda: self.repository.put_many(records),
            label="sync_save_local",
        )
        if not saved:
            raise TransientStorageError("Failed to save merged library locally", operation="put_many")

    # ==================== Cycle ====================

    async def run_cycle(self) -> SyncResult:
        """
        Run one reconcile cycle. Never raises; failures come back as a failed SyncResult.
        """
        async with self._lock:
            self._in_cycle = True
            try:
                with log_context(sync_cycle=uuid.uuid4().hex[:8]):
                    result = await self._run_cycle()
            finally:
                self._set_state(SyncState.IDLE)
                self._in_cycle = False
            self.last_result = result
            return result

    async def _run_cycle(self) -> SyncResult:
        settings = await self.session.init()
        if not settings.is_configured:
            logger.info("sync_skipped_not_configured")
            return SyncResult.failure("Sync not enabled or no file configured")

        logger.info("sync_cycle_started", file_id=settings.file_id)
        try:
            auth = await self._authenticate()
            remote = await self._download(auth, settings.file_id)
            local = LibrarySnapshot.capture(await self.repository.get_all())
            merged = await self._merge(local, remote)

            if merged.has_changes:
                upload = await self._upload(auth, settings.file_id, merged.records)
                await self._persist_local(merged.records)
                await self.session.update(last_sync_time=now_ms())
                logger.info("sync_changes_written", file_id=upload.file_id, size=upload.size)
            else:
                logger.info("sync_no_changes")
        except Exception as e:
            if isinstance(e, NetworkError):
                self.session.clear_access_token()
            logger.error(
                "sync_cycle_failed",
                state=self._state.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return SyncResult.failure(str(e))

        result = SyncResult(
            success=True,
            added=merged.added_count,
            updated=merged.updated_count,
            unresolved=merged.unresolved_count,
        )
        logger.info(
            "sync_cycle_complete",
            added=result.added,
            updated=result.updated,
            unresolved=result.unresolved,
        )
        return result

    # ==================== Scheduling ====================

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stop_requested

    def _interval_seconds(self) -> float:
        return self.session.settings.interval_seconds

    async def _schedule_loop(self) -> None:
        try:
            while not self._stop_requested:
                await self._sleep(self._interval_seconds())
                if self._stop_requested:
                    break
                await self.run_cycle()
        except asyncio.CancelledError:
            pass
        logger.info("sync_schedule_stopped")

    async def start(self) -> None:
        """Run a cycle every interval, each one scheduled after the previous ends."""
        if self.is_running:
            logger.warning("sync_already_running")
            return
        if self._task is not None and not self._task.done():
            await self._task
        await self.session.init()
        self._stop_requested = False
        self._task = asyncio.create_task(self._schedule_loop())
        logger.info("sync_schedule_started", interval_seconds=self._interval_seconds())

    async def stop(self) -> None:
        """
        Prevent the next cycle. A cycle already in progress runs to completion.
        """
        task = self._task
        if task is None:
            return
        self._stop_requested = True
        if not self._in_cycle and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if task.done():
            self._task = None

    async def resume(self) -> bool:
        """Start scheduling if persisted settings say sync is enabled."""
        settings = await self.session.init()
        if settings.is_configured:
            await self.start()
            return True
        return False

    async def setup(self, picker: SnapshotPicker) -> Optional[PickerResult]:
        """
        Choose the remote snapshot file and enable sync.

        For a new file, the current local library is uploaded as its first
        contents. Returns None if authentication fails, the picker is
        cancelled or the file cannot be created.
        """
        await self.session.init()
        try:
            auth = await self._authenticate()
        except NetworkError as e:
            logger.error("sync_setup_failed", stage=e.stage, error=str(e))
            return None
        finally:
            self._set_state(SyncState.IDLE)

        choice = await picker.pick(auth.token)
        if choice is None:
            logger.info("sync_setup_cancelled")
            return None

        if choice.file_id:
            result = choice
        elif choice.folder_id:
            snapshot = LibrarySnapshot.capture(await self.repository.get_all())
            file_id = await self.remote.create(choice.folder_id, auth.token, snapshot.to_bytes())
            if file_id is None:
                logger.error("sync_setup_failed", stage="create", folder_id=choice.folder_id)
                return None
            result = PickerResult(file_id=file_id, folder_id=choice.folder_id, created=True)
        else:
            logger.warning("sync_setup_empty_choice")
            return None

        await self.session.update(sync_enabled=True, file_id=result.file_id)
        logger.info("sync_setup_complete", file_id=result.file_id, created=result.created)
        return result

    async def disable(self) -> None:
        """Stop scheduling and persist sync as disabled."""
        await self.stop()
        await self.session.init()
        await self.session.update(sync_enabled=False)
        logger.info("sync_disabled")
