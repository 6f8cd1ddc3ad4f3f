"""Sync session: persisted sync settings plus the current access token.

A session is created, initialized (settings loaded from disk), used by the
orchestrator and finally disposed. Nothing about sync lives in module
globals.
"""

import json
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiofiles.os
import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

logger = structlog.get_logger(__name__)

DEFAULT_SYNC_INTERVAL_MS = 30_000


class SyncSettings(BaseModel):
    """Persisted sync configuration (camelCase on disk)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sync_enabled: bool = Field(default=False, alias="syncEnabled")
    sync_interval: int = Field(default=DEFAULT_SYNC_INTERVAL_MS, alias="syncInterval", gt=0)
    file_id: Optional[str] = Field(default=None, alias="fileId")
    last_sync_time: int = Field(default=0, alias="lastSyncTime", ge=0)

    @property
    def interval_seconds(self) -> float:
        return self.sync_interval / 1000

    @property
    def is_configured(self) -> bool:
        """Sync can run: it is enabled and a remote file is known."""
        return self.sync_enabled and bool(self.file_id)


class SyncSettingsStore:
    """Loads and saves SyncSettings as a JSON file."""

    def __init__(self, path: Path, default_interval_ms: int = DEFAULT_SYNC_INTERVAL_MS):
        self.path = path
        self.default_interval_ms = default_interval_ms

    def defaults(self) -> SyncSettings:
        return SyncSettings(sync_interval=self.default_interval_ms)

    async def load(self) -> SyncSettings:
        """Read settings; a missing or unreadable file yields defaults."""
        if not await aiofiles.os.path.exists(self.path):
            logger.debug("sync_settings_missing", path=str(self.path))
            return self.defaults()

        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                raw = await f.read()
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            settings = self.defaults().model_copy(
                update=SyncSettings.model_validate(data).model_dump(exclude_unset=True)
            )
        except (OSError, ValueError, PydanticValidationError) as e:
            logger.warning("sync_settings_corrupt", path=str(self.path), error=str(e))
            return self.defaults()

        logger.debug("sync_settings_loaded", path=str(self.path), enabled=settings.sync_enabled)
        return settings

    async def save(self, settings: SyncSettings) -> None:
        """Write settings, replacing the previous file in one step."""
        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(settings.model_dump_json(by_alias=True, indent=2))
        await aiofiles.os.replace(tmp_path, self.path)
        logger.debug("sync_settings_saved", path=str(self.path))


class SyncSession:
    """
    Explicit lifecycle around sync settings and the access token.

    Example:
        >>> session = SyncSession.create(Path("~/.shelfsync/sync.json"))
        >>> await session.init()
        >>> await session.update(sync_enabled=True, file_id="abc")
        >>> await session.dispose()
    """

    def __init__(self, store: SyncSettingsStore):
        self.store = store
        self._settings: Optional[SyncSettings] = None
        self._access_token: Optional[str] = None

    @classmethod
    def create(cls, settings_path: Path, default_interval_seconds: Optional[float] = None) -> "SyncSession":
        """Build an uninitialized session backed by ``settings_path``."""
        interval_ms = DEFAULT_SYNC_INTERVAL_MS
        if default_interval_seconds is not None:
            interval_ms = int(default_interval_seconds * 1000)
        return cls(SyncSettingsStore(settings_path, default_interval_ms=interval_ms))

    @property
    def initialized(self) -> bool:
        return self._settings is not None

    @property
    def settings(self) -> SyncSettings:
        """
        Raises:
            RuntimeError: If init() has not been awaited
        """
        if self._settings is None:
            raise RuntimeError("SyncSession not initialized; call init() first")
        return self._settings

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    def set_access_token(self, token: Optional[str]) -> None:
        self._access_token = token

    def clear_access_token(self) -> None:
        self._access_token = None

    async def init(self) -> SyncSettings:
        """Load persisted settings. Calling it again is a no-op."""
        if self._settings is None:
            self._settings = await self.store.load()
            logger.info(
                "sync_session_initialized",
                enabled=self._settings.sync_enabled,
                file_id=self._settings.file_id,
                interval_ms=self._settings.sync_interval,
            )
        return self._settings

    async def update(self, **changes: Any) -> SyncSettings:
        """
        Apply changes (snake_case field names) and persist them.

        Raises:
            pydantic.ValidationError: If a change is invalid
        """
        merged = {**self.settings.model_dump(), **changes}
        updated = SyncSettings.model_validate(merged)
        await self.store.save(updated)
        self._settings = updated
        return updated

    async def dispose(self) -> None:
        """Forget the token and the loaded settings."""
        self._access_token = None
        self._settings = None
        logger.info("sync_session_disposed")
