"""Shared pytest fixtures for all tests."""

from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
import pytest_asyncio

import shelfsync
from shelfsync.common.config import Config, LoggingConfig, RetryConfig
from shelfsync.core.db import RecordRepository
from shelfsync.core.identity import compute_record_id
from shelfsync.core.models import LibraryRecord, LibrarySnapshot
from shelfsync.core.retry import PersistenceRetry
from shelfsync.sync import SyncSession


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path):
    """Point the package-level config at a temporary directory."""
    config = Config(
        config_dir=tmp_path / "config",
        logging=LoggingConfig(level="DEBUG", format="text"),
    )
    shelfsync._config = config
    yield config
    shelfsync._config = None
    shelfsync._repository = None


@pytest.fixture
def retry_config() -> RetryConfig:
    """Provide the default retry schedule (3 attempts, 0.8s then 1.2s)."""
    return RetryConfig(max_attempts=3, base_delay=0.8, multiplier=1.5, max_delay=3.0)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def retry(retry_config: RetryConfig, fake_sleep: FakeSleep) -> PersistenceRetry:
    """Retry wrapper that never actually sleeps."""
    return PersistenceRetry(retry_config, sleep=fake_sleep)


@pytest_asyncio.fixture
async def test_repository(tmp_path: Path) -> RecordRepository:
    """Provide a record store with migrations applied."""
    # WAL disabled in tests to avoid lock issues
    repo = await RecordRepository.open(tmp_path / "test_shelfsync.db", enable_wal=False)
    yield repo
    await repo.close()


@pytest.fixture
def make_record() -> Callable[..., LibraryRecord]:
    """Factory for records whose id is derived from their metadata."""

    def factory(
        title: str = "Dune",
        author: str = "Frank Herbert",
        file_name: Optional[str] = None,
        file_size: int = 1024,
        last_modified: Optional[int] = 100,
        **fields,
    ) -> LibraryRecord:
        file_name = file_name or f"{title.lower().replace(' ', '_')}.epub"
        fields.setdefault("file_type", "application/epub+zip")
        return LibraryRecord(
            id=compute_record_id(title, author, file_name, file_size),
            title=title,
            author=author,
            file_name=file_name,
            file_size=file_size,
            last_modified=last_modified,
            **fields,
        )

    return factory


class FakeRemote:
    """In-memory remote snapshot store; every call is appended to ``events``."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.events: List[str] = []
        self.tokens: List[str] = []
        self.download_fails = False
        self.upload_fails = False

    async def download(self, file_id: str, token: str) -> Optional[bytes]:
        self.events.append("download")
        self.tokens.append(token)
        if self.download_fails:
            return None
        return self.files.get(file_id)

    async def upload(self, file_id: str, token: str, data: bytes) -> bool:
        self.events.append("upload")
        if self.upload_fails:
            return False
        self.files[file_id] = data
        return True

    async def create(self, folder_id: str, token: str, data: bytes) -> Optional[str]:
        self.events.append("create")
        file_id = f"{folder_id}-snapshot"
        self.files[file_id] = data
        return file_id

    def put_snapshot(self, file_id: str, snapshot: LibrarySnapshot) -> None:
        self.files[file_id] = snapshot.to_bytes()

    def snapshot(self, file_id: str) -> LibrarySnapshot:
        return LibrarySnapshot.from_json(self.files[file_id])


class CountingAuthenticator:
    def __init__(self, token: Optional[str] = "token-1") -> None:
        self.token = token
        self.calls = 0

    async def authenticate(self) -> Optional[str]:
        self.calls += 1
        return self.token


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def authenticator() -> CountingAuthenticator:
    return CountingAuthenticator()


@pytest_asyncio.fixture
async def sync_session(tmp_path: Path) -> SyncSession:
    """Session with sync enabled against remote file ``file-1``."""
    session = SyncSession.create(tmp_path / "sync.json")
    await session.init()
    await session.update(sync_enabled=True, file_id="file-1")
    yield session
    await session.dispose()
