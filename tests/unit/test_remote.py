"""Tests for the Drive-style remote snapshot adapter."""

import re
from datetime import datetime

import httpx
import pytest
import pytest_asyncio
import respx

from shelfsync.common.config import RemoteConfig
from shelfsync.sync import DriveSnapshotAdapter, StaticTokenAuthenticator
from shelfsync.sync.remote import backup_file_name

HOST = "drive.test"
BASE_URL = f"https://{HOST}/v3"
UPLOAD_URL = f"https://{HOST}/upload/v3"


@pytest_asyncio.fixture
async def adapter():
    remote = DriveSnapshotAdapter(RemoteConfig(base_url=BASE_URL, upload_url=UPLOAD_URL, timeout=5))
    yield remote
    await remote.aclose()


class TestDownload:
    """Tests for snapshot download."""

    @pytest.mark.asyncio
    async def test_download_returns_content(self, adapter):
        with respx.mock:
            route = respx.route(method="GET", host=HOST, path="/v3/files/file-1").mock(
                return_value=httpx.Response(200, content=b'{"timestamp": 1, "books": []}')
            )
            data = await adapter.download("file-1", "token-1")

        assert data == b'{"timestamp": 1, "books": []}'
        request = route.calls.last.request
        assert request.url.params["alt"] == "media"
        assert request.headers["Authorization"] == "Bearer token-1"

    @pytest.mark.parametrize("status_code", [401, 404, 500])
    @pytest.mark.asyncio
    async def test_http_error_returns_none(self, adapter, status_code):
        with respx.mock:
            respx.route(method="GET", host=HOST, path="/v3/files/file-1").mock(return_value=httpx.Response(status_code))
            assert await adapter.download("file-1", "token-1") is None

    @pytest.mark.asyncio
    async def test_connection_error_returns_none(self, adapter):
        with respx.mock:
            respx.route(method="GET", host=HOST, path="/v3/files/file-1").mock(side_effect=httpx.ConnectError("offline"))
            assert await adapter.download("file-1", "token-1") is None


class TestUpload:
    """Tests for snapshot overwrite."""

    @pytest.mark.asyncio
    async def test_upload_sends_body(self, adapter):
        with respx.mock:
            route = respx.route(method="PATCH", host=HOST, path="/upload/v3/files/file-1").mock(
                return_value=httpx.Response(200, json={"id": "file-1"})
            )
            assert await adapter.upload("file-1", "token-1", b"snapshot") is True

        request = route.calls.last.request
        assert request.content == b"snapshot"
        assert request.url.params["uploadType"] == "media"
        assert request.headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_upload_failure(self, adapter):
        with respx.mock:
            respx.route(method="PATCH", host=HOST, path="/upload/v3/files/file-1").mock(return_value=httpx.Response(403))
            assert await adapter.upload("file-1", "token-1", b"snapshot") is False


class TestCreate:
    """Tests for snapshot file creation."""

    @pytest.mark.asyncio
    async def test_create_returns_new_id(self, adapter):
        with respx.mock:
            route = respx.route(method="POST", host=HOST, path="/upload/v3/files").mock(
                return_value=httpx.Response(200, json={"id": "new-file"})
            )
            file_id = await adapter.create("folder-1", "token-1", b"{}")

        assert file_id == "new-file"
        request = route.calls.last.request
        assert request.url.params["uploadType"] == "multipart"
        body = request.read()
        assert b"folder-1" in body
        assert b"shelfsync_backup_" in body

    @pytest.mark.asyncio
    async def test_create_without_id(self, adapter):
        with respx.mock:
            respx.route(method="POST", host=HOST, path="/upload/v3/files").mock(return_value=httpx.Response(200, json={}))
            assert await adapter.create("folder-1", "token-1", b"{}") is None

    @pytest.mark.asyncio
    async def test_create_failure(self, adapter):
        with respx.mock:
            respx.route(method="POST", host=HOST, path="/upload/v3/files").mock(return_value=httpx.Response(500))
            assert await adapter.create("folder-1", "token-1", b"{}") is None


class TestHelpers:
    """Tests for authenticator and naming helpers."""

    def test_backup_file_name(self):
        name = backup_file_name(datetime(2024, 1, 2, 3, 4, 5))
        assert name == "shelfsync_backup_2024-01-02T03-04-05.json"

    def test_backup_file_name_default_now(self):
        assert re.fullmatch(r"shelfsync_backup_\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}\.json", backup_file_name())

    @pytest.mark.asyncio
    async def test_static_token(self):
        assert await StaticTokenAuthenticator("abc").authenticate() == "abc"
        assert await StaticTokenAuthenticator("").authenticate() is None
