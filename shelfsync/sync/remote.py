"""Remote replica access: authentication and snapshot file transfer.

The adapter speaks a Drive-style REST API: one JSON file holds the whole
snapshot and is downloaded, overwritten or created as a unit. Adapter calls
report failure as ``None``/``False`` instead of raising; the orchestrator
turns that into a failed cycle.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx
import structlog

from shelfsync.common.config import RemoteConfig

logger = structlog.get_logger(__name__)

SNAPSHOT_MIME_TYPE = "application/json"


@runtime_checkable
class Authenticator(Protocol):
    """Supplies an access token for the remote store, or None on failure."""

    async def authenticate(self) -> Optional[str]:
        ...


class StaticTokenAuthenticator:
    """Returns a token obtained elsewhere (for example by the host application)."""

    def __init__(self, token: Optional[str]):
        self._token = token

    async def authenticate(self) -> Optional[str]:
        return self._token or None


@runtime_checkable
class RemoteSnapshotStore(Protocol):
    async def download(self, file_id: str, token: str) -> Optional[bytes]:
        ...

    async def upload(self, file_id: str, token: str, data: bytes) -> bool:
        ...

    async def create(self, folder_id: str, token: str, data: bytes) -> Optional[str]:
        ...


def backup_file_name(now: Optional[datetime] = None) -> str:
    """Name for a newly created snapshot file, e.g. shelfsync_backup_2024-01-01T10-00-00.json."""
    now = now or datetime.now(timezone.utc)
    return f"shelfsync_backup_{now.strftime('%Y-%m-%dT%H-%M-%S')}.json"


class DriveSnapshotAdapter:
    """
    Snapshot store on top of a Drive-style files API.

    - download: ``GET {base_url}/files/{id}?alt=media``
    - upload:   ``PATCH {upload_url}/files/{id}?uploadType=media``
    - create:   ``POST {upload_url}/files?uploadType=multipart``

    Example:
        >>> async with DriveSnapshotAdapter(RemoteConfig()) as remote:
        ...     data = await remote.download(file_id, token)
    """

    def __init__(self, config: Optional[RemoteConfig] = None, client: Optional[httpx.AsyncClient] = None):
        """
        Args:
            config: Endpoint and timeout settings
            client: Optional preconfigured client (owned by the caller)
        """
        self.config = config or RemoteConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.config.timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "DriveSnapshotAdapter":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    @staticmethod
    def _auth_headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> Optional[httpx.Response]:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "remote_request_failed",
                operation=operation,
                status_code=e.response.status_code,
                body=e.response.text[:200],
            )
            return None
        except httpx.HTTPError as e:
            logger.error("remote_request_error", operation=operation, error=str(e))
            return None
        return response

    async def download(self, file_id: str, token: str) -> Optional[bytes]:
        """Fetch the snapshot file contents, or None on failure."""
        response = await self._send(
            "download",
            "GET",
            f"{self.config.base_url}/files/{file_id}",
            params={"alt": "media"},
            headers=self._auth_headers(token),
        )
        if response is None:
            return None
        logger.debug("remote_snapshot_downloaded", file_id=file_id, size=len(response.content))
        return response.content

    async def upload(self, file_id: str, token: str, data: bytes) -> bool:
        """Overwrite the snapshot file contents."""
        response = await self._send(
            "upload",
            "PATCH",
            f"{self.config.upload_url}/files/{file_id}",
            params={"uploadType": "media"},
            headers={**self._auth_headers(token), "Content-Type": SNAPSHOT_MIME_TYPE},
            content=data,
        )
        if response is None:
            return False
        logger.debug("remote_snapshot_uploaded", file_id=file_id, size=len(data))
        return True

    async def create(self, folder_id: str, token: str, data: bytes) -> Optional[str]:
        """Create a new snapshot file in ``folder_id`` and return its id."""
        name = backup_file_name()
        metadata = {"name": name, "parents": [folder_id], "mimeType": SNAPSHOT_MIME_TYPE}
        response = await self._send(
            "create",
            "POST",
            f"{self.config.upload_url}/files",
            params={"uploadType": "multipart"},
            headers=self._auth_headers(token),
            files={
                "metadata": (None, json.dumps(metadata), "application/json"),
                "file": (name, data, SNAPSHOT_MIME_TYPE),
            },
        )
        if response is None:
            return None

        try:
            file_id = response.json().get("id")
        except (ValueError, AttributeError) as e:
            logger.error("remote_create_response_invalid", error=str(e))
            return None
        if not file_id:
            logger.error("remote_create_missing_id", folder_id=folder_id)
            return None

        logger.info("remote_snapshot_created", file_id=file_id, folder_id=folder_id, name=name)
        return file_id
