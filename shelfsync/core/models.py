"""Library record and snapshot models.

Records use snake_case attribute names and camelCase wire names, so a
snapshot produced here can be read by the web client and vice versa.
"""

import json
import time
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .codec import BinaryAsset, encode_asset
from .exceptions import SnapshotFormatError
from .validation import MAX_FONT_SIZE, MIN_FONT_SIZE

logger = structlog.get_logger(__name__)

UNKNOWN_AUTHOR = "Unknown Author"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class LibraryRecord(BaseModel):
    """One book in the library.

    Attributes:
        id: Identity hash computed once at creation (see core.identity)
        title: Book title
        author: Book author
        file_name: Original file name
        file_type: MIME type of the book file
        file_size: Size of the book file in bytes
        last_modified: Modification time (epoch ms), used for conflict detection
        progress: Reading progress fraction in [0, 1]
        font_size: Reader font size in pixels
        last_accessed: Last time the book was opened or touched (epoch ms)
        date_added: Time the book entered the library (epoch ms)
        ribbon_data: Transient UI badge ("NEW", "UPDATED")
        ribbon_expiry: Badge expiry (epoch ms)
        original_file: Encoded book body (snapshot wire form)
        original_cover_image: Encoded cover image (snapshot wire form)
        body_asset: Decoded book body, never serialized
        cover_asset: Decoded cover image, never serialized
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    title: str = ""
    author: str = UNKNOWN_AUTHOR
    file_name: Optional[str] = Field(default=None, alias="fileName")
    file_type: Optional[str] = Field(default=None, alias="fileType")
    file_size: Optional[int] = Field(default=None, alias="fileSize")
    last_modified: Optional[int] = Field(default=None, alias="lastModified")
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    font_size: Optional[int] = Field(
        default=None, alias="fontSize", ge=MIN_FONT_SIZE, le=MAX_FONT_SIZE
    )
    last_accessed: Optional[int] = Field(default=None, alias="lastAccessed")
    date_added: Optional[int] = Field(default=None, alias="dateAdded")
    ribbon_data: Optional[str] = Field(default=None, alias="ribbonData")
    ribbon_expiry: Optional[int] = Field(default=None, alias="ribbonExpiry")
    original_file: Optional[str] = Field(default=None, alias="originalFile")
    original_cover_image: Optional[str] = Field(default=None, alias="originalCoverImage")

    body_asset: Optional[BinaryAsset] = Field(default=None, exclude=True)
    cover_asset: Optional[BinaryAsset] = Field(default=None, exclude=True)

    @field_validator("last_modified", "last_accessed", "date_added", "ribbon_expiry", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> Any:
        """Accept float epoch values written by JavaScript clients."""
        if isinstance(v, float):
            return int(v)
        return v

    @property
    def modified_at(self) -> int:
        """last_modified with a missing value treated as 0."""
        return self.last_modified or 0

    def with_updates(self, **changes: Any) -> "LibraryRecord":
        """
        Return a copy with the given fields replaced.

        Raises:
            ValueError: If an attempt is made to change the record id
        """
        if "id" in changes and changes["id"] != self.id:
            raise ValueError(f"Record id is immutable: {self.id}")
        return self.model_copy(update=changes)

    def to_wire(self) -> Dict[str, Any]:
        """
        Serialize for a snapshot, encoding live assets when no encoded copy exists.
        """
        data = self.model_dump(by_alias=True, exclude_none=True)
        if "originalFile" not in data and self.body_asset is not None:
            data["originalFile"] = encode_asset(self.body_asset)
        if "originalCoverImage" not in data and self.cover_asset is not None:
            data["originalCoverImage"] = encode_asset(self.cover_asset)
        return data


class LibrarySnapshot(BaseModel):
    """One replica's full record set captured at one instant."""

    timestamp: int = 0
    books: List[LibraryRecord] = Field(default_factory=list)

    @classmethod
    def capture(cls, records: List[LibraryRecord]) -> "LibrarySnapshot":
        """Build a snapshot of ``records`` stamped with the current time."""
        return cls(timestamp=now_ms(), books=list(records))

    def by_id(self) -> Dict[str, LibraryRecord]:
        """Index records by id; the first record wins when an id repeats."""
        index: Dict[str, LibraryRecord] = {}
        for record in self.books:
            index.setdefault(record.id, record)
        return index

    def to_json(self) -> str:
        """Serialize to the snapshot wire format."""
        payload = {
            "timestamp": self.timestamp,
            "books": [record.to_wire() for record in self.books],
        }
        return json.dumps(payload, ensure_ascii=False)

    def to_bytes(self) -> bytes:
        return self.to_json().encode("utf-8")

    @classmethod
    def from_json(cls, payload: Union[str, bytes]) -> "LibrarySnapshot":
        """
        Parse the snapshot wire format.

        Individual books that fail validation are logged and skipped; the
        rest of the snapshot is kept.

        Raises:
            SnapshotFormatError: If the payload is not a JSON object
        """
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SnapshotFormatError(f"Snapshot is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise SnapshotFormatError(
                f"Snapshot must be a JSON object, got {type(data).__name__}"
            )

        raw_books = data.get("books") or []
        if not isinstance(raw_books, list):
            raise SnapshotFormatError("Snapshot 'books' must be a list")

        books = []
        for position, raw in enumerate(raw_books):
            try:
                books.append(LibraryRecord.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    "snapshot_record_skipped",
                    position=position,
                    record_id=raw.get("id") if isinstance(raw, dict) else None,
                    errors=e.error_count(),
                )

        timestamp = data.get("timestamp")
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            timestamp = 0

        return cls(timestamp=int(timestamp), books=books)
