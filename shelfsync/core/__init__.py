"""Core reconciliation primitives for shelfsync."""

from .codec import BinaryAsset, decode_asset, encode_asset
from .exceptions import (
    ConflictDismissed,
    DecodeError,
    NetworkError,
    ShelfsyncError,
    SnapshotFormatError,
    TransientStorageError,
    ValidationError,
)
from .identity import compute_record_id, hash_string
from .models import LibraryRecord, LibrarySnapshot, now_ms
from .retry import PersistenceRetry
from .validation import (
    DEFAULT_FONT_SIZE,
    MAX_FONT_SIZE,
    MIN_FONT_SIZE,
    validate_font_size,
    validate_progress,
    validate_record,
)

__all__ = [
    "BinaryAsset",
    "decode_asset",
    "encode_asset",
    "ConflictDismissed",
    "DecodeError",
    "NetworkError",
    "ShelfsyncError",
    "SnapshotFormatError",
    "TransientStorageError",
    "ValidationError",
    "compute_record_id",
    "hash_string",
    "LibraryRecord",
    "LibrarySnapshot",
    "now_ms",
    "PersistenceRetry",
    "DEFAULT_FONT_SIZE",
    "MAX_FONT_SIZE",
    "MIN_FONT_SIZE",
    "validate_font_size",
    "validate_progress",
    "validate_record",
]
