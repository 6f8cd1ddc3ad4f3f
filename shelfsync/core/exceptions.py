"""Exceptions for library reconciliation and persistence."""

from typing import Any, Optional


class ShelfsyncError(Exception):
    """Base exception for shelfsync errors."""

    pass


class ValidationError(ShelfsyncError):
    """Raised when a value is rejected before any storage access."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class TransientStorageError(ShelfsyncError):
    """Raised when a single write attempt against a store fails."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class NetworkError(ShelfsyncError):
    """Raised when authentication, download or upload fails."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class SnapshotFormatError(ShelfsyncError):
    """Raised when a snapshot payload is not valid snapshot JSON."""

    pass


class DecodeError(ShelfsyncError):
    """Raised when an encoded binary asset cannot be restored."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ConflictDismissed(ShelfsyncError):
    """Raised by a resolver when the user declines to choose a version.

    The merge engine treats this as "keep local".
    """

    pass
