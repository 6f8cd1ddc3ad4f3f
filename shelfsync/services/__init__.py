"""Service layer for library operations.

Example:
    >>> from shelfsync.services import LibraryService
    >>> service = LibraryService(repository)
    >>> await service.save_progress(record_id, 0.42, font_size=20)
"""

from .base import (
    BaseService,
    NotFoundError,
    NullCallback,
    ServiceCallback,
    ServiceError,
)
from .library_service import (
    BookSource,
    ImportOutcome,
    ImportStatus,
    ImportSummary,
    LibraryService,
    MatchResult,
    find_best_match,
)

__all__ = [
    "BaseService",
    "NotFoundError",
    "NullCallback",
    "ServiceCallback",
    "ServiceError",
    "BookSource",
    "ImportOutcome",
    "ImportStatus",
    "ImportSummary",
    "LibraryService",
    "MatchResult",
    "find_best_match",
]
