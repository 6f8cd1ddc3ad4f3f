"""Base service infrastructure with callbacks and error handling.

- BaseService: repository and retry access, bound logger, config access
- ServiceCallback: protocol for progress/failure monitoring hooks
- Service-specific exceptions: ServiceError, NotFoundError
"""

from abc import ABC
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import structlog

import shelfsync
from shelfsync.common.config import Config
from shelfsync.core.db.repository import RecordRepository
from shelfsync.core.retry import PersistenceRetry

logger = structlog.get_logger(__name__)


# ==================== Exceptions ====================


class ServiceError(Exception):
    """Base exception for all service errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(ServiceError):
    """Raised when a requested record does not exist."""

    def __init__(self, message: str, resource_id: Optional[Any] = None):
        super().__init__(message, details={"resource_id": resource_id})
        self.resource_id = resource_id


# ==================== Callback Protocol ====================


@runtime_checkable
class ServiceCallback(Protocol):
    """
    Protocol for service operation callbacks.

    Implement this to receive progress updates and per-item failures from
    batch operations such as imports.

    Example:
        >>> class PrintProgress:
        ...     async def on_progress(self, current: int, total: int, message: str) -> None:
        ...         print(f"{current}/{total} {message}")
        ...
        ...     async def on_failure(self, error: Exception, context: dict) -> None:
        ...         print(f"failed: {error}")
        ...
        ...     async def on_complete(self, result: Any) -> None:
        ...         print(result)
    """

    async def on_progress(self, current: int, total: int, message: str) -> None:
        """
        Args:
            current: Current item number (1-indexed)
            total: Total number of items to process
            message: Human-readable progress message
        """
        ...

    async def on_failure(self, error: Exception, context: Dict[str, Any]) -> None:
        """Called when one item fails; the batch continues with the next item."""
        ...

    async def on_complete(self, result: Any) -> None:
        """Called once the whole batch has been processed."""
        ...


class NullCallback:
    """No-op callback implementation for when no callback is provided."""

    async def on_progress(self, current: int, total: int, message: str) -> None:
        pass

    async def on_failure(self, error: Exception, context: Dict[str, Any]) -> None:
        pass

    async def on_complete(self, result: Any) -> None:
        pass


# ==================== Base Service ====================


class BaseService(ABC):
    """
    Abstract base class for service classes.

    Provides repository access, the persistence retry wrapper, a logger
    bound to the subclass name, and callback helpers that never let a
    misbehaving callback break the operation being reported on.
    """

    def __init__(
        self,
        repository: RecordRepository,
        retry: Optional[PersistenceRetry] = None,
        callback: Optional[ServiceCallback] = None,
    ):
        """
        Args:
            repository: Local record store
            retry: Retry wrapper for writes (built from config when omitted)
            callback: Optional callback for progress/failure hooks
        """
        self._repository = repository
        self._retry = retry or PersistenceRetry(self._get_config().retry)
        self._callback = callback or NullCallback()
        self._logger = structlog.get_logger(self.__class__.__name__)

    @property
    def repository(self) -> RecordRepository:
        return self._repository

    @property
    def retry(self) -> PersistenceRetry:
        return self._retry

    @property
    def callback(self) -> ServiceCallback:
        return self._callback

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return self._logger

    def _get_config(self) -> Config:
        return shelfsync.get_config()

    async def _report_progress(self, current: int, total: int, message: str) -> None:
        try:
            await self._callback.on_progress(current, total, message)
        except Exception as e:
            self._logger.warning("callback_progress_failed", error=str(e))

    async def _report_failure(self, error: Exception, context: Dict[str, Any]) -> None:
        try:
            await self._callback.on_failure(error, context)
        except Exception as e:
            self._logger.warning("callback_failure_failed", error=str(e))

    async def _report_complete(self, result: Any) -> None:
        try:
            await self._callback.on_complete(result)
        except Exception as e:
            self._logger.warning("callback_complete_failed", error=str(e))
