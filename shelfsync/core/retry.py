"""Bounded retry with exponential backoff for persistence writes."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..common.config import RetryConfig
from .exceptions import TransientStorageError, ValidationError

logger = structlog.get_logger(__name__)

WriteOperation = Callable[[], Awaitable[Any]]
Validator = Callable[[], Any]
Sleep = Callable[[float], Awaitable[None]]


class PersistenceRetry:
    """
    Wrap store writes with validation and bounded exponential-backoff retry.

    A write either succeeds on some attempt or reports ``False`` after the
    configured number of attempts. Exceptions never reach the caller.

    Example:
        >>> retry = PersistenceRetry(RetryConfig())
        >>> ok = await retry.write(lambda: repository.put(record),
        ...                        validate=lambda: validate_record(record))
    """

    def __init__(self, config: Optional[RetryConfig] = None, sleep: Sleep = asyncio.sleep):
        """
        Args:
            config: Retry configuration (attempts and backoff)
            sleep: Awaitable sleep used between attempts; tests inject a fake
        """
        self.config = config or RetryConfig()
        self._sleep = sleep

    def _retrying(self, label: str) -> AsyncRetrying:
        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "persistence_retry_attempt",
                label=label,
                attempt=retry_state.attempt_number,
                next_delay=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(exc) if exc else None,
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(
                multiplier=self.config.base_delay,
                exp_base=self.config.multiplier,
                max=self.config.max_delay,
            ),
            retry=retry_if_exception_type(TransientStorageError),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    @staticmethod
    async def _attempt(operation: WriteOperation, label: str) -> Any:
        try:
            result = await operation()
        except (TransientStorageError, ValidationError):
            raise
        except Exception as e:
            raise TransientStorageError(f"{label} failed: {e}", operation=label) from e

        if result is False:
            raise TransientStorageError(f"{label} reported failure", operation=label)
        return result

    async def write(
        self,
        operation: WriteOperation,
        *,
        validate: Optional[Validator] = None,
        label: str = "write",
    ) -> bool:
        """
        Validate, then perform ``operation`` with retry.

        Args:
            operation: Zero-argument coroutine factory performing one write
                attempt. Raising or returning ``False`` marks the attempt failed.
            validate: Optional check run before any I/O. A ValidationError
                from it or from ``operation`` rejects the write without retrying
            label: Name used in log events

        Returns:
            True if some attempt succeeded, False otherwise
        """
        try:
            if validate is not None:
                validate()
            await self._retrying(label)(self._attempt, operation, label)
        except ValidationError as e:
            logger.warning(
                "persistence_write_rejected",
                label=label,
                field=e.field,
                value=e.value,
                error=str(e),
            )
            return False
        except TransientStorageError as e:
            logger.error(
                "persistence_write_failed",
                label=label,
                attempts=self.config.max_attempts,
                error=str(e),
            )
            return False

        logger.debug("persistence_write_succeeded", label=label)
        return True
