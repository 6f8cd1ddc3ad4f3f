"""Unit tests for the base service infrastructure."""

from unittest.mock import MagicMock

import pytest

from shelfsync.common.config import RetryConfig
from shelfsync.services import (
    BaseService,
    NotFoundError,
    NullCallback,
    ServiceCallback,
    ServiceError,
)


class ExampleService(BaseService):
    """Concrete service used to exercise the base class."""

    async def run(self, total: int) -> None:
        for index in range(1, total + 1):
            await self._report_progress(index, total, f"item {index}")
        await self._report_failure(RuntimeError("boom"), {"item": 1})
        await self._report_complete("done")


class ExplodingCallback:
    async def on_progress(self, current, total, message):
        raise RuntimeError("progress callback broke")

    async def on_failure(self, error, context):
        raise RuntimeError("failure callback broke")

    async def on_complete(self, result):
        raise RuntimeError("complete callback broke")


class TestExceptions:
    """Tests for service exceptions."""

    def test_service_error_details(self):
        error = ServiceError("bad", details={"key": "value"})
        assert error.message == "bad"
        assert error.details == {"key": "value"}

    def test_not_found_error(self):
        """Test NotFoundError carries the resource id."""
        error = NotFoundError("Record not found", resource_id="id_1")
        assert error.resource_id == "id_1"
        assert error.details == {"resource_id": "id_1"}
        assert isinstance(error, ServiceError)


class TestBaseService:
    """Tests for BaseService."""

    def test_default_retry_from_config(self, isolated_config):
        """Test the retry wrapper is built from the package config."""
        isolated_config.retry = RetryConfig(max_attempts=5)
        repository = MagicMock()
        service = ExampleService(repository)
        assert service.retry.config.max_attempts == 5
        assert service.repository is repository
        assert isinstance(service.callback, NullCallback)

    def test_explicit_retry(self, retry):
        assert ExampleService(MagicMock(), retry=retry).retry is retry

    def test_null_callback_satisfies_protocol(self):
        assert isinstance(NullCallback(), ServiceCallback)

    @pytest.mark.asyncio
    async def test_callback_receives_events(self, test_repository, retry):
        events = []

        class Recorder:
            async def on_progress(self, current, total, message):
                events.append(("progress", current, total))

            async def on_failure(self, error, context):
                events.append(("failure", str(error)))

            async def on_complete(self, result):
                events.append(("complete", result))

        service = ExampleService(test_repository, retry=retry, callback=Recorder())
        await service.run(2)

        assert events == [
            ("progress", 1, 2),
            ("progress", 2, 2),
            ("failure", "boom"),
            ("complete", "done"),
        ]

    @pytest.mark.asyncio
    async def test_callback_errors_swallowed(self, test_repository, retry):
        """Test a misbehaving callback never breaks the operation."""
        service = ExampleService(test_repository, retry=retry, callback=ExplodingCallback())
        await service.run(3)
