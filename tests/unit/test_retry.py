"""Tests for bounded persistence retry."""

import pytest

from shelfsync.common.config import RetryConfig
from shelfsync.core.exceptions import ValidationError
from shelfsync.core.retry import PersistenceRetry
from shelfsync.core.validation import validate_progress


class FlakyStore:
    """Store whose writes fail a fixed number of times before succeeding."""

    def __init__(self, failures: int, fail_with_false: bool = False):
        self.failures = failures
        self.fail_with_false = fail_with_false
        self.calls = 0
        self.written = []

    async def put(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            if self.fail_with_false:
                return False
            raise OSError("disk busy")
        self.written.append(value)
        return True


class TestPersistenceRetry:
    """Tests for PersistenceRetry.write()."""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self, retry, fake_sleep):
        store = FlakyStore(failures=0)
        assert await retry.write(lambda: store.put("a")) is True
        assert store.calls == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_succeeds_after_two_failures(self, retry, fake_sleep):
        store = FlakyStore(failures=2)
        assert await retry.write(lambda: store.put("a")) is True
        assert store.calls == 3
        assert store.written == ["a"]
        assert fake_sleep.delays == pytest.approx([0.8, 1.2])

    @pytest.mark.asyncio
    async def test_false_result_counts_as_failure(self, retry):
        store = FlakyStore(failures=1, fail_with_false=True)
        assert await retry.write(lambda: store.put("a")) is True
        assert store.calls == 2

    @pytest.mark.asyncio
    async def test_exhausted_attempts_return_false(self, retry, fake_sleep):
        store = FlakyStore(failures=10)
        assert await retry.write(lambda: store.put("a")) is False
        assert store.calls == 3
        assert store.written == []
        assert len(fake_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_validation_failure_skips_operation(self, retry, fake_sleep):
        store = FlakyStore(failures=0)
        result = await retry.write(lambda: store.put("a"), validate=lambda: validate_progress(1.5))
        assert result is False
        assert store.calls == 0
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_validation_passes(self, retry):
        store = FlakyStore(failures=0)
        assert await retry.write(lambda: store.put("a"), validate=lambda: validate_progress(0.5))
        assert store.calls == 1

    @pytest.mark.asyncio
    async def test_delay_capped(self, fake_sleep):
        config = RetryConfig(max_attempts=5, base_delay=2.0, multiplier=2.0, max_delay=3.0)
        retry = PersistenceRetry(config, sleep=fake_sleep)
        store = FlakyStore(failures=10)
        assert await retry.write(lambda: store.put("a")) is False
        assert store.calls == 5
        assert fake_sleep.delays == pytest.approx([2.0, 3.0, 3.0, 3.0])

    @pytest.mark.asyncio
    async def test_validation_error_from_operation_not_retried(self, retry, fake_sleep):
        calls = []

        async def operation():
            calls.append(1)
            raise ValidationError("Progress out of range", field="progress", value=1.5)

        assert await retry.write(operation) is False
        assert len(calls) == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_validation_error_after_transient_failure(self, retry, fake_sleep):
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) == 1:
                raise OSError("disk busy")
            raise ValidationError("bad")

        assert await retry.write(operation) is False
        assert len(calls) == 2
        assert fake_sleep.delays == pytest.approx([0.8])


class TestRetryConfig:
    """Tests for RetryConfig backoff schedule."""

    def test_default_schedule(self):
        config = RetryConfig()
        assert config.delay_for(0) == pytest.approx(0.8)
        assert config.delay_for(1) == pytest.approx(1.2)
        assert config.delay_for(5) == 3.0

    def test_max_delay_below_base_rejected(self):
        with pytest.raises(ValueError):
            RetryConfig(base_delay=2.0, max_delay=1.0)


class TestRetryAgainstRepository:
    """Retry over real store writes leaves exactly one write's result."""

    @pytest.mark.asyncio
    async def test_flaky_put_stores_record_once(self, retry, test_repository, make_record):
        record = make_record(progress=0.3)
        attempts = []

        async def flaky_put():
            attempts.append(1)
            if len(attempts) < 3:
                raise OSError("database is locked")
            return await test_repository.put(record)

        assert await retry.write(flaky_put) is True
        assert await test_repository.count() == 1
        assert (await test_repository.get(record.id)).model_dump() == record.model_dump()

    @pytest.mark.asyncio
    async def test_exhausted_put_leaves_store_empty(self, retry, test_repository, make_record):
        async def failing_put():
            raise OSError("database is locked")

        assert await retry.write(failing_put) is False
        assert await test_repository.get_all() == []
