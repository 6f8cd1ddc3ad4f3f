"""Tests for conflict resolvers."""

from datetime import datetime

import pytest

from shelfsync.core.exceptions import ConflictDismissed
from shelfsync.sync import (
    CallbackResolver,
    ConflictResolver,
    Divergence,
    KeepLocalResolver,
    PreferRemoteResolver,
    describe_divergence,
)


def _local_time(epoch_ms):
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


class TestDescribeDivergence:
    """Tests for describe_divergence function."""

    def test_message_layout(self, make_record):
        local = make_record(last_modified=1_700_000_000_000, progress=0.1)
        remote = local.with_updates(last_modified=1_700_086_400_000, progress=0.555)

        message = describe_divergence(local, remote)

        assert message.splitlines() == [
            'The book "Dune" has been modified both locally and remotely.',
            f"Local version: {_local_time(1_700_000_000_000)} - Progress: 10%",
            f"Remote version: {_local_time(1_700_086_400_000)} - Progress: 56%",
        ]


class TestBuiltinResolvers:
    """Tests for the fixed-answer resolvers."""

    @pytest.mark.asyncio
    async def test_keep_local(self, make_record):
        record = make_record()
        assert await KeepLocalResolver().resolve(record, record) is False

    @pytest.mark.asyncio
    async def test_prefer_remote(self, make_record):
        record = make_record()
        assert await PreferRemoteResolver().resolve(record, record) is True

    def test_protocol_conformance(self):
        assert isinstance(KeepLocalResolver(), ConflictResolver)
        assert isinstance(CallbackResolver(lambda local, remote: True), ConflictResolver)


class TestCallbackResolver:
    """Tests for CallbackResolver."""

    @pytest.mark.asyncio
    async def test_sync_callable(self, make_record):
        seen = []

        def choose(local, remote):
            seen.append(Divergence(local, remote).record_id)
            return True

        record = make_record()
        assert await CallbackResolver(choose).resolve(record, record) is True
        assert seen == [record.id]

    @pytest.mark.asyncio
    async def test_async_callable(self, make_record):
        async def choose(local, remote):
            return False

        record = make_record()
        assert await CallbackResolver(choose).resolve(record, record) is False

    @pytest.mark.asyncio
    async def test_none_means_dismissed(self, make_record):
        record = make_record()
        with pytest.raises(ConflictDismissed):
            await CallbackResolver(lambda local, remote: None).resolve(record, record)

    @pytest.mark.asyncio
    async def test_truthy_answer_coerced(self, make_record):
        record = make_record()
        assert await CallbackResolver(lambda local, remote: "yes").resolve(record, record) is True
