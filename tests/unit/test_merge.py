"""Tests for the two-replica merge engine."""

import pytest

from shelfsync.core.codec import BinaryAsset, encode_asset
from shelfsync.core.exceptions import ConflictDismissed
from shelfsync.core.models import LibrarySnapshot
from shelfsync.sync import KeepLocalResolver, MergeEngine, PreferRemoteResolver, restore_assets


class ScriptedResolver:
    """Resolver returning a fixed answer and recording every call."""

    def __init__(self, answer=True, error=None):
        self.answer = answer
        self.error = error
        self.calls = []

    async def resolve(self, local, remote):
        self.calls.append((local.id, remote.id))
        if self.error is not None:
            raise self.error
        return self.answer


def snapshot(*records):
    return LibrarySnapshot(timestamp=1, books=list(records))


class TestMergeEngine:
    """Tests for MergeEngine.merge()."""

    @pytest.mark.asyncio
    async def test_remote_only_record_added(self, make_record):
        local = make_record(title="Dune")
        remote_only = make_record(title="Neuromancer")
        resolver = ScriptedResolver()

        result = await MergeEngine(resolver).merge(snapshot(local), snapshot(remote_only))

        assert [r.id for r in result.added] == [remote_only.id]
        assert [r.id for r in result.records] == [local.id, remote_only.id]
        assert resolver.calls == []
        assert result.has_changes

    @pytest.mark.asyncio
    async def test_local_only_record_kept(self, make_record):
        local = make_record(title="Dune")
        result = await MergeEngine(ScriptedResolver()).merge(snapshot(local), snapshot())

        assert [r.id for r in result.records] == [local.id]
        assert not result.has_changes

    @pytest.mark.asyncio
    async def test_no_record_ever_deleted(self, make_record):
        local = [make_record(title="Dune"), make_record(title="Anathem")]
        remote = [make_record(title="Anathem", last_modified=50), make_record(title="Solaris")]

        result = await MergeEngine(KeepLocalResolver()).merge(snapshot(*local), snapshot(*remote))

        ids = {r.id for r in result.records}
        assert {r.id for r in local} | {r.id for r in remote} == ids

    @pytest.mark.asyncio
    async def test_newer_remote_adopted(self, make_record):
        local = make_record(last_modified=100, progress=0.1)
        remote = local.with_updates(last_modified=200, progress=0.7)
        resolver = ScriptedResolver(answer=True)

        result = await MergeEngine(resolver).merge(snapshot(local), snapshot(remote))

        assert resolver.calls == [(local.id, local.id)]
        assert result.records[0].progress == 0.7
        assert result.updated_count == 1
        assert result.has_changes

    @pytest.mark.asyncio
    async def test_newer_remote_declined(self, make_record):
        local = make_record(last_modified=100, progress=0.1)
        remote = local.with_updates(last_modified=200, progress=0.7)

        result = await MergeEngine(ScriptedResolver(answer=False)).merge(
            snapshot(local), snapshot(remote)
        )

        assert result.records[0].progress == 0.1
        assert result.unresolved_count == 1
        assert result.unresolved[0].record_id == local.id
        assert not result.has_changes

    @pytest.mark.parametrize("remote_modified", [100, 50])
    @pytest.mark.asyncio
    async def test_older_or_equal_remote_never_consulted(self, make_record, remote_modified):
        local = make_record(last_modified=100, progress=0.1)
        remote = local.with_updates(last_modified=remote_modified, progress=0.9)
        resolver = ScriptedResolver()

        result = await MergeEngine(resolver).merge(snapshot(local), snapshot(remote))

        assert resolver.calls == []
        assert result.records[0].progress == 0.1
        assert not result.has_changes

    @pytest.mark.asyncio
    async def test_missing_timestamps_treated_as_zero(self, make_record):
        local = make_record(last_modified=None)
        remote = local.with_updates(last_modified=1)
        resolver = ScriptedResolver()

        await MergeEngine(resolver).merge(snapshot(local), snapshot(remote))
        assert len(resolver.calls) == 1

    @pytest.mark.asyncio
    async def test_dismissed_conflict_keeps_local(self, make_record):
        local = make_record(last_modified=100, progress=0.1)
        remote = local.with_updates(last_modified=200, progress=0.7)
        resolver = ScriptedResolver(error=ConflictDismissed("closed"))

        result = await MergeEngine(resolver).merge(snapshot(local), snapshot(remote))

        assert result.records[0].progress == 0.1
        assert result.unresolved_count == 1

    @pytest.mark.asyncio
    async def test_resolver_failure_propagates(self, make_record):
        local = make_record(last_modified=100)
        remote = local.with_updates(last_modified=200)
        resolver = ScriptedResolver(error=RuntimeError("prompt crashed"))

        with pytest.raises(RuntimeError):
            await MergeEngine(resolver).merge(snapshot(local), snapshot(remote))

    @pytest.mark.asyncio
    async def test_resolver_called_once_per_id(self, make_record):
        local = make_record(last_modified=100)
        first = local.with_updates(last_modified=200, progress=0.5)
        second = local.with_updates(last_modified=300, progress=0.9)
        resolver = ScriptedResolver()

        result = await MergeEngine(resolver).merge(snapshot(local), snapshot(first, second))

        assert len(resolver.calls) == 1
        assert result.records[0].progress == 0.5

    @pytest.mark.asyncio
    async def test_prefer_remote_resolver(self, make_record):
        local = make_record(last_modified=100)
        remote = local.with_updates(last_modified=200, title="Dune (revised)")

        result = await MergeEngine(PreferRemoteResolver()).merge(snapshot(local), snapshot(remote))
        assert result.records[0].title == "Dune (revised)"

    @pytest.mark.asyncio
    async def test_added_record_assets_restored(self, make_record):
        remote = make_record(
            file_name="dune.pdf",
            file_type="application/pdf",
            original_file=encode_asset(b"PK\x03\x04"),
            original_cover_image=encode_asset(b"\xff\xd8"),
        )

        result = await MergeEngine(ScriptedResolver()).merge(snapshot(), snapshot(remote))

        added = result.added[0]
        assert added.body_asset.data == b"PK\x03\x04"
        assert added.body_asset.mime_type == "application/pdf"
        assert added.body_asset.file_name == "dune.pdf"
        assert added.cover_asset.data == b"\xff\xd8"
        assert result.decode_failures == []

    @pytest.mark.asyncio
    async def test_undecodable_asset_dropped(self, make_record):
        remote = make_record(original_file="%%% not encoded %%%", original_cover_image=encode_asset(b"ok"))

        result = await MergeEngine(ScriptedResolver()).merge(snapshot(), snapshot(remote))

        added = result.added[0]
        assert added.original_file is None
        assert added.body_asset is None
        assert added.cover_asset.data == b"ok"
        assert result.decode_failures == [(remote.id, "originalFile")]


class TestRestoreAssets:
    """Tests for restore_assets function."""

    def test_record_without_assets_unchanged(self, make_record):
        record = make_record()
        restored, dropped = restore_assets(record)
        assert restored is record
        assert dropped == []

    def test_cover_round_trip(self, make_record):
        record = make_record(cover_asset=BinaryAsset(b"\x89PNG", "image/png"))
        wire = record.to_wire()
        restored, _ = restore_assets(record.with_updates(original_cover_image=wire["originalCoverImage"]))
        assert restored.cover_asset.data == b"\x89PNG"
