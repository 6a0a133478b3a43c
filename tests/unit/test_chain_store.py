"""
Unit tests for chain definition storage.
"""

import json

import pytest

from chain_engine.core.errors import (
    ChainNotFoundError,
    CorruptDefinitionError,
    InvalidIdentifierError,
    PayloadTooLargeError,
)
from chain_engine.core.models import TaskRequest
from chain_engine.storage.chains import ChainStore


def request(worker: str = "record", payload=None) -> TaskRequest:
    return TaskRequest(worker_type_name=worker, input_payload=payload)


class TestChainStore:
    """Tests for ChainStore."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, chain_store):
        """Test a saved chain loads back unchanged."""
        stages = [[request(payload="1")], [request(payload="2"), request("sleep", "0")]]

        saved = await chain_store.save("chain-1", stages)
        loaded = await chain_store.load("chain-1")

        assert loaded == saved
        assert loaded.stages == stages
        assert loaded.schema_version == 1

    @pytest.mark.asyncio
    async def test_save_accepts_plain_dicts(self, chain_store):
        """Test stages given as JSON-like dicts are validated."""
        definition = await chain_store.save("c1", [[{"workerTypeName": "record", "inputPayload": "x"}]])

        assert definition.stages[0][0] == request(payload="x")

    @pytest.mark.asyncio
    async def test_oversized_chain_not_written(self, chain_store):
        """Test a chain over the size limit is rejected before any write."""
        with pytest.raises(PayloadTooLargeError) as exc_info:
            await chain_store.save("big", [[request(payload="x" * 5000)]])

        assert exc_info.value.limit == 4096
        assert not await chain_store.exists("big")
        assert await chain_store.count() == 0

    @pytest.mark.asyncio
    async def test_zero_size_limit_is_honored(self, storage):
        """Test an explicit limit of 0 bytes rejects every chain."""
        store = ChainStore(storage, max_size_bytes=0)

        with pytest.raises(PayloadTooLargeError) as exc_info:
            await store.save("tiny", [[request()]])

        assert exc_info.value.limit == 0
        assert not await store.exists("tiny")

    @pytest.mark.asyncio
    async def test_load_missing(self, chain_store):
        """Test loading an absent chain returns None."""
        assert await chain_store.load("nope") is None

    @pytest.mark.asyncio
    async def test_load_corrupt_is_missing(self, chain_store, storage, caplog):
        """Test an unparseable file is reported as absent."""
        path = storage.record_path(storage.chains_dir, "broken")
        path.write_text("{not json", encoding="utf-8")

        assert await chain_store.load("broken") is None
        assert "corrupt" in caplog.text

    @pytest.mark.asyncio
    async def test_load_pre_versioned_array(self, chain_store, storage):
        """Test the bare array format is still readable."""
        path = storage.record_path(storage.chains_dir, "old")
        path.write_text(json.dumps([[{"workerClassName": "record", "inputJson": "a"}]]), encoding="utf-8")

        definition = await chain_store.load("old")

        assert definition.schema_version == 0
        assert definition.stages == [[request(payload="a")]]

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, chain_store):
        """Test deleting twice succeeds and reports what happened."""
        await chain_store.save("c1", [[request()]])

        assert await chain_store.delete("c1") is True
        assert await chain_store.delete("c1") is False
        assert await chain_store.load("c1") is None

    @pytest.mark.asyncio
    async def test_list_ids(self, chain_store):
        """Test listing persisted chains."""
        for chain_id in ("b", "a", "c"):
            await chain_store.save(chain_id, [[request()]])

        assert await chain_store.list_ids() == ["a", "b", "c"]
        assert await chain_store.count() == 3

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, chain_store, storage):
        """Test atomic writes clean up after themselves."""
        await chain_store.save("c1", [[request()]])
        await chain_store.save("c1", [[request(payload="again")]])

        assert [p.name for p in storage.chains_dir.iterdir()] == ["c1.json"]

    @pytest.mark.asyncio
    async def test_invalid_id(self, chain_store):
        """Test ids are checked before touching the filesystem."""
        with pytest.raises(InvalidIdentifierError):
            await chain_store.save("../outside", [[request()]])

    @pytest.mark.asyncio
    async def test_get_raises(self, chain_store, storage):
        """Test get() distinguishes absent from corrupt chains."""
        storage.record_path(storage.chains_dir, "broken").write_text("[[{}]]", encoding="utf-8")

        with pytest.raises(ChainNotFoundError):
            await chain_store.get("nope")
        with pytest.raises(CorruptDefinitionError):
            await chain_store.get("broken")
