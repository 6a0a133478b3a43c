"""
Unit tests for the worker factory and sample tasks.
"""

import logging

import pytest

from chain_engine.core.errors import UnknownWorkerError
from chain_engine.workers.base import RegistryWorkerFactory
from chain_engine.workers.handlers import (
    HeavyProcessingTask,
    SyncTask,
    UploadTask,
    WorkerTypes,
    _is_prime,
    build_default_factory,
)


class TestRegistryWorkerFactory:
    """Tests for RegistryWorkerFactory."""

    def test_creates_fresh_instances(self):
        """Test each lookup builds a new task."""
        factory = build_default_factory()

        first = factory.create_task(WorkerTypes.SYNC)
        second = factory.create_task(WorkerTypes.SYNC)

        assert isinstance(first, SyncTask)
        assert first is not second

    def test_unknown_name(self):
        """Test unknown names resolve to None."""
        assert build_default_factory().create_task("nope") is None

    def test_validate_lists_missing(self):
        """Test startup validation names every missing worker."""
        factory = build_default_factory()

        with pytest.raises(UnknownWorkerError) as exc_info:
            factory.validate(["sync", "video", "audio"])

        assert exc_info.value.missing == ["audio", "video"]
        assert "audio, video" in str(exc_info.value)

    def test_validate_passes(self):
        """Test validation with every name registered."""
        build_default_factory().validate([WorkerTypes.SYNC, WorkerTypes.UPLOAD, WorkerTypes.HEAVY_PROCESSING])

    def test_register_rejects_empty_name(self):
        """Test empty worker names are refused."""
        with pytest.raises(ValueError):
            RegistryWorkerFactory().register("", SyncTask)

    def test_register_replaces_with_warning(self, caplog):
        """Test re-registering a name is allowed but logged."""
        caplog.set_level(logging.WARNING)
        factory = RegistryWorkerFactory({"x": SyncTask})

        factory.register("x", UploadTask)

        assert isinstance(factory.create_task("x"), UploadTask)
        assert "Replacing registered worker x" in caplog.text


class TestSampleTasks:
    """Tests for the sample tasks."""

    @pytest.mark.asyncio
    async def test_sync_succeeds(self):
        """Test a sync with no simulated failures."""
        assert await SyncTask().execute('{"items": 3, "delay": 0}') is True

    @pytest.mark.asyncio
    async def test_sync_fails_when_remote_rejects(self):
        """Test a certain failure rate fails the task."""
        assert await SyncTask().execute('{"items": 1, "delay": 0, "failure_rate": 1.0}') is False

    @pytest.mark.asyncio
    async def test_upload(self):
        """Test a chunked upload completes."""
        assert await UploadTask().execute('{"total_mb": 25, "chunk_mb": 10, "chunk_delay": 0}') is True

    @pytest.mark.asyncio
    async def test_heavy_processing(self):
        """Test prime counting completes."""
        assert await HeavyProcessingTask().execute('{"limit": 2000, "batch_size": 100}') is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", ["{not json", '{"items": -1}', '{"items": "many"}'])
    async def test_invalid_payload_fails(self, payload):
        """Test a malformed payload fails instead of raising."""
        assert await SyncTask().execute(payload) is False

    def test_is_prime(self):
        """Test the prime check."""
        assert [n for n in range(20) if _is_prime(n)] == [2, 3, 5, 7, 11, 13, 17, 19]
