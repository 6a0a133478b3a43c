"""
Pytest fixtures and configuration for tests.
"""

import asyncio
from typing import Optional

import pytest

from chain_engine.config import Environment, ExecutorSettings, Settings, StorageSettings
from chain_engine.messaging.events import ChainEventBus
from chain_engine.orchestrator.scheduler import ChainScheduler
from chain_engine.storage.chains import ChainStore
from chain_engine.storage.files import FileStorage
from chain_engine.storage.metadata import MetadataStore
from chain_engine.storage.queue import DurableQueue
from chain_engine.workers.base import RegistryWorkerFactory, Task


# ==================== Test Tasks ====================

class RecordingTask(Task):
    """Succeeds and records its payload."""

    def __init__(self, log: list):
        self.log = log

    async def execute(self, input_payload: Optional[str]) -> bool:
        await asyncio.sleep(0)
        self.log.append(input_payload)
        return True


class FailingTask(Task):
    async def execute(self, input_payload: Optional[str]) -> bool:
        return False


class HangingTask(Task):
    """Never finishes on its own."""

    async def execute(self, input_payload: Optional[str]) -> bool:
        await asyncio.sleep(3600)
        return True


class RaisingTask(Task):
    async def execute(self, input_payload: Optional[str]) -> bool:
        raise RuntimeError("boom")


class SleepTask(Task):
    """Sleeps for the number of seconds given in the payload."""

    async def execute(self, input_payload: Optional[str]) -> bool:
        await asyncio.sleep(float(input_payload or 0))
        return True


# ==================== Settings ====================

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Create test settings with short timeouts and small bounds."""
    return Settings(
        environment=Environment.TEST,
        debug=True,
        log_level="DEBUG",
        storage=StorageSettings(
            base_dir=tmp_path / "store",
            max_queue_size=10,
            max_chain_size_bytes=4096,
            lock_timeout=2.0,
            lock_poll_interval=0.01,
        ),
        executor=ExecutorSettings(
            task_timeout=0.3,
            chain_timeout=1.0,
            window_duration=3.0,
            safety_margin=0.2,
            batch_max_chains=3,
        ),
    )


# ==================== Components ====================

@pytest.fixture
def executed() -> list:
    """Payloads of RecordingTask runs, in completion order."""
    return []


@pytest.fixture
def worker_factory(executed) -> RegistryWorkerFactory:
    return RegistryWorkerFactory({
        "record": lambda: RecordingTask(executed),
        "fail": FailingTask,
        "hang": HangingTask,
        "raise": RaisingTask,
        "sleep": SleepTask,
    })


@pytest.fixture
def storage(test_settings) -> FileStorage:
    return FileStorage(test_settings.storage)


@pytest.fixture
def queue(storage) -> DurableQueue:
    return DurableQueue(storage)


@pytest.fixture
def chain_store(storage) -> ChainStore:
    return ChainStore(storage)


@pytest.fixture
def metadata_store(storage) -> MetadataStore:
    return MetadataStore(storage)


@pytest.fixture
def event_bus() -> ChainEventBus:
    return ChainEventBus(buffer_size=64, history_size=100)


@pytest.fixture
def scheduler(test_settings, worker_factory, event_bus) -> ChainScheduler:
    return ChainScheduler.create(worker_factory, settings=test_settings, event_bus=event_bus)
