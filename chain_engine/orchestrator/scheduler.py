"""
Chain scheduler.

Wires the storage handle, stores, executor and migrator together and
exposes the operations callers use:
- Enqueue a chain (directly or through ChainBuilder)
- Report the queue size so the caller can ask for another window
- Drain the queue inside a host execution window
"""

import logging
import uuid
from typing import Optional

from chain_engine.config import Settings, get_settings
from chain_engine.core.builder import ChainBuilder, TaskOrTasks
from chain_engine.core.models import BatchReport, MigrationResult, Stage
from chain_engine.core.window import ExecutionWindow
from chain_engine.messaging.events import ChainEventBus
from chain_engine.orchestrator.executor import ChainExecutor
from chain_engine.storage.chains import ChainStore
from chain_engine.storage.files import FileStorage
from chain_engine.storage.legacy import LegacyKeyValueStore
from chain_engine.storage.metadata import MetadataStore
from chain_engine.storage.migration import Migrator
from chain_engine.storage.queue import DurableQueue
from chain_engine.workers.base import RegistryWorkerFactory, WorkerFactory

logger = logging.getLogger(__name__)


class ChainScheduler:
    """
    Entry point for enqueuing and draining chains.

    Build with create(); call start() once before the first window.
    """

    def __init__(
        self,
        settings: Settings,
        storage: FileStorage,
        queue: DurableQueue,
        chains: ChainStore,
        metadata: MetadataStore,
        executor: ChainExecutor,
        event_bus: ChainEventBus,
        migrator: Optional[Migrator] = None,
    ):
        self.settings = settings
        self.storage = storage
        self.queue = queue
        self.chains = chains
        self.metadata = metadata
        self.executor = executor
        self.event_bus = event_bus
        self.migrator = migrator
        self._started = False

    @classmethod
    def create(
        cls,
        worker_factory: WorkerFactory,
        settings: Optional[Settings] = None,
        legacy_store: Optional[LegacyKeyValueStore] = None,
        event_bus: Optional[ChainEventBus] = None,
    ) -> "ChainScheduler":
        """
        Build a scheduler and all of its collaborators.

        Raises:
            UnknownWorkerError: If a required worker type is not registered
        """
        settings = settings or get_settings()

        if isinstance(worker_factory, RegistryWorkerFactory):
            worker_factory.validate(settings.executor.required_workers)
        elif settings.executor.required_workers:
            logger.warning("Worker factory does not support validation, skipping required_workers check")

        storage = FileStorage(settings.storage)
        queue = DurableQueue(storage)
        chains = ChainStore(storage)
        metadata = MetadataStore(storage)
        event_bus = event_bus or ChainEventBus(
            buffer_size=settings.events.buffer_size,
            history_size=settings.events.history_size,
        )
        executor = ChainExecutor(queue, chains, worker_factory, event_bus, settings.executor)

        migrator = None
        if legacy_store is not None:
            migrator = Migrator(storage, queue, chains, metadata, legacy_store)

        return cls(settings, storage, queue, chains, metadata, executor, event_bus, migrator)

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> Optional[MigrationResult]:
        """
        Prepare storage for use.

        Runs the legacy migration (when a legacy store is configured),
        requeues chains interrupted by a previous process and removes
        stale task metadata.

        Returns:
            The migration result, or None without a legacy store
        """
        if self._started:
            return None

        self.storage.ensure_layout()

        migration = None
        if self.migrator is not None:
            migration = await self.migrator.migrate()
            if not migration.success:
                logger.error(f"Legacy migration did not complete: {migration.message}")

        await self.executor.recover_interrupted()
        await self.metadata.cleanup_stale()

        self._started = True
        logger.info(f"Chain scheduler started with {await self.queue.size()} queued chains")
        return migration

    # ==================== Enqueue ====================

    def begin_with(self, tasks: TaskOrTasks) -> ChainBuilder:
        """Start building a chain whose first stage is tasks."""
        return ChainBuilder(tasks, enqueuer=self.enqueue_chain)

    async def enqueue_chain(self, stages: list[Stage]) -> str:
        """
        Persist a chain and append it to the queue.

        The definition is written before the id is queued, and removed
        again if queueing fails for any reason, so the queue never
        references a missing chain and a rejected chain leaves nothing
        behind.

        Returns:
            The new chain id

        Raises:
            ValueError: If the chain or one of its stages is empty
            PayloadTooLargeError: If the chain exceeds the size limit
            QueueFullError: If the queue is at capacity
            CoordinationError: If the queue file cannot be locked
        """
        if not stages:
            raise ValueError("Cannot enqueue an empty chain")
        if any(not stage for stage in stages):
            raise ValueError("Every stage must contain at least one task")

        chain_id = uuid.uuid4().hex
        definition = await self.chains.save(chain_id, stages)

        try:
            await self.queue.enqueue(chain_id)
        except BaseException:
            await self.chains.delete(chain_id)
            raise

        logger.info(
            f"Enqueued chain {chain_id}: {len(definition.stages)} stages, "
            f"{definition.task_count} tasks"
        )
        return chain_id

    async def get_queue_size(self) -> int:
        return await self.queue.size()

    # ==================== Execution ====================

    async def run_window(
        self,
        window: ExecutionWindow,
        max_chains: Optional[int] = None,
    ) -> BatchReport:
        """Drain queued chains until the window's budget runs low."""
        report = await self.executor.execute_chains_in_batch(max_chains=max_chains, window=window)
        if report.needs_another_window:
            logger.info(f"{report.remaining} chains still queued, another window is needed")
        return report
