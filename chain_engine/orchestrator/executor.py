"""
Chain executor.

Drains the durable queue inside an execution window. Each chain runs its
stages in order, the tasks of a stage concurrently, under nested
timeouts:

    window budget  >  chain timeout  >  task timeout

A chain that reaches a terminal outcome (success or failure) is deleted
from the chain store, acknowledged in the queue journal and reported with
exactly one event. A chain interrupted by the window being revoked is not
terminal: it goes back to the head of the queue and no event is emitted.
"""

import asyncio
import logging
import time
from contextlib import nullcontext
from typing import Callable, Optional

from chain_engine.config import ExecutorSettings
from chain_engine.core.errors import (
    ChainEngineError,
    ChainNotFoundError,
    CoordinationError,
    CorruptDefinitionError,
    InvalidIdentifierError,
    TaskExecutionError,
    TaskTimeoutError,
)
from chain_engine.core.models import (
    BatchReport,
    ChainDefinition,
    ChainEvent,
    ChainOutcome,
    Stage,
    TaskRequest,
)
from chain_engine.core.state_machine import ChainState, ChainStateMachine
from chain_engine.core.window import ExecutionWindow
from chain_engine.messaging.events import ChainEventBus
from chain_engine.storage.chains import ChainStore
from chain_engine.storage.queue import DurableQueue
from chain_engine.workers.base import WorkerFactory

logger = logging.getLogger(__name__)


class ChainExecutor:
    """
    Executes persisted chains.

    The active set guards against running the same chain twice at once
    within this process. It is not persisted; crash recovery goes through
    the queue's in-flight journal instead (see recover_interrupted).
    """

    def __init__(
        self,
        queue: DurableQueue,
        chains: ChainStore,
        worker_factory: WorkerFactory,
        event_bus: ChainEventBus,
        settings: ExecutorSettings,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.queue = queue
        self.chains = chains
        self.worker_factory = worker_factory
        self.event_bus = event_bus
        self.settings = settings
        self._clock = clock
        self._active: set[str] = set()
        self._cleanups: set[asyncio.Task] = set()

    @property
    def active_chains(self) -> frozenset[str]:
        return frozenset(self._active)

    def is_active(self, chain_id: str) -> bool:
        return chain_id in self._active

    # ==================== Single Chain ====================

    async def execute_chain(self, chain_id: str, timeout: Optional[float] = None) -> ChainOutcome:
        """
        Execute one chain to a terminal outcome.

        Args:
            chain_id: Chain to run
            timeout: Optional cap below the configured chain timeout

        Returns:
            SUCCEEDED or FAILED, or SKIPPED if the chain is already
            executing in this process

        Raises:
            asyncio.CancelledError: If cancelled before a terminal outcome;
                the chain has been released back to the queue
            CoordinationError: If storage fails while cleaning up
        """
        if chain_id in self._active:
            logger.info(f"Chain {chain_id} is already executing, skipping duplicate")
            return ChainOutcome.SKIPPED

        self._active.add(chain_id)
        try:
            machine = ChainStateMachine(chain_id)
            machine.transition(ChainState.ACTIVE, reason="execution started", triggered_by="executor")
            return await self._run_chain(chain_id, machine, timeout)
        finally:
            self._active.discard(chain_id)

    async def _run_chain(
        self,
        chain_id: str,
        machine: ChainStateMachine,
        timeout: Optional[float],
    ) -> ChainOutcome:
        chain_timeout = self.settings.chain_timeout
        if timeout is not None:
            chain_timeout = max(0.0, min(chain_timeout, timeout))

        started = self._clock()

        try:
            # No-op for dequeued chains; a direct call must take the id out of
            # the queue before the definition can be deleted
            await self.queue.claim(chain_id)

            scope = asyncio.timeout(chain_timeout)
            try:
                async with scope:
                    try:
                        definition = await self.chains.get(chain_id)
                    except (ChainNotFoundError, CorruptDefinitionError) as e:
                        logger.error(f"Dropping chain {chain_id}: {e}")
                        failure = "Chain definition missing or corrupt"
                    else:
                        failure = await self._run_stages(definition)
            except TimeoutError:
                if not scope.expired():
                    raise
                failure = f"Chain timed out after {chain_timeout:.1f}s"
                logger.error(f"Chain {chain_id} timed out after {chain_timeout:.1f}s")

            elapsed = self._clock() - started
            if failure is None:
                machine.transition(ChainState.SUCCEEDED, reason="all stages succeeded")
                message = f"Chain completed in {elapsed:.1f}s"
            else:
                machine.transition(ChainState.FAILED, reason=failure)
                message = failure

            await self._finish(chain_id, success=failure is None, message=message)

        except asyncio.CancelledError:
            if not machine.is_terminal:
                machine.transition(ChainState.QUEUED, reason="execution cancelled", triggered_by="window")
                await self._release(chain_id)
            raise

        return ChainOutcome.SUCCEEDED if machine.is_success else ChainOutcome.FAILED

    async def _finish(self, chain_id: str, success: bool, message: str) -> None:
        """
        Delete the definition, clear the journal entry, report once.

        Runs as its own task so that a window revoked during cleanup does
        not leave a terminal chain half removed and unreported.
        """
        cleanup = asyncio.create_task(self._complete(chain_id, success, message))
        self._cleanups.add(cleanup)
        cleanup.add_done_callback(self._cleanups.discard)
        await asyncio.shield(cleanup)

    async def _complete(self, chain_id: str, success: bool, message: str) -> None:
        await self.chains.delete(chain_id)
        await self.queue.acknowledge(chain_id)
        self.event_bus.emit(ChainEvent(chain_id=chain_id, success=success, message=message))

    async def _release(self, chain_id: str) -> None:
        try:
            await self.queue.release(chain_id)
        except ChainEngineError as e:
            # The journal entry is still there, recovery picks it up
            logger.error(f"Could not release interrupted chain {chain_id}: {e}")

    # ==================== Stages and Tasks ====================

    async def _run_stages(self, definition: ChainDefinition) -> Optional[str]:
        """Run stages in order. Returns a failure message, or None."""
        total = len(definition.stages)

        for index, stage in enumerate(definition.stages, start=1):
            logger.info(
                f"Chain {definition.id}: executing stage {index}/{total} with {len(stage)} tasks"
            )
            errors = [error for error in await self._run_stage(stage) if error is not None]
            if errors:
                logger.warning(f"Chain {definition.id}: stage {index}/{total} failed, aborting chain")
                return f"Stage {index}/{total} failed: {'; '.join(errors)}"

        return None

    async def _run_stage(self, stage: Stage) -> list[Optional[str]]:
        """
        Run all tasks of a stage as siblings.

        _run_task reports failures as values, so a failing task never
        cancels its siblings; only a chain timeout or window cancellation
        tears the group down.
        """
        async with asyncio.TaskGroup() as group:
            runs = [group.create_task(self._run_task(request)) for request in stage]
        return [run.result() for run in runs]

    async def _run_task(self, request: TaskRequest) -> Optional[str]:
        """Run one task under the task timeout. Returns an error message, or None."""
        name = request.worker_type_name
        task_timeout = self.settings.task_timeout
        started = self._clock()

        scope = asyncio.timeout(task_timeout)
        try:
            async with scope:
                task = self.worker_factory.create_task(name)
                if task is None:
                    logger.error(f"No worker registered for {name}")
                    return f"No worker registered for {name}"
                succeeded = await task.execute(request.input_payload)
        except TimeoutError as e:
            if not scope.expired():
                error = TaskExecutionError(name, e)
                logger.error(str(error))
                return str(error)
            error = TaskTimeoutError(name, task_timeout)
            logger.error(str(error))
            return str(error)
        except Exception as e:
            error = TaskExecutionError(name, e)
            logger.error(str(error), exc_info=True)
            return str(error)

        elapsed = self._clock() - started
        if elapsed > task_timeout * self.settings.slow_task_ratio:
            logger.warning(
                f"Task {name} took {elapsed:.1f}s, "
                f"{elapsed / task_timeout:.0%} of its {task_timeout:.1f}s timeout"
            )

        if not succeeded:
            logger.warning(f"Task {name} reported failure after {elapsed:.1f}s")
            return f"Task {name} reported failure"

        logger.debug(f"Task {name} succeeded in {elapsed:.1f}s")
        return None

    # ==================== Queue Draining ====================

    async def execute_next_chain_from_queue(self, timeout: Optional[float] = None) -> Optional[ChainOutcome]:
        """Dequeue and execute the next chain. Returns None if the queue is empty."""
        chain_id = await self.queue.dequeue()
        if chain_id is None:
            return None
        return await self.execute_chain(chain_id, timeout=timeout)

    async def execute_chains_in_batch(
        self,
        max_chains: Optional[int] = None,
        total_budget: Optional[float] = None,
        window: Optional[ExecutionWindow] = None,
    ) -> BatchReport:
        """
        Execute up to max_chains queued chains within a time budget.

        Before each chain the remaining budget is checked against the
        safety margin, and each chain's timeout is capped so it ends at
        least safety_margin seconds before the budget runs out. Failed
        chains count as executed; skipped duplicates do not.

        Args:
            max_chains: Upper bound on chains started
            total_budget: Seconds available, defaults to the window's
                remaining time or the configured window duration
            window: Optional host window; cancelling it stops the batch
                and releases the in-flight chain back to the queue
        """
        if max_chains is None:
            max_chains = self.settings.batch_max_chains
        margin = self.settings.safety_margin

        if total_budget is None:
            total_budget = window.remaining() if window is not None else self.settings.window_duration
        elif window is not None:
            total_budget = min(total_budget, window.remaining())

        started = self._clock()
        report = BatchReport()
        stopped_reason = "max chains reached"

        logger.info(f"Starting batch: up to {max_chains} chains within {total_budget:.1f}s")

        with window.attached() if window is not None else nullcontext():
            try:
                for _ in range(max_chains):
                    if window is not None and window.cancelled:
                        stopped_reason = "window cancelled"
                        break

                    remaining = total_budget - (self._clock() - started)
                    if remaining < margin:
                        stopped_reason = "budget exhausted"
                        logger.info(
                            f"Stopping batch: {remaining:.1f}s left is below the {margin:.1f}s safety margin"
                        )
                        break

                    chain_id = await self.queue.dequeue()
                    if chain_id is None:
                        stopped_reason = "queue empty"
                        break

                    try:
                        outcome = await self.execute_chain(chain_id, timeout=remaining - margin)
                    except CoordinationError as e:
                        logger.error(f"Storage failure while executing chain {chain_id}: {e}")
                        outcome = ChainOutcome.FAILED

                    if outcome == ChainOutcome.SKIPPED:
                        continue

                    report.executed += 1
                    if outcome == ChainOutcome.SUCCEEDED:
                        report.succeeded += 1
                    else:
                        report.failed += 1

            except asyncio.CancelledError:
                if window is None or not window.cancelled:
                    raise
                # Cancellation came from the window, not from our caller
                current = asyncio.current_task()
                if current is not None:
                    current.uncancel()
                stopped_reason = "window cancelled"

        report.elapsed = self._clock() - started
        report.remaining = await self.queue.size()
        report.stopped_reason = stopped_reason

        logger.info(
            f"Batch finished ({stopped_reason}): executed {report.executed} chains "
            f"({report.succeeded} succeeded, {report.failed} failed) in {report.elapsed:.1f}s, "
            f"{report.remaining} remaining"
        )
        return report

    # ==================== Recovery ====================

    async def recover_interrupted(self) -> list[str]:
        """
        Requeue chains left in flight by a previous process.

        Call once at startup, before any batch runs. Journaled ids whose
        definition still exists go back to the head of the queue in their
        original order; the rest already reached a terminal outcome and
        are dropped from the journal.

        Returns:
            Recovered chain ids
        """
        recovered: list[str] = []

        for chain_id in reversed(await self.queue.in_flight()):
            if chain_id in self._active:
                continue
            try:
                if await self.chains.exists(chain_id):
                    await self.queue.release(chain_id)
                    recovered.append(chain_id)
                    continue
            except InvalidIdentifierError:
                logger.warning(f"Dropping invalid in-flight entry {chain_id!r}")
            await self.queue.acknowledge(chain_id)

        recovered.reverse()
        if recovered:
            logger.warning(f"Recovered {len(recovered)} interrupted chains: {', '.join(recovered)}")
        return recovered
