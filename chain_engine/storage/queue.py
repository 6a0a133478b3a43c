"""
Durable FIFO of chain ids.

Backed by two newline-delimited files: the queue itself and an in-flight
journal of ids that were dequeued but have not reached a terminal outcome.
Both files are only ever replaced whole, inside one critical section that
combines an in-process asyncio.Lock with the cross-process file lock.
"""

import asyncio
import logging
from typing import Optional

from chain_engine.core.errors import QueueFullError
from chain_engine.core.models import validate_identifier
from chain_engine.storage.files import FileStorage

logger = logging.getLogger(__name__)

QUEUE_LOCK = "queue"


class DurableQueue:
    """
    Bounded, file-backed FIFO of chain ids.

    Capacity counts queued and in-flight ids together, so releasing an
    in-flight id back to the queue can never push it past max_size.
    """

    def __init__(self, storage: FileStorage, max_size: Optional[int] = None):
        self.storage = storage
        self.max_size = max_size if max_size is not None else storage.settings.max_queue_size
        self._mutex = asyncio.Lock()

    async def enqueue(self, chain_id: str) -> int:
        """
        Append a chain id to the tail of the queue.

        Returns:
            Queue size after the append

        Raises:
            QueueFullError: If the queue is at capacity (nothing written)
        """
        validate_identifier(chain_id)

        async with self._mutex:
            size = await self.storage.run_locked(QUEUE_LOCK, self._enqueue_locked, chain_id)

        logger.debug(f"Enqueued chain {chain_id} (queue size {size})")
        return size

    async def dequeue(self) -> Optional[str]:
        """
        Remove and return the head of the queue, or None when empty.

        The id is journaled as in-flight in the same critical section.
        """
        async with self._mutex:
            chain_id = await self.storage.run_locked(QUEUE_LOCK, self._dequeue_locked)

        if chain_id:
            logger.debug(f"Dequeued chain {chain_id}")
        return chain_id

    async def claim(self, chain_id: str) -> bool:
        """
        Move a specific queued id into the in-flight journal.

        Used when a chain is executed directly rather than dequeued.

        Returns:
            Whether the id was found in the queue
        """
        async with self._mutex:
            return await self.storage.run_locked(QUEUE_LOCK, self._claim_locked, chain_id)

    async def acknowledge(self, chain_id: str) -> None:
        """Drop a chain id from the in-flight journal after a terminal outcome."""
        async with self._mutex:
            await self.storage.run_locked(QUEUE_LOCK, self._acknowledge_locked, chain_id)

    async def release(self, chain_id: str) -> bool:
        """
        Return an in-flight chain id to the head of the queue.

        Returns:
            False if the id was already queued (it is not duplicated)

        Raises:
            QueueFullError: If the id was never in flight and the queue
                is at capacity
        """
        validate_identifier(chain_id)

        async with self._mutex:
            requeued = await self.storage.run_locked(QUEUE_LOCK, self._release_locked, chain_id)

        if requeued:
            logger.info(f"Released chain {chain_id} back to the head of the queue")
        return requeued

    async def size(self) -> int:
        """Number of queued ids (excludes in-flight)."""
        entries = await self.snapshot()
        return len(entries)

    async def snapshot(self) -> list[str]:
        """Queued ids in FIFO order."""
        return await self.storage.run_locked(
            QUEUE_LOCK, self.storage.read_lines, self.storage.queue_path, shared=True
        )

    async def contains(self, chain_id: str) -> bool:
        return chain_id in await self.snapshot()

    async def in_flight(self) -> list[str]:
        """Ids dequeued but not yet acknowledged, oldest first."""
        return await self.storage.run_locked(
            QUEUE_LOCK, self.storage.read_lines, self.storage.in_flight_path, shared=True
        )

    # ==================== Critical sections (thread side) ====================

    def _enqueue_locked(self, chain_id: str) -> int:
        entries = self.storage.read_lines(self.storage.queue_path)
        in_flight = self.storage.read_lines(self.storage.in_flight_path)

        if len(entries) + len(in_flight) >= self.max_size:
            raise QueueFullError(chain_id, self.max_size)

        entries.append(chain_id)
        self.storage.write_lines(self.storage.queue_path, entries)
        return len(entries)

    def _dequeue_locked(self) -> Optional[str]:
        entries = self.storage.read_lines(self.storage.queue_path)
        if not entries:
            return None

        chain_id = entries.pop(0)

        # Journal first: a crash between the two writes leaves the id in
        # both files, which recovery resolves without losing it
        in_flight = self.storage.read_lines(self.storage.in_flight_path)
        if chain_id not in in_flight:
            in_flight.append(chain_id)
            self.storage.write_lines(self.storage.in_flight_path, in_flight)

        self.storage.write_lines(self.storage.queue_path, entries)
        return chain_id

    def _acknowledge_locked(self, chain_id: str) -> None:
        in_flight = self.storage.read_lines(self.storage.in_flight_path)
        if chain_id in in_flight:
            self.storage.write_lines(
                self.storage.in_flight_path,
                [entry for entry in in_flight if entry != chain_id],
            )

    def _release_locked(self, chain_id: str) -> bool:
        entries = self.storage.read_lines(self.storage.queue_path)
        in_flight = self.storage.read_lines(self.storage.in_flight_path)

        requeued = chain_id not in entries
        if requeued:
            # Only ids that were never dequeued can grow the total
            if chain_id not in in_flight and len(entries) + len(in_flight) >= self.max_size:
                raise QueueFullError(chain_id, self.max_size)
            self.storage.write_lines(self.storage.queue_path, [chain_id] + entries)

        self._acknowledge_locked(chain_id)
        return requeued

    def _claim_locked(self, chain_id: str) -> bool:
        entries = self.storage.read_lines(self.storage.queue_path)
        if chain_id not in entries:
            return False

        in_flight = self.storage.read_lines(self.storage.in_flight_path)
        if chain_id not in in_flight:
            in_flight.append(chain_id)
            self.storage.write_lines(self.storage.in_flight_path, in_flight)

        self.storage.write_lines(
            self.storage.queue_path,
            [entry for entry in entries if entry != chain_id],
        )
        return True
