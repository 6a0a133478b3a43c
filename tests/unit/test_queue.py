"""
Unit tests for the durable chain queue.
"""

import asyncio

import pytest

from chain_engine.config import StorageSettings
from chain_engine.core.errors import CoordinationError, InvalidIdentifierError, QueueFullError
from chain_engine.storage.files import FileStorage
from chain_engine.storage.queue import DurableQueue


class TestDurableQueue:
    """Tests for enqueue/dequeue ordering and bounds."""

    @pytest.mark.asyncio
    async def test_fifo_order(self, queue):
        """Test ids come out in the order they went in."""
        for chain_id in ("a", "b", "c"):
            await queue.enqueue(chain_id)

        assert [await queue.dequeue() for _ in range(3)] == ["a", "b", "c"]
        assert await queue.dequeue() is None

    @pytest.mark.asyncio
    async def test_enqueue_returns_size(self, queue):
        """Test enqueue reports the new queue size."""
        assert await queue.enqueue("a") == 1
        assert await queue.enqueue("b") == 2
        assert await queue.size() == 2

    @pytest.mark.asyncio
    async def test_file_is_newline_delimited(self, queue, storage):
        """Test the on-disk queue format."""
        await queue.enqueue("first")
        await queue.enqueue("second")

        assert storage.queue_path.read_text(encoding="utf-8") == "first\nsecond\n"

    @pytest.mark.asyncio
    async def test_capacity(self, queue):
        """Test the eleventh enqueue on a queue of ten is rejected."""
        for i in range(10):
            await queue.enqueue(f"chain-{i}")

        with pytest.raises(QueueFullError):
            await queue.enqueue("chain-10")

        assert await queue.size() == 10
        assert await queue.snapshot() == [f"chain-{i}" for i in range(10)]

    @pytest.mark.asyncio
    async def test_in_flight_counts_toward_capacity(self, queue):
        """Test dequeued but unacknowledged ids still take space."""
        for i in range(10):
            await queue.enqueue(f"chain-{i}")
        await queue.dequeue()

        with pytest.raises(QueueFullError):
            await queue.enqueue("late")

        await queue.acknowledge("chain-0")
        assert await queue.enqueue("late") == 10

    @pytest.mark.asyncio
    async def test_invalid_id_rejected(self, queue):
        """Test ids that are not safe file names never reach the file."""
        with pytest.raises(InvalidIdentifierError):
            await queue.enqueue("bad\nid")

        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, queue, storage):
        """Test queue contents are durable across handles."""
        await queue.enqueue("a")
        await queue.enqueue("b")

        reopened = DurableQueue(FileStorage(storage.settings))

        assert await reopened.snapshot() == ["a", "b"]


class TestInFlightJournal:
    """Tests for dequeue, acknowledge, release and claim."""

    @pytest.mark.asyncio
    async def test_dequeue_journals_id(self, queue):
        """Test a dequeued id is tracked until acknowledged."""
        await queue.enqueue("a")

        await queue.dequeue()

        assert await queue.in_flight() == ["a"]
        await queue.acknowledge("a")
        assert await queue.in_flight() == []

    @pytest.mark.asyncio
    async def test_acknowledge_unknown_is_noop(self, queue):
        """Test acknowledging an id that is not in flight."""
        await queue.acknowledge("missing")
        assert await queue.in_flight() == []

    @pytest.mark.asyncio
    async def test_release_puts_id_at_head(self, queue):
        """Test a released id runs before everything else."""
        for chain_id in ("a", "b", "c"):
            await queue.enqueue(chain_id)
        await queue.dequeue()

        assert await queue.release("a") is True

        assert await queue.snapshot() == ["a", "b", "c"]
        assert await queue.in_flight() == []

    @pytest.mark.asyncio
    async def test_release_does_not_duplicate(self, queue):
        """Test releasing an id that is already queued."""
        await queue.enqueue("a")

        assert await queue.release("a") is False
        assert await queue.snapshot() == ["a"]

    @pytest.mark.asyncio
    async def test_release_at_capacity(self, queue):
        """Test an in-flight id always fits back into a full queue."""
        for i in range(10):
            await queue.enqueue(f"chain-{i}")
        head = await queue.dequeue()

        assert await queue.release(head) is True
        assert await queue.size() == 10

    @pytest.mark.asyncio
    async def test_release_of_unknown_id_respects_capacity(self, queue):
        """Test releasing a never-dequeued id into a full queue."""
        for i in range(10):
            await queue.enqueue(f"chain-{i}")

        with pytest.raises(QueueFullError):
            await queue.release("stranger")

    @pytest.mark.asyncio
    async def test_claim_moves_specific_id(self, queue):
        """Test claim takes an id from the middle of the queue."""
        for chain_id in ("a", "b", "c"):
            await queue.enqueue(chain_id)

        assert await queue.claim("b") is True

        assert await queue.snapshot() == ["a", "c"]
        assert await queue.in_flight() == ["b"]

    @pytest.mark.asyncio
    async def test_claim_missing_id(self, queue):
        """Test claiming an id that is not queued."""
        assert await queue.claim("nope") is False
        assert await queue.in_flight() == []

    @pytest.mark.asyncio
    async def test_zero_capacity_is_honored(self, storage):
        """Test an explicit max_size of 0 rejects every enqueue."""
        queue = DurableQueue(storage, max_size=0)

        assert queue.max_size == 0
        with pytest.raises(QueueFullError):
            await queue.enqueue("a")
        assert await queue.size() == 0


class TestQueueConcurrency:
    """Tests for concurrent access to one queue directory."""

    @pytest.mark.asyncio
    async def test_concurrent_dequeue_never_duplicates(self, queue):
        """Test each id is handed out exactly once."""
        ids = [f"chain-{i}" for i in range(10)]
        for chain_id in ids:
            await queue.enqueue(chain_id)

        results = await asyncio.gather(*(queue.dequeue() for _ in range(15)))

        taken = [r for r in results if r is not None]
        assert sorted(taken) == sorted(ids)

    @pytest.mark.asyncio
    async def test_separate_handles_share_the_lock(self, storage):
        """Test two handles (as two processes would) never hand out the same id."""
        first = DurableQueue(FileStorage(storage.settings))
        second = DurableQueue(FileStorage(storage.settings))
        for i in range(10):
            await first.enqueue(f"chain-{i}")

        results = await asyncio.gather(
            *(handle.dequeue() for handle in (first, second) * 6)
        )

        taken = [r for r in results if r is not None]
        assert len(taken) == 10
        assert len(set(taken)) == 10

    @pytest.mark.asyncio
    async def test_concurrent_enqueue_keeps_every_id(self, queue):
        """Test no append is lost under contention."""
        await asyncio.gather(*(queue.enqueue(f"chain-{i}") for i in range(10)))

        assert sorted(await queue.snapshot()) == sorted(f"chain-{i}" for i in range(10))

    @pytest.mark.asyncio
    async def test_lock_timeout(self, tmp_path):
        """Test a held lock surfaces as CoordinationError."""
        storage = FileStorage(StorageSettings(
            base_dir=tmp_path / "locked",
            lock_timeout=0.1,
            lock_poll_interval=0.01,
        ))
        queue = DurableQueue(storage)

        with storage.hold_lock("queue"):
            with pytest.raises(CoordinationError):
                await queue.enqueue("a")

        assert await queue.enqueue("a") == 1
