"""
In-process completion event bus.

One ChainEvent is emitted per chain that reaches a terminal outcome.
Publishing never blocks the executor: each subscriber has a bounded
buffer and a subscriber that falls behind loses events, with a warning.
"""

import asyncio
import logging
from collections import deque
from typing import AsyncIterator

from chain_engine.core.models import ChainEvent

logger = logging.getLogger(__name__)


class ChainEventBus:
    """Fan-out of chain events to any number of async subscribers."""

    def __init__(self, buffer_size: int = 64, history_size: int = 100):
        self.buffer_size = buffer_size
        self._subscribers: set[asyncio.Queue] = set()
        self._history: deque[ChainEvent] = deque(maxlen=history_size)

    def subscribe(self) -> asyncio.Queue:
        """Register a new subscriber and return its event queue."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.buffer_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def recent(self) -> list[ChainEvent]:
        """Most recent events, oldest first."""
        return list(self._history)

    def emit(self, event: ChainEvent) -> None:
        """Publish an event to every subscriber without waiting."""
        self._history.append(event)

        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Event buffer full, dropped event for chain {event.chain_id}")

        level = logging.INFO if event.success else logging.WARNING
        logger.log(level, f"Chain {event.chain_id} {'succeeded' if event.success else 'failed'}: {event.message}")

    async def listen(self) -> AsyncIterator[ChainEvent]:
        """Iterate over events as they arrive until the consumer stops."""
        queue = self.subscribe()
        try:
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(queue)
