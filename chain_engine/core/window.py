"""
Execution window granted by the host.

A window is a deadline plus a cancellation signal. The executor only sees
this object, so it can be driven by a real host scheduler, a signal
handler, an HTTP request or a test.
"""

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

logger = logging.getLogger(__name__)


class ExecutionWindow:
    """Bounded time budget that the host may revoke early."""

    def __init__(self, deadline: float, clock: Callable[[], float] = time.monotonic):
        self._deadline = deadline
        self._clock = clock
        self._cancelled = asyncio.Event()
        self._cancel_reason: Optional[str] = None
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def open(cls, duration: float, clock: Callable[[], float] = time.monotonic) -> "ExecutionWindow":
        """Open a window lasting duration seconds from now."""
        if duration <= 0:
            raise ValueError(f"Window duration must be positive, got {duration}")
        return cls(clock() + duration, clock=clock)

    @property
    def deadline(self) -> float:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def cancel_reason(self) -> Optional[str]:
        return self._cancel_reason

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def remaining(self) -> float:
        """Seconds left before the deadline, never negative."""
        return max(0.0, self._deadline - self._clock())

    def cancel(self, reason: str = "revoked by host") -> None:
        """
        Revoke the window.

        Tasks attached to the window are cancelled cooperatively.
        Cancelling twice is a no-op.
        """
        if self._cancelled.is_set():
            return

        self._cancel_reason = reason
        self._cancelled.set()
        logger.warning(f"Execution window cancelled: {reason}")

        for task in list(self._tasks):
            if not task.done():
                task.cancel()

    async def wait_cancelled(self) -> None:
        await self._cancelled.wait()

    @contextmanager
    def attached(self, task: Optional[asyncio.Task] = None) -> Iterator[None]:
        """Attach the current (or given) task for the duration of the block."""
        task = task or asyncio.current_task()
        if task is None:
            raise RuntimeError("attached() requires a running task")

        self._tasks.add(task)
        try:
            yield
        finally:
            self._tasks.discard(task)
