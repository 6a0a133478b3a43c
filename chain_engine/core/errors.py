"""
Exception taxonomy for the chain engine.

Storage errors are raised to the caller of the single operation that hit
them. Task level failures never escape the executor: they end their own
chain as FAILED and are reported through the event bus.
"""

from typing import Iterable, Optional


class ChainEngineError(Exception):
    """Base class for all chain engine errors."""
    pass


class QueueFullError(ChainEngineError):
    """Raised when the durable queue is at capacity."""

    def __init__(self, chain_id: str, capacity: int):
        self.chain_id = chain_id
        self.capacity = capacity
        super().__init__(f"Queue is full ({capacity} entries), rejected chain {chain_id}")


class PayloadTooLargeError(ChainEngineError):
    """Raised when a serialized chain exceeds the size limit."""

    def __init__(self, chain_id: str, size: int, limit: int):
        self.chain_id = chain_id
        self.size = size
        self.limit = limit
        super().__init__(
            f"Chain {chain_id} is {size} bytes, exceeds limit of {limit} bytes"
        )


class ChainNotFoundError(ChainEngineError):
    """Raised when a chain definition is absent from the store."""

    def __init__(self, chain_id: str):
        self.chain_id = chain_id
        super().__init__(f"Chain {chain_id} not found")


class CorruptDefinitionError(ChainEngineError):
    """Raised when a persisted record cannot be deserialized."""

    def __init__(self, record_id: str, reason: str = ""):
        self.record_id = record_id
        super().__init__(
            f"Record {record_id} is corrupt" + (f": {reason}" if reason else "")
        )


class TaskTimeoutError(ChainEngineError):
    """Raised when a task exceeds its timeout."""

    def __init__(self, worker_type_name: str, timeout: float):
        self.worker_type_name = worker_type_name
        self.timeout = timeout
        super().__init__(f"Task {worker_type_name} timed out after {timeout:.1f}s")


class TaskExecutionError(ChainEngineError):
    """Raised when a task raises instead of returning a result."""

    def __init__(self, worker_type_name: str, cause: Optional[BaseException] = None):
        self.worker_type_name = worker_type_name
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown error"
        super().__init__(f"Task {worker_type_name} raised {detail}")


class CoordinationError(ChainEngineError):
    """Raised when file I/O or cross-process locking fails."""
    pass


class UnknownWorkerError(ChainEngineError):
    """Raised when required worker types are not registered."""

    def __init__(self, missing: Iterable[str]):
        self.missing = sorted(missing)
        super().__init__(f"No worker registered for: {', '.join(self.missing)}")


class InvalidIdentifierError(ChainEngineError, ValueError):
    """Raised for ids that are not safe to use as file names."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Invalid identifier: {identifier!r}")
