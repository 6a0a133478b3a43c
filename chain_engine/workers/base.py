"""
Task and worker factory contracts.

Tasks are resolved by name at execution time, never at enqueue time, so a
persisted chain can run against whatever factory the process registered.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional

from chain_engine.core.errors import UnknownWorkerError

logger = logging.getLogger(__name__)


class Task(ABC):
    """
    A named unit of work.

    execute() must observe cancellation promptly: the executor cancels it
    when its timeout elapses or the execution window is revoked.
    """

    @abstractmethod
    async def execute(self, input_payload: Optional[str]) -> bool:
        """
        Run the task.

        Args:
            input_payload: Opaque string from the chain definition

        Returns:
            True on success, False on failure
        """
        pass


class WorkerFactory(ABC):
    """Resolves worker type names to fresh Task instances."""

    @abstractmethod
    def create_task(self, worker_type_name: str) -> Optional[Task]:
        """Return a new Task for the name, or None if unknown."""
        pass


TaskConstructor = Callable[[], Task]


class RegistryWorkerFactory(WorkerFactory):
    """
    Worker factory backed by a registered name -> constructor map.

    validate() is called at startup so a missing registration fails the
    process immediately instead of failing chains one by one later.
    """

    def __init__(self, registry: Optional[dict[str, TaskConstructor]] = None):
        self._registry: dict[str, TaskConstructor] = {}
        for name, constructor in (registry or {}).items():
            self.register(name, constructor)

    def register(self, worker_type_name: str, constructor: TaskConstructor) -> None:
        if not worker_type_name:
            raise ValueError("Worker type name must not be empty")
        if worker_type_name in self._registry:
            logger.warning(f"Replacing registered worker {worker_type_name}")
        self._registry[worker_type_name] = constructor

    @property
    def names(self) -> set[str]:
        return set(self._registry)

    def validate(self, expected: Iterable[str]) -> None:
        """
        Check that every expected name is registered.

        Raises:
            UnknownWorkerError: Listing all missing names
        """
        missing = set(expected) - self.names
        if missing:
            raise UnknownWorkerError(missing)

    def create_task(self, worker_type_name: str) -> Optional[Task]:
        constructor = self._registry.get(worker_type_name)
        if constructor is None:
            return None
        return constructor()
