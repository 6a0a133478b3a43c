"""Task contracts, worker factory and sample tasks."""

from chain_engine.workers.base import RegistryWorkerFactory, Task, WorkerFactory
from chain_engine.workers.handlers import WorkerTypes, build_default_factory

__all__ = [
    "RegistryWorkerFactory",
    "Task",
    "WorkerFactory",
    "WorkerTypes",
    "build_default_factory",
]
