"""Chain execution and scheduling."""

from chain_engine.orchestrator.executor import ChainExecutor
from chain_engine.orchestrator.scheduler import ChainScheduler

__all__ = ["ChainExecutor", "ChainScheduler"]
