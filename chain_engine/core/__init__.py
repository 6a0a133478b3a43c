"""Core domain models and business logic."""

from chain_engine.core.builder import ChainBuilder
from chain_engine.core.models import (
    BatchReport,
    ChainDefinition,
    ChainEvent,
    ChainOutcome,
    MigrationResult,
    Stage,
    TaskMetadata,
    TaskRequest,
)
from chain_engine.core.state_machine import ChainState, ChainStateMachine
from chain_engine.core.window import ExecutionWindow

__all__ = [
    "BatchReport",
    "ChainBuilder",
    "ChainDefinition",
    "ChainEvent",
    "ChainOutcome",
    "ChainState",
    "ChainStateMachine",
    "ExecutionWindow",
    "MigrationResult",
    "Stage",
    "TaskMetadata",
    "TaskRequest",
]
