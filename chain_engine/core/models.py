"""
Domain models for the chain engine.

All persisted records carry an explicit schema version. JSON field names
use camelCase on disk; the legacy key-value store's names are accepted on
input so migrated records need no format-specific parsing.
"""

import json
import re
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from chain_engine.core.errors import InvalidIdentifierError

CHAIN_SCHEMA_VERSION = 1
METADATA_SCHEMA_VERSION = 1

# Ids become file names, so keep them to a portable character set
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def validate_identifier(value: str) -> str:
    """Return value unchanged if it is a safe record id, else raise."""
    if not isinstance(value, str) or not IDENTIFIER_PATTERN.match(value):
        raise InvalidIdentifierError(str(value))
    return value


class TaskRequest(BaseModel):
    """A single task within a stage, resolved to a worker at run time."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    worker_type_name: str = Field(
        ...,
        min_length=1,
        alias="workerTypeName",
        validation_alias=AliasChoices("workerTypeName", "workerClassName", "worker_type_name"),
        description="Name the worker factory resolves to a Task",
    )
    input_payload: Optional[str] = Field(
        default=None,
        alias="inputPayload",
        validation_alias=AliasChoices("inputPayload", "inputJson", "input_payload"),
        description="Opaque string handed to the task",
    )


# All tasks in a stage run concurrently
Stage = list[TaskRequest]


class ChainDefinition(BaseModel):
    """Persisted definition of a chain: ordered stages of parallel tasks."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Chain identifier")
    stages: list[Stage] = Field(..., description="Stages in execution order")
    schema_version: int = Field(default=CHAIN_SCHEMA_VERSION, alias="schemaVersion")

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Chain ids must be usable as file names."""
        return validate_identifier(v)

    @property
    def task_count(self) -> int:
        return sum(len(stage) for stage in self.stages)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, chain_id: str, raw: str) -> "ChainDefinition":
        """
        Parse a persisted chain.

        A bare array of stages is the pre-versioned format and is read as
        schema version 0.

        Raises:
            ValueError: If the JSON is malformed or does not describe chain_id
        """
        data = json.loads(raw)

        if isinstance(data, list):
            return cls(id=chain_id, stages=data, schema_version=0)

        definition = cls.model_validate(data)
        if definition.id != chain_id:
            raise ValueError(f"Stored id {definition.id} does not match {chain_id}")
        return definition


class TaskMetadata(BaseModel):
    """
    Scheduling record for the single-task path.

    Persisted as a flat string->string map, see to_record/from_record.
    """

    model_config = ConfigDict(populate_by_name=True)

    worker_type_name: str = Field(
        ...,
        min_length=1,
        alias="workerTypeName",
        validation_alias=AliasChoices("workerTypeName", "workerClassName", "worker_type_name"),
    )
    input_payload: Optional[str] = Field(
        default=None,
        alias="inputPayload",
        validation_alias=AliasChoices("inputPayload", "inputJson", "input_payload"),
    )
    periodic: bool = Field(
        default=False,
        validation_alias=AliasChoices("periodic", "isPeriodic"),
    )
    interval_ms: Optional[int] = Field(
        default=None,
        ge=0,
        alias="intervalMs",
        validation_alias=AliasChoices("intervalMs", "interval_ms"),
    )
    flex_ms: Optional[int] = Field(
        default=None,
        ge=0,
        alias="flexMs",
        validation_alias=AliasChoices("flexMs", "flex_ms"),
        description="Window at the end of each interval in which a periodic run may start",
    )
    initial_delay_ms: Optional[int] = Field(
        default=None,
        ge=0,
        alias="initialDelayMs",
        validation_alias=AliasChoices("initialDelayMs", "initial_delay_ms"),
    )
    at_epoch_ms: Optional[int] = Field(
        default=None,
        ge=0,
        alias="atEpochMs",
        validation_alias=AliasChoices("atEpochMs", "at_epoch_ms"),
        description="Absolute start time for one-time tasks",
    )
    requires_network: bool = Field(
        default=False,
        alias="requiresNetwork",
        validation_alias=AliasChoices("requiresNetwork", "requires_network"),
    )
    requires_charging: bool = Field(
        default=False,
        alias="requiresCharging",
        validation_alias=AliasChoices("requiresCharging", "requires_charging"),
    )
    is_heavy_task: bool = Field(
        default=False,
        alias="isHeavyTask",
        validation_alias=AliasChoices("isHeavyTask", "is_heavy_task"),
    )
    schema_version: int = Field(
        default=METADATA_SCHEMA_VERSION,
        alias="schemaVersion",
        validation_alias=AliasChoices("schemaVersion", "schema_version"),
    )

    @field_validator("input_payload", mode="before")
    @classmethod
    def empty_payload_is_none(cls, v: Any) -> Any:
        """The legacy store wrote missing payloads as empty strings."""
        if v == "":
            return None
        return v

    def to_record(self) -> dict[str, str]:
        """Flatten to the on-disk string map."""
        record: dict[str, str] = {}
        for key, value in self.model_dump(by_alias=True, exclude_none=True).items():
            if isinstance(value, bool):
                record[key] = "true" if value else "false"
            else:
                record[key] = str(value)
        return record

    @classmethod
    def from_record(
        cls,
        record: dict[str, str],
        periodic: Optional[bool] = None,
    ) -> "TaskMetadata":
        """
        Build from a string map.

        Records without a schema version predate versioning and are
        tagged as version 0.

        Args:
            record: Flat string map, current or legacy key names
            periodic: Override for the periodic flag (taken from the
                subspace the record was found in)
        """
        data: dict[str, Any] = dict(record)
        if periodic is not None:
            data.pop("isPeriodic", None)
            data["periodic"] = periodic
        if "schemaVersion" not in data and "schema_version" not in data:
            data["schemaVersion"] = 0
        return cls.model_validate(data)


class ChainOutcome(str, Enum):
    """Result of one execute_chain call."""

    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"  # Already executing in this process


class ChainEvent(BaseModel):
    """Completion or failure notice for a chain that reached a terminal state."""

    chain_id: str
    success: bool
    message: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class MigrationResult(BaseModel):
    """Outcome of a legacy storage migration."""

    success: bool
    message: str
    chains_migrated: int = 0
    metadata_migrated: int = 0
    queue_entries_migrated: int = 0
    records_skipped: int = 0


class BatchReport(BaseModel):
    """Summary of one batch drained inside an execution window."""

    executed: int = Field(default=0, description="Chains run to a terminal outcome")
    succeeded: int = 0
    failed: int = 0
    remaining: int = Field(default=0, description="Chains still queued afterwards")
    elapsed: float = Field(default=0.0, description="Wall-clock seconds spent")
    stopped_reason: str = ""

    @property
    def needs_another_window(self) -> bool:
        """Whether the caller should ask the host for another window."""
        return self.remaining > 0
