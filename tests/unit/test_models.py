"""
Unit tests for domain models and the chain builder.
"""

import json

import pytest
from pydantic import ValidationError

from chain_engine.core.builder import ChainBuilder
from chain_engine.core.models import (
    BatchReport,
    ChainDefinition,
    TaskMetadata,
    TaskRequest,
    validate_identifier,
)
from chain_engine.core.errors import InvalidIdentifierError


class TestTaskRequest:
    """Tests for TaskRequest model."""

    def test_serializes_with_camel_case_names(self):
        """Test on-disk field names."""
        request = TaskRequest(worker_type_name="sync", input_payload="{}")

        assert request.model_dump(by_alias=True) == {
            "workerTypeName": "sync",
            "inputPayload": "{}",
        }

    def test_accepts_legacy_field_names(self):
        """Test workerClassName/inputJson from the legacy store."""
        request = TaskRequest.model_validate({"workerClassName": "upload", "inputJson": "x"})

        assert request.worker_type_name == "upload"
        assert request.input_payload == "x"

    def test_payload_is_optional(self):
        """Test input payload defaults to None."""
        request = TaskRequest.model_validate({"workerTypeName": "sync"})
        assert request.input_payload is None

    def test_empty_worker_name_rejected(self):
        """Test worker type name must not be empty."""
        with pytest.raises(ValidationError):
            TaskRequest(worker_type_name="")

    def test_is_hashable(self):
        """Test frozen requests can be used in sets."""
        a = TaskRequest(worker_type_name="sync")
        b = TaskRequest(worker_type_name="sync")

        assert len({a, b}) == 1


class TestChainDefinition:
    """Tests for ChainDefinition model."""

    def test_json_round_trip(self):
        """Test a multi-stage chain survives serialization."""
        definition = ChainDefinition(
            id="chain-1",
            stages=[
                [TaskRequest(worker_type_name="sync")],
                [
                    TaskRequest(worker_type_name="upload", input_payload='{"total_mb": 5}'),
                    TaskRequest(worker_type_name="heavy_processing"),
                ],
            ],
        )

        restored = ChainDefinition.from_json("chain-1", definition.to_json())

        assert restored == definition
        assert restored.schema_version == 1
        assert restored.task_count == 3

    def test_json_carries_schema_version(self):
        """Test the schema version is written to disk."""
        definition = ChainDefinition(id="c1", stages=[[TaskRequest(worker_type_name="sync")]])

        data = json.loads(definition.to_json())

        assert data["schemaVersion"] == 1
        assert data["stages"][0][0]["workerTypeName"] == "sync"

    def test_bare_array_is_version_zero(self):
        """Test the pre-versioned array-of-arrays format."""
        raw = json.dumps([[{"workerClassName": "sync", "inputJson": None}]])

        definition = ChainDefinition.from_json("legacy1", raw)

        assert definition.id == "legacy1"
        assert definition.schema_version == 0
        assert definition.stages[0][0].worker_type_name == "sync"

    def test_id_mismatch_rejected(self):
        """Test a file cannot describe a different chain."""
        definition = ChainDefinition(id="a", stages=[])

        with pytest.raises(ValueError):
            ChainDefinition.from_json("b", definition.to_json())

    def test_malformed_json_rejected(self):
        """Test garbage is reported as ValueError."""
        with pytest.raises(ValueError):
            ChainDefinition.from_json("a", "{not json")

    def test_unsafe_id_rejected(self):
        """Test ids must be safe file names."""
        with pytest.raises(ValidationError):
            ChainDefinition(id="../escape", stages=[])


class TestIdentifiers:
    """Tests for identifier validation."""

    @pytest.mark.parametrize("value", ["abc", "A-1_b", "0" * 128])
    def test_valid(self, value):
        """Test accepted identifiers."""
        assert validate_identifier(value) == value

    @pytest.mark.parametrize("value", ["", "a/b", "a b", "0" * 129, ".hidden"])
    def test_invalid(self, value):
        """Test rejected identifiers."""
        with pytest.raises(InvalidIdentifierError):
            validate_identifier(value)


class TestTaskMetadata:
    """Tests for TaskMetadata records."""

    def test_to_record_is_string_map(self):
        """Test every value is flattened to a string."""
        metadata = TaskMetadata(
            worker_type_name="sync",
            periodic=True,
            interval_ms=900000,
            requires_network=True,
        )

        record = metadata.to_record()

        assert record["workerTypeName"] == "sync"
        assert record["periodic"] == "true"
        assert record["intervalMs"] == "900000"
        assert record["requiresNetwork"] == "true"
        assert record["schemaVersion"] == "1"
        assert "inputPayload" not in record
        assert all(isinstance(v, str) for v in record.values())

    def test_record_round_trip(self):
        """Test to_record/from_record preserve the record."""
        metadata = TaskMetadata(
            worker_type_name="upload",
            input_payload='{"a": 1}',
            flex_ms=60000,
            initial_delay_ms=5000,
            at_epoch_ms=1700000000000,
        )

        record = metadata.to_record()

        assert record["flexMs"] == "60000"
        assert record["atEpochMs"] == "1700000000000"
        assert TaskMetadata.from_record(record) == metadata

    def test_from_legacy_record(self):
        """Test the legacy periodic map with its original key names."""
        record = {
            "isPeriodic": "true",
            "intervalMs": "900000",
            "workerClassName": "sync",
            "inputJson": "",
            "requiresNetwork": "true",
            "requiresCharging": "false",
            "isHeavyTask": "false",
        }

        metadata = TaskMetadata.from_record(record)

        assert metadata.periodic is True
        assert metadata.interval_ms == 900000
        assert metadata.worker_type_name == "sync"
        assert metadata.input_payload is None
        assert metadata.requires_network is True
        assert metadata.schema_version == 0

    def test_periodic_override(self):
        """Test the subspace decides the periodic flag."""
        metadata = TaskMetadata.from_record({"workerClassName": "sync"}, periodic=True)
        assert metadata.periodic is True

    def test_missing_worker_rejected(self):
        """Test records without a worker type fail validation."""
        with pytest.raises(ValidationError):
            TaskMetadata.from_record({"inputJson": "x"})


class TestChainBuilder:
    """Tests for the fluent chain builder."""

    def test_builds_stages_in_order(self):
        """Test single tasks and task lists become stages."""
        first = TaskRequest(worker_type_name="sync")
        parallel = [TaskRequest(worker_type_name="upload"), TaskRequest(worker_type_name="heavy_processing")]

        builder = ChainBuilder(first).then(parallel).then(first)

        assert builder.stages == [[first], parallel, [first]]

    def test_then_rejects_empty_stage(self):
        """Test an empty task list is an error."""
        builder = ChainBuilder(TaskRequest(worker_type_name="sync"))

        with pytest.raises(ValueError):
            builder.then([])

    def test_begin_with_rejects_empty_stage(self):
        """Test the first stage must not be empty either."""
        with pytest.raises(ValueError):
            ChainBuilder([])

    @pytest.mark.asyncio
    async def test_enqueue_uses_enqueuer(self):
        """Test enqueue hands the stages to the scheduler."""
        received = []

        async def enqueuer(stages):
            received.append(stages)
            return "chain-id"

        chain_id = await ChainBuilder(TaskRequest(worker_type_name="sync"), enqueuer=enqueuer).enqueue()

        assert chain_id == "chain-id"
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_enqueue_without_scheduler_fails(self):
        """Test a detached builder cannot enqueue."""
        with pytest.raises(RuntimeError):
            await ChainBuilder(TaskRequest(worker_type_name="sync")).enqueue()


class TestBatchReport:
    """Tests for BatchReport."""

    def test_needs_another_window(self):
        """Test remaining chains call for another window."""
        assert BatchReport(remaining=2).needs_another_window
        assert not BatchReport(remaining=0).needs_another_window
