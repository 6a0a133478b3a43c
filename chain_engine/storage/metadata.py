"""
Task metadata storage for the single-task path.

Records live in two subspaces, metadata/tasks and metadata/periodic, each
record a JSON string->string map written with the same atomic discipline
as chain definitions.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from chain_engine.core.models import TaskMetadata, validate_identifier
from chain_engine.storage.files import FileStorage

logger = logging.getLogger(__name__)

METADATA_LOCK = "metadata"


class MetadataStore:
    """Save/load/delete for one-time and periodic task metadata."""

    def __init__(self, storage: FileStorage):
        self.storage = storage
        self._mutex = asyncio.Lock()

    def _directory(self, periodic: bool) -> Path:
        return self.storage.periodic_dir if periodic else self.storage.tasks_dir

    async def save(self, task_id: str, metadata: TaskMetadata) -> None:
        """Persist metadata in the subspace matching metadata.periodic."""
        validate_identifier(task_id)
        path = self.storage.record_path(self._directory(metadata.periodic), task_id)
        content = json.dumps(metadata.to_record(), sort_keys=True)

        async with self._mutex:
            await self.storage.run_locked(METADATA_LOCK, self.storage.write_atomic, path, content)

    async def load(self, task_id: str, periodic: bool = False) -> Optional[TaskMetadata]:
        """Load metadata, or None if absent or unreadable."""
        validate_identifier(task_id)
        path = self.storage.record_path(self._directory(periodic), task_id)

        content = await self.storage.run_locked(METADATA_LOCK, self.storage.read_text, path, shared=True)
        if content is None:
            return None

        try:
            record = json.loads(content)
            if not isinstance(record, dict):
                raise ValueError("metadata record is not a JSON object")
            return TaskMetadata.from_record(record, periodic=periodic)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Metadata {task_id} is corrupt, treating as missing: {e}")
            return None

    async def delete(self, task_id: str, periodic: bool = False) -> bool:
        validate_identifier(task_id)
        path = self.storage.record_path(self._directory(periodic), task_id)

        async with self._mutex:
            return await self.storage.run_locked(METADATA_LOCK, self.storage.remove, path)

    async def list_ids(self, periodic: bool = False) -> list[str]:
        return await self.storage.run_locked(
            METADATA_LOCK, self.storage.list_record_ids, self._directory(periodic), shared=True
        )

    async def count(self) -> int:
        """Total records across both subspaces."""
        tasks = await self.list_ids(periodic=False)
        periodic = await self.list_ids(periodic=True)
        return len(tasks) + len(periodic)

    async def cleanup_stale(self, older_than_days: Optional[int] = None) -> int:
        """
        Remove one-time task metadata not modified within older_than_days.

        Periodic metadata is kept indefinitely so tasks can be rescheduled.

        Returns:
            Number of records removed
        """
        days = older_than_days if older_than_days is not None else self.storage.settings.stale_metadata_days
        cutoff = time.time() - days * 86400

        async with self._mutex:
            removed = await self.storage.run_locked(METADATA_LOCK, self._cleanup_locked, cutoff)

        if removed:
            logger.info(f"Removed {removed} stale task metadata records older than {days} days")
        return removed

    def _cleanup_locked(self, cutoff: float) -> int:
        removed = 0
        for task_id in self.storage.list_record_ids(self.storage.tasks_dir):
            path = self.storage.record_path(self.storage.tasks_dir, task_id)
            try:
                if path.stat().st_mtime < cutoff and self.storage.remove(path):
                    removed += 1
            except FileNotFoundError:
                continue
        return removed
