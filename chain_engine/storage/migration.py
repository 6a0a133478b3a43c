"""
One-time migration from the legacy key-value store to file storage.

Records are written through the normal store operations so every bound
(queue capacity, chain size, identifier format) applies during migration
too. A record that breaks a bound is logged and skipped. Any other error
aborts the migration with the completion flag unset, so it is retried on
the next start. The legacy store is never modified by migrate().
"""

import json
import logging
from datetime import datetime

from pydantic import ValidationError

from chain_engine.core.errors import ChainEngineError, PayloadTooLargeError, QueueFullError
from chain_engine.core.models import ChainDefinition, MigrationResult, TaskMetadata
from chain_engine.storage.chains import ChainStore
from chain_engine.storage.files import FileStorage
from chain_engine.storage.legacy import (
    CHAIN_DEFINITION_PREFIX,
    LEGACY_QUEUE_KEY,
    PERIODIC_META_PREFIX,
    TASK_META_PREFIX,
    LegacyKeyValueStore,
    is_legacy_key,
)
from chain_engine.storage.metadata import MetadataStore
from chain_engine.storage.queue import DurableQueue

logger = logging.getLogger(__name__)

MIGRATION_LOCK = "migration"
ALREADY_COMPLETED = "Migration already completed"


class Migrator:
    """
    Copies legacy chains, queue entries and metadata into file storage.

    Order matters: chain definitions are written before their queue
    entries so every queued id always has a definition.
    """

    def __init__(
        self,
        storage: FileStorage,
        queue: DurableQueue,
        chains: ChainStore,
        metadata: MetadataStore,
        legacy: LegacyKeyValueStore,
    ):
        self.storage = storage
        self.queue = queue
        self.chains = chains
        self.metadata = metadata
        self.legacy = legacy

    # ==================== Flag ====================

    async def is_migrated(self) -> bool:
        content = await self.storage.run_locked(
            MIGRATION_LOCK, self.storage.read_text, self.storage.flag_path, shared=True
        )
        if content is None:
            return False

        try:
            flag = json.loads(content)
        except ValueError:
            logger.warning("Migration flag is unreadable, treating as not migrated")
            return False

        if isinstance(flag, dict):
            return bool(flag.get("completed"))
        return flag is True

    async def _set_flag(self, result: MigrationResult) -> None:
        content = json.dumps({
            "completed": True,
            "completedAt": datetime.utcnow().isoformat(),
            "chainsMigrated": result.chains_migrated,
            "metadataMigrated": result.metadata_migrated,
            "queueEntriesMigrated": result.queue_entries_migrated,
        })
        await self.storage.run_locked(
            MIGRATION_LOCK, self.storage.write_atomic, self.storage.flag_path, content
        )

    # ==================== Migration ====================

    async def migrate(self) -> MigrationResult:
        """
        Run the migration once.

        Returns:
            MigrationResult. success=False means the flag was left unset.
        """
        if await self.is_migrated():
            logger.info("Legacy storage migration already completed, skipping")
            return MigrationResult(success=True, message=ALREADY_COMPLETED)

        logger.info("Starting legacy storage migration")

        try:
            keys = sorted(await self.legacy.keys())

            chains_migrated, chains_skipped = await self._migrate_chains(keys)
            queue_migrated, queue_skipped, legacy_queue_length = await self._migrate_queue()
            metadata_migrated, metadata_skipped = await self._migrate_metadata(keys)

            queue_size = await self.queue.size()
            if queue_size != legacy_queue_length:
                logger.warning(
                    f"Queue size mismatch after migration: legacy had {legacy_queue_length} "
                    f"entries, file queue has {queue_size}"
                )

            result = MigrationResult(
                success=True,
                message=(
                    f"Migrated {chains_migrated} chains, {metadata_migrated} metadata records "
                    f"and {queue_migrated} queue entries"
                ),
                chains_migrated=chains_migrated,
                metadata_migrated=metadata_migrated,
                queue_entries_migrated=queue_migrated,
                records_skipped=chains_skipped + queue_skipped + metadata_skipped,
            )
            await self._set_flag(result)

        except Exception as e:
            logger.error(f"Legacy storage migration failed, will retry on next start: {e}", exc_info=True)
            return MigrationResult(success=False, message=f"Migration failed: {e}")

        logger.info(f"Legacy storage migration completed: {result.message}")
        if result.records_skipped:
            logger.warning(f"Skipped {result.records_skipped} legacy records during migration")
        return result

    async def _migrate_chains(self, keys: list[str]) -> tuple[int, int]:
        migrated = skipped = 0

        for key in keys:
            if not key.startswith(CHAIN_DEFINITION_PREFIX):
                continue

            chain_id = key[len(CHAIN_DEFINITION_PREFIX):]
            raw = await self.legacy.get_string(key)
            if raw is None:
                logger.warning(f"Skipping legacy chain {chain_id}: value is not a string")
                skipped += 1
                continue

            try:
                definition = ChainDefinition.from_json(chain_id, raw)
                await self.chains.save(chain_id, definition.stages)
            except (ValueError, ValidationError, PayloadTooLargeError) as e:
                logger.warning(f"Skipping legacy chain {chain_id}: {e}")
                skipped += 1
                continue

            migrated += 1

        return migrated, skipped

    async def _migrate_queue(self) -> tuple[int, int, int]:
        legacy_ids = await self.legacy.get_string_list(LEGACY_QUEUE_KEY) or []

        # A previous failed attempt may already have queued some ids
        present = set(await self.queue.snapshot()) | set(await self.queue.in_flight())
        migrated = skipped = 0

        for chain_id in legacy_ids:
            if chain_id in present:
                continue

            try:
                if not await self.chains.exists(chain_id):
                    logger.warning(f"Skipping legacy queue entry {chain_id}: no migrated definition")
                    skipped += 1
                    continue
                await self.queue.enqueue(chain_id)
            except (ValueError, QueueFullError) as e:
                logger.warning(f"Skipping legacy queue entry {chain_id}: {e}")
                skipped += 1
                continue

            present.add(chain_id)
            migrated += 1

        return migrated, skipped, len(legacy_ids)

    async def _migrate_metadata(self, keys: list[str]) -> tuple[int, int]:
        migrated = skipped = 0

        for key in keys:
            if key.startswith(PERIODIC_META_PREFIX):
                task_id, periodic = key[len(PERIODIC_META_PREFIX):], True
            elif key.startswith(TASK_META_PREFIX):
                task_id, periodic = key[len(TASK_META_PREFIX):], False
            else:
                continue

            record = await self.legacy.get_mapping(key)
            if record is None:
                logger.warning(f"Skipping legacy metadata {key}: value is not a mapping")
                skipped += 1
                continue

            try:
                await self.metadata.save(task_id, TaskMetadata.from_record(record, periodic=periodic))
            except (ValueError, ValidationError) as e:
                logger.warning(f"Skipping legacy metadata {key}: {e}")
                skipped += 1
                continue

            migrated += 1

        return migrated, skipped

    # ==================== Rollback and cleanup ====================

    async def rollback(self) -> bool:
        """
        Clear the completion flag so the next migrate() runs again.

        Migrated files are left in place; re-running overwrites chains and
        metadata and does not duplicate queue entries.
        """
        removed = await self.storage.run_locked(
            MIGRATION_LOCK, self.storage.remove, self.storage.flag_path
        )
        if removed:
            logger.warning("Migration flag cleared, migration will run again")
        return removed

    async def clear_old_storage(self) -> int:
        """
        Delete every legacy key. Irreversible.

        Raises:
            ChainEngineError: If migration has not completed
        """
        if not await self.is_migrated():
            raise ChainEngineError("Refusing to clear legacy storage before migration has completed")

        removed = 0
        for key in await self.legacy.keys():
            if is_legacy_key(key):
                await self.legacy.remove(key)
                removed += 1

        logger.warning(f"Cleared {removed} keys from legacy storage")
        return removed
