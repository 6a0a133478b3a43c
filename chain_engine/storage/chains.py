"""
Chain definition storage.

One JSON file per chain under <base>/chains. Definitions are immutable
once written: they are created on enqueue and deleted by the executor at
a terminal outcome.
"""

import asyncio
import logging
from typing import Optional

from pydantic import ValidationError

from chain_engine.core.errors import ChainNotFoundError, CorruptDefinitionError, PayloadTooLargeError
from chain_engine.core.models import ChainDefinition, Stage, TaskRequest, validate_identifier
from chain_engine.storage.files import FileStorage

logger = logging.getLogger(__name__)

CHAINS_LOCK = "chains"


class ChainStore:
    """Persists, loads and deletes chain definitions."""

    def __init__(self, storage: FileStorage, max_size_bytes: Optional[int] = None):
        self.storage = storage
        if max_size_bytes is None:
            max_size_bytes = storage.settings.max_chain_size_bytes
        self.max_size_bytes = max_size_bytes
        self._mutex = asyncio.Lock()

    async def save(self, chain_id: str, stages: list[Stage]) -> ChainDefinition:
        """
        Persist a chain definition.

        Raises:
            InvalidIdentifierError: If chain_id is not a safe file name
            PayloadTooLargeError: If the serialized chain exceeds the
                size limit (nothing is written)
        """
        validate_identifier(chain_id)

        definition = ChainDefinition(
            id=chain_id,
            stages=[
                [task if isinstance(task, TaskRequest) else TaskRequest.model_validate(task) for task in stage]
                for stage in stages
            ],
        )
        content = definition.to_json()

        size = len(content.encode("utf-8"))
        if size > self.max_size_bytes:
            logger.warning(f"Rejected chain {chain_id}: {size} bytes exceeds {self.max_size_bytes}")
            raise PayloadTooLargeError(chain_id, size, self.max_size_bytes)

        path = self.storage.record_path(self.storage.chains_dir, chain_id)
        async with self._mutex:
            await self.storage.run_locked(CHAINS_LOCK, self.storage.write_atomic, path, content)

        logger.debug(f"Saved chain {chain_id} ({len(definition.stages)} stages, {size} bytes)")
        return definition

    async def get(self, chain_id: str) -> ChainDefinition:
        """
        Load a chain definition.

        Raises:
            ChainNotFoundError: If no definition is stored
            CorruptDefinitionError: If the stored file cannot be parsed
        """
        validate_identifier(chain_id)
        path = self.storage.record_path(self.storage.chains_dir, chain_id)

        content = await self.storage.run_locked(CHAINS_LOCK, self.storage.read_text, path, shared=True)
        if content is None:
            raise ChainNotFoundError(chain_id)

        try:
            return ChainDefinition.from_json(chain_id, content)
        except (ValueError, ValidationError) as e:
            raise CorruptDefinitionError(chain_id, str(e)) from e

    async def load(self, chain_id: str) -> Optional[ChainDefinition]:
        """Like get(), but an absent or corrupt chain loads as None."""
        try:
            return await self.get(chain_id)
        except ChainNotFoundError:
            return None
        except CorruptDefinitionError as e:
            logger.warning(f"{e}, treating as missing")
            return None

    async def delete(self, chain_id: str) -> bool:
        """
        Delete a chain definition. Deleting an absent chain is not an error.

        Returns:
            Whether a file was removed
        """
        validate_identifier(chain_id)
        path = self.storage.record_path(self.storage.chains_dir, chain_id)

        async with self._mutex:
            removed = await self.storage.run_locked(CHAINS_LOCK, self.storage.remove, path)

        if removed:
            logger.debug(f"Deleted chain {chain_id}")
        return removed

    async def exists(self, chain_id: str) -> bool:
        validate_identifier(chain_id)
        path = self.storage.record_path(self.storage.chains_dir, chain_id)
        return await self.storage.run_locked(CHAINS_LOCK, path.exists, shared=True)

    async def list_ids(self) -> list[str]:
        return await self.storage.run_locked(
            CHAINS_LOCK, self.storage.list_record_ids, self.storage.chains_dir, shared=True
        )

    async def count(self) -> int:
        return len(await self.list_ids())
