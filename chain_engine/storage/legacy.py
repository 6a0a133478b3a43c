"""
Legacy key-value store access.

The pre-file storage format kept everything in one flat key-value space:

    chain_queue               list of chain ids
    chain_definition_<id>     chain JSON (bare array of stages)
    task_meta_<id>            string map, one-time task metadata
    periodic_meta_<id>        string map, periodic task metadata

The store is injected into the Migrator rather than reached as global
state, so tests can hand in an in-memory copy.
"""

from abc import ABC, abstractmethod
from typing import Optional, Union

LEGACY_QUEUE_KEY = "chain_queue"
CHAIN_DEFINITION_PREFIX = "chain_definition_"
TASK_META_PREFIX = "task_meta_"
PERIODIC_META_PREFIX = "periodic_meta_"

LEGACY_PREFIXES = (CHAIN_DEFINITION_PREFIX, TASK_META_PREFIX, PERIODIC_META_PREFIX)


def is_legacy_key(key: str) -> bool:
    return key == LEGACY_QUEUE_KEY or key.startswith(LEGACY_PREFIXES)


class LegacyKeyValueStore(ABC):
    """Read access to the legacy store, plus key removal for cleanup."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """Every key in the store."""
        pass

    @abstractmethod
    async def get_string(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def get_string_list(self, key: str) -> Optional[list[str]]:
        pass

    @abstractmethod
    async def get_mapping(self, key: str) -> Optional[dict[str, str]]:
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        pass

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        """Release any connection held by the store."""
        return None


LegacyValue = Union[str, list[str], dict[str, str]]


class InMemoryLegacyStore(LegacyKeyValueStore):
    """Dict-backed legacy store."""

    def __init__(self, data: Optional[dict[str, LegacyValue]] = None):
        self.data: dict[str, LegacyValue] = dict(data or {})

    async def keys(self) -> list[str]:
        return list(self.data.keys())

    async def get_string(self, key: str) -> Optional[str]:
        value = self.data.get(key)
        return value if isinstance(value, str) else None

    async def get_string_list(self, key: str) -> Optional[list[str]]:
        value = self.data.get(key)
        return list(value) if isinstance(value, list) else None

    async def get_mapping(self, key: str) -> Optional[dict[str, str]]:
        value = self.data.get(key)
        return dict(value) if isinstance(value, dict) else None

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)
