"""
Redis-backed legacy key-value store.

Legacy values map onto native Redis types: the queue is a list, chain
definitions are strings, metadata records are hashes. A key of the wrong
type reads as absent.
"""

import logging
from typing import Optional

import redis.asyncio as redis

from chain_engine.config import LegacyStoreSettings
from chain_engine.storage.legacy import LegacyKeyValueStore
from chain_engine.storage.redis.connection import RedisConnection

logger = logging.getLogger(__name__)


class RedisLegacyStore(LegacyKeyValueStore):
    """Legacy store reading from a Redis database."""

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "kmp_",
        connection: Optional[RedisConnection] = None,
    ):
        self.client = client
        self.key_prefix = key_prefix
        self._connection = connection

    @classmethod
    async def connect(cls, settings: LegacyStoreSettings) -> "RedisLegacyStore":
        """Open a pooled connection and wrap it."""
        connection = RedisConnection(settings)
        await connection.init()
        logger.info(f"Connected to legacy store at {settings.host}:{settings.port}/{settings.db}")
        return cls(connection.client, key_prefix=settings.key_prefix, connection=connection)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def _type_of(self, key: str) -> str:
        return await self.client.type(self._key(key))

    async def keys(self) -> list[str]:
        prefix_length = len(self.key_prefix)
        return [
            key[prefix_length:]
            async for key in self.client.scan_iter(match=f"{self.key_prefix}*")
        ]

    async def get_string(self, key: str) -> Optional[str]:
        if await self._type_of(key) != "string":
            return None
        return await self.client.get(self._key(key))

    async def get_string_list(self, key: str) -> Optional[list[str]]:
        if await self._type_of(key) != "list":
            return None
        return await self.client.lrange(self._key(key), 0, -1)

    async def get_mapping(self, key: str) -> Optional[dict[str, str]]:
        if await self._type_of(key) != "hash":
            return None
        return await self.client.hgetall(self._key(key))

    async def remove(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def health_check(self) -> bool:
        if self._connection is not None:
            return await self._connection.health_check()
        try:
            return bool(await self.client.ping())
        except (redis.ConnectionError, redis.TimeoutError):
            return False

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
