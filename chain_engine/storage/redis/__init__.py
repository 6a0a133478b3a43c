"""Redis access to the legacy key-value store."""

from chain_engine.storage.redis.connection import RedisConnection
from chain_engine.storage.redis.legacy_store import RedisLegacyStore

__all__ = ["RedisConnection", "RedisLegacyStore"]
