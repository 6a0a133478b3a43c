"""
Redis connection management for the legacy key-value store.

Provides connection pooling and lifecycle management. The connection is
owned by whoever opens it (the runner or the API lifespan) and passed
down explicitly.
"""

from typing import Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from chain_engine.config import LegacyStoreSettings


class RedisConnection:
    """
    Redis connection manager with connection pooling.
    """

    def __init__(self, settings: LegacyStoreSettings):
        self.settings = settings
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    async def init(self) -> None:
        """Initialize Redis connection pool."""
        self._pool = ConnectionPool(
            host=self.settings.host,
            port=self.settings.port,
            db=self.settings.db,
            password=self.settings.password,
            socket_timeout=self.settings.socket_timeout,
            socket_connect_timeout=self.settings.socket_connect_timeout,
            decode_responses=True,
        )

        self._client = redis.Redis(connection_pool=self._pool)

        # Test connection
        await self._client.ping()

    async def close(self) -> None:
        """Close Redis connections."""
        if self._client:
            await self._client.aclose()
            self._client = None

        if self._pool:
            await self._pool.disconnect()
            self._pool = None

    @property
    def client(self) -> redis.Redis:
        """Get Redis client."""
        if self._client is None:
            raise RuntimeError("Redis not initialized. Call init() first.")
        return self._client

    async def health_check(self) -> bool:
        """Check Redis connection health."""
        if self._client is None:
            return False
        try:
            await self._client.ping()
            return True
        except (redis.ConnectionError, redis.TimeoutError):
            return False
