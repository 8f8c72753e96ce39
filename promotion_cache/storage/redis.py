"""Redis-backed promotion store.

Exposes exactly the operations the rebuild pipeline and the read
gate need: flush the database, set one serialized promotion, get one
by id. Backend failures surface as :class:`StorageError`.
"""

from typing import Dict, Any, Optional
from dataclasses import dataclass
import structlog

import redis.asyncio as redis
from redis.exceptions import RedisError

from promotion_cache.utils.errors import StorageError, StoreWriteError


@dataclass
class RedisConfig:
    """Redis configuration."""
    url: str
    # One connection per rebuild worker.
    max_connections: int = 100
    timeout: int = 30
    retry_on_timeout: bool = True


class RedisClient:
    """
    Async Redis client with connection pooling.

    Values are opaque serialized strings; encoding and decoding
    promotions is left to the caller.
    """

    def __init__(self, config: RedisConfig | str):
        if isinstance(config, str):
            config = RedisConfig(url=config)
        self.config = config
        self.logger = structlog.get_logger("redis-client")
        self.client: Optional[redis.Redis] = None
        self.is_connected: bool = False

    async def connect(self) -> None:
        """Create the connection pool and verify it with a ping."""
        if self.client:
            return

        self.client = redis.from_url(
            self.config.url,
            decode_responses=True,
            max_connections=self.config.max_connections,
            socket_timeout=self.config.timeout,
            retry_on_timeout=self.config.retry_on_timeout
        )

        try:
            await self.client.ping()
        except RedisError as e:
            self.client = None
            self.logger.error("Can't communicate with Redis", error=str(e))
            raise StorageError("Can't communicate with Redis", operation="connect") from e
        self.is_connected = True
        self.logger.info("Connected to Redis", max_connections=self.config.max_connections)

    async def close(self) -> None:
        """Close the connection pool."""
        if self.client:
            await self.client.aclose()
            self.client = None
            self.is_connected = False
            self.logger.info("Disconnected from Redis")

    # Alias matching the connect/disconnect naming used elsewhere
    async def disconnect(self) -> None:
        await self.close()

    async def _ensure_client(self) -> redis.Redis:
        if not self.client:
            await self.connect()
        return self.client

    async def get(self, key: str) -> Optional[str]:
        """Return the serialized promotion under key, or None."""
        client = await self._ensure_client()
        try:
            return await client.get(key)
        except RedisError as e:
            self.logger.error("Redis get error", error=str(e), key=key)
            raise StorageError("Redis get failed", operation="get", key=key) from e

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """Store one serialized promotion."""
        client = await self._ensure_client()
        try:
            await client.set(key, value, ex=ttl)
        except RedisError as e:
            raise StoreWriteError("Redis set failed", key=key, details={"error": str(e)}) from e

    async def flushdb(self) -> None:
        """Drop every key in the current database."""
        client = await self._ensure_client()
        try:
            await client.flushdb()
        except RedisError as e:
            self.logger.error("Redis flushdb error", error=str(e))
            raise StorageError("Redis flush failed", operation="flushdb") from e
        self.logger.info("Database flushed")

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            client = await self._ensure_client()
            return await client.ping() is True
        except (RedisError, StorageError) as e:
            self.logger.error("Redis health check failed", error=str(e))
            return False

    async def get_connection_info(self) -> Dict[str, Any]:
        """Summarize server memory, clients and keyspace usage."""
        try:
            client = await self._ensure_client()
            info = await client.info()
        except (RedisError, StorageError) as e:
            self.logger.error("Redis info error", error=str(e))
            return {"status": "error", "error": str(e)}

        return {
            "status": "connected" if self.is_connected else "disconnected",
            "used_memory_human": info.get("used_memory_human"),
            "connected_clients": info.get("connected_clients"),
            "keyspace_hits": info.get("keyspace_hits"),
            "keyspace_misses": info.get("keyspace_misses"),
        }
