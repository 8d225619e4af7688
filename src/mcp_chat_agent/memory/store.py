"""
Ordered-list key/value stores backing conversation memory.
"""

import asyncio
import fnmatch
from abc import ABC, abstractmethod

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()


class KeyValueStore(ABC):
    """Durable ordered lists of strings, keyed by name."""

    @abstractmethod
    async def append(self, key: str, *values: str) -> None:
        """Append values to the end of the list at key."""
        pass

    @abstractmethod
    async def read_all(self, key: str) -> list[str]:
        """Get every value of the list at key, oldest first."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the key entirely."""
        pass

    @abstractmethod
    async def length(self, key: str) -> int:
        pass

    @abstractmethod
    async def keys(self, pattern: str) -> list[str]:
        """Get all keys matching a glob-style pattern."""
        pass

    async def replace(self, key: str, values: list[str]) -> None:
        """Replace the list at key.

        The default is delete-then-append and is not atomic: a concurrent
        reader can briefly see the key absent. Stores with transactions
        override this.
        """
        await self.delete(key)
        if values:
            await self.append(key, *values)

    async def close(self) -> None:
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store, used when no Redis URL is configured."""

    def __init__(self):
        self._data: dict[str, list[str]] = {}
        self._lock = asyncio.Lock()

    async def append(self, key: str, *values: str) -> None:
        async with self._lock:
            self._data.setdefault(key, []).extend(values)

    async def read_all(self, key: str) -> list[str]:
        async with self._lock:
            return list(self._data.get(key, ()))

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def length(self, key: str) -> int:
        async with self._lock:
            return len(self._data.get(key, ()))

    async def keys(self, pattern: str) -> list[str]:
        async with self._lock:
            return [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]

    async def replace(self, key: str, values: list[str]) -> None:
        async with self._lock:
            if values:
                self._data[key] = list(values)
            else:
                self._data.pop(key, None)


class RedisKeyValueStore(KeyValueStore):
    """Redis lists (RPUSH/LRANGE), with MULTI/EXEC for replacement."""

    def __init__(self, redis_url: str, client: aioredis.Redis | None = None):
        self.redis_url = redis_url
        self._client = client or aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)

    async def append(self, key: str, *values: str) -> None:
        if values:
            await self._client.rpush(key, *values)

    async def read_all(self, key: str) -> list[str]:
        return list(await self._client.lrange(key, 0, -1))

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def length(self, key: str) -> int:
        return int(await self._client.llen(key))

    async def keys(self, pattern: str) -> list[str]:
        return [key async for key in self._client.scan_iter(match=pattern, count=100)]

    async def replace(self, key: str, values: list[str]) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            if values:
                pipe.rpush(key, *values)
            await pipe.execute()

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Redis connection closed")


def create_store(redis_url: str = "") -> KeyValueStore:
    """Redis when a URL is configured, in-memory otherwise."""
    if redis_url:
        logger.info("Using Redis memory store")
        return RedisKeyValueStore(redis_url)
    logger.warning("REDIS_URL not set, conversation memory is process-local")
    return InMemoryKeyValueStore()
