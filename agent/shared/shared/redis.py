"""Redis connection helper and string key-value store."""

from __future__ import annotations

from abc import ABC, abstractmethod

import redis.asyncio as redis

from shared.config import get_settings

_redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get or create a Redis client."""
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


class KeyValueStore(ABC):
    """String-keyed persistence used by the notification index and settings."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None when the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one in a single write."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete a key. Deleting a missing key is not an error."""

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        """Return every key starting with ``prefix``."""


class RedisKeyValueStore(KeyValueStore):
    """KeyValueStore backed by a ``redis.asyncio`` client.

    The client must be created with ``decode_responses=True`` (as
    :func:`get_redis` does) so values come back as ``str``.
    """

    def __init__(self, redis_client: redis.Redis, namespace: str = ""):
        self._redis = redis_client
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def get(self, key: str) -> str | None:
        return await self._redis.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        await self._redis.set(self._key(key), value)

    async def remove(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def list_keys(self, prefix: str = "") -> list[str]:
        keys: list[str] = []
        strip = len(self._namespace)
        async for key in self._redis.scan_iter(match=f"{self._key(prefix)}*"):
            keys.append(key[strip:])
        return keys
