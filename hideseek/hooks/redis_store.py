"""Redis key-value store — production adapter for KeyValueStore.

Wraps a redis.asyncio client. Strings map to SET/GET/MGET, ordered
collections to sorted sets. zadd() sends ZADD and EXPIRE in one
MULTI/EXEC pipeline so the collection never exists without a TTL.

Every driver failure (connection refused, timeout, protocol error) is
re-raised as hideseek.errors.StorageError.

Tier 2 service module: imports from hideseek.hooks.interfaces (Tier 1)
and hideseek.errors (Tier 1).

Usage:
    from hideseek.hooks.redis_store import RedisKeyValueStore

    kv = RedisKeyValueStore.from_url("redis://localhost:6379/0")
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from redis.asyncio import Redis
from redis.exceptions import RedisError

from hideseek.errors import StorageError
from hideseek.hooks.interfaces import KeyValueStore

logger = logging.getLogger("hideseek.hooks.redis")


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        logger.warning("Redis %s failed: %s", operation, exc)
        raise StorageError(f"Store unavailable during {operation}.") from exc


class RedisKeyValueStore(KeyValueStore):
    """KeyValueStore backed by Redis.

    Args:
        client: A redis.asyncio client created with decode_responses=True.
    """

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisKeyValueStore:
        """Builds a store with a pooled client for the given redis:// URL."""
        client = Redis.from_url(url, decode_responses=True, health_check_interval=30)
        return cls(client)

    async def get(self, key: str) -> str | None:
        with _translate_errors("GET"):
            return await self._client.get(key)

    async def get_many(self, keys: list[str]) -> list[str | None]:
        if not keys:
            return []
        with _translate_errors("MGET"):
            return await self._client.mget(keys)

    async def set(self, key: str, value: str, ttl_seconds: int | None) -> None:
        with _translate_errors("SET"):
            if ttl_seconds is None:
                await self._client.set(key, value)
            else:
                await self._client.set(key, value, ex=ttl_seconds)

    async def zadd(self, key: str, member: str, score: float, ttl_seconds: int) -> None:
        with _translate_errors("ZADD"):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.zadd(key, {member: score})
                pipe.expire(key, ttl_seconds)
                await pipe.execute()

    async def zrange(self, key: str, desc: bool = False) -> list[str]:
        with _translate_errors("ZRANGE"):
            return await self._client.zrange(key, 0, -1, desc=desc)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with _translate_errors("DEL"):
            return await self._client.delete(*keys)

    async def exists(self, key: str) -> bool:
        with _translate_errors("EXISTS"):
            return bool(await self._client.exists(key))

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        with _translate_errors("EXPIRE"):
            return bool(await self._client.expire(key, ttl_seconds))

    async def ttl(self, key: str) -> int:
        with _translate_errors("TTL"):
            return int(await self._client.ttl(key))

    async def scan(self, cursor: int, match: str, count: int) -> tuple[int, list[str]]:
        with _translate_errors("SCAN"):
            next_cursor, keys = await self._client.scan(cursor=cursor, match=match, count=count)
        return int(next_cursor), list(keys)

    async def ping(self) -> bool:
        with _translate_errors("PING"):
            return bool(await self._client.ping())

    async def close(self) -> None:
        with _translate_errors("close"):
            await self._client.aclose()
