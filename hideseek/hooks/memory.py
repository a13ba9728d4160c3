"""In-memory key-value store — development stub for KeyValueStore.

Python dict-backed storage. TTL is enforced on read: every access checks
the entry's expiry and lazily deletes it. Data is lost on restart.

Used by default when STORE_BACKEND=memory and by every test. Production
deployments wire RedisKeyValueStore instead (hooks/redis_store.py).

Tier 2 service module: imports from hideseek.hooks.interfaces (Tier 1).

Usage:
    from hideseek.hooks.memory import InMemoryKeyValueStore

    kv = InMemoryKeyValueStore()
    await kv.set("game_session:abc", "{...}", ttl_seconds=60)
    await kv.get("game_session:abc")  # None once expired
"""

import itertools
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from fnmatch import fnmatchcase

from hideseek.hooks.interfaces import KeyValueStore


@dataclass
class _Entry:
    """A stored value: a string, or a member → score dict for sorted sets.

    seq is assigned when the key is created and is the scan cursor order.
    """

    value: str | dict[str, float]
    seq: int
    expires_at: float | None = None


class InMemoryKeyValueStore(KeyValueStore):
    """STUB — dict-backed key-value storage, loses data on restart.

    Expired entries are lazily deleted on access. scan() walks keys in
    creation order using the creation sequence number as cursor, so
    deleting keys mid-iteration never makes it skip a surviving key.

    Args:
        clock: Returns the current time in seconds. Tests inject a fake
            clock to move past TTLs without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, _Entry] = {}
        self._seq = itertools.count(1)

    def _seq_for(self, key: str) -> int:
        entry = self._live(key)
        return entry.seq if entry is not None else next(self._seq)

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        return None if ttl_seconds is None else self._clock() + ttl_seconds

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        if entry is None or not isinstance(entry.value, str):
            return None
        return entry.value

    async def get_many(self, keys: list[str]) -> list[str | None]:
        return [await self.get(key) for key in keys]

    async def set(self, key: str, value: str, ttl_seconds: int | None) -> None:
        self._data[key] = _Entry(
            value=value, seq=self._seq_for(key), expires_at=self._expiry(ttl_seconds)
        )

    async def zadd(self, key: str, member: str, score: float, ttl_seconds: int) -> None:
        entry = self._live(key)
        if entry is None or not isinstance(entry.value, dict):
            entry = _Entry(value={}, seq=self._seq_for(key))
            self._data[key] = entry
        entry.value[member] = score
        entry.expires_at = self._expiry(ttl_seconds)

    async def zrange(self, key: str, desc: bool = False) -> list[str]:
        entry = self._live(key)
        if entry is None or not isinstance(entry.value, dict):
            return []
        ordered = sorted(entry.value.items(), key=lambda item: (item[1], item[0]))
        members = [member for member, _ in ordered]
        if desc:
            members.reverse()
        return members

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self._data[key]
                removed += 1
        return removed

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        entry.expires_at = self._expiry(ttl_seconds)
        return True

    async def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2
        if entry.expires_at is None:
            return -1
        return max(0, math.ceil(entry.expires_at - self._clock()))

    async def scan(self, cursor: int, match: str, count: int) -> tuple[int, list[str]]:
        pending: list[tuple[int, str]] = []
        for key in list(self._data):
            entry = self._live(key)
            if entry is not None and entry.seq >= cursor:
                pending.append((entry.seq, key))
        pending.sort()

        count = max(1, count)
        window = pending[:count]
        next_cursor = pending[count][0] if len(pending) > count else 0
        return next_cursor, [key for _, key in window if fnmatchcase(key, match)]

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        """No connections to release."""
