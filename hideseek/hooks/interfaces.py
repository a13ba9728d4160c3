"""Hook interfaces — abstract base class for the swappable key-value store.

KeyValueStore is the contract between the game data core and the shared
store. SchemaStore is its only caller. There is a dict-backed stub for
development and tests (hooks/memory.py) and a Redis adapter for
production (hooks/redis_store.py).

Expiry is part of the write: set() and zadd() take the TTL and must apply
it in the same logical operation, so no key is ever written without one.

Implementations raise hideseek.errors.StorageError for connectivity or
driver failures — never a driver-specific exception.

Tier 1 leaf module: imports only from abc (stdlib).

Usage:
    from hideseek.hooks.interfaces import KeyValueStore
"""

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Async key-value store with per-key TTL and ordered collections.

    String values hold serialized records. Ordered collections (sorted
    sets) hold members ordered by a numeric score.

    To wire a different backend, subclass this ABC and implement every
    abstract method. Python will raise TypeError at instantiation if any
    method is missing. Then run the contract tests in
    hideseek/tests/contracts/ against it.
    """

    # -- Strings -----------------------------------------------------------

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Returns the string value at key, or None if absent or expired."""
        ...

    @abstractmethod
    async def get_many(self, keys: list[str]) -> list[str | None]:
        """Returns values for several keys, positionally, None where absent."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int | None) -> None:
        """Writes a string value and its expiry in one operation.

        Args:
            key: The key to write.
            value: Serialized value.
            ttl_seconds: Seconds until expiry. None writes a key without
                expiry (only used by tests to simulate legacy data).
        """
        ...

    # -- Ordered collections -----------------------------------------------

    @abstractmethod
    async def zadd(self, key: str, member: str, score: float, ttl_seconds: int) -> None:
        """Adds a member to a sorted set and (re)applies the set's expiry.

        Both effects happen in one logical operation (pipeline/transaction).
        Re-adding an existing member updates its score.
        """
        ...

    @abstractmethod
    async def zrange(self, key: str, desc: bool = False) -> list[str]:
        """Returns all members of a sorted set ordered by score.

        Ties are broken by member string, lexicographically (reversed when
        desc=True). Missing key → empty list.
        """
        ...

    # -- Key management ----------------------------------------------------

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Deletes keys. Returns how many existed. Missing keys are ignored."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Returns True if the key exists and has not expired."""
        ...

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Sets a key's TTL. Returns False if the key does not exist."""
        ...

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Returns remaining TTL in seconds; -1 if no expiry, -2 if absent."""
        ...

    @abstractmethod
    async def scan(self, cursor: int, match: str, count: int) -> tuple[int, list[str]]:
        """Incrementally iterates keys matching a glob pattern.

        Args:
            cursor: 0 to start a new iteration, else the cursor returned
                by the previous call.
            match: Glob pattern (e.g. "post_mapping:*").
            count: Batch size hint.

        Returns:
            (next_cursor, keys). next_cursor == 0 means iteration finished.
            A key may be returned more than once across a full iteration;
            callers must be idempotent.
        """
        ...

    # -- Connection --------------------------------------------------------

    @abstractmethod
    async def ping(self) -> bool:
        """Round-trips to the store. Raises StorageError if unreachable."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Releases connections. Safe to call more than once."""
        ...
