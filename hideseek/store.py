"""Schema store — the single choke point between game logic and the key-value store.

Every key the service writes is built here, every record is re-validated
against its pydantic shape here, and every write carries the fixed data
TTL in the same operation. No other module constructs key names.

Canonical key layout (shared with other services reading the same store):

    game_session:{session_id}                       GameSession JSON
    post_mapping:{post_id}                          bare session id string
    game:{session_id}:guess:{guesser_id}:{ts}       GuessRecord JSON
    game:{session_id}:guesses                       sorted set of guess keys, score = ts
    game:{session_id}:stats                         GuessStatistics JSON
    player:{player_id}                              PlayerProfile JSON

Absent keys are a normal outcome (get returns None). Malformed records
raise ValidationError before anything is written. Unreadable values raise
CorruptRecordError (a StorageError); driver failures raise StorageError,
which reads retry with a short exponential backoff. Writes never retry.

Tier 2 service module: imports from hooks/interfaces (Tier 1), schemas
(Tier 1), errors (Tier 1).

Usage:
    from hideseek.store import RecordKind, SchemaStore

    store = SchemaStore(kv)
    await store.put(RecordKind.SESSION, session.session_id, session)
    session = await store.get(RecordKind.SESSION, session_id)
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from hideseek.errors import CorruptRecordError, StorageError, ValidationError
from hideseek.hooks.interfaces import KeyValueStore
from hideseek.schemas import (
    IDENTIFIER_PATTERN,
    MAX_ID_LENGTH,
    GameSession,
    GuessRecord,
    GuessStatistics,
    PlayerProfile,
    PostMapping,
)

logger = logging.getLogger("hideseek.store")

# 30 days. Applied to every write; never configured per call site.
DATA_TTL_SECONDS = 2_592_000

READ_RETRIES = 2
DELETE_BATCH_SIZE = 100

_IDENTIFIER_RE = re.compile(IDENTIFIER_PATTERN)


class RecordKind(str, Enum):
    """The record kinds the store knows how to key and (de)serialize."""

    SESSION = "session"
    POST_MAPPING = "post_mapping"
    GUESS = "guess"
    STATS = "stats"
    PLAYER = "player"
    GUESS_LOG = "guess_log"


_KEY_TEMPLATES: dict[RecordKind, str] = {
    RecordKind.SESSION: "game_session:{0}",
    RecordKind.POST_MAPPING: "post_mapping:{0}",
    RecordKind.GUESS: "game:{0}:guess:{1}:{2}",
    RecordKind.STATS: "game:{0}:stats",
    RecordKind.PLAYER: "player:{0}",
    RecordKind.GUESS_LOG: "game:{0}:guesses",
}

_ID_PARTS: dict[RecordKind, int] = {
    RecordKind.SESSION: 1,
    RecordKind.POST_MAPPING: 1,
    RecordKind.GUESS: 3,
    RecordKind.STATS: 1,
    RecordKind.PLAYER: 1,
    RecordKind.GUESS_LOG: 1,
}

_MODELS: dict[RecordKind, type[BaseModel]] = {
    RecordKind.SESSION: GameSession,
    RecordKind.POST_MAPPING: PostMapping,
    RecordKind.GUESS: GuessRecord,
    RecordKind.STATS: GuessStatistics,
    RecordKind.PLAYER: PlayerProfile,
}

RecordId = str | tuple[str | int, ...]


def _describe(exc: PydanticValidationError) -> str:
    """Condenses a pydantic error into one line: 'field: message'."""
    first = exc.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    msg = first.get("msg", "invalid value")
    return f"{loc}: {msg}" if loc else msg


class SchemaStore:
    """Typed, validated accessor over a KeyValueStore.

    Args:
        kv: The underlying key-value store.
        retry_base_delay: Seconds before the first read retry; doubles on
            each further attempt. Tests pass 0.
    """

    def __init__(self, kv: KeyValueStore, retry_base_delay: float = 0.05) -> None:
        self._kv = kv
        self._retry_base_delay = retry_base_delay

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def key_for(self, kind: RecordKind, record_id: RecordId) -> str:
        """Builds the canonical key for a record.

        Args:
            kind: The record kind.
            record_id: A single id, or a tuple for composite keys
                (GUESS takes (session_id, guesser_id, timestamp)).

        Raises:
            ValidationError: If the id has the wrong arity or any part is
                not a valid identifier.
        """
        parts = self._id_parts(kind, record_id)
        return _KEY_TEMPLATES[kind].format(*parts)

    def _id_parts(self, kind: RecordKind, record_id: RecordId) -> tuple[str, ...]:
        raw = record_id if isinstance(record_id, tuple) else (record_id,)
        if len(raw) != _ID_PARTS[kind]:
            raise ValidationError(
                f"{kind.value} keys take {_ID_PARTS[kind]} id part(s), got {len(raw)}."
            )
        parts = tuple(str(part) for part in raw)
        for part in parts:
            if not part or len(part) > MAX_ID_LENGTH or not _IDENTIFIER_RE.fullmatch(part):
                raise ValidationError(
                    f"Invalid identifier {part!r}: use 1-{MAX_ID_LENGTH} letters, "
                    "digits, underscores or hyphens."
                )
        return parts

    @staticmethod
    def parse_key(key: str) -> tuple[RecordKind, tuple[str, ...]] | None:
        """Maps a raw key back to its kind and id parts.

        Returns None for keys outside the service's layout.
        """
        parts = key.split(":")
        if len(parts) == 2:
            prefix, ident = parts
            kind = {
                "game_session": RecordKind.SESSION,
                "post_mapping": RecordKind.POST_MAPPING,
                "player": RecordKind.PLAYER,
            }.get(prefix)
            if kind is not None and ident:
                return kind, (ident,)
            return None
        if parts[0] != "game" or len(parts) < 3 or not parts[1]:
            return None
        session_id = parts[1]
        if len(parts) == 3 and parts[2] == "stats":
            return RecordKind.STATS, (session_id,)
        if len(parts) == 3 and parts[2] == "guesses":
            return RecordKind.GUESS_LOG, (session_id,)
        if len(parts) == 5 and parts[2] == "guess" and parts[3] and parts[4]:
            return RecordKind.GUESS, (session_id, parts[3], parts[4])
        return None

    @staticmethod
    def session_namespace(session_id: str) -> str:
        """Key prefix shared by every per-session key except the session itself."""
        return f"game:{session_id}:"

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def put(self, kind: RecordKind, record_id: RecordId, record: BaseModel) -> None:
        """Validates, serializes, and writes a record with the data TTL.

        Raises:
            ValidationError: Record is the wrong type, fails its shape's
                constraints, or does not match record_id. Nothing is
                written.
            StorageError: The write failed. Not retried.
        """
        model = _MODELS.get(kind)
        if model is None:
            raise ValidationError(f"{kind.value} is an ordered collection; use append_ordered.")
        if not isinstance(record, model):
            raise ValidationError(
                f"Expected {model.__name__} for {kind.value}, got {type(record).__name__}."
            )
        try:
            validated = model.model_validate(record.model_dump())
        except PydanticValidationError as exc:
            raise ValidationError(_describe(exc)) from exc

        key = self.key_for(kind, record_id)
        self._check_identity(kind, key, validated)

        if kind is RecordKind.POST_MAPPING:
            value = validated.session_id
        else:
            value = validated.model_dump_json()
        await self._kv.set(key, value, DATA_TTL_SECONDS)

    def _check_identity(self, kind: RecordKind, key: str, record: BaseModel) -> None:
        if kind is RecordKind.SESSION:
            expected = self.key_for(kind, record.session_id)
        elif kind is RecordKind.POST_MAPPING:
            expected = self.key_for(kind, record.post_id)
        elif kind is RecordKind.PLAYER:
            expected = self.key_for(kind, record.player_id)
        elif kind is RecordKind.GUESS:
            expected = self.key_for(
                kind, (record.session_id, record.guesser_id, record.timestamp)
            )
        else:
            return
        if key != expected:
            raise ValidationError(f"Record does not belong under key {key!r}.")

    async def get(self, kind: RecordKind, record_id: RecordId) -> BaseModel | None:
        """Reads and deserializes one record.

        Returns:
            The record, or None if the key is absent or expired.

        Raises:
            StorageError: The value could not be decoded, or the store was
                unreachable after retries.
        """
        key = self.key_for(kind, record_id)
        raw = await self._read("GET " + key, lambda: self._kv.get(key))
        if raw is None:
            return None
        return self._decode(kind, key, raw)

    async def get_many(self, kind: RecordKind, record_ids: list[RecordId]) -> list[BaseModel | None]:
        """Reads several records of one kind, positionally, None where absent."""
        keys = [self.key_for(kind, record_id) for record_id in record_ids]
        raws = await self._read("MGET", lambda: self._kv.get_many(keys))
        return [None if raw is None else self._decode(kind, key, raw) for key, raw in zip(keys, raws)]

    async def exists(self, kind: RecordKind, record_id: RecordId) -> bool:
        key = self.key_for(kind, record_id)
        return await self._read("EXISTS " + key, lambda: self._kv.exists(key))

    def _decode(self, kind: RecordKind, key: str, raw: str) -> BaseModel:
        model = _MODELS.get(kind)
        if model is None:
            raise CorruptRecordError(f"{kind.value} values are not records.")
        try:
            if kind is RecordKind.POST_MAPPING:
                post_id = key.split(":", 1)[1]
                return PostMapping(post_id=post_id, session_id=raw)
            return model.model_validate_json(raw)
        except (PydanticValidationError, ValueError) as exc:
            logger.error("Corrupt %s record at %s", kind.value, key)
            raise CorruptRecordError(f"Stored {kind.value} record is unreadable.") from exc

    async def _read(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Runs an idempotent read, retrying store failures with backoff."""
        for attempt in range(READ_RETRIES + 1):
            try:
                return await call()
            except StorageError:
                if attempt == READ_RETRIES:
                    raise
                delay = self._retry_base_delay * (2 ** attempt)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.2fs",
                    operation, attempt + 1, READ_RETRIES + 1, delay,
                )
                await asyncio.sleep(delay)

    # ------------------------------------------------------------------
    # Ordered collections
    # ------------------------------------------------------------------

    async def append_ordered(
        self, kind: RecordKind, record_id: RecordId, member: str, score: float
    ) -> None:
        """Adds a member to an ordered collection and re-applies the data TTL.

        Raises:
            ValidationError: Not an ordered kind, empty member, or a
                non-finite score.
        """
        if kind is not RecordKind.GUESS_LOG:
            raise ValidationError(f"{kind.value} is not an ordered collection.")
        if not member:
            raise ValidationError("Ordered collection members must be non-empty.")
        if not math.isfinite(score):
            raise ValidationError("Ordering score must be a finite number.")
        key = self.key_for(kind, record_id)
        await self._kv.zadd(key, member, score, DATA_TTL_SECONDS)

    async def read_ordered(
        self, kind: RecordKind, record_id: RecordId, newest_first: bool = True
    ) -> list[GuessRecord]:
        """Loads every guess referenced by a guess log, in score order.

        Members whose record has expired are skipped. Unreadable records
        are logged and skipped so one bad entry does not hide the rest.
        """
        if kind is not RecordKind.GUESS_LOG:
            raise ValidationError(f"{kind.value} is not an ordered collection.")
        key = self.key_for(kind, record_id)
        members = await self._read("ZRANGE " + key, lambda: self._kv.zrange(key, desc=newest_first))
        if not members:
            return []
        raws = await self._read("MGET", lambda: self._kv.get_many(members))

        records: list[GuessRecord] = []
        for member, raw in zip(members, raws):
            if raw is None:
                continue
            try:
                records.append(self._decode(RecordKind.GUESS, member, raw))
            except CorruptRecordError:
                logger.warning("Skipping unreadable guess %s in %s", member, key)
        return records

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_all(self, kind: RecordKind, record_id: RecordId) -> int:
        """Deletes a record. For a guess log, also deletes every guess it lists.

        Returns:
            Number of keys that existed and were removed.
        """
        key = self.key_for(kind, record_id)
        keys = [key]
        if kind is RecordKind.GUESS_LOG:
            keys.extend(await self._read("ZRANGE " + key, lambda: self._kv.zrange(key)))
        return await self._kv.delete(*keys)

    async def delete_namespace(self, prefix: str) -> int:
        """Deletes every key starting with prefix, in bounded SCAN batches.

        Raises:
            ValidationError: Empty prefix or one containing glob characters.
        """
        if not prefix or any(char in prefix for char in "*?[]"):
            raise ValidationError(f"Refusing to delete namespace {prefix!r}.")
        deleted = 0
        cursor = 0
        while True:
            cursor, keys = await self._kv.scan(cursor, prefix + "*", DELETE_BATCH_SIZE)
            if keys:
                deleted += await self._kv.delete(*keys)
            if cursor == 0:
                break
        if deleted:
            logger.info("Deleted %d key(s) under %s", deleted, prefix)
        return deleted

    async def delete_keys(self, keys: list[str]) -> int:
        """Deletes raw keys previously returned by scan_namespace."""
        if not keys:
            return 0
        return await self._kv.delete(*keys)

    # ------------------------------------------------------------------
    # Maintenance (used by the sweeper)
    # ------------------------------------------------------------------

    async def scan_namespace(self, pattern: str, cursor: int, count: int) -> tuple[int, list[str]]:
        """One SCAN step over a glob pattern. Returns (next_cursor, keys)."""
        return await self._kv.scan(cursor, pattern, count)

    async def key_ttl(self, key: str) -> int:
        """Remaining TTL in seconds; -1 when the key has none, -2 when absent."""
        return await self._kv.ttl(key)

    async def refresh_ttl(self, key: str) -> bool:
        """Re-applies the data TTL to an existing key."""
        return await self._kv.expire(key, DATA_TTL_SECONDS)

    async def ping(self) -> bool:
        return await self._kv.ping()
