"""Guess ledger — guess ingestion, scoring, and per-session statistics.

record_guess() is the hot path:

    validate → rate limit → score → append to log → refresh stats → rank update

The guess log is a sorted set of guess keys scored by timestamp, so
concurrent appends from different players never overwrite each other.
Statistics are a cache over that log: recomputed from scratch and
overwritten after every guess. Two racing guesses can leave the cache one
guess behind until the next write or cache miss repairs it.

A RankEngine failure is logged and swallowed: the guess is already
stored and must be reported back to the player.

Tier 3 service module: imports from store, ranks (Tier 2), schemas,
errors (Tier 1).

Usage:
    from hideseek.guesses import GuessLedger

    ledger = GuessLedger(store, ranks)
    guess = await ledger.record_guess(session_id, "t2_abc", "alice", "pumpkin", 0.5, 0.3)
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass

from pydantic import ValidationError as PydanticValidationError

from hideseek.errors import NotFoundError, RateLimitError, ValidationError
from hideseek.ranks import RankEngine
from hideseek.schemas import GuessRecord, GuessStatistics, HidingSpot, RankUpdate
from hideseek.store import RecordKind, SchemaStore

logger = logging.getLogger("hideseek.guesses")

ACCURACY_THRESHOLD = 0.05
DEFAULT_RATE_LIMIT_MS = 2000
DEFAULT_LEADERBOARD_SIZE = 10
ANONYMOUS_USERNAME = "Anonymous"


def _now_ms() -> int:
    return int(time.time() * 1000)


def calculate_distance(x1: float, y1: float, x2: float, y2: float) -> float:
    """Euclidean distance between two points in normalized map space."""
    return math.hypot(x1 - x2, y1 - y2)


def is_correct_guess(object_key: str, distance: float, hiding_spot: HidingSpot) -> bool:
    return object_key == hiding_spot.object_key and distance < ACCURACY_THRESHOLD


def compute_statistics(guesses: list[GuessRecord]) -> GuessStatistics:
    """Aggregates a guess log. Deterministic for a given set of records."""
    if not guesses:
        return GuessStatistics()
    total = len(guesses)
    return GuessStatistics(
        total_guesses=total,
        correct_guesses=sum(1 for guess in guesses if guess.is_correct),
        unique_guessers=len({guess.guesser_id for guess in guesses}),
        average_distance=round(math.fsum(guess.distance for guess in guesses) / total, 4),
    )


def rank_unique_guessers(guesses: list[GuessRecord]) -> list[GuessRecord]:
    """Keeps each guesser's latest guess, then orders the survivors.

    Correct guesses come first, earliest timestamp first. Incorrect ones
    follow, closest distance first.
    """
    latest: dict[str, GuessRecord] = {}
    for guess in guesses:
        current = latest.get(guess.guesser_id)
        if current is None or guess.timestamp > current.timestamp:
            latest[guess.guesser_id] = guess

    def sort_key(guess: GuessRecord) -> tuple:
        if guess.is_correct:
            return (0, guess.timestamp, guess.distance, guess.guesser_id)
        return (1, guess.distance, guess.timestamp, guess.guesser_id)

    return sorted(latest.values(), key=sort_key)


@dataclass(frozen=True)
class GuessOutcome:
    guess: GuessRecord
    rank_update: RankUpdate | None


class GuessLedger:
    """Accepts guesses and serves per-session guess data.

    Args:
        store: Schema store for guesses, logs, stats and sessions.
        ranks: Rank engine notified after every stored guess.
        rate_limit_ms: Minimum gap between two guesses by the same player
            in the same session.
    """

    def __init__(
        self,
        store: SchemaStore,
        ranks: RankEngine,
        rate_limit_ms: int = DEFAULT_RATE_LIMIT_MS,
    ) -> None:
        self._store = store
        self._ranks = ranks
        self._rate_limit_ms = rate_limit_ms

    async def record_guess(
        self,
        session_id: str,
        guesser_id: str,
        username: str,
        object_key: str,
        rel_x: float,
        rel_y: float,
        hiding_spot: HidingSpot | None = None,
    ) -> GuessRecord:
        """Scores and stores one guess. See submit_guess for errors."""
        outcome = await self.submit_guess(
            session_id, guesser_id, username, object_key, rel_x, rel_y, hiding_spot
        )
        return outcome.guess

    async def submit_guess(
        self,
        session_id: str,
        guesser_id: str,
        username: str,
        object_key: str,
        rel_x: float,
        rel_y: float,
        hiding_spot: HidingSpot | None = None,
    ) -> GuessOutcome:
        """Scores and stores one guess, returning it with the rank update.

        Args:
            session_id: Session being guessed.
            guesser_id: Player submitting the guess.
            username: Display name; empty falls back to "Anonymous".
            object_key: Object the player thinks is hidden.
            rel_x: Normalized x coordinate in [0, 1].
            rel_y: Normalized y coordinate in [0, 1].
            hiding_spot: The session's hiding spot. Loaded from the session
                record when omitted.

        Returns:
            GuessOutcome with the persisted GuessRecord and the RankUpdate
            (None when the rank engine failed).

        Raises:
            ValidationError: Malformed identifiers or coordinates.
            RateLimitError: The guesser guessed in this session within the
                rate window. Nothing is written.
            NotFoundError: hiding_spot omitted and the session is gone.
            StorageError: The store failed while writing the guess.
        """
        timestamp = _now_ms()
        username = (username or "").strip() or ANONYMOUS_USERNAME

        # Scoring fields are placeholders until the hiding spot is known.
        try:
            draft = GuessRecord(
                session_id=session_id,
                guesser_id=guesser_id,
                username=username,
                object_key=object_key,
                rel_x=rel_x,
                rel_y=rel_y,
                timestamp=timestamp,
                is_correct=False,
                distance=0.0,
            )
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(f"{field}: {first.get('msg', 'invalid value')}") from exc

        if await self.has_recent_guess(session_id, guesser_id, self._rate_limit_ms):
            raise RateLimitError(
                "Please wait before guessing again.", retry_after_ms=self._rate_limit_ms
            )

        if hiding_spot is None:
            session = await self._store.get(RecordKind.SESSION, session_id)
            if session is None:
                raise NotFoundError(f"Game session {session_id} not found.")
            hiding_spot = session.hiding_spot

        distance = calculate_distance(rel_x, rel_y, hiding_spot.rel_x, hiding_spot.rel_y)
        guess = draft.model_copy(
            update={
                "distance": distance,
                "is_correct": is_correct_guess(object_key, distance, hiding_spot),
            }
        )

        guess_id = (session_id, guesser_id, timestamp)
        await self._store.put(RecordKind.GUESS, guess_id, guess)
        await self._store.append_ordered(
            RecordKind.GUESS_LOG,
            session_id,
            self._store.key_for(RecordKind.GUESS, guess_id),
            timestamp,
        )
        await self.refresh_statistics(session_id)

        logger.info(
            "Guess recorded: session=%s correct=%s distance=%.4f",
            session_id, guess.is_correct, distance,
        )

        rank_update = await self._notify_rank_engine(guess)
        return GuessOutcome(guess=guess, rank_update=rank_update)

    async def _notify_rank_engine(self, guess: GuessRecord) -> RankUpdate | None:
        try:
            return await self._ranks.update_after_guess(
                guess.guesser_id, guess.is_correct, username=guess.username
            )
        except Exception:
            logger.exception("Rank update failed for player %s", guess.guesser_id)
            return None

    async def get_guesses(self, session_id: str) -> list[GuessRecord]:
        """All guesses for a session, newest first."""
        return await self._store.read_ordered(RecordKind.GUESS_LOG, session_id, newest_first=True)

    async def get_unique_guessers(self, session_id: str) -> list[GuessRecord]:
        return rank_unique_guessers(await self.get_guesses(session_id))

    async def get_leaderboard(
        self, session_id: str, limit: int = DEFAULT_LEADERBOARD_SIZE
    ) -> list[GuessRecord]:
        if limit < 1:
            raise ValidationError("Leaderboard limit must be at least 1.")
        return (await self.get_unique_guessers(session_id))[:limit]

    async def get_statistics(self, session_id: str) -> GuessStatistics:
        """Cached statistics, or a fresh recomputation written back on a miss."""
        cached = await self._store.get(RecordKind.STATS, session_id)
        if cached is not None:
            return cached
        return await self.refresh_statistics(session_id)

    async def refresh_statistics(self, session_id: str) -> GuessStatistics:
        """Recomputes statistics from the full log and overwrites the cache."""
        stats = compute_statistics(await self.get_guesses(session_id))
        await self._store.put(RecordKind.STATS, session_id, stats)
        return stats

    async def has_recent_guess(self, session_id: str, guesser_id: str, window_ms: int) -> bool:
        """True if the guesser's latest guess in the session is inside the window."""
        if window_ms <= 0:
            return False
        now = _now_ms()
        for guess in await self.get_guesses(session_id):
            if guess.guesser_id == guesser_id:
                return now - guess.timestamp < window_ms
        return False

    async def delete_session_guesses(self, session_id: str) -> int:
        """Removes a session's guess log, every guess in it, and the stats cache."""
        deleted = await self._store.delete_all(RecordKind.GUESS_LOG, session_id)
        deleted += await self._store.delete_all(RecordKind.STATS, session_id)
        return deleted
