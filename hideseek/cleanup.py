"""Expiration sweeper — background cleanup of expired, orphaned, and TTL-less keys.

The store's own TTL removes most data. The sweeper catches what TTLs miss:

- post mappings whose session is gone (orphans);
- per-session keys (guesses, guess log, stats) whose session is gone;
- sessions and player profiles whose timestamps are older than the data
  TTL (logically expired even if the key somehow survived);
- service keys with no TTL at all, which get the TTL re-applied.

Namespaces are walked with SCAN in bounded batches. Each scan step and
each batch is retried with exponential backoff; a batch that keeps
failing is counted in failed_batches and skipped, never aborting the
pass. Only one pass runs at a time: a pass requested while another is in
flight returns None.

schedule() starts a single asyncio task that runs a pass immediately and
then every interval. Scheduled failures are logged and never stop the
loop.

Tier 3 service module: imports from store (Tier 2), schemas, errors (Tier 1).

Usage:
    from hideseek.cleanup import ExpirationSweeper

    sweeper = ExpirationSweeper(store)
    sweeper.schedule(interval_hours=24)
    run = await sweeper.force_run()
    await sweeper.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TypeVar

from hideseek.errors import CorruptRecordError, StorageError, ValidationError
from hideseek.schemas import CleanupRun, CleanupStatistics, CleanupStatus, StorageHealth
from hideseek.store import DATA_TTL_SECONDS, RecordKind, SchemaStore

logger = logging.getLogger("hideseek.cleanup")

# Sessions first so orphan checks in later namespaces see this pass's deletions.
NAMESPACES = ("game_session:*", "post_mapping:*", "game:*", "player:*")

SLOW_PING_MS = 100.0
RECENT_RUNS_WINDOW = 5
RECENT_FAILURES_WARNING = 3
SUCCESS_RATE_WARNING = 0.8

T = TypeVar("T")


def _now_ms() -> int:
    return int(time.time() * 1000)


class _Verdict(Enum):
    DELETE = "delete"
    KEEP = "keep"
    SKIP = "skip"


@dataclass
class _PassCounters:
    keys_scanned: int = 0
    keys_deleted: int = 0
    keys_repaired: int = 0
    failed_batches: int = 0


class ExpirationSweeper:
    """Periodic cleanup job over every service namespace.

    Args:
        store: Schema store to sweep.
        batch_size: SCAN count hint per step.
        retry_attempts: Attempts per scan step or batch before giving up.
        retry_delay_seconds: Backoff base; attempt n waits base * 2**(n-1).
        history_size: Number of past runs kept for status().
        batch_pause_seconds: Pause between batches so a pass never hogs
            the store.
    """

    def __init__(
        self,
        store: SchemaStore,
        batch_size: int = 100,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 60.0,
        history_size: int = 100,
        batch_pause_seconds: float = 0.1,
    ) -> None:
        self._store = store
        self._batch_size = max(1, batch_size)
        self._retry_attempts = max(1, retry_attempts)
        self._retry_delay_seconds = retry_delay_seconds
        self._batch_pause_seconds = batch_pause_seconds
        self._history: deque[CleanupRun] = deque(maxlen=max(1, history_size))

        self._in_flight = False
        self._task: asyncio.Task | None = None
        self._interval_hours: float | None = None
        self._next_run_at: datetime | None = None

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def run_cleanup_pass(self, forced: bool = False) -> CleanupRun | None:
        """Sweeps every namespace once.

        Returns:
            The recorded CleanupRun, or None if a pass was already in
            flight. succeeded is False when any batch was skipped.
        """
        if self._in_flight:
            logger.warning("Cleanup pass already in flight, skipping")
            return None

        self._in_flight = True
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        counters = _PassCounters()
        try:
            for pattern in NAMESPACES:
                await self._sweep_namespace(pattern, counters)
        except Exception as exc:
            self._record(started_at, start, counters, forced, error=str(exc) or type(exc).__name__)
            raise
        finally:
            self._in_flight = False

        run = self._record(started_at, start, counters, forced)
        logger.info(
            "Cleanup pass finished: scanned=%d deleted=%d repaired=%d failed_batches=%d %.1fms",
            run.keys_scanned, run.keys_deleted, run.keys_repaired,
            run.failed_batches, run.duration_ms,
        )
        return run

    async def force_run(self) -> CleanupRun | None:
        """Runs a pass on demand. None if one is already in flight."""
        return await self.run_cleanup_pass(forced=True)

    def _record(
        self,
        started_at: datetime,
        start: float,
        counters: _PassCounters,
        forced: bool,
        error: str | None = None,
    ) -> CleanupRun:
        run = CleanupRun(
            started_at=started_at,
            duration_ms=(time.monotonic() - start) * 1000,
            keys_scanned=counters.keys_scanned,
            keys_deleted=counters.keys_deleted,
            keys_repaired=counters.keys_repaired,
            failed_batches=counters.failed_batches,
            succeeded=error is None and counters.failed_batches == 0,
            forced=forced,
            error=error,
        )
        self._history.append(run)
        return run

    async def _sweep_namespace(self, pattern: str, counters: _PassCounters) -> None:
        cursor = 0
        while True:
            step = functools.partial(
                self._store.scan_namespace, pattern, cursor, self._batch_size
            )
            try:
                cursor, keys = await self._with_retry(f"scan {pattern}", step)
            except StorageError:
                counters.failed_batches += 1
                logger.error("Abandoning %s after %d scan attempts", pattern, self._retry_attempts)
                return

            counters.keys_scanned += len(keys)
            if keys:
                try:
                    deleted, repaired = await self._with_retry(
                        f"batch {pattern}", functools.partial(self._process_batch, keys)
                    )
                except StorageError:
                    counters.failed_batches += 1
                    logger.error(
                        "Skipping batch of %d key(s) in %s after %d attempts",
                        len(keys), pattern, self._retry_attempts,
                    )
                else:
                    counters.keys_deleted += deleted
                    counters.keys_repaired += repaired

            if cursor == 0:
                return
            if self._batch_pause_seconds > 0:
                await asyncio.sleep(self._batch_pause_seconds)

    async def _with_retry(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        for attempt in range(1, self._retry_attempts):
            try:
                return await func()
            except StorageError as exc:
                delay = self._retry_delay_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Cleanup %s failed (attempt %d/%d): %s. Retrying in %.1fs",
                    operation, attempt, self._retry_attempts, exc, delay,
                )
                await asyncio.sleep(delay)
        return await func()

    async def _process_batch(self, keys: list[str]) -> tuple[int, int]:
        """Classifies one batch, deletes what must go, repairs missing TTLs.

        Idempotent, so a retried batch never double-counts damage.
        """
        sessions: dict[str, bool] = {}
        to_delete: list[str] = []
        repaired = 0
        for key in keys:
            verdict = await self._classify(key, sessions)
            if verdict is _Verdict.DELETE:
                to_delete.append(key)
            elif verdict is _Verdict.KEEP and await self._store.key_ttl(key) == -1:
                if await self._store.refresh_ttl(key):
                    repaired += 1
        deleted = await self._store.delete_keys(to_delete)
        return deleted, repaired

    async def _classify(self, key: str, sessions: dict[str, bool]) -> _Verdict:
        parsed = self._store.parse_key(key)
        if parsed is None:
            return _Verdict.SKIP
        kind, parts = parsed
        cutoff_ms = _now_ms() - DATA_TTL_SECONDS * 1000
        try:
            if kind is RecordKind.POST_MAPPING:
                mapping = await self._store.get(kind, parts)
                if mapping is None:
                    return _Verdict.SKIP
                alive = await self._session_alive(mapping.session_id, sessions)
                return _Verdict.KEEP if alive else _Verdict.DELETE

            if kind in (RecordKind.GUESS, RecordKind.GUESS_LOG, RecordKind.STATS):
                alive = await self._session_alive(parts[0], sessions)
                return _Verdict.KEEP if alive else _Verdict.DELETE

            if kind is RecordKind.SESSION:
                session = await self._store.get(kind, parts)
                if session is None:
                    return _Verdict.SKIP
                return _Verdict.DELETE if session.created_at < cutoff_ms else _Verdict.KEEP

            profile = await self._store.get(kind, parts)
            if profile is None:
                return _Verdict.SKIP
            return _Verdict.DELETE if profile.last_active < cutoff_ms else _Verdict.KEEP
        except ValidationError:
            # Matches the layout but not the identifier rules: not ours.
            return _Verdict.SKIP
        except CorruptRecordError:
            logger.warning("Leaving unreadable record %s in place", key)
            return _Verdict.SKIP

    async def _session_alive(self, session_id: str, sessions: dict[str, bool]) -> bool:
        if session_id not in sessions:
            sessions[session_id] = await self._store.exists(RecordKind.SESSION, session_id)
        return sessions[session_id]

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self, interval_hours: float) -> asyncio.Task:
        """Starts the recurring cleanup task. Must be called inside a running loop.

        A second call while the task is alive returns the existing task.

        Raises:
            ValueError: If interval_hours is not positive.
        """
        if interval_hours <= 0:
            raise ValueError(f"Cleanup interval must be positive, got {interval_hours!r}")
        if self._task is not None and not self._task.done():
            logger.warning("Cleanup already scheduled every %sh", self._interval_hours)
            return self._task

        self._interval_hours = interval_hours
        self._task = asyncio.create_task(self._loop(interval_hours), name="hideseek-cleanup")
        logger.info("Cleanup scheduled every %sh", interval_hours)
        return self._task

    async def _loop(self, interval_hours: float) -> None:
        interval = timedelta(hours=interval_hours)
        while True:
            self._next_run_at = None
            try:
                await self.run_cleanup_pass()
            except Exception:
                logger.exception("Scheduled cleanup pass failed")
            self._next_run_at = datetime.now(timezone.utc) + interval
            await asyncio.sleep(interval.total_seconds())

    async def stop(self) -> None:
        """Cancels the recurring task and waits for it to finish."""
        task, self._task = self._task, None
        self._next_run_at = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Cleanup schedule stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def history(self, limit: int | None = None) -> list[CleanupRun]:
        """Retained runs, newest first."""
        runs = list(reversed(self._history))
        return runs if limit is None else runs[:limit]

    def statistics(self) -> CleanupStatistics:
        runs = list(self._history)
        if not runs:
            return CleanupStatistics()
        successful = sum(1 for run in runs if run.succeeded)
        return CleanupStatistics(
            total_runs=len(runs),
            successful_runs=successful,
            failed_runs=len(runs) - successful,
            success_rate=successful / len(runs),
            total_keys_deleted=sum(run.keys_deleted for run in runs),
            average_duration_ms=sum(run.duration_ms for run in runs) / len(runs),
        )

    def status(self) -> CleanupStatus:
        """Snapshot of the schedule, aggregate statistics, and a health label.

        Health is "error" when the schedule is not running, "warning" when
        3 of the last 5 runs failed or the overall success rate is below
        80%, else "healthy".
        """
        stats = self.statistics()
        recent = list(self._history)[-RECENT_RUNS_WINDOW:]
        recent_failures = sum(1 for run in recent if not run.succeeded)

        if not self.running:
            health = "error"
        elif recent_failures >= RECENT_FAILURES_WARNING or (
            stats.total_runs and stats.success_rate < SUCCESS_RATE_WARNING
        ):
            health = "warning"
        else:
            health = "healthy"

        return CleanupStatus(
            running=self.running,
            in_flight=self._in_flight,
            interval_hours=self._interval_hours if self.running else None,
            health=health,
            statistics=stats,
            last_run=self._history[-1] if self._history else None,
            next_run_estimate=self._next_run_at if self.running else None,
        )

    async def health_check(self) -> StorageHealth:
        """Checks connectivity and TTL compliance on one scan batch per namespace.

        Never walks a full namespace. Connectivity failures produce an
        "error" report rather than raising.
        """
        start = time.monotonic()
        try:
            await self._store.ping()
            response_time_ms = (time.monotonic() - start) * 1000

            sampled = 0
            without_ttl = 0
            for pattern in NAMESPACES:
                _, keys = await self._store.scan_namespace(pattern, 0, self._batch_size)
                for key in keys:
                    if self._store.parse_key(key) is None:
                        continue
                    sampled += 1
                    if await self._store.key_ttl(key) == -1:
                        without_ttl += 1
        except StorageError as exc:
            logger.error("Storage health check failed: %s", exc)
            return StorageHealth(
                status="error",
                connectivity=False,
                response_time_ms=(time.monotonic() - start) * 1000,
                expiration_compliance=False,
                recommendations=["Check store connectivity and credentials."],
            )

        recommendations: list[str] = []
        if without_ttl:
            recommendations.append(
                f"{without_ttl} sampled key(s) have no TTL. Run a cleanup pass to repair them."
            )
        if response_time_ms > SLOW_PING_MS:
            recommendations.append(
                f"Store ping took {response_time_ms:.0f}ms. Check network latency."
            )

        return StorageHealth(
            status="warning" if recommendations else "healthy",
            connectivity=True,
            response_time_ms=response_time_ms,
            sampled_keys=sampled,
            keys_without_ttl=without_ttl,
            expiration_compliance=without_ttl == 0,
            recommendations=recommendations,
        )
