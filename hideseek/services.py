"""Service wiring — builds the one set of core components a process uses.

GameServices is constructed once at startup (main.py) and handed to route
handlers through api/deps.py. The core components hold no module-level
state of their own; everything they share lives in this struct.

Tier 3 orchestration module: imports from config, hooks, store, sessions,
guesses, ranks, cleanup.

Usage:
    from hideseek.services import build_services

    services = build_services(get_settings())
    await services.sessions.create_session(...)
"""

from __future__ import annotations

from dataclasses import dataclass

from hideseek.cleanup import ExpirationSweeper
from hideseek.config import Settings
from hideseek.guesses import GuessLedger
from hideseek.hooks.interfaces import KeyValueStore
from hideseek.hooks.memory import InMemoryKeyValueStore
from hideseek.ranks import RankEngine
from hideseek.sessions import SessionRegistry
from hideseek.store import SchemaStore


@dataclass
class GameServices:
    """Every core component, sharing one SchemaStore."""

    kv: KeyValueStore
    store: SchemaStore
    ranks: RankEngine
    guesses: GuessLedger
    sessions: SessionRegistry
    sweeper: ExpirationSweeper


def create_kv_store(settings: Settings) -> KeyValueStore:
    """Picks the KeyValueStore implementation named by STORE_BACKEND."""
    if settings.store_backend == "redis":
        # Local import keeps the redis driver optional for memory-backed runs.
        from hideseek.hooks.redis_store import RedisKeyValueStore

        return RedisKeyValueStore.from_url(settings.redis_url)
    return InMemoryKeyValueStore()


def build_services(
    settings: Settings,
    kv: KeyValueStore | None = None,
    batch_pause_seconds: float = 0.1,
) -> GameServices:
    """Builds the component graph.

    Args:
        settings: Resolved configuration.
        kv: Store to use instead of the configured backend (tests pass an
            InMemoryKeyValueStore with a fake clock).
        batch_pause_seconds: Sweeper pause between batches.
    """
    kv = kv if kv is not None else create_kv_store(settings)
    store = SchemaStore(kv)
    ranks = RankEngine(store, allow_tier_skip=settings.rank_allow_tier_skip)
    guesses = GuessLedger(store, ranks, rate_limit_ms=settings.guess_rate_limit_ms)
    sessions = SessionRegistry(store, guesses)
    sweeper = ExpirationSweeper(
        store,
        batch_size=settings.cleanup_batch_size,
        retry_attempts=settings.cleanup_retry_attempts,
        retry_delay_seconds=settings.cleanup_retry_delay_seconds,
        history_size=settings.cleanup_history_size,
        batch_pause_seconds=batch_pause_seconds,
    )
    return GameServices(
        kv=kv,
        store=store,
        ranks=ranks,
        guesses=guesses,
        sessions=sessions,
        sweeper=sweeper,
    )
