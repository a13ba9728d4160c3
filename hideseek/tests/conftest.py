"""Shared test fixtures for the Hide & Seek data core.

Factory-pattern fixtures that return callables accepting **overrides, plus
ready-wired store and service fixtures backed by the in-memory stub.

Fixtures:
    clock: Manually advanced seconds clock driving the stub's TTLs
    ms_clock: Manually advanced milliseconds clock patched into the core
    make_settings: Factory for Settings instances (no env access)
    kv: InMemoryKeyValueStore on the fake clock
    flaky_kv: stub that fails on demand, for retry paths
    store: SchemaStore over kv, with zero retry delay
    services: Full GameServices graph over kv
    make_hiding_spot / make_session / make_guess / make_profile: record factories
    client: httpx.AsyncClient on the app, routed to the services fixture
"""

from collections import Counter

import httpx
import pytest
from httpx import ASGITransport

from hideseek.api.deps import get_services
from hideseek.config import Settings
from hideseek.errors import StorageError
from hideseek.hooks.memory import InMemoryKeyValueStore
from hideseek.main import app
from hideseek.schemas import GameSession, GuessRecord, HidingSpot, PlayerProfile
from hideseek.services import build_services
from hideseek.store import SchemaStore

START_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, start: float = START_MS / 1000) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyKeyValueStore(InMemoryKeyValueStore):
    """Stub that raises StorageError a set number of times per operation.

    failures maps an operation name ("get", "scan", ...) to how many calls
    fail before it recovers; -1 fails forever. calls counts every attempt.
    """

    def __init__(self, clock) -> None:
        super().__init__(clock=clock)
        self.failures: dict[str, int] = {}
        self.calls: Counter[str] = Counter()

    def _trip(self, operation: str) -> None:
        self.calls[operation] += 1
        remaining = self.failures.get(operation, 0)
        if remaining == 0:
            return
        if remaining > 0:
            self.failures[operation] = remaining - 1
        raise StorageError(f"Store unavailable during {operation}.")

    async def get(self, key):
        self._trip("get")
        return await super().get(key)

    async def get_many(self, keys):
        self._trip("get_many")
        return [await InMemoryKeyValueStore.get(self, key) for key in keys]

    async def set(self, key, value, ttl_seconds):
        self._trip("set")
        await super().set(key, value, ttl_seconds)

    async def zrange(self, key, desc=False):
        self._trip("zrange")
        return await super().zrange(key, desc=desc)

    async def delete(self, *keys):
        self._trip("delete")
        return await super().delete(*keys)

    async def exists(self, key):
        self._trip("exists")
        return await super().exists(key)

    async def scan(self, cursor, match, count):
        self._trip("scan")
        return await super().scan(cursor, match, count)

    async def ping(self):
        self._trip("ping")
        return await super().ping()


class MsClock:
    """Manually advanced clock in integer milliseconds."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


# ---------------------------------------------------------------------------
# Clocks
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ms_clock(monkeypatch: pytest.MonkeyPatch) -> MsClock:
    """Freezes every core module's notion of "now" at START_MS.

    Advance it to step past the guess rate window or make records stale.
    """
    fake = MsClock()
    for module in ("guesses", "ranks", "sessions", "cleanup"):
        monkeypatch.setattr(f"hideseek.{module}._now_ms", fake)
    return fake


# ---------------------------------------------------------------------------
# Settings factory
# ---------------------------------------------------------------------------


@pytest.fixture
def make_settings():
    """Returns a factory for Settings with test-friendly defaults.

    Cleanup retries are instant and the schedule is off by default.
    """

    def _make(**overrides) -> Settings:
        defaults = {
            "app_env": "test",
            "app_port": 8000,
            "log_level": "info",
            "cors_origins": ["http://localhost:3000"],
            "store_backend": "memory",
            "redis_url": "redis://localhost:6379/0",
            "guess_rate_limit_ms": 2000,
            "rank_allow_tier_skip": False,
            "cleanup_enabled": False,
            "cleanup_interval_hours": 24.0,
            "cleanup_batch_size": 100,
            "cleanup_retry_attempts": 3,
            "cleanup_retry_delay_seconds": 0.0,
            "cleanup_history_size": 100,
        }
        defaults.update(overrides)
        return Settings(**defaults)

    return _make


# ---------------------------------------------------------------------------
# Wired components
# ---------------------------------------------------------------------------


@pytest.fixture
def kv(clock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def flaky_kv(clock) -> FlakyKeyValueStore:
    return FlakyKeyValueStore(clock)


@pytest.fixture
def store(kv) -> SchemaStore:
    return SchemaStore(kv, retry_base_delay=0)


@pytest.fixture
def services(kv, make_settings):
    """Full service graph on the stub store. Rate limit 2000ms, no tier skipping."""
    return build_services(make_settings(), kv=kv, batch_pause_seconds=0)


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_hiding_spot():
    """Returns a factory for HidingSpot. Default: pumpkin at (0.5, 0.3)."""

    def _make(**overrides) -> HidingSpot:
        defaults = {"object_key": "pumpkin", "rel_x": 0.5, "rel_y": 0.3}
        defaults.update(overrides)
        return HidingSpot(**defaults)

    return _make


@pytest.fixture
def make_session(make_hiding_spot):
    """Returns a factory for valid GameSession instances."""

    def _make(**overrides) -> GameSession:
        defaults = {
            "session_id": "sess-001",
            "creator_id": "creator_1",
            "map_key": "octmap",
            "hiding_spot": make_hiding_spot(),
            "created_at": START_MS,
        }
        defaults.update(overrides)
        return GameSession(**defaults)

    return _make


@pytest.fixture
def make_guess():
    """Returns a factory for valid GuessRecord instances."""

    def _make(**overrides) -> GuessRecord:
        defaults = {
            "session_id": "sess-001",
            "guesser_id": "player_1",
            "username": "alice",
            "object_key": "pumpkin",
            "rel_x": 0.5,
            "rel_y": 0.3,
            "timestamp": START_MS,
            "is_correct": True,
            "distance": 0.0,
        }
        defaults.update(overrides)
        return GuessRecord(**defaults)

    return _make


@pytest.fixture
def make_profile():
    """Returns a factory for valid PlayerProfile instances."""

    def _make(**overrides) -> PlayerProfile:
        defaults = {
            "player_id": "player_1",
            "username": "alice",
            "joined_at": START_MS,
            "last_active": START_MS,
        }
        defaults.update(overrides)
        return PlayerProfile(**defaults)

    return _make


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@pytest.fixture
def client(services):
    """Async test client wired to the app, with the services fixture injected."""
    app.dependency_overrides[get_services] = lambda: services
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    yield httpx.AsyncClient(transport=transport, base_url="http://test")
    app.dependency_overrides.clear()
