"""Fixtures for contract tests — one parameterized fixture per hook interface.

Each fixture yields a fresh implementation instance:
- "stub": InMemoryKeyValueStore on the fake clock
- "redis": RedisKeyValueStore over an in-process fakeredis server, so the
  adapter's real command path (SET EX, MULTI/EXEC, SCAN cursors) runs
  without a Redis deployment

Run: python -m pytest hideseek/tests/contracts/ -v
All tests should pass. If any fail, the implementation doesn't satisfy the
contract — read the failing test's docstring for what's expected.

Uses @pytest_asyncio.fixture (not @pytest.fixture) for async fixture support
in strict mode. The clock fixture comes from hideseek/tests/conftest.py.
"""

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis, FakeServer

from hideseek.hooks.memory import InMemoryKeyValueStore
from hideseek.hooks.redis_store import RedisKeyValueStore


@pytest_asyncio.fixture(params=["stub", "redis"])
async def kv_store(request, clock):
    """Yields a KeyValueStore implementation."""
    if request.param == "stub":
        store = InMemoryKeyValueStore(clock=clock)
    else:
        store = RedisKeyValueStore(FakeAsyncRedis(server=FakeServer(), decode_responses=True))
    yield store
    await store.close()


@pytest.fixture
def stub_clock(kv_store, clock):
    """The clock driving kv_store's expiry. Only the stub has one to advance."""
    if not isinstance(kv_store, InMemoryKeyValueStore):
        pytest.skip("expiry is driven by the server's own clock")
    return clock


@pytest.fixture
def kv_backend(request) -> str:
    return request.node.callspec.params["kv_store"]
