"""Tests for hideseek.main: app wiring, middleware, error envelopes.

A throwaway router mounted under /api/v1/test raises each error class the
handlers know about, and reads the player identity dependency.
"""

import logging

import httpx
import pytest
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from hideseek.api import deps
from hideseek.api.deps import PlayerIdentity, get_player
from hideseek.errors import RateLimitError, StorageError
from hideseek.main import INTERNAL_ERROR_MESSAGE, app
from hideseek.services import GameServices

scratch_routes = APIRouter(prefix="/api/v1/test")


@scratch_routes.get("/whoami")
async def whoami(player: PlayerIdentity = Depends(get_player)) -> dict:
    return {"player_id": player.player_id, "username": player.username}


class _Pin(BaseModel):
    object_key: str
    rel_x: float = Field(ge=0, le=1)


@scratch_routes.post("/pin")
async def pin(body: _Pin) -> dict:
    return {"object_key": body.object_key}


@scratch_routes.get("/crash")
async def crash() -> dict:
    raise KeyError("hiding_spot lookup table corrupted")


@scratch_routes.get("/store-down")
async def store_down() -> dict:
    raise StorageError("Store unavailable during GET.")


@scratch_routes.get("/too-fast")
async def too_fast() -> dict:
    raise RateLimitError("Please wait before guessing again.", retry_after_ms=2500)


app.include_router(scratch_routes)


def _hideseek_logs(caplog: pytest.LogCaptureFixture) -> list[str]:
    return [r.getMessage() for r in caplog.records if r.name == "hideseek"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_liveness_payload(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["error"] is None
        assert body["data"]["status"] == "healthy"
        assert body["data"]["store_backend"] in ("memory", "redis")
        assert body["data"]["cleanup_running"] is False


class TestCors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("origin", ["http://localhost:3000", "http://localhost:5173"])
    async def test_configured_origin_allowed(
        self, client: httpx.AsyncClient, origin: str
    ) -> None:
        async with client:
            resp = await client.options(
                "/api/v1/games",
                headers={"Origin": origin, "Access-Control-Request-Method": "POST"},
            )
        assert resp.headers.get("access-control-allow-origin") == origin

    @pytest.mark.asyncio
    async def test_unknown_origin_gets_no_header(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.options(
                "/api/v1/games",
                headers={
                    "Origin": "https://lookalike-game.example",
                    "Access-Control-Request-Method": "POST",
                },
            )
        assert "access-control-allow-origin" not in resp.headers


class TestPlayerIdentity:
    @pytest.mark.asyncio
    async def test_headers_become_identity(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get(
                "/api/v1/test/whoami",
                headers={"X-Player-Id": "t2_alice", "X-Player-Name": "  alice  "},
            )
        assert resp.status_code == 200
        assert resp.json() == {"player_id": "t2_alice", "username": "alice"}

    @pytest.mark.asyncio
    async def test_name_is_optional(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/test/whoami", headers={"X-Player-Id": "t2_bob"})
        assert resp.json()["username"] is None

    @pytest.mark.asyncio
    async def test_name_capped_at_50(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get(
                "/api/v1/test/whoami",
                headers={"X-Player-Id": "t2_bob", "X-Player-Name": "b" * 80},
            )
        assert resp.json()["username"] == "b" * 50

    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{}, {"X-Player-Id": "   "}])
    async def test_absent_id_is_401(self, client: httpx.AsyncClient, headers: dict) -> None:
        async with client:
            resp = await client.get("/api/v1/test/whoami", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["error"] == {
            "code": "UNAUTHORIZED",
            "message": "Missing X-Player-Id header.",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("player_id", ["has space", "semi;colon", "x" * 101])
    async def test_malformed_id_is_401(self, client: httpx.AsyncClient, player_id: str) -> None:
        async with client:
            resp = await client.get("/api/v1/test/whoami", headers={"X-Player-Id": player_id})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid X-Player-Id header."


class TestErrorEnvelopes:
    @pytest.mark.asyncio
    async def test_storage_error_is_503(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/test/store-down")
        assert resp.status_code == 503
        assert resp.json() == {
            "ok": False,
            "data": None,
            "error": {"code": "STORAGE_ERROR", "message": "Store unavailable during GET."},
        }

    @pytest.mark.asyncio
    async def test_rate_limit_rounds_retry_after_up(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/test/too-fast")
        assert resp.status_code == 429
        assert resp.headers["retry-after"] == "3"
        assert resp.json()["error"]["code"] == "RATE_LIMITED"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_opaque_500(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/test/crash")
        assert resp.status_code == 500
        assert resp.json()["error"] == {
            "code": "INTERNAL_ERROR",
            "message": INTERNAL_ERROR_MESSAGE,
        }
        assert "KeyError" not in resp.text
        assert "lookup table" not in resp.text

    @pytest.mark.asyncio
    async def test_unexpected_error_is_logged(
        self, client: httpx.AsyncClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.ERROR, logger="hideseek"):
            async with client:
                await client.get("/api/v1/test/crash")
        assert any("/api/v1/test/crash" in msg for msg in _hideseek_logs(caplog))

    @pytest.mark.asyncio
    async def test_bad_body_names_the_field(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.post("/api/v1/test/pin", json={"object_key": "pumpkin", "rel_x": 1.5})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["message"].startswith("body -> rel_x:")

    @pytest.mark.asyncio
    async def test_unknown_route_is_enveloped_404(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/no-such-thing")
        assert resp.status_code == 404
        assert resp.json()["ok"] is False
        assert resp.json()["error"]["code"] == "HTTP_ERROR"


class TestServiceWiring:
    def test_import_installs_services(self) -> None:
        assert isinstance(deps._services, GameServices)

    @pytest.mark.asyncio
    async def test_uninitialised_services_are_503(
        self, client: httpx.AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        app.dependency_overrides.clear()
        monkeypatch.setattr(deps, "_services", None)
        async with client:
            resp = await client.get("/api/v1/ranks")
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "SERVICE_UNAVAILABLE"


class TestAccessLog:
    @pytest.mark.asyncio
    async def test_one_line_per_request(
        self, client: httpx.AsyncClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="hideseek"):
            async with client:
                await client.get("/api/v1/ranks")
        assert any(msg.startswith("GET /api/v1/ranks -> 200 in ") for msg in _hideseek_logs(caplog))

    @pytest.mark.asyncio
    async def test_player_headers_not_logged(
        self, client: httpx.AsyncClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="hideseek"):
            async with client:
                await client.get("/api/v1/test/whoami", headers={"X-Player-Id": "t2_secret"})
        assert all("t2_secret" not in msg for msg in _hideseek_logs(caplog))
