"""Tests for the player API endpoints: own profile, recalculation, progression, tiers."""

import httpx
import pytest

from hideseek.store import RecordKind

ALICE = {"X-Player-Id": "alice", "X-Player-Name": "alice"}


class TestMyProfile:
    @pytest.mark.asyncio
    async def test_new_player_gets_unsaved_profile(
        self, client: httpx.AsyncClient, services
    ) -> None:
        async with client:
            resp = await client.get("/api/v1/players/me", headers=ALICE)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["is_new"] is True
        assert data["profile"]["username"] == "alice"
        assert data["profile"]["rank"] == "Tyapu"
        assert data["progression"]["next_rank"] == "GuessMaster"
        assert await services.store.exists(RecordKind.PLAYER, "alice") is False

    @pytest.mark.asyncio
    async def test_existing_profile(
        self, client: httpx.AsyncClient, services, make_profile
    ) -> None:
        profile = make_profile(
            player_id="alice", total_guesses=10, successful_guesses=6, success_rate=0.6,
            rank="GuessMaster",
        )
        await services.store.put(RecordKind.PLAYER, "alice", profile)
        async with client:
            resp = await client.get("/api/v1/players/me", headers=ALICE)
        data = resp.json()["data"]
        assert data["is_new"] is False
        assert data["profile"]["successful_guesses"] == 6
        assert data["progression"]["current_rank"] == "GuessMaster"
        assert data["progression"]["next_rank"] == "Detective"

    @pytest.mark.asyncio
    async def test_requires_identity(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/players/me")
        assert resp.status_code == 401


class TestRecalculate:
    @pytest.mark.asyncio
    async def test_unknown_player_is_404(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.post("/api/v1/players/me/recalculate", headers=ALICE)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_repairs_profile(
        self, client: httpx.AsyncClient, services, make_profile
    ) -> None:
        profile = make_profile(
            player_id="alice", total_guesses=10, successful_guesses=6, success_rate=0.0
        )
        await services.store.put(RecordKind.PLAYER, "alice", profile)
        async with client:
            resp = await client.post("/api/v1/players/me/recalculate", headers=ALICE)
        data = resp.json()["data"]
        assert data["profile"]["success_rate"] == pytest.approx(0.6)
        assert data["profile"]["rank"] == "GuessMaster"


class TestProgressionAndTiers:
    @pytest.mark.asyncio
    async def test_public_progression(
        self, client: httpx.AsyncClient, services, make_profile
    ) -> None:
        profile = make_profile(
            player_id="bob", total_guesses=5, successful_guesses=3, success_rate=0.6
        )
        await services.store.put(RecordKind.PLAYER, "bob", profile)
        async with client:
            resp = await client.get("/api/v1/players/bob/progression")
        data = resp.json()["data"]
        assert data["current_rank"] == "Tyapu"
        assert data["progress_to_next"] == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_unknown_player_progression(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/players/ghost/progression")
        assert resp.status_code == 200
        assert resp.json()["data"]["progress_to_next"] == 0.0

    @pytest.mark.asyncio
    async def test_invalid_player_id_is_400(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/players/bad%20id/progression")
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_rank_table(self, client: httpx.AsyncClient) -> None:
        async with client:
            resp = await client.get("/api/v1/ranks")
        ranks = resp.json()["data"]["ranks"]
        assert [r["rank"] for r in ranks] == ["Tyapu", "GuessMaster", "Detective", "FBI"]
        assert ranks[3]["min_total_finds"] == 50
        assert ranks[3]["min_success_rate"] == 0.8
