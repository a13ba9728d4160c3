"""Shared FastAPI dependencies — service injection and player identity.

The GameServices struct is a module-level singleton set by main.py at app
creation. Route handlers reach it (and the components inside it) through
the get_* providers below, never by importing a component directly.
Tests swap it via app.dependency_overrides[get_services].

Player identity comes from the host platform, which authenticates the
player and forwards X-Player-Id / X-Player-Name on every request.

Tier 3 module: imports from services (Tier 3), schemas (Tier 1).

Usage:
    from hideseek.api.deps import PlayerIdentity, get_player, get_services

    @router.get("/something")
    async def do_thing(
        player: PlayerIdentity = Depends(get_player),
        services: GameServices = Depends(get_services),
    ): ...
"""

import re
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException

from hideseek.cleanup import ExpirationSweeper
from hideseek.guesses import GuessLedger
from hideseek.ranks import RankEngine
from hideseek.schemas import (
    IDENTIFIER_PATTERN,
    MAX_ID_LENGTH,
    MAX_USERNAME_LENGTH,
    ApiError,
    ApiResponse,
)
from hideseek.services import GameServices
from hideseek.sessions import SessionRegistry

_PLAYER_ID_RE = re.compile(IDENTIFIER_PATTERN)

# ---------------------------------------------------------------------------
# Service singleton, set by create_app() in main.py
# ---------------------------------------------------------------------------

_services: GameServices | None = None


@dataclass(frozen=True)
class PlayerIdentity:
    """The calling player, as asserted by the host platform."""

    player_id: str
    username: str | None = None


# ---------------------------------------------------------------------------
# Dependency providers
# ---------------------------------------------------------------------------


def _unavailable(what: str) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail=ApiResponse(
            ok=False,
            error=ApiError(
                code="SERVICE_UNAVAILABLE",
                message=f"{what} is not yet available. Server is starting up.",
            ),
        ).model_dump(),
    )


def get_services() -> GameServices:
    """Returns the service struct.

    Raises HTTPException(503) if startup has not built it yet.
    """
    if _services is None:
        raise _unavailable("Game services")
    return _services


def get_sessions(services: GameServices = Depends(get_services)) -> SessionRegistry:
    return services.sessions


def get_guesses(services: GameServices = Depends(get_services)) -> GuessLedger:
    return services.guesses


def get_ranks(services: GameServices = Depends(get_services)) -> RankEngine:
    return services.ranks


def get_sweeper(services: GameServices = Depends(get_services)) -> ExpirationSweeper:
    return services.sweeper


# ---------------------------------------------------------------------------
# Identity dependency, used by player-scoped route handlers
# ---------------------------------------------------------------------------


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=ApiResponse(
            ok=False,
            error=ApiError(code="UNAUTHORIZED", message=message),
        ).model_dump(),
    )


async def get_player(
    x_player_id: str | None = Header(default=None),
    x_player_name: str | None = Header(default=None),
) -> PlayerIdentity:
    """Reads the caller's identity from the platform headers.

    Raises:
        HTTPException: 401 with ApiResponse envelope when X-Player-Id is
            missing or not a valid identifier.
    """
    if not x_player_id or not x_player_id.strip():
        raise _unauthorized("Missing X-Player-Id header.")

    player_id = x_player_id.strip()
    if len(player_id) > MAX_ID_LENGTH or not _PLAYER_ID_RE.fullmatch(player_id):
        raise _unauthorized("Invalid X-Player-Id header.")

    username = x_player_name.strip()[:MAX_USERNAME_LENGTH] if x_player_name else None
    return PlayerIdentity(player_id=player_id, username=username or None)
