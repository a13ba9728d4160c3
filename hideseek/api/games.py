"""Game API routes — session lifecycle, post lookup, guesses, and stats.

Sessions are created by the player hiding the object; everyone else reads
them and submits guesses. Request bodies use plain str/float fields: the
core validates them, and malformed values come back as VALIDATION_ERROR
(400) with the core's message.

All responses use the ApiResponse envelope. Core errors (GameDataError
subclasses) are mapped to status codes by the handler in main.py.

Tier 4 route module: imports from deps, services, schemas, errors.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from hideseek.api.deps import (
    PlayerIdentity,
    get_guesses,
    get_player,
    get_sessions,
)
from hideseek.errors import ForbiddenError, NotFoundError
from hideseek.guesses import GuessLedger
from hideseek.ranks import get_progression
from hideseek.schemas import ApiResponse, GameSession, GuessRecord
from hideseek.sessions import SessionRegistry

router = APIRouter()


# ---------------------------------------------------------------------------
# Request bodies (API-boundary types, local to this module)
# ---------------------------------------------------------------------------


class CreateGameRequest(BaseModel):
    """Request body for POST /games."""

    map_key: str
    hiding_spot: dict[str, Any]
    post_id: str | None = None
    post_url: str | None = None


class AttachPostRequest(BaseModel):
    """Request body for POST /games/{session_id}/post."""

    post_id: str


class GuessRequest(BaseModel):
    """Request body for POST /games/{session_id}/guesses."""

    object_key: str
    rel_x: float
    rel_y: float


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _require_session(sessions: SessionRegistry, session_id: str) -> GameSession:
    session = await sessions.get_session(session_id)
    if session is None:
        raise NotFoundError(f"Game session {session_id} not found.")
    return session


def _guess_message(guess: GuessRecord, session: GameSession) -> str:
    """Player-facing verdict for one guess."""
    hidden = session.hiding_spot.object_key
    if guess.is_correct:
        return f"Correct! You found the {hidden}!"
    if guess.object_key == hidden:
        return (
            "Right object, but not quite the right spot. "
            f"Distance: {round(guess.distance * 100)}%"
        )
    return f"Not quite! The hidden object is a {hidden}."


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/games")
async def create_game(
    body: CreateGameRequest,
    player: PlayerIdentity = Depends(get_player),
    sessions: SessionRegistry = Depends(get_sessions),
) -> dict:
    """Creates a session owned by the calling player."""
    session = await sessions.create_session(
        creator_id=player.player_id,
        map_key=body.map_key,
        hiding_spot=body.hiding_spot,
        post_id=body.post_id,
        post_url=body.post_url,
    )
    return ApiResponse(ok=True, data=session.model_dump()).model_dump()


@router.get("/games/{session_id}")
async def get_game(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> dict:
    session = await _require_session(sessions, session_id)
    return ApiResponse(ok=True, data=session.model_dump()).model_dump()


@router.delete("/games/{session_id}")
async def delete_game(
    session_id: str,
    player: PlayerIdentity = Depends(get_player),
    sessions: SessionRegistry = Depends(get_sessions),
) -> dict:
    """Tears down a session and everything keyed under it. Creator only."""
    session = await _require_session(sessions, session_id)
    if session.creator_id != player.player_id:
        raise ForbiddenError("Only the game creator can delete this game.")
    deleted = await sessions.delete_session(session_id)
    return ApiResponse(ok=True, data={"session_id": session_id, "keys_deleted": deleted}).model_dump()


@router.post("/games/{session_id}/post")
async def attach_post(
    session_id: str,
    body: AttachPostRequest,
    player: PlayerIdentity = Depends(get_player),
    sessions: SessionRegistry = Depends(get_sessions),
) -> dict:
    """Records the external post created for a session. Creator only."""
    session = await _require_session(sessions, session_id)
    if session.creator_id != player.player_id:
        raise ForbiddenError("Only the game creator can attach a post.")
    await sessions.attach_post(session_id, body.post_id)
    return ApiResponse(
        ok=True, data={"session_id": session_id, "post_id": body.post_id}
    ).model_dump()


@router.get("/posts/{post_id}/game")
async def get_game_by_post(
    post_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> dict:
    session = await sessions.get_session_by_post(post_id)
    if session is None:
        raise NotFoundError(f"No active game for post {post_id}.")
    return ApiResponse(ok=True, data=session.model_dump()).model_dump()


# ---------------------------------------------------------------------------
# Guesses
# ---------------------------------------------------------------------------


@router.post("/games/{session_id}/guesses")
async def submit_guess(
    session_id: str,
    body: GuessRequest,
    player: PlayerIdentity = Depends(get_player),
    sessions: SessionRegistry = Depends(get_sessions),
    guesses: GuessLedger = Depends(get_guesses),
) -> dict:
    """Scores a guess and reports the verdict plus rank movement.

    rank_update is null when profile bookkeeping failed; the guess itself
    is stored either way.
    """
    session = await _require_session(sessions, session_id)
    outcome = await guesses.submit_guess(
        session_id=session_id,
        guesser_id=player.player_id,
        username=player.username or "",
        object_key=body.object_key,
        rel_x=body.rel_x,
        rel_y=body.rel_y,
        hiding_spot=session.hiding_spot,
    )
    guess = outcome.guess

    data: dict[str, Any] = {
        "guess": guess.model_dump(),
        "is_correct": guess.is_correct,
        "distance": guess.distance,
        "message": _guess_message(guess, session),
        "rank_update": None,
        "progression": None,
    }
    if outcome.rank_update is not None:
        data["rank_update"] = outcome.rank_update.model_dump()
        data["progression"] = get_progression(outcome.rank_update.profile).model_dump()
    return ApiResponse(ok=True, data=data).model_dump()


@router.get("/games/{session_id}/guesses")
async def list_guesses(
    session_id: str,
    player: PlayerIdentity = Depends(get_player),
    sessions: SessionRegistry = Depends(get_sessions),
    guesses: GuessLedger = Depends(get_guesses),
) -> dict:
    """Every guess for a session, newest first, with statistics. Creator only."""
    session = await _require_session(sessions, session_id)
    if session.creator_id != player.player_id:
        raise ForbiddenError("Only the game creator can view guesses.")
    records = await guesses.get_guesses(session_id)
    stats = await guesses.get_statistics(session_id)
    return ApiResponse(
        ok=True,
        data={
            "guesses": [record.model_dump() for record in records],
            "statistics": stats.model_dump(),
        },
    ).model_dump()


@router.get("/games/{session_id}/leaderboard")
async def leaderboard(
    session_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    sessions: SessionRegistry = Depends(get_sessions),
    guesses: GuessLedger = Depends(get_guesses),
) -> dict:
    """Each guesser's latest guess: correct first (earliest), then closest."""
    await _require_session(sessions, session_id)
    entries = await guesses.get_leaderboard(session_id, limit=limit)
    return ApiResponse(
        ok=True,
        data={"session_id": session_id, "entries": [entry.model_dump() for entry in entries]},
    ).model_dump()


@router.get("/games/{session_id}/stats")
async def statistics(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
    guesses: GuessLedger = Depends(get_guesses),
) -> dict:
    await _require_session(sessions, session_id)
    stats = await guesses.get_statistics(session_id)
    return ApiResponse(ok=True, data=stats.model_dump()).model_dump()
