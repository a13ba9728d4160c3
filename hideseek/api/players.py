"""Player API routes — own profile, rank progression, and tier table.

Profiles are created lazily on a player's first guess. GET /players/me for
a player who has never guessed returns a fresh, unsaved profile.

Tier 4 route module: imports from deps, ranks, schemas.
"""

from fastapi import APIRouter, Depends

from hideseek.api.deps import PlayerIdentity, get_player, get_ranks
from hideseek.errors import NotFoundError
from hideseek.ranks import RankEngine, get_progression
from hideseek.schemas import ApiResponse

router = APIRouter()


@router.get("/players/me")
async def my_profile(
    player: PlayerIdentity = Depends(get_player),
    ranks: RankEngine = Depends(get_ranks),
) -> dict:
    """The caller's profile and progression toward the next tier."""
    profile = await ranks.get_profile(player.player_id)
    is_new = profile is None
    if profile is None:
        profile = ranks.new_profile(player.player_id, player.username)
    return ApiResponse(
        ok=True,
        data={
            "profile": profile.model_dump(),
            "progression": get_progression(profile).model_dump(),
            "is_new": is_new,
        },
    ).model_dump()


@router.post("/players/me/recalculate")
async def recalculate_my_profile(
    player: PlayerIdentity = Depends(get_player),
    ranks: RankEngine = Depends(get_ranks),
) -> dict:
    """Repairs the caller's success rate and re-applies promotion."""
    profile = await ranks.recalculate(player.player_id)
    if profile is None:
        raise NotFoundError("No profile yet. Make a guess first.")
    return ApiResponse(
        ok=True,
        data={
            "profile": profile.model_dump(),
            "progression": get_progression(profile).model_dump(),
        },
    ).model_dump()


@router.get("/players/{player_id}/progression")
async def player_progression(
    player_id: str,
    ranks: RankEngine = Depends(get_ranks),
) -> dict:
    progression = await ranks.get_player_progression(player_id)
    return ApiResponse(ok=True, data=progression.model_dump()).model_dump()


@router.get("/ranks")
async def rank_requirements(ranks: RankEngine = Depends(get_ranks)) -> dict:
    """Every tier with its thresholds, lowest first."""
    tiers = [tier.model_dump() for tier in ranks.get_rank_requirements()]
    return ApiResponse(ok=True, data={"ranks": tiers}).model_dump()
