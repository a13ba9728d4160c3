"""Rank engine — player profiles and tier promotion.

Tiers are totally ordered, each gated by a minimum success rate and a
minimum number of successful finds. After every guess the engine bumps
the player's counters and re-derives their tier:

- a player is never demoted;
- by default a recalculation promotes at most one tier, even when the
  totals already qualify for a higher one (the next guess climbs again);
- with allow_tier_skip=True the player jumps straight to the highest
  qualifying tier.

Profile writes are last-writer-wins: two concurrent guesses by the same
player can race on the read-modify-write and one increment may be lost.

Tier 2 service module: imports from store (Tier 2), schemas (Tier 1).

Usage:
    from hideseek.ranks import RankEngine

    engine = RankEngine(store)
    update = await engine.update_after_guess("t2_abc", success=True)
    if update.rank_changed:
        print(update.new_rank)
"""

from __future__ import annotations

import logging
import time

from hideseek.schemas import (
    PlayerProfile,
    PlayerRank,
    RankProgression,
    RankRequirements,
    RankUpdate,
)
from hideseek.store import RecordKind, SchemaStore

logger = logging.getLogger("hideseek.ranks")

TIERS: tuple[RankRequirements, ...] = (
    RankRequirements(
        rank="Tyapu",
        min_success_rate=0.0,
        min_total_finds=0,
        description="Starting rank for new players",
    ),
    RankRequirements(
        rank="GuessMaster",
        min_success_rate=0.3,
        min_total_finds=5,
        description="Achieved after 5 successful finds with 30% success rate",
    ),
    RankRequirements(
        rank="Detective",
        min_success_rate=0.6,
        min_total_finds=15,
        description="Achieved after 15 successful finds with 60% success rate",
    ),
    RankRequirements(
        rank="FBI",
        min_success_rate=0.8,
        min_total_finds=50,
        description="Elite rank requiring 50 successful finds with 80% success rate",
    ),
)

RANK_ORDER: tuple[PlayerRank, ...] = tuple(tier.rank for tier in TIERS)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _tier_index(rank: PlayerRank) -> int:
    return RANK_ORDER.index(rank)


def _meets(profile: PlayerProfile, tier: RankRequirements) -> bool:
    return (
        profile.successful_guesses >= tier.min_total_finds
        and profile.success_rate >= tier.min_success_rate
    )


def calculate_rank(profile: PlayerProfile) -> PlayerRank:
    """Returns the highest tier the profile's current totals qualify for."""
    for tier in reversed(TIERS):
        if _meets(profile, tier):
            return tier.rank
    return TIERS[0].rank


def get_progression(profile: PlayerProfile) -> RankProgression:
    """Describes progress from the profile's current tier to the next.

    Progress is the smaller of the success-rate ratio and the finds ratio
    toward the next tier, each capped at 1. At the top tier progress is 1
    and there is no next rank. Pure: never writes.
    """
    index = _tier_index(profile.rank)
    if index == len(TIERS) - 1:
        return RankProgression(current_rank=profile.rank, progress_to_next=1.0)

    target = TIERS[index + 1]
    rate_progress = (
        min(1.0, profile.success_rate / target.min_success_rate)
        if target.min_success_rate > 0
        else 1.0
    )
    finds_progress = (
        min(1.0, profile.successful_guesses / target.min_total_finds)
        if target.min_total_finds > 0
        else 1.0
    )
    return RankProgression(
        current_rank=profile.rank,
        next_rank=target.rank,
        progress_to_next=min(rate_progress, finds_progress),
        requirements_for_next=target,
    )


class RankEngine:
    """Maintains player profiles and applies the promotion policy.

    Args:
        store: Schema store holding player:{id} records.
        allow_tier_skip: Promote straight to the highest qualifying tier
            instead of one tier per recalculation.
    """

    def __init__(self, store: SchemaStore, allow_tier_skip: bool = False) -> None:
        self._store = store
        self._allow_tier_skip = allow_tier_skip

    def _promoted_rank(self, profile: PlayerProfile) -> PlayerRank:
        current = _tier_index(profile.rank)
        qualified = _tier_index(calculate_rank(profile))
        if qualified <= current:
            return profile.rank
        if self._allow_tier_skip:
            return RANK_ORDER[qualified]
        return RANK_ORDER[current + 1]

    async def get_profile(self, player_id: str) -> PlayerProfile | None:
        return await self._store.get(RecordKind.PLAYER, player_id)

    async def get_or_create_profile(
        self, player_id: str, username: str | None = None
    ) -> PlayerProfile:
        """Loads a profile, creating and persisting a fresh one if absent."""
        profile = await self.get_profile(player_id)
        if profile is not None:
            return profile
        profile = self.new_profile(player_id, username)
        await self._store.put(RecordKind.PLAYER, player_id, profile)
        logger.info("Created profile for player %s", player_id)
        return profile

    @staticmethod
    def new_profile(player_id: str, username: str | None = None) -> PlayerProfile:
        now = _now_ms()
        return PlayerProfile(
            player_id=player_id,
            username=username or f"Player_{player_id[-6:]}",
            joined_at=now,
            last_active=now,
        )

    async def update_after_guess(
        self, player_id: str, success: bool, username: str | None = None
    ) -> RankUpdate:
        """Records one guess outcome against a player's profile.

        Loads or creates the profile, bumps totals, recomputes the success
        rate and tier, and persists it.

        Args:
            player_id: The guesser.
            success: Whether the guess was correct.
            username: Display name; refreshes the stored one when given.

        Returns:
            RankUpdate describing the previous and new tier and the
            progress percentage toward the next tier.
        """
        profile = await self.get_profile(player_id)
        if profile is None:
            profile = self.new_profile(player_id, username)
        elif username:
            profile.username = username

        previous_rank = profile.rank
        profile.total_guesses += 1
        if success:
            profile.successful_guesses += 1
        profile.success_rate = profile.successful_guesses / profile.total_guesses
        profile.last_active = _now_ms()
        profile.rank = self._promoted_rank(profile)

        await self._store.put(RecordKind.PLAYER, player_id, profile)

        if profile.rank != previous_rank:
            logger.info(
                "Player %s promoted %s -> %s", player_id, previous_rank, profile.rank
            )

        progression = get_progression(profile)
        return RankUpdate(
            previous_rank=previous_rank,
            new_rank=profile.rank,
            rank_changed=profile.rank != previous_rank,
            progress_percentage=round(progression.progress_to_next * 100),
            profile=profile,
        )

    async def get_player_progression(self, player_id: str) -> RankProgression:
        """Progression for a player; an unknown player gets a fresh profile's (not stored)."""
        profile = await self.get_profile(player_id)
        if profile is None:
            profile = self.new_profile(player_id)
        return get_progression(profile)

    async def recalculate(self, player_id: str) -> PlayerProfile | None:
        """Repairs a stored profile's success rate and re-applies promotion.

        Returns None for an unknown player. Never demotes.
        """
        profile = await self.get_profile(player_id)
        if profile is None:
            return None
        profile.success_rate = (
            profile.successful_guesses / profile.total_guesses
            if profile.total_guesses
            else 0.0
        )
        profile.rank = self._promoted_rank(profile)
        await self._store.put(RecordKind.PLAYER, player_id, profile)
        return profile

    @staticmethod
    def get_rank_requirements() -> list[RankRequirements]:
        return list(TIERS)
