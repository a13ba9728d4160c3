"""Core data models — shared Pydantic types for the Hide & Seek data core.

Every stored record, rank report, cleanup report, and API response flows
through these types. Field constraints here are the single definition of
a well-formed record: SchemaStore re-validates against them before every
write, and API request bodies reuse them.

Timestamps are integer epoch milliseconds (they double as sorted-set
scores and key suffixes).

This is a Tier 1 leaf module: it imports only from pydantic and the stdlib.

Usage:
    from hideseek.schemas import GameSession, GuessRecord, PlayerProfile
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

IDENTIFIER_PATTERN = r"^[A-Za-z0-9_-]+$"
MAX_ID_LENGTH = 100
MAX_KEY_LENGTH = 50
MAX_USERNAME_LENGTH = 50
MAX_URL_LENGTH = 500

PlayerRank = Literal["Tyapu", "GuessMaster", "Detective", "FBI"]

# Reusable constrained field factories, one definition per rule.


def _id_field(**kwargs: Any) -> Any:
    return Field(min_length=1, max_length=MAX_ID_LENGTH, pattern=IDENTIFIER_PATTERN, **kwargs)


def _key_field(**kwargs: Any) -> Any:
    return Field(min_length=1, max_length=MAX_KEY_LENGTH, pattern=IDENTIFIER_PATTERN, **kwargs)


def _coordinate_field() -> Any:
    return Field(ge=0.0, le=1.0, allow_inf_nan=False)


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------


class HidingSpot(BaseModel):
    """Where the creator hid the object, in normalized map coordinates."""

    model_config = ConfigDict(frozen=True)

    object_key: str = _key_field()
    rel_x: float = _coordinate_field()
    rel_y: float = _coordinate_field()


class GameSession(BaseModel):
    """One hide-and-seek challenge.

    Frozen: the hiding spot is fixed at creation and the record is
    read-only until it expires.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str = _id_field()
    creator_id: str = _id_field()
    map_key: str = _key_field()
    hiding_spot: HidingSpot
    created_at: int = Field(gt=0)
    post_id: str | None = _id_field(default=None)
    post_url: str | None = Field(default=None, min_length=1, max_length=MAX_URL_LENGTH)


class PostMapping(BaseModel):
    """Secondary index entry: external post id → session id."""

    model_config = ConfigDict(frozen=True)

    post_id: str = _id_field()
    session_id: str = _id_field()


class GuessRecord(BaseModel):
    """One guess submission. Immutable once written."""

    model_config = ConfigDict(frozen=True)

    session_id: str = _id_field()
    guesser_id: str = _id_field()
    username: str = Field(min_length=1, max_length=MAX_USERNAME_LENGTH)
    object_key: str = _key_field()
    rel_x: float = _coordinate_field()
    rel_y: float = _coordinate_field()
    timestamp: int = Field(gt=0)
    is_correct: bool
    distance: float = Field(ge=0.0, allow_inf_nan=False)


class GuessStatistics(BaseModel):
    """Cached aggregate over a session's guess log. Always reconstructible."""

    model_config = ConfigDict(frozen=True)

    total_guesses: int = Field(default=0, ge=0)
    correct_guesses: int = Field(default=0, ge=0)
    unique_guessers: int = Field(default=0, ge=0)
    average_distance: float = Field(default=0.0, ge=0.0, allow_inf_nan=False)

    @model_validator(mode="after")
    def _correct_within_total(self) -> "GuessStatistics":
        if self.correct_guesses > self.total_guesses:
            raise ValueError("correct_guesses cannot exceed total_guesses")
        return self


class PlayerProfile(BaseModel):
    """Cross-session player state.

    Mutable: RankEngine updates counters, success rate, and rank after
    every guess.
    """

    player_id: str = _id_field()
    username: str = Field(min_length=1, max_length=MAX_USERNAME_LENGTH)
    rank: PlayerRank = "Tyapu"
    total_guesses: int = Field(default=0, ge=0)
    successful_guesses: int = Field(default=0, ge=0)
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    joined_at: int = Field(gt=0)
    last_active: int = Field(gt=0)

    @model_validator(mode="after")
    def _successes_within_total(self) -> "PlayerProfile":
        if self.successful_guesses > self.total_guesses:
            raise ValueError("successful_guesses cannot exceed total_guesses")
        return self


# ---------------------------------------------------------------------------
# Rank reports
# ---------------------------------------------------------------------------


class RankRequirements(BaseModel):
    """Thresholds a player must meet to hold a tier."""

    model_config = ConfigDict(frozen=True)

    rank: PlayerRank
    min_success_rate: float
    min_total_finds: int
    description: str


class RankProgression(BaseModel):
    """Where a player stands relative to the next tier."""

    model_config = ConfigDict(frozen=True)

    current_rank: PlayerRank
    next_rank: PlayerRank | None = None
    progress_to_next: float
    requirements_for_next: RankRequirements | None = None


class RankUpdate(BaseModel):
    """Result of RankEngine.update_after_guess."""

    model_config = ConfigDict(frozen=True)

    previous_rank: PlayerRank
    new_rank: PlayerRank
    rank_changed: bool
    progress_percentage: int
    profile: PlayerProfile


# ---------------------------------------------------------------------------
# Cleanup reports
# ---------------------------------------------------------------------------


class CleanupRun(BaseModel):
    """One cleanup pass, as kept in the sweeper's history."""

    model_config = ConfigDict(frozen=True)

    started_at: datetime
    duration_ms: float
    keys_scanned: int = 0
    keys_deleted: int = 0
    keys_repaired: int = 0
    failed_batches: int = 0
    succeeded: bool
    forced: bool = False
    error: str | None = None


class CleanupStatistics(BaseModel):
    """Aggregates over the sweeper's retained history."""

    model_config = ConfigDict(frozen=True)

    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    success_rate: float = 0.0
    total_keys_deleted: int = 0
    average_duration_ms: float = 0.0


class CleanupStatus(BaseModel):
    """Snapshot returned by ExpirationSweeper.status()."""

    model_config = ConfigDict(frozen=True)

    running: bool
    in_flight: bool
    interval_hours: float | None = None
    health: Literal["healthy", "warning", "error"]
    statistics: CleanupStatistics
    last_run: CleanupRun | None = None
    next_run_estimate: datetime | None = None


class StorageHealth(BaseModel):
    """Result of ExpirationSweeper.health_check()."""

    model_config = ConfigDict(frozen=True)

    status: Literal["healthy", "warning", "error"]
    connectivity: bool
    response_time_ms: float
    sampled_keys: int = 0
    keys_without_ttl: int = 0
    expiration_compliance: bool
    recommendations: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# API envelope
# ---------------------------------------------------------------------------


class ApiError(BaseModel):
    """Error detail inside ApiResponse.error.

    code is an uppercase string like "VALIDATION_ERROR", "RATE_LIMITED",
    "STORAGE_ERROR". Not an enum — codes grow with the API.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str


class ApiResponse(BaseModel):
    """Universal response envelope — every API endpoint returns this shape."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    data: Any | None = None
    error: ApiError | None = None
