"""Settings for the Hide & Seek data service, read from the environment.

Values come from os.environ, with a project-root .env (python-dotenv) filling
gaps; variables already set in the process always win.

The data TTL is not a setting: every record expires after the fixed
window in hideseek.store (DATA_TTL_SECONDS), never per deployment.

Usage:
    from hideseek.config import get_settings
    settings = get_settings()
    print(settings.store_backend)  # "memory"
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Only load .env from the project root, don't traverse parent directories.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DOTENV_PATH = PROJECT_ROOT / ".env"

STORE_BACKENDS = ("memory", "redis")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class Settings:
    """Typed configuration for the Hide & Seek data service.

    Defaults run a single memory-backed process for local play.
    """

    # App
    app_env: str
    app_port: int
    log_level: str
    cors_origins: list[str]

    # Storage
    store_backend: str
    redis_url: str

    # Gameplay
    guess_rate_limit_ms: int
    rank_allow_tier_skip: bool

    # Cleanup
    cleanup_enabled: bool
    cleanup_interval_hours: float
    cleanup_batch_size: int
    cleanup_retry_attempts: int
    cleanup_retry_delay_seconds: float
    cleanup_history_size: int


def _resolve_choice(env_var: str, value: str, choices: tuple[str, ...]) -> str:
    """Validates an enumerated setting.

    Args:
        env_var: Name of the environment variable (for error messages).
        value: The raw value from the environment.
        choices: Accepted values (case-sensitive).

    Returns:
        The value, unchanged.

    Raises:
        ValueError: If the value is not one of the choices.
    """
    if value in choices:
        return value
    valid = ", ".join(choices)
    raise ValueError(
        f"Invalid value for {env_var}: {value!r}. "
        f"Valid options: {valid}"
    )


def _parse_int(env_var: str, default: str) -> int:
    raw = os.environ.get(env_var, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {env_var}: {raw!r}. Expected an integer.") from None


def _parse_float(env_var: str, default: str) -> float:
    raw = os.environ.get(env_var, default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {env_var}: {raw!r}. Expected a number.") from None


def _parse_bool(env_var: str, default: str) -> bool:
    raw = os.environ.get(env_var, default).strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid value for {env_var}: {raw!r}. Expected true or false.")


def _split_csv(value: str) -> list[str]:
    """'a, b,,c' -> ['a', 'b', 'c']"""
    return [item.strip() for item in value.split(",") if item.strip()]


def _load_settings() -> Settings:
    """Reads every setting, validating as it goes.

    Returns:
        Settings with no unresolved values.
    """
    load_dotenv(_DOTENV_PATH)

    return Settings(
        # App
        app_env=os.environ.get("APP_ENV", "development"),
        app_port=_parse_int("APP_PORT", "8000"),
        log_level=os.environ.get("LOG_LEVEL", "info"),
        cors_origins=_split_csv(
            os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")
        ),
        # Storage
        store_backend=_resolve_choice(
            "STORE_BACKEND",
            os.environ.get("STORE_BACKEND", "memory"),
            STORE_BACKENDS,
        ),
        redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
        # Gameplay
        guess_rate_limit_ms=_parse_int("GUESS_RATE_LIMIT_MS", "2000"),
        rank_allow_tier_skip=_parse_bool("RANK_ALLOW_TIER_SKIP", "false"),
        # Cleanup
        cleanup_enabled=_parse_bool("CLEANUP_ENABLED", "true"),
        cleanup_interval_hours=_parse_float("CLEANUP_INTERVAL_HOURS", "24"),
        cleanup_batch_size=_parse_int("CLEANUP_BATCH_SIZE", "100"),
        cleanup_retry_attempts=_parse_int("CLEANUP_RETRY_ATTEMPTS", "3"),
        cleanup_retry_delay_seconds=_parse_float("CLEANUP_RETRY_DELAY_SECONDS", "60"),
        cleanup_history_size=_parse_int("CLEANUP_HISTORY_SIZE", "100"),
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Process-wide Settings, resolved on first use."""
    global _settings
    if _settings is None:
        _settings = _load_settings()
    return _settings
