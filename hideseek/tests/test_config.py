"""Tests for hideseek.config — Typed configuration from environment."""

import pytest

import hideseek.config as config_module
from hideseek.config import Settings, get_settings


@pytest.fixture(autouse=True)
def _reset_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Resets the cached singleton before each test and keeps .env out of it."""
    monkeypatch.setattr(config_module, "_settings", None)
    monkeypatch.setattr(config_module, "load_dotenv", lambda *args, **kwargs: False)


@pytest.fixture()
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Removes all Hide & Seek env vars so defaults are tested cleanly."""
    env_vars = [
        "APP_ENV", "APP_PORT", "LOG_LEVEL", "CORS_ORIGINS",
        "STORE_BACKEND", "REDIS_URL",
        "GUESS_RATE_LIMIT_MS", "RANK_ALLOW_TIER_SKIP",
        "CLEANUP_ENABLED", "CLEANUP_INTERVAL_HOURS", "CLEANUP_BATCH_SIZE",
        "CLEANUP_RETRY_ATTEMPTS", "CLEANUP_RETRY_DELAY_SECONDS", "CLEANUP_HISTORY_SIZE",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)


class TestDefaults:
    """Settings defaults when no env vars are set."""

    @pytest.mark.usefixtures("_clean_env")
    def test_app_defaults(self) -> None:
        s = get_settings()
        assert s.app_env == "development"
        assert s.app_port == 8000
        assert s.log_level == "info"

    @pytest.mark.usefixtures("_clean_env")
    def test_cors_origins_default(self) -> None:
        s = get_settings()
        assert s.cors_origins == ["http://localhost:3000", "http://localhost:5173"]

    @pytest.mark.usefixtures("_clean_env")
    def test_storage_defaults(self) -> None:
        s = get_settings()
        assert s.store_backend == "memory"
        assert s.redis_url == "redis://localhost:6379/0"

    @pytest.mark.usefixtures("_clean_env")
    def test_gameplay_defaults(self) -> None:
        s = get_settings()
        assert s.guess_rate_limit_ms == 2000
        assert s.rank_allow_tier_skip is False

    @pytest.mark.usefixtures("_clean_env")
    def test_cleanup_defaults(self) -> None:
        s = get_settings()
        assert s.cleanup_enabled is True
        assert s.cleanup_interval_hours == 24.0
        assert s.cleanup_batch_size == 100
        assert s.cleanup_retry_attempts == 3
        assert s.cleanup_retry_delay_seconds == 60.0
        assert s.cleanup_history_size == 100


class TestOverrides:
    """Env vars override defaults."""

    def test_store_backend_redis(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STORE_BACKEND", "redis")
        monkeypatch.setenv("REDIS_URL", "redis://cache:6380/2")
        s = get_settings()
        assert s.store_backend == "redis"
        assert s.redis_url == "redis://cache:6380/2"

    def test_numeric_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("APP_PORT", "9000")
        monkeypatch.setenv("GUESS_RATE_LIMIT_MS", "500")
        monkeypatch.setenv("CLEANUP_INTERVAL_HOURS", "0.5")
        s = get_settings()
        assert s.app_port == 9000
        assert s.guess_rate_limit_ms == 500
        assert s.cleanup_interval_hours == 0.5

    def test_cors_origins_split_and_stripped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CORS_ORIGINS", " https://a.example , ,https://b.example ")
        assert get_settings().cors_origins == ["https://a.example", "https://b.example"]

    @pytest.mark.parametrize("raw", ["1", "true", "YES", "On"])
    def test_truthy_booleans(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        monkeypatch.setenv("RANK_ALLOW_TIER_SKIP", raw)
        assert get_settings().rank_allow_tier_skip is True

    @pytest.mark.parametrize("raw", ["0", "false", "No", "off", ""])
    def test_falsy_booleans(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        monkeypatch.setenv("CLEANUP_ENABLED", raw)
        assert get_settings().cleanup_enabled is False


class TestInvalidValues:
    """Bad env values fail loudly at load time."""

    def test_unknown_store_backend(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STORE_BACKEND", "postgres")
        with pytest.raises(ValueError, match="Valid options: memory, redis"):
            get_settings()

    def test_store_backend_is_case_sensitive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STORE_BACKEND", "Redis")
        with pytest.raises(ValueError, match="STORE_BACKEND"):
            get_settings()

    def test_non_integer(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CLEANUP_BATCH_SIZE", "lots")
        with pytest.raises(ValueError, match="CLEANUP_BATCH_SIZE"):
            get_settings()

    def test_non_number(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CLEANUP_RETRY_DELAY_SECONDS", "soon")
        with pytest.raises(ValueError, match="CLEANUP_RETRY_DELAY_SECONDS"):
            get_settings()

    def test_non_boolean(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RANK_ALLOW_TIER_SKIP", "maybe")
        with pytest.raises(ValueError, match="RANK_ALLOW_TIER_SKIP"):
            get_settings()


class TestSingleton:
    """get_settings caches its result."""

    def test_same_instance(self) -> None:
        assert get_settings() is get_settings()

    def test_frozen(self) -> None:
        s = get_settings()
        assert isinstance(s, Settings)
        with pytest.raises(AttributeError):
            s.app_port = 1  # type: ignore[misc]
