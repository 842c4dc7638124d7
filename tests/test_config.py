"""Tests for configuration settings."""

import pytest
from pydantic import ValidationError

from fast42.config import (
    ApiSecret,
    LimiterConfig,
    RedisConfig,
    Settings,
    TokenConfig,
    get_settings,
)


class TestApiSecret:
    """Tests for the credential model."""

    def test_repr_hides_secret(self):
        secret = ApiSecret(client_id="u-abc", client_secret="s-very-secret")

        assert "u-abc" in repr(secret)
        assert "s-very-secret" not in repr(secret)
        assert "s-very-secret" not in str(secret)

    def test_frozen(self):
        secret = ApiSecret(client_id="u-abc", client_secret="s-1")

        with pytest.raises(ValidationError):
            secret.client_id = "other"  # type: ignore[misc]

    @pytest.mark.parametrize("field", ["client_id", "client_secret"])
    def test_empty_values_rejected(self, field):
        values = {"client_id": "u", "client_secret": "s", field: ""}

        with pytest.raises(ValidationError):
            ApiSecret(**values)


class TestSettings:
    """Tests for Settings class."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.root_url == "https://api.intra.42.fr/v2"
        assert settings.token_url == "https://api.intra.42.fr/oauth/token"
        assert settings.scope == "public"
        assert settings.probe_endpoint == "/cursus"
        assert settings.secrets == []
        assert settings.redis is None
        assert settings.log_level == "INFO"

    def test_limiter_defaults(self):
        limiter = Settings(_env_file=None).limiter

        assert limiter.concurrent_offset == 0
        assert limiter.job_expiration_seconds == 20.0
        assert limiter.spacing_margin_ms == 25
        assert limiter.reservoir_refresh_interval_seconds == 3600.0
        assert limiter.default_page_size == 100

    def test_token_defaults(self):
        assert Settings(_env_file=None).token.expiry_margin_seconds == 20

    def test_secrets_from_env(self, monkeypatch):
        monkeypatch.setenv(
            "FAST42_SECRETS",
            '[{"client_id": "u-1", "client_secret": "s-1"}, {"client_id": "u-2", "client_secret": "s-2"}]',
        )

        settings = Settings(_env_file=None)

        assert [s.client_id for s in settings.secrets] == ["u-1", "u-2"]
        assert settings.secrets[1].client_secret == "s-2"

    def test_nested_sections_from_env(self, monkeypatch):
        monkeypatch.setenv("FAST42_LIMITER__CONCURRENT_OFFSET", "2")
        monkeypatch.setenv("FAST42_TOKEN__EXPIRY_MARGIN_SECONDS", "30")
        monkeypatch.setenv("FAST42_REDIS__HOST", "cache.internal")
        monkeypatch.setenv("FAST42_REDIS__PORT", "6380")

        settings = Settings(_env_file=None)

        assert settings.limiter.concurrent_offset == 2
        assert settings.token.expiry_margin_seconds == 30
        assert settings.redis is not None
        assert settings.redis.host == "cache.internal"
        assert settings.redis.port == 6380
        assert settings.redis.key_prefix == "fast42"

    def test_env_prefix_required(self, monkeypatch):
        monkeypatch.setenv("ROOT_URL", "https://example.invalid")

        assert Settings(_env_file=None).root_url == "https://api.intra.42.fr/v2"

    def test_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("fast42_log_level", "DEBUG")

        assert Settings(_env_file=None).log_level == "DEBUG"

    def test_log_level_validation(self, monkeypatch):
        monkeypatch.setenv("FAST42_LOG_LEVEL", "INVALID")

        with pytest.raises(ValueError):
            Settings(_env_file=None)


class TestSections:
    """Validation of nested configuration models."""

    def test_negative_concurrent_offset_rejected(self):
        with pytest.raises(ValidationError):
            LimiterConfig(concurrent_offset=-1)

    def test_zero_expiration_rejected(self):
        with pytest.raises(ValidationError):
            LimiterConfig(job_expiration_seconds=0)

    @pytest.mark.parametrize("size", [0, 101])
    def test_page_size_bounds(self, size):
        with pytest.raises(ValidationError):
            LimiterConfig(default_page_size=size)

    def test_negative_token_margin_rejected(self):
        with pytest.raises(ValidationError):
            TokenConfig(expiry_margin_seconds=-1)

    def test_redis_port_range(self):
        with pytest.raises(ValidationError):
            RedisConfig(port=70000)


class TestGetSettings:
    """Tests for get_settings function."""

    def test_returns_settings(self):
        get_settings.cache_clear()

        assert isinstance(get_settings(), Settings)

    def test_cached(self):
        get_settings.cache_clear()

        assert get_settings() is get_settings()
