"""Configuration settings for fast42."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ApiSecret(BaseModel):
    """A 42 API application credential (uid/secret pair).

    Immutable once supplied. The order in which secrets are configured
    defines the rotation order used by the dispatcher.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(min_length=1, description="Application UID")
    client_secret: str = Field(min_length=1, description="Application secret")

    def __repr__(self) -> str:
        return f"ApiSecret(client_id={self.client_id!r})"

    __str__ = __repr__


class LimiterConfig(BaseModel):
    """Configuration for the per-credential limiters.

    Controls how discovered quotas are turned into limiter parameters
    and how long queued jobs may wait before being abandoned.
    """

    concurrent_offset: int = Field(
        default=0,
        ge=0,
        description="Subtracted from the per-second limit to get max concurrent jobs",
    )
    job_expiration_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Seconds a job may stay queued before it is dropped",
    )

    # Timing
    spacing_margin_ms: int = Field(
        default=25,
        ge=0,
        description="Added to 1000/secondly_limit between job starts (clock skew headroom)",
    )
    reservoir_refresh_interval_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Interval at which the hourly reservoir is refilled",
    )

    # Backend behavior
    backend_error_backoff_ms: int = Field(
        default=1000,
        ge=10,
        description="Wait before retrying admission after a backend error",
    )
    redis_poll_interval_ms: int = Field(
        default=50,
        ge=1,
        description="Re-check interval while all shared concurrency slots are taken",
    )

    # Pagination
    default_page_size: int = Field(
        default=100,
        ge=1,
        le=100,
        description="page[size] used when the caller does not pass one",
    )


class TokenConfig(BaseModel):
    """Configuration for bearer token caching."""

    expiry_margin_seconds: int = Field(
        default=20,
        ge=0,
        description="Refetch a token this many seconds before it expires",
    )


class RedisConfig(BaseModel):
    """Connection settings for the shared limiter store.

    When configured, all processes using the same credentials draw from
    one reservoir and one concurrency count per application.
    """

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, ge=1, le=65535, description="Redis port")
    password: str | None = Field(default=None, description="Optional Redis password")
    db: int = Field(default=0, ge=0, description="Redis database number")
    key_prefix: str = Field(default="fast42", description="Prefix for limiter keys")
    running_lease_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Seconds after which a slot held by a vanished process is reclaimed",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging behavior.

    Controls file logging, rotation, and output format.
    """

    log_file: str | None = Field(
        default=None,
        description="Optional path for file logging (enables rotation)",
    )
    rotation: str = Field(
        default="10 MB",
        description="When to rotate log file (e.g., '10 MB', '1 day')",
    )
    retention: str = Field(
        default="7 days",
        description="How long to keep rotated logs",
    )
    serialize: bool = Field(
        default=False,
        description="If True, output JSON format to file",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Variables use the ``FAST42_`` prefix, nested sections use ``__``
    (e.g. ``FAST42_LIMITER__CONCURRENT_OFFSET=1``). Secrets are given
    as a JSON list: ``FAST42_SECRETS='[{"client_id": "...", "client_secret": "..."}]'``.
    """

    model_config = SettingsConfigDict(
        env_prefix="FAST42_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------------------------------------------------------------
    # 42 API
    # --------------------------------------------------------------------------
    root_url: str = Field(
        default="https://api.intra.42.fr/v2",
        description="Base URL prepended to every endpoint",
    )
    token_url: str = Field(
        default="https://api.intra.42.fr/oauth/token",
        description="OAuth client-credentials token endpoint",
    )
    scope: str = Field(
        default="public",
        description="Space separated scopes requested with each token",
    )
    probe_endpoint: str = Field(
        default="/cursus",
        description="Cheap endpoint called once per key to read rate limit headers",
    )
    secrets: list[ApiSecret] = Field(
        default_factory=list,
        description="API keys, in rotation order",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single HTTP call",
    )

    # --------------------------------------------------------------------------
    # Application
    # --------------------------------------------------------------------------
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # --------------------------------------------------------------------------
    # Rate Limiting & Tokens
    # --------------------------------------------------------------------------
    limiter: LimiterConfig = Field(
        default_factory=LimiterConfig,
        description="Limiter configuration",
    )
    token: TokenConfig = Field(
        default_factory=TokenConfig,
        description="Token cache configuration",
    )
    redis: RedisConfig | None = Field(
        default=None,
        description="Shared limiter store (None = single-process limiting)",
    )

    # --------------------------------------------------------------------------
    # Logging Configuration
    # --------------------------------------------------------------------------
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration (file output, rotation)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
