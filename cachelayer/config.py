"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (or a .env file in dev).
This is the single source of truth for configuration - nothing is hardcoded
elsewhere.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class StoreErrorPolicy(StrEnum):
    """What the rate limiter does when the backing store fails."""

    ALLOW = "allow"  # fail-open
    DENY = "deny"  # fail-closed


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False

    # ------------------------------------------------------------------ #
    # Cache store
    # ------------------------------------------------------------------ #
    redis_url: str | None = Field(
        default=None,
        description=(
            "Redis connection URL for caching and rate limiting. When unset, "
            "an in-process store is used outside production; production "
            "refuses to start without it."
        ),
    )
    cache_default_ttl_seconds: int = Field(
        default=60,
        ge=1,
        description="TTL applied when a caller does not pass one",
    )
    cache_compute_timeout_seconds: float | None = Field(
        default=30.0,
        gt=0,
        description="Upper bound on a cache-miss computation. None disables the bound.",
    )
    cache_coalesce_misses: bool = Field(
        default=True,
        description="Share one in-flight computation between concurrent misses on the same key",
    )

    # ------------------------------------------------------------------ #
    # Rate Limiting
    # ------------------------------------------------------------------ #
    rate_limit_max: int = Field(
        default=100,
        ge=1,
        description="Default max requests per client per window",
    )
    rate_limit_window_ms: int = Field(
        default=60_000,
        ge=1,
        description="Default rate limit window length in milliseconds",
    )
    rate_limit_on_store_error: StoreErrorPolicy = Field(
        default=StoreErrorPolicy.ALLOW,
        description="Allow (fail-open) or deny (fail-closed) requests when the store errors",
    )
    rate_limit_reject_unidentified: bool = Field(
        default=False,
        description=(
            "Reject requests whose client IP cannot be determined instead of "
            "counting them against the shared 'unknown' bucket"
        ),
    )
    trust_proxy_headers: bool = Field(
        default=True,
        description="Derive the client IP from X-Forwarded-For / X-Real-IP",
    )

    # ------------------------------------------------------------------ #
    # Admin auth
    # ------------------------------------------------------------------ #
    auth_jwt_secret: SecretStr = Field(
        default=SecretStr("dev-only-jwt-secret-not-for-production"),
        description="HS256 secret used to validate admin bearer tokens",
    )
    auth_audience: str = Field(
        default="cachelayer-admin",
        description="Expected 'aud' claim in admin bearer tokens",
    )

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @model_validator(mode="after")
    def _validate_production_secrets(self) -> Settings:
        """Refuse to start in production with the default JWT secret."""
        if self.environment != Environment.PROD:
            return self

        _insecure_tokens: set[str] = {
            "changeme",
            "secret",
            "default",
            "password",
            "test",
            "dev-only-jwt-secret-not-for-production",
        }

        secret = self.auth_jwt_secret.get_secret_value().lower()
        if any(token in secret for token in _insecure_tokens):
            raise RuntimeError(
                "PRODUCTION STARTUP BLOCKED -- AUTH_JWT_SECRET contains an insecure "
                "default value. Set a strong, random secret for production."
            )

        return self

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton.

    Use FastAPI dependency injection via Depends(get_settings) in endpoints,
    or call directly in non-request contexts (startup, scripts).
    """
    return Settings()
