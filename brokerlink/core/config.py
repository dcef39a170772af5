"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the operator scripts and
the tests share one configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class BrokerSettings(BaseSettings):
    """Upstream brokerage OAuth and resource API configuration."""

    model_config = SettingsConfigDict(populate_by_name=True)

    auth_url: str = Field(
        "https://login.questrade.com",
        validation_alias="BROKER_AUTH_URL",
        description="Base URL of the OAuth login server.",
    )
    request_timeout_seconds: float = Field(15.0, validation_alias="BROKER_REQUEST_TIMEOUT")
    oauth_timeout_seconds: float = Field(15.0, validation_alias="BROKER_OAUTH_TIMEOUT")
    refresh_token_ttl_days: int = Field(7, validation_alias="REFRESH_TOKEN_TTL_DAYS")
    min_refresh_token_length: int = Field(
        20,
        validation_alias="MIN_REFRESH_TOKEN_LENGTH",
        description="Refresh tokens shorter than this are rejected before any upstream call.",
    )

    @field_validator("auth_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")


class RateLimitSettings(BaseSettings):
    """Process-wide upstream request budget."""

    model_config = SettingsConfigDict(populate_by_name=True)

    max_per_second: int = Field(20, validation_alias="RATE_LIMIT_PER_SECOND", gt=0)
    max_concurrent: int = Field(5, validation_alias="RATE_LIMIT_MAX_CONCURRENT", gt=0)


class MarketSettings(BaseSettings):
    """Quote read path configuration."""

    model_config = SettingsConfigDict(populate_by_name=True)

    quote_cache_ttl_seconds: float = Field(
        10.0,
        validation_alias="QUOTE_CACHE_TTL",
        description="Age after which a cached quote is refetched.",
    )


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(populate_by_name=True)

    token_encryption_secret: str = Field(
        ...,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description="Secret used to derive the symmetric key for encrypting stored tokens.",
    )
    previous_encryption_secrets: Annotated[tuple[str, ...], NoDecode] = Field(
        (),
        validation_alias="TOKEN_ENCRYPTION_PREVIOUS_SECRETS",
        description="Retired secrets still accepted for decryption during key rotation.",
    )
    internal_api_key: Optional[str] = Field(
        None,
        validation_alias="INTERNAL_API_KEY",
        description="When set, auth routes require a matching x-api-key header.",
    )

    @field_validator("previous_encryption_secrets", mode="before")
    @classmethod
    def _split_secrets(
        cls, value: str | tuple[str, ...] | list[str] | None
    ) -> tuple[str, ...]:
        """Support providing previous secrets as a comma-separated string."""
        if value is None:
            return ()
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(secret.strip() for secret in value.split(",") if secret.strip())


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    database_path: str = Field("data/brokerlink.db", validation_alias="DATABASE_PATH")
    broker: BrokerSettings = Field(default_factory=BrokerSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    market: MarketSettings = Field(default_factory=MarketSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "BrokerSettings",
    "MarketSettings",
    "RateLimitSettings",
    "SecuritySettings",
    "get_settings",
]
