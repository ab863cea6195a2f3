"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
fan-out engine, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

DEFAULT_TRENDING_EXCLUDED_TOKENS = (
    "near",
    "wrap.near",
    "usdt.tether-token.near",
    "17208628f84f5d6ad33f0da3bbbeb27ffcb398eac501a31bd6ad2011e36133a1",
    "a0b86991c6218b36c1d19d4a2e9eb0ce3606eb48.factory.bridge.near",
    "dac17f958d2ee523a2206206994597c13d831ec7.factory.bridge.near",
    "meta-pool.near",
    "linear-protocol.near",
)


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="Subscriber store connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string (rate limits, view cache)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith("redis://"):
            raise ValueError("REDIS_URL must start with redis://")
        return v


class BotSettings(BaseSettings):
    """Telegram bot identities served by this process."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    tokens: SecretStr | None = Field(
        default=None,
        alias="BOT_TOKENS",
        description="Comma-separated Telegram bot tokens, one per bot identity",
    )
    api_url: str = Field(
        default="https://api.telegram.org",
        alias="TELEGRAM_API_URL",
        description="Telegram Bot API base URL",
    )

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("TELEGRAM_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")

    def token_list(self) -> list[str]:
        """Return configured bot tokens, skipping blanks."""
        if self.tokens is None:
            return []
        return [t.strip() for t in self.tokens.get_secret_value().split(",") if t.strip()]


class EventStreamSettings(BaseSettings):
    """Indexer event stream settings."""

    model_config = SettingsConfigDict(env_prefix="EVENTS_", extra="ignore")

    ws_url: str = Field(
        default="wss://ws-events-v3.intear.tech",
        alias="EVENTS_WS_URL",
        description="Base WebSocket URL of the indexer event stream",
    )
    testnet_enabled: bool = Field(
        default=True,
        alias="EVENTS_TESTNET_ENABLED",
        description="Also subscribe to testnet text-log events",
    )
    max_reconnect_delay_seconds: int = Field(
        default=30,
        alias="EVENTS_MAX_RECONNECT_DELAY_SECONDS",
        ge=1,
        le=600,
        description="Upper bound for exponential reconnect backoff",
    )
    stale_event_warning_seconds: int = Field(
        default=60,
        alias="EVENTS_STALE_EVENT_WARNING_SECONDS",
        ge=1,
        description="Log a warning for events older than this",
    )

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("WebSocket URL must start with ws:// or wss://")
        return v.rstrip("/")


class NearSettings(BaseSettings):
    """NEAR RPC and price list settings."""

    model_config = SettingsConfigDict(env_prefix="NEAR_", extra="ignore")

    rpc_url: str = Field(
        default="https://rpc.mainnet.near.org",
        alias="NEAR_RPC_URL",
        description="NEAR JSON-RPC endpoint used for view calls",
    )
    prices_url: str = Field(
        default="https://prices.intear.tech/tokens",
        alias="NEAR_PRICES_URL",
        description="Token price list endpoint",
    )
    prices_refresh_interval_seconds: int = Field(
        default=5,
        alias="NEAR_PRICES_REFRESH_INTERVAL_SECONDS",
        ge=1,
        le=3600,
        description="How often the price list is refreshed",
    )
    view_cache_ttl_seconds: int = Field(
        default=3600,
        alias="NEAR_VIEW_CACHE_TTL_SECONDS",
        ge=0,
        description="Redis TTL for cached contract view results",
    )

    @field_validator("rpc_url", "prices_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must be an HTTP(S) endpoint")
        return v


class RateLimitSettings(BaseSettings):
    """Per-chat notification limits."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", extra="ignore")

    per_5m: int = Field(default=20, alias="RATE_LIMIT_PER_5M", ge=1)
    per_1h: int = Field(default=150, alias="RATE_LIMIT_PER_1H", ge=1)
    per_1d: int = Field(default=1000, alias="RATE_LIMIT_PER_1D", ge=1)


class TrendingSettings(BaseSettings):
    """Aggregate "trending" / "dumpers" channels."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    trending_chat_id: int | None = Field(
        default=None,
        alias="TRENDING_CHAT_ID",
        description="Chat that receives buys of the other leg of a swap",
    )
    dumpers_chat_id: int | None = Field(
        default=None,
        alias="DUMPERS_CHAT_ID",
        description="Chat that receives sells of the other leg of a swap",
    )
    excluded_tokens: str = Field(
        default=",".join(DEFAULT_TRENDING_EXCLUDED_TOKENS),
        alias="TRENDING_EXCLUDED_TOKENS",
        description="Comma-separated tokens never shown in trending/dumpers",
    )

    def excluded(self) -> frozenset[str]:
        return frozenset(t.strip() for t in self.excluded_tokens.split(",") if t.strip())


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from near_fanout.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    bots: BotSettings = Field(
        default_factory=lambda: BotSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    events: EventStreamSettings = Field(
        default_factory=lambda: EventStreamSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    near: NearSettings = Field(
        default_factory=lambda: NearSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    rate_limit: RateLimitSettings = Field(
        default_factory=lambda: RateLimitSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    trending: TrendingSettings = Field(
        default_factory=lambda: TrendingSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Match events without sending notifications",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "bots": {
                "count": str(len(self.bots.token_list())),
                "api_url": self.bots.api_url,
            },
            "events": {
                "ws_url": self.events.ws_url,
                "testnet_enabled": str(self.events.testnet_enabled),
            },
            "near": {
                "rpc_url": self.near.rpc_url,
                "prices_url": self.near.prices_url,
                "view_cache_ttl_seconds": str(self.near.view_cache_ttl_seconds),
            },
            "rate_limit": {
                "per_5m": str(self.rate_limit.per_5m),
                "per_1h": str(self.rate_limit.per_1h),
                "per_1d": str(self.rate_limit.per_1d),
            },
            "trending": {
                "trending_chat_id": str(self.trending.trending_chat_id or "(not set)"),
                "dumpers_chat_id": str(self.trending.dumpers_chat_id or "(not set)"),
            },
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
