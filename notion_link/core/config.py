"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the background sweeper and
the operational scripts share one consistent configuration surface.
"""

from __future__ import annotations

import base64
import binascii
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


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

_SETTINGS_CONFIG = SettingsConfigDict(extra="ignore", populate_by_name=True)


class NotionSettings(BaseSettings):
    """Configuration required for the Notion OAuth client and REST API."""

    model_config = _SETTINGS_CONFIG

    client_id: str = Field(..., validation_alias="NOTION_CLIENT_ID")
    client_secret: str = Field("", validation_alias="NOTION_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="NOTION_REDIRECT_URI")
    resource_url: str = Field(
        "https://mcp.notion.com",
        validation_alias="NOTION_RESOURCE_URL",
        description="Protected resource used as the starting point for discovery.",
    )
    authorization_endpoint: str = Field(
        "https://api.notion.com/v1/oauth/authorize",
        validation_alias="NOTION_AUTHORIZATION_ENDPOINT",
        description="Static fallback; leave empty to require discovery.",
    )
    token_endpoint: str = Field(
        "https://api.notion.com/v1/oauth/token",
        validation_alias="NOTION_TOKEN_ENDPOINT",
        description="Static fallback; leave empty to require discovery.",
    )
    api_base_url: str = Field(
        "https://api.notion.com/v1", validation_alias="NOTION_API_BASE_URL"
    )
    api_version: str = Field("2022-06-28", validation_alias="NOTION_API_VERSION")

    @property
    def is_confidential_client(self) -> bool:
        return bool(self.client_secret)


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = _SETTINGS_CONFIG

    token_encryption_key: str = Field(
        ...,
        validation_alias="TOKEN_ENCRYPTION_KEY",
        description="Base64-encoded 32-byte key used for AES-256-GCM.",
    )
    app_url: AnyHttpUrl = Field(
        "http://localhost:3000",
        validation_alias="APP_URL",
        description="Origin allowed to issue state-changing requests.",
    )

    @field_validator("token_encryption_key")
    @classmethod
    def _check_key_length(cls, value: str) -> str:
        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("TOKEN_ENCRYPTION_KEY must be base64 encoded.") from exc
        if len(raw) != 32:
            raise ValueError("TOKEN_ENCRYPTION_KEY must decode to exactly 32 bytes.")
        return value


class StorageSettings(BaseSettings):
    """Relational store and shared cache locations."""

    model_config = _SETTINGS_CONFIG

    database_path: str = Field("data/notion_link.db", validation_alias="DATABASE_PATH")
    redis_url: Optional[str] = Field(
        None,
        validation_alias="REDIS_URL",
        description="Shared cache; an in-process cache is used when omitted.",
    )


class OAuthSettings(BaseSettings):
    """OAuth flow configuration."""

    model_config = _SETTINGS_CONFIG

    state_ttl_seconds: int = Field(600, validation_alias="OAUTH_STATE_TTL")
    metadata_cache_ttl_seconds: int = Field(
        3600, validation_alias="OAUTH_METADATA_CACHE_TTL"
    )
    state_cleanup_interval_seconds: int = Field(
        900, validation_alias="OAUTH_STATE_CLEANUP_INTERVAL"
    )
    consumed_state_grace_seconds: int = Field(
        300, validation_alias="OAUTH_STATE_CONSUMED_GRACE"
    )


class TokenSettings(BaseSettings):
    """Token lifetime, refresh and retry tuning."""

    model_config = _SETTINGS_CONFIG

    refresh_buffer_seconds: int = Field(300, validation_alias="TOKEN_REFRESH_BUFFER")
    cache_safety_margin_seconds: int = Field(
        60, validation_alias="TOKEN_CACHE_SAFETY_MARGIN"
    )
    refresh_lock_ttl_seconds: int = Field(30, validation_alias="TOKEN_REFRESH_LOCK_TTL")
    refresh_wait_timeout_seconds: float = Field(
        5.0, validation_alias="TOKEN_REFRESH_WAIT_TIMEOUT"
    )
    refresh_wait_poll_seconds: float = Field(
        0.25, validation_alias="TOKEN_REFRESH_WAIT_POLL"
    )
    refresh_max_retries: int = Field(3, validation_alias="TOKEN_REFRESH_MAX_RETRIES")
    network_retry_base_delay_seconds: float = Field(
        1.0, validation_alias="NETWORK_RETRY_BASE_DELAY"
    )
    retry_after_cap_seconds: float = Field(30.0, validation_alias="RETRY_AFTER_CAP")
    default_token_lifetime_seconds: int = Field(
        365 * 24 * 60 * 60,
        validation_alias="DEFAULT_TOKEN_LIFETIME",
        description="Used when the provider does not expire its tokens.",
    )


class HttpSettings(BaseSettings):
    """Outbound request timeouts, in seconds."""

    model_config = _SETTINGS_CONFIG

    discovery_timeout: float = Field(10.0, validation_alias="HTTP_DISCOVERY_TIMEOUT")
    token_timeout: float = Field(15.0, validation_alias="HTTP_TOKEN_TIMEOUT")
    api_timeout: float = Field(30.0, validation_alias="HTTP_API_TIMEOUT")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    notion: NotionSettings = Field(default_factory=NotionSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    tokens: TokenSettings = Field(default_factory=TokenSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "HttpSettings",
    "NotionSettings",
    "OAuthSettings",
    "SecuritySettings",
    "StorageSettings",
    "TokenSettings",
    "get_settings",
]
