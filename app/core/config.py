"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the scheduled sync
Lambda and the local worker share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import os

from pydantic import AnyHttpUrl, Field, field_validator
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


def _split_csv(value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


class _EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")


class YouTubeSettings(_EnvSettings):
    """Google OAuth client and YouTube Data API configuration."""

    client_id: Optional[str] = Field(None, validation_alias="YOUTUBE_CLIENT_ID")
    client_secret: Optional[str] = Field(None, validation_alias="YOUTUBE_CLIENT_SECRET")
    redirect_uri: Optional[AnyHttpUrl] = Field(
        None, validation_alias="YOUTUBE_OAUTH_REDIRECT_URI"
    )
    api_key: Optional[str] = Field(
        None,
        validation_alias="YOUTUBE_API_KEY",
        description="Service-level key used for keyless public-data sync.",
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        ("https://www.googleapis.com/auth/youtube.readonly",),
        validation_alias="YOUTUBE_SCOPES",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(cls, value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)


class InstagramSettings(_EnvSettings):
    """Meta app configuration for the Instagram Graph API."""

    app_id: Optional[str] = Field(None, validation_alias="INSTAGRAM_APP_ID")
    app_secret: Optional[str] = Field(None, validation_alias="INSTAGRAM_APP_SECRET")
    redirect_uri: Optional[AnyHttpUrl] = Field(
        None, validation_alias="INSTAGRAM_REDIRECT_URI"
    )
    graph_api_base: str = Field(
        "https://graph.facebook.com/v21.0",
        validation_alias="INSTAGRAM_GRAPH_API_BASE",
    )
    dialog_base: str = Field(
        "https://www.facebook.com/v21.0/dialog/oauth",
        validation_alias="INSTAGRAM_DIALOG_BASE",
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "instagram_basic",
            "instagram_manage_insights",
            "pages_show_list",
            "pages_read_engagement",
            "business_management",
        ),
        validation_alias="INSTAGRAM_REQUIRED_SCOPES",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(cls, value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
        return _split_csv(value)


class SecuritySettings(_EnvSettings):
    """Security-related configuration."""

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    cron_secret: Optional[str] = Field(
        None,
        validation_alias="CRON_SECRET",
        description="Shared secret expected by the scheduled sync endpoint.",
    )


class OAuthSettings(_EnvSettings):
    """OAuth flow configuration."""

    state_ttl_seconds: int = Field(600, validation_alias="OAUTH_STATE_TTL")


class SyncSettings(_EnvSettings):
    """Limits applied to synchronization runs."""

    max_concurrency: int = Field(5, ge=1, validation_alias="SYNC_MAX_CONCURRENCY")
    request_timeout_seconds: float = Field(
        15.0, gt=0, validation_alias="SYNC_REQUEST_TIMEOUT"
    )
    insights_window_days: int = Field(
        30, ge=1, validation_alias="SYNC_INSIGHTS_WINDOW_DAYS"
    )
    max_content_pages: int = Field(10, ge=1, validation_alias="SYNC_MAX_CONTENT_PAGES")
    interval_minutes: int = Field(
        1440,
        ge=1,
        validation_alias="SYNC_INTERVAL_MINUTES",
        description="Interval used by the local scheduled sync worker.",
    )


class AppSettings(_EnvSettings):
    """Root settings object for the FastAPI application."""

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    database_path: str = Field(
        "data/creator_sync.db",
        validation_alias="DATABASE_PATH",
        description="SQLite file holding tokens, OAuth states and snapshots.",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    youtube: YouTubeSettings = Field(default_factory=YouTubeSettings)
    instagram: InstagramSettings = Field(default_factory=InstagramSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "InstagramSettings",
    "OAuthSettings",
    "SecuritySettings",
    "SyncSettings",
    "YouTubeSettings",
    "get_settings",
]
