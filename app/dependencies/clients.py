"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache
from typing import Dict

from app.clients import InstagramClient, SQLiteDatabase, YouTubeClient
from app.clients.platform import ConfigurationError, PlatformAdapter
from app.core.config import get_settings
from app.models.platform import Platform
from app.services import (
    ConnectionService,
    ContentCatalog,
    ContentService,
    CredentialService,
    CredentialVault,
    MetricsAggregator,
    OAuthStateManager,
    SnapshotStore,
    SyncOrchestrator,
    TokenCipherService,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_database() -> SQLiteDatabase:
    """Provide the shared SQLite database."""
    return SQLiteDatabase(_settings().database_path)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    secret = _settings().security.token_encryption_secret
    if not secret:
        raise ConfigurationError("TOKEN_ENCRYPTION_SECRET must be set to store platform tokens.")
    return TokenCipherService(secret=secret)


@lru_cache()
def get_credential_vault() -> CredentialVault:
    return CredentialVault(get_database(), get_token_cipher_service())


@lru_cache()
def get_oauth_state_manager() -> OAuthStateManager:
    return OAuthStateManager(get_database(), get_credential_vault(), _settings().oauth)


@lru_cache()
def get_youtube_client() -> YouTubeClient:
    """Create a singleton YouTube adapter."""
    settings = _settings()
    return YouTubeClient(settings.youtube, timeout_seconds=settings.sync.request_timeout_seconds)


@lru_cache()
def get_instagram_client() -> InstagramClient:
    """Create a singleton Instagram adapter."""
    settings = _settings()
    return InstagramClient(
        settings.instagram,
        timeout_seconds=settings.sync.request_timeout_seconds,
        max_concurrency=settings.sync.max_concurrency,
    )


def get_platform_adapters() -> Dict[Platform, PlatformAdapter]:
    return {
        Platform.YOUTUBE: get_youtube_client(),
        Platform.INSTAGRAM: get_instagram_client(),
    }


@lru_cache()
def get_content_catalog() -> ContentCatalog:
    return ContentCatalog(get_database())


@lru_cache()
def get_snapshot_store() -> SnapshotStore:
    return SnapshotStore(get_database())


def get_credential_service() -> CredentialService:
    return CredentialService(get_credential_vault(), get_platform_adapters())


def get_sync_orchestrator() -> SyncOrchestrator:
    """Build a sync orchestrator over the configured adapters."""
    return SyncOrchestrator(
        adapters=get_platform_adapters(),
        vault=get_credential_vault(),
        credentials=get_credential_service(),
        catalog=get_content_catalog(),
        snapshots=get_snapshot_store(),
        settings=_settings().sync,
    )


def get_connection_service() -> ConnectionService:
    return ConnectionService(
        get_platform_adapters(), get_credential_vault(), get_oauth_state_manager()
    )


def get_content_service() -> ContentService:
    return ContentService(get_youtube_client(), get_content_catalog())


def get_metrics_aggregator() -> MetricsAggregator:
    return MetricsAggregator(get_snapshot_store(), get_content_catalog())


__all__ = [
    "get_connection_service",
    "get_content_catalog",
    "get_content_service",
    "get_credential_service",
    "get_credential_vault",
    "get_database",
    "get_instagram_client",
    "get_metrics_aggregator",
    "get_oauth_state_manager",
    "get_platform_adapters",
    "get_snapshot_store",
    "get_sync_orchestrator",
    "get_token_cipher_service",
    "get_youtube_client",
]
