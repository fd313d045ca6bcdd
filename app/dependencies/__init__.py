"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_connection_service,
    get_content_catalog,
    get_content_service,
    get_credential_service,
    get_credential_vault,
    get_database,
    get_instagram_client,
    get_metrics_aggregator,
    get_oauth_state_manager,
    get_platform_adapters,
    get_snapshot_store,
    get_sync_orchestrator,
    get_token_cipher_service,
    get_youtube_client,
)
from .config import SettingsDependency, get_app_settings
from .identity import get_current_user_id

__all__ = [
    "SettingsDependency",
    "get_app_settings",
    "get_connection_service",
    "get_content_catalog",
    "get_content_service",
    "get_credential_service",
    "get_credential_vault",
    "get_current_user_id",
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
