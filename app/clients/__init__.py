"""Expose constructed client wrappers."""

from .instagram import InstagramClient
from .platform import (
    ConfigurationError,
    NoEligibleAccountError,
    OAuthTokenExchangeError,
    PlatformAdapter,
    PlatformAPIError,
    ReconnectRequiredError,
    ResponseShapeError,
)
from .sqlite_store import SQLiteDatabase
from .youtube import YouTubeClient

__all__ = [
    "ConfigurationError",
    "InstagramClient",
    "NoEligibleAccountError",
    "OAuthTokenExchangeError",
    "PlatformAPIError",
    "PlatformAdapter",
    "ReconnectRequiredError",
    "ResponseShapeError",
    "SQLiteDatabase",
    "YouTubeClient",
]
