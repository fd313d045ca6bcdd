"""
Domain models for platform connections, content records and metric snapshots.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class Platform(str, Enum):
    """External content platforms a creator can connect."""

    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"


class ConnectionState(str, Enum):
    """Lifecycle of a user's connection to one platform."""

    DISCONNECTED = "disconnected"
    PENDING_AUTHORIZATION = "pending_authorization"
    CONNECTED = "connected"
    EXPIRED = "expired"


AccountMetric = Literal["follower_count", "reach", "profile_views", "accounts_engaged"]

ACCOUNT_METRICS: tuple[AccountMetric, ...] = (
    "follower_count",
    "reach",
    "profile_views",
    "accounts_engaged",
)


class OAuthStateRecord(BaseModel):
    """Single-use token binding a user to an in-flight authorization attempt."""

    state: str
    user_id: str
    platform: Platform
    created_at: datetime
    expires_at: datetime


class PlatformToken(BaseModel):
    """Decrypted view of a stored authorization record."""

    user_id: str
    platform: Platform
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[str] = Field(
        None, description="ISO-8601 expiry as stored; may be unparsable."
    )
    account_id: Optional[str] = None
    account_username: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware datetime; ``None`` if unparsable."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_token_expired(token: Optional[PlatformToken], now: Optional[datetime] = None) -> bool:
    """Absent, undated and unparsable tokens all count as expired."""
    if token is None:
        return True
    expiry = parse_timestamp(token.expires_at)
    if expiry is None:
        return True
    current = now or datetime.now(timezone.utc)
    return expiry <= current + TOKEN_EXPIRY_MARGIN


class ContentItem(BaseModel):
    """A piece of creator content tracked for metrics."""

    content_id: str
    platform: Platform
    title: Optional[str] = None
    description: Optional[str] = None
    link: str
    channel: Optional[str] = None
    posted_at: Optional[datetime] = None
    thumbnail_url: Optional[str] = None


class MetricSnapshot(BaseModel):
    """One dated observation of a content item's metrics."""

    content_id: str
    platform: Platform
    captured_at: datetime
    view_count: Optional[int] = None
    like_count: Optional[int] = None
    comment_count: Optional[int] = None
    share_count: Optional[int] = None
    reach: Optional[int] = None
    save_count: Optional[int] = None
    engagement_rate: Optional[float] = None


__all__ = [
    "ACCOUNT_METRICS",
    "AccountMetric",
    "ConnectionState",
    "ContentItem",
    "MetricSnapshot",
    "OAuthStateRecord",
    "Platform",
    "PlatformToken",
    "TOKEN_EXPIRY_MARGIN",
    "is_token_expired",
    "parse_timestamp",
]
