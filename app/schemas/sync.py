"""
Result models returned by synchronization runs.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

from app.models.platform import Platform


class ItemError(BaseModel):
    """Failure recorded against one content item or account."""

    item_id: str
    message: str


class SyncResult(BaseModel):
    """Outcome of one orchestrator run for a single platform."""

    platform: Platform
    synced_item_count: int = 0
    synced_insight_count: int = 0
    discovered_item_count: int = 0
    skipped_item_count: int = 0
    snapshot_date: Optional[datetime] = Field(
        None, description="UTC midnight shared by every snapshot written in the run."
    )
    details: Optional[str] = None
    errors: List[ItemError] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return self.synced_item_count > 0 or not self.errors


class UserSyncError(BaseModel):
    user_id: str
    error: str


class AccountSweepResult(BaseModel):
    """Aggregate of ``sync_account`` across every connected user."""

    platform: Platform
    total_users: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    total_synced_posts: int = 0
    total_synced_insights: int = 0
    errors: List[UserSyncError] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return self.failed_syncs == 0 or self.successful_syncs > 0


class YouTubeRunSummary(BaseModel):
    success: bool
    synced_item_count: int = 0
    snapshot_date: Optional[datetime] = None
    error: Optional[str] = None
    errors: List[ItemError] = Field(default_factory=list)


class InstagramRunSummary(BaseModel):
    success: bool
    total_users: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    total_synced_posts: int = 0
    total_synced_insights: int = 0
    error: Optional[str] = None
    errors: List[UserSyncError] = Field(default_factory=list)


class ScheduledSyncReport(BaseModel):
    """Combined outcome of a scheduled sweep over both platforms."""

    timestamp: datetime
    duration_ms: int
    youtube: YouTubeRunSummary
    instagram: InstagramRunSummary

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return self.youtube.success and self.instagram.success


__all__ = [
    "AccountSweepResult",
    "InstagramRunSummary",
    "ItemError",
    "ScheduledSyncReport",
    "SyncResult",
    "UserSyncError",
    "YouTubeRunSummary",
]
