"""Schemas for metric summaries and per-item history."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.platform import Platform


class MetricsSummary(BaseModel):
    """Lifetime totals across the latest snapshot of each item."""

    item_count: int
    total_views: int = 0
    total_likes: int = 0
    total_comments: int = 0
    total_shares: int = 0
    total_reach: int = 0
    total_saves: int = 0
    average_engagement_rate: Optional[float] = None
    updated_at: Optional[datetime] = None
    view_growth_24h_percent: Optional[float] = Field(
        None, description="Null when no item has a comparable baseline."
    )


class SnapshotPoint(BaseModel):
    captured_at: datetime
    view_count: Optional[int] = None
    like_count: Optional[int] = None
    comment_count: Optional[int] = None
    share_count: Optional[int] = None
    reach: Optional[int] = None
    save_count: Optional[int] = None
    engagement_rate: Optional[float] = None


class ContentMetricsHistory(BaseModel):
    """Dated snapshots of one content item, oldest first."""

    content_id: str
    platform: Platform
    title: Optional[str] = None
    snapshots: List[SnapshotPoint] = Field(default_factory=list)


__all__ = ["ContentMetricsHistory", "MetricsSummary", "SnapshotPoint"]
