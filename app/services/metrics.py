"""
Read-only summaries derived from stored snapshots.
"""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from app.models.platform import MetricSnapshot, Platform
from app.schemas.metrics import ContentMetricsHistory, MetricsSummary, SnapshotPoint
from app.services.content_catalog import ContentCatalog
from app.services.snapshot_store import SnapshotStore


class MetricsAggregator:
    """Lifetime totals, average engagement and trailing view growth."""

    def __init__(self, snapshots: SnapshotStore, catalog: ContentCatalog) -> None:
        self._snapshots = snapshots
        self._catalog = catalog

    def summarize(self, content_ids: Sequence[str]) -> Optional[MetricsSummary]:
        """Totals over the latest snapshot of each item; missing fields add zero."""
        latest = list(self._snapshots.latest_per_item(content_ids).values())
        if not latest:
            return None

        rates = [snap.engagement_rate for snap in latest if snap.engagement_rate is not None]
        return MetricsSummary(
            item_count=len(latest),
            total_views=sum(snap.view_count or 0 for snap in latest),
            total_likes=sum(snap.like_count or 0 for snap in latest),
            total_comments=sum(snap.comment_count or 0 for snap in latest),
            total_shares=sum(snap.share_count or 0 for snap in latest),
            total_reach=sum(snap.reach or 0 for snap in latest),
            total_saves=sum(snap.save_count or 0 for snap in latest),
            average_engagement_rate=sum(rates) / len(rates) if rates else None,
            updated_at=max(snap.captured_at for snap in latest),
        )

    def view_growth_percent(
        self,
        content_ids: Sequence[str],
        *,
        window: timedelta = timedelta(hours=24),
        lookback: timedelta = timedelta(days=7),
        now: Optional[datetime] = None,
    ) -> Optional[float]:
        """Summed view deltas over summed baselines, as a percentage.

        Each item compares its latest snapshot with its oldest snapshot at or
        before ``now - window`` inside the lookback, so the baseline may be up
        to ``window + lookback`` old when daily snapshots were skipped. Items
        without a positive baseline are left out rather than averaged in.
        """
        current = now or datetime.now(timezone.utc)
        cutoff = current - window
        history = self._snapshots.history(content_ids, since=cutoff - lookback)

        per_item: Dict[str, List[MetricSnapshot]] = defaultdict(list)
        for snapshot in history:
            per_item[snapshot.content_id].append(snapshot)

        total_delta = 0
        total_baseline = 0
        for snapshots in per_item.values():
            baseline = next((snap for snap in snapshots if snap.captured_at <= cutoff), None)
            latest = snapshots[-1]
            if baseline is None or baseline.view_count is None or baseline.view_count <= 0:
                continue
            if latest.view_count is None:
                continue
            total_delta += latest.view_count - baseline.view_count
            total_baseline += baseline.view_count

        if total_baseline <= 0:
            return None
        percent = total_delta / total_baseline * 100
        return percent if math.isfinite(percent) else None

    def summary_for_user(self, user_id: str, *, now: Optional[datetime] = None) -> Optional[MetricsSummary]:
        content_ids = self._catalog.content_ids_for_user(user_id)
        summary = self.summarize(content_ids)
        if summary is None:
            return None
        summary.view_growth_24h_percent = self.view_growth_percent(content_ids, now=now)
        return summary

    def content_history(
        self,
        user_id: str,
        content_id: str,
        *,
        platform: Optional[Platform] = None,
        limit: int = 365,
    ) -> Optional[ContentMetricsHistory]:
        """Snapshot series for one item the user is linked to; ``None`` otherwise.

        A platform filter that does not match the item yields an empty series.
        """
        item = self._catalog.get(content_id)
        if item is None or not self._catalog.is_linked(user_id, content_id):
            return None
        history = ContentMetricsHistory(
            content_id=item.content_id, platform=item.platform, title=item.title
        )
        if platform is not None and platform is not item.platform:
            return history
        history.snapshots = [
            SnapshotPoint.model_validate(snap.model_dump(exclude={"content_id", "platform"}))
            for snap in self._snapshots.history([content_id], limit=limit)
        ]
        return history


__all__ = ["MetricsAggregator"]
