"""
"Sync everyone" runner shared by the cron endpoint, the Lambda handler and
the local worker.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from app.models.platform import Platform
from app.schemas.sync import InstagramRunSummary, ScheduledSyncReport, YouTubeRunSummary
from app.services.sync import SyncOrchestrator

logger = logging.getLogger(__name__)


async def _run_youtube(orchestrator: SyncOrchestrator) -> YouTubeRunSummary:
    try:
        result = await orchestrator.sync_all_for_platform(Platform.YOUTUBE)
    except Exception as exc:
        logger.exception("Scheduled YouTube sync failed")
        return YouTubeRunSummary(success=False, error=str(exc) or exc.__class__.__name__)
    return YouTubeRunSummary(
        success=result.success,
        synced_item_count=result.synced_item_count,
        snapshot_date=result.snapshot_date,
        errors=result.errors,
    )


async def _run_instagram(orchestrator: SyncOrchestrator) -> InstagramRunSummary:
    try:
        sweep = await orchestrator.sync_all_accounts(Platform.INSTAGRAM)
    except Exception as exc:
        logger.exception("Scheduled Instagram sync failed")
        return InstagramRunSummary(success=False, error=str(exc) or exc.__class__.__name__)
    return InstagramRunSummary(
        success=sweep.success,
        total_users=sweep.total_users,
        successful_syncs=sweep.successful_syncs,
        failed_syncs=sweep.failed_syncs,
        total_synced_posts=sweep.total_synced_posts,
        total_synced_insights=sweep.total_synced_insights,
        errors=sweep.errors,
    )


async def run_scheduled_sync(orchestrator: SyncOrchestrator) -> ScheduledSyncReport:
    """Sync public YouTube content, then every connected Instagram account.

    Each platform runs inside its own failure boundary so one platform
    failing still reports the other's outcome.
    """
    started_at = datetime.now(timezone.utc)
    started = time.perf_counter()
    youtube = await _run_youtube(orchestrator)
    instagram = await _run_instagram(orchestrator)
    report = ScheduledSyncReport(
        timestamp=started_at,
        duration_ms=int((time.perf_counter() - started) * 1000),
        youtube=youtube,
        instagram=instagram,
    )
    logger.info(
        "Scheduled sync finished",
        extra={
            "duration_ms": report.duration_ms,
            "youtube_success": youtube.success,
            "instagram_success": instagram.success,
        },
    )
    return report


__all__ = ["run_scheduled_sync"]
