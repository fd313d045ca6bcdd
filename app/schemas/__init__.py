"""Public schema exports."""

from .integrations import (
    AuthorizeRequest,
    AuthorizeResponse,
    ClaimVideoRequest,
    ClaimVideoResponse,
    ConnectionStatus,
    DisconnectResponse,
)
from .metrics import ContentMetricsHistory, MetricsSummary, SnapshotPoint
from .sync import (
    AccountSweepResult,
    InstagramRunSummary,
    ItemError,
    ScheduledSyncReport,
    SyncResult,
    UserSyncError,
    YouTubeRunSummary,
)

__all__ = [
    "AccountSweepResult",
    "AuthorizeRequest",
    "AuthorizeResponse",
    "ClaimVideoRequest",
    "ClaimVideoResponse",
    "ConnectionStatus",
    "ContentMetricsHistory",
    "DisconnectResponse",
    "InstagramRunSummary",
    "ItemError",
    "MetricsSummary",
    "ScheduledSyncReport",
    "SnapshotPoint",
    "SyncResult",
    "UserSyncError",
    "YouTubeRunSummary",
]
