"""
Payload shapes used by the scheduled sync entrypoints.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, TypedDict


class ScheduleEvent(TypedDict, total=False):
    """Subset of the EventBridge scheduled event that is logged."""

    id: str
    time: str
    source: str
    detail: Dict[str, Any]


class SyncInvocationResult(TypedDict):
    """Lambda response carrying the serialized sync report."""

    statusCode: int
    body: Optional[str]


__all__ = ["ScheduleEvent", "SyncInvocationResult"]
