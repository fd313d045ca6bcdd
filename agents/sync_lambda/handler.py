"""
AWS Lambda entrypoint for the scheduled platform sync.
"""

from __future__ import annotations

import asyncio
import json
import logging
from http import HTTPStatus
from typing import Any

from agents.sync_lambda.models import ScheduleEvent, SyncInvocationResult
from app.core.config import get_settings
from app.core.logging import configure_logging
from app.dependencies import get_sync_orchestrator
from app.schemas import ScheduledSyncReport
from app.services import run_scheduled_sync

logger = logging.getLogger(__name__)


async def run_once() -> ScheduledSyncReport:
    """Run one sweep over every platform."""
    return await run_scheduled_sync(get_sync_orchestrator())


def lambda_handler(event: ScheduleEvent, context: Any) -> SyncInvocationResult:
    """
    Invoked by a schedule rule; returns 200 when every platform succeeded
    and 207 when at least one reported a failure.
    """
    configure_logging(get_settings().log_level)
    logger.info(
        "Scheduled sync triggered",
        extra={"event_id": (event or {}).get("id"), "event_time": (event or {}).get("time")},
    )
    try:
        report = asyncio.run(run_once())
    except Exception:
        logger.exception("Scheduled sync failed")
        return {
            "statusCode": int(HTTPStatus.INTERNAL_SERVER_ERROR),
            "body": json.dumps({"success": False, "error": "Scheduled sync failed."}),
        }

    status_code = HTTPStatus.OK if report.success else HTTPStatus.MULTI_STATUS
    return {"statusCode": int(status_code), "body": report.model_dump_json()}


__all__ = ["lambda_handler", "run_once"]
