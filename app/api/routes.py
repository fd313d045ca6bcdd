"""
FastAPI routes for platform connections, metric syncs and summaries.
"""

from __future__ import annotations

import hmac
import html
import json
import logging
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse, JSONResponse

from app.core.errors import ConfigurationError, PlatformAPIError, ResponseShapeError
from app.dependencies import (
    get_app_settings,
    get_connection_service,
    get_content_service,
    get_current_user_id,
    get_metrics_aggregator,
    get_sync_orchestrator,
)
from app.models.platform import Platform
from app.schemas import (
    AuthorizeRequest,
    AuthorizeResponse,
    ClaimVideoRequest,
    ClaimVideoResponse,
    ConnectionStatus,
    ContentMetricsHistory,
    DisconnectResponse,
    MetricsSummary,
    SyncResult,
)
from app.services import CallbackOutcome, run_scheduled_sync

router = APIRouter()
logger = logging.getLogger(__name__)

_POPUP_SOURCES = {
    Platform.YOUTUBE: "creator-sync-youtube-oauth",
    Platform.INSTAGRAM: "creator-sync-instagram-oauth",
}
_POPUP_TITLES = {Platform.YOUTUBE: "YouTube", Platform.INSTAGRAM: "Instagram"}

_POPUP_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <title>{title} Integration</title>
  </head>
  <body>
    <main>
      <h1 class="status-{status}">{heading}</h1>
      <p>{message}</p>
    </main>
    <script>
      (function () {{
        var payload = {payload};
        try {{
          if (window.opener && !window.opener.closed) {{
            window.opener.postMessage(payload, '*');
          }}
        }} catch (err) {{
          console.error('Failed to notify opener', err);
        }}
        setTimeout(function () {{ window.close(); }}, 1500);
      }})();
    </script>
  </body>
</html>
"""


def render_popup(platform: Platform, outcome: CallbackOutcome) -> HTMLResponse:
    """Self-closing document that reports the outcome to the opener window."""
    payload = json.dumps(
        {
            "source": _POPUP_SOURCES[platform],
            "status": outcome.status,
            "message": outcome.message,
        }
    ).replace("<", "\\u003c")
    title = _POPUP_TITLES[platform]
    heading = f"{title} connected" if outcome.status == "success" else "Unable to connect"
    document = _POPUP_TEMPLATE.format(
        title=html.escape(title),
        status=outcome.status,
        heading=html.escape(heading),
        message=html.escape(outcome.message),
        payload=payload,
    )
    return HTMLResponse(content=document, status_code=outcome.http_status)


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.post(
    "/integrations/{platform}/authorize",
    response_model=AuthorizeResponse,
    status_code=HTTPStatus.OK,
)
async def start_authorization(
    platform: Platform,
    user_id: Annotated[str, Depends(get_current_user_id)],
    connections: Annotated[Any, Depends(get_connection_service)],
    payload: Annotated[Optional[AuthorizeRequest], Body()] = None,
) -> AuthorizeResponse:
    """Issue an OAuth state and return the provider consent URL."""
    force_reauth = payload.force_reauth if payload else None
    return connections.authorize(user_id, platform, force_reauth=force_reauth)


@router.get("/integrations/{platform}/callback", response_class=HTMLResponse)
async def complete_authorization(
    platform: Platform,
    connections: Annotated[Any, Depends(get_connection_service)],
    state: str | None = Query(default=None, description="OAuth state token."),
    code: str | None = Query(default=None, description="Authorization code."),
    error: str | None = Query(default=None),
    error_description: str | None = Query(default=None),
) -> HTMLResponse:
    """Finish the provider redirect and notify the opener window."""
    outcome = await connections.complete_authorization(
        platform,
        state=state,
        code=code,
        error=error,
        error_description=error_description,
    )
    return render_popup(platform, outcome)


@router.get("/integrations/{platform}/status", response_model=ConnectionStatus)
async def connection_status(
    platform: Platform,
    user_id: Annotated[str, Depends(get_current_user_id)],
    connections: Annotated[Any, Depends(get_connection_service)],
) -> ConnectionStatus:
    return connections.status(user_id, platform)


@router.delete("/integrations/{platform}", response_model=DisconnectResponse)
async def disconnect(
    platform: Platform,
    user_id: Annotated[str, Depends(get_current_user_id)],
    connections: Annotated[Any, Depends(get_connection_service)],
) -> DisconnectResponse:
    removed = connections.disconnect(user_id, platform)
    return DisconnectResponse(platform=platform, disconnected=removed)


@router.post("/integrations/youtube/sync/all", response_model=SyncResult)
async def sync_all_youtube(
    user_id: Annotated[str, Depends(get_current_user_id)],
    orchestrator: Annotated[Any, Depends(get_sync_orchestrator)],
) -> SyncResult:
    """Refresh every known YouTube video through the keyless path."""
    logger.info("Manual YouTube sweep requested", extra={"user_id": user_id})
    return await orchestrator.sync_all_for_platform(Platform.YOUTUBE)


@router.post("/integrations/{platform}/sync", response_model=SyncResult)
async def sync_platform(
    platform: Platform,
    user_id: Annotated[str, Depends(get_current_user_id)],
    orchestrator: Annotated[Any, Depends(get_sync_orchestrator)],
) -> SyncResult:
    """Sync the caller's content for one platform."""
    if platform is Platform.INSTAGRAM:
        return await orchestrator.sync_account(user_id, platform)
    return await orchestrator.sync_user(user_id, platform)


@router.api_route("/cron/sync/all", methods=["GET", "POST"])
async def scheduled_sync(
    settings: Annotated[Any, Depends(get_app_settings)],
    orchestrator: Annotated[Any, Depends(get_sync_orchestrator)],
    secret: str | None = Query(default=None, description="Shared scheduler secret."),
) -> JSONResponse:
    """Sync every platform; invoked by an external scheduler."""
    expected = settings.security.cron_secret
    if not expected:
        logger.error("Scheduled sync requested but CRON_SECRET is not configured")
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail="Scheduled sync is not configured.",
        )
    if secret is None or not hmac.compare_digest(secret.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail="Unauthorized")

    try:
        report = await run_scheduled_sync(orchestrator)
    except Exception:
        logger.exception("Scheduled sync failed")
        return JSONResponse(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Scheduled sync failed."},
        )
    status_code = HTTPStatus.OK if report.success else HTTPStatus.MULTI_STATUS
    return JSONResponse(status_code=status_code, content=report.model_dump(mode="json"))


@router.post(
    "/content/youtube",
    response_model=ClaimVideoResponse,
    status_code=HTTPStatus.CREATED,
)
async def claim_youtube_video(
    payload: ClaimVideoRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    content_service: Annotated[Any, Depends(get_content_service)],
) -> ClaimVideoResponse:
    """Link a public YouTube video to the caller."""
    try:
        return await content_service.claim_youtube_video(user_id, payload.reference)
    except ValueError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc
    except PlatformAPIError as exc:
        if exc.status_code == HTTPStatus.NOT_FOUND:
            raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=str(exc)) from exc
        logger.error(
            "Video lookup failed",
            extra={"status_code": exc.status_code, "body": exc.body},
        )
        raise HTTPException(
            status_code=HTTPStatus.BAD_GATEWAY,
            detail="Could not fetch the video from YouTube.",
        ) from exc
    except ResponseShapeError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_GATEWAY,
            detail="Could not fetch the video from YouTube.",
        ) from exc


@router.get("/metrics/summary", response_model=Optional[MetricsSummary])
async def metrics_summary(
    user_id: Annotated[str, Depends(get_current_user_id)],
    aggregator: Annotated[Any, Depends(get_metrics_aggregator)],
) -> Optional[MetricsSummary]:
    """Lifetime totals and 24h view growth for the caller's content."""
    return aggregator.summary_for_user(user_id)


@router.get("/metrics/content/{content_id}", response_model=ContentMetricsHistory)
async def content_metrics_history(
    content_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    aggregator: Annotated[Any, Depends(get_metrics_aggregator)],
    platform: Optional[Platform] = Query(default=None),
    limit: int = Query(default=365, ge=1, le=500),
) -> ContentMetricsHistory:
    """Snapshot history for one of the caller's content items."""
    history = aggregator.content_history(user_id, content_id, platform=platform, limit=limit)
    if history is None:
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND,
            detail="Content not found or not linked to this user.",
        )
    return history


async def configuration_error_handler(_request: Any, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error: %s", exc)
    return JSONResponse(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        content={"detail": "Service is not configured for this operation."},
    )


__all__ = ["configuration_error_handler", "render_popup", "router"]
