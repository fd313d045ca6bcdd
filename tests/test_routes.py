try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timezone
from http import HTTPStatus
from types import SimpleNamespace

import httpx
import pytest

from app.clients.platform import ConfigurationError, PlatformAPIError
from app.main import app
from app.models.platform import ConnectionState, Platform
from app.schemas import (
    AccountSweepResult,
    AuthorizeResponse,
    ClaimVideoResponse,
    ConnectionStatus,
    SyncResult,
    UserSyncError,
)
from app.services import CallbackOutcome

USER_HEADERS = {"X-User-Id": "user-1"}


class DummyConnections:
    def __init__(self) -> None:
        self.authorize_calls: list[tuple] = []
        self.outcome = CallbackOutcome(status="success", message="Your YouTube account is now connected.")
        self.callback_calls: list[dict] = []

    def authorize(self, user_id, platform, force_reauth=None):
        self.authorize_calls.append((user_id, platform, force_reauth))
        if platform is Platform.INSTAGRAM:
            raise ConfigurationError("Instagram OAuth credentials are not configured")
        return AuthorizeResponse(
            authorization_url="https://accounts.google.com/o/oauth2/v2/auth?state=abc",
            redirect_uri="https://example.com/callback",
        )

    async def complete_authorization(self, platform, **kwargs):
        self.callback_calls.append({"platform": platform, **kwargs})
        return self.outcome

    def status(self, user_id, platform):
        return ConnectionStatus(platform=platform, connected=False, state=ConnectionState.DISCONNECTED)

    def disconnect(self, user_id, platform):
        return True


class DummyOrchestrator:
    def __init__(self) -> None:
        self.instagram_sweep = AccountSweepResult(platform=Platform.INSTAGRAM, total_users=1, successful_syncs=1)
        self.calls: list[str] = []

    async def sync_user(self, user_id, platform):
        self.calls.append(f"user:{platform.value}")
        return SyncResult(platform=platform, synced_item_count=1)

    async def sync_account(self, user_id, platform):
        self.calls.append(f"account:{platform.value}")
        return SyncResult(platform=platform, synced_item_count=2)

    async def sync_all_for_platform(self, platform):
        self.calls.append(f"all:{platform.value}")
        return SyncResult(
            platform=platform, synced_item_count=4, snapshot_date=datetime(2024, 6, 1, tzinfo=timezone.utc)
        )

    async def sync_all_accounts(self, platform):
        self.calls.append(f"accounts:{platform.value}")
        return self.instagram_sweep


class DummyContentService:
    async def claim_youtube_video(self, user_id, reference):
        if reference == "missing0000":
            raise PlatformAPIError("Video not found: missing0000.", status_code=404)
        if len(reference) < 11:
            raise ValueError("Provide a YouTube video id or a youtube.com / youtu.be link.")
        return ClaimVideoResponse(content_id=reference, link=f"https://www.youtube.com/watch?v={reference}", already_linked=False)


class DummyAggregator:
    def summary_for_user(self, user_id):
        return None


@pytest.fixture()
def overrides():
    from app import dependencies

    connections = DummyConnections()
    orchestrator = DummyOrchestrator()
    settings = SimpleNamespace(security=SimpleNamespace(cron_secret="cron-secret"))

    app.dependency_overrides.update(
        {
            dependencies.get_connection_service: lambda: connections,
            dependencies.get_sync_orchestrator: lambda: orchestrator,
            dependencies.get_app_settings: lambda: settings,
            dependencies.get_content_service: lambda: DummyContentService(),
            dependencies.get_metrics_aggregator: lambda: DummyAggregator(),
        }
    )

    yield connections, orchestrator

    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.anyio
async def test_healthcheck() -> None:
    async with _client() as client:
        response = await client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_authorize_returns_consent_url(overrides) -> None:
    connections, _ = overrides
    async with _client() as client:
        response = await client.post("/api/integrations/youtube/authorize", headers=USER_HEADERS)
        forced = await client.post(
            "/api/integrations/youtube/authorize", headers=USER_HEADERS, json={"force_reauth": True}
        )

    assert response.status_code == 200
    assert response.json()["authorization_url"].startswith("https://accounts.google.com/")
    assert forced.status_code == 200
    assert connections.authorize_calls == [
        ("user-1", Platform.YOUTUBE, None),
        ("user-1", Platform.YOUTUBE, True),
    ]


@pytest.mark.anyio
async def test_authorize_requires_identity(overrides) -> None:
    async with _client() as client:
        response = await client.post("/api/integrations/youtube/authorize")

    assert response.status_code == HTTPStatus.UNAUTHORIZED


@pytest.mark.anyio
async def test_unknown_platform_is_rejected(overrides) -> None:
    async with _client() as client:
        response = await client.post("/api/integrations/tiktok/authorize", headers=USER_HEADERS)

    assert response.status_code == HTTPStatus.UNPROCESSABLE_ENTITY


@pytest.mark.anyio
async def test_missing_configuration_maps_to_server_error(overrides) -> None:
    async with _client() as client:
        response = await client.post("/api/integrations/instagram/authorize", headers=USER_HEADERS)

    assert response.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
    assert "not configured" in response.json()["detail"]


@pytest.mark.anyio
async def test_callback_renders_popup_with_escaped_message(overrides) -> None:
    connections, _ = overrides
    connections.outcome = CallbackOutcome(
        status="error", message="<script>alert(1)</script>", http_status=HTTPStatus.BAD_REQUEST
    )

    async with _client() as client:
        response = await client.get(
            "/api/integrations/youtube/callback",
            params={"state": "abc", "error": "access_denied"},
        )

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.headers["content-type"].startswith("text/html")
    body = response.text
    assert "creator-sync-youtube-oauth" in body
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in body
    assert "\\u003cscript>alert(1)\\u003c/script>" in body
    assert "<script>alert(1)" not in body
    assert connections.callback_calls[0]["state"] == "abc"
    assert connections.callback_calls[0]["error"] == "access_denied"
    assert connections.callback_calls[0]["code"] is None


@pytest.mark.anyio
async def test_status_and_disconnect(overrides) -> None:
    async with _client() as client:
        status = await client.get("/api/integrations/instagram/status", headers=USER_HEADERS)
        removed = await client.delete("/api/integrations/instagram", headers=USER_HEADERS)

    assert status.status_code == 200
    assert status.json()["connected"] is False
    assert status.json()["state"] == "disconnected"
    assert status.json()["account_id"] is None
    assert removed.json() == {"platform": "instagram", "disconnected": True}


@pytest.mark.anyio
async def test_sync_dispatches_per_platform(overrides) -> None:
    _, orchestrator = overrides
    async with _client() as client:
        youtube = await client.post("/api/integrations/youtube/sync", headers=USER_HEADERS)
        instagram = await client.post("/api/integrations/instagram/sync", headers=USER_HEADERS)
        sweep = await client.post("/api/integrations/youtube/sync/all", headers=USER_HEADERS)

    assert youtube.json()["synced_item_count"] == 1
    assert instagram.json()["synced_item_count"] == 2
    assert sweep.json()["synced_item_count"] == 4
    assert sweep.json()["success"] is True
    assert orchestrator.calls == ["user:youtube", "account:instagram", "all:youtube"]


@pytest.mark.anyio
@pytest.mark.parametrize("params", [{}, {"secret": "wrong"}])
async def test_cron_rejects_bad_secret(overrides, params) -> None:
    _, orchestrator = overrides
    async with _client() as client:
        response = await client.get("/api/cron/sync/all", params=params)

    assert response.status_code == HTTPStatus.UNAUTHORIZED
    assert orchestrator.calls == []


@pytest.mark.anyio
async def test_cron_reports_success(overrides) -> None:
    async with _client() as client:
        response = await client.post("/api/cron/sync/all", params={"secret": "cron-secret"})

    assert response.status_code == HTTPStatus.OK
    payload = response.json()
    assert payload["success"] is True
    assert payload["youtube"]["synced_item_count"] == 4
    assert payload["instagram"]["successful_syncs"] == 1


@pytest.mark.anyio
async def test_cron_reports_partial_failure_as_multi_status(overrides) -> None:
    _, orchestrator = overrides
    orchestrator.instagram_sweep = AccountSweepResult(
        platform=Platform.INSTAGRAM,
        total_users=1,
        failed_syncs=1,
        errors=[UserSyncError(user_id="user-9", error="Please reconnect.")],
    )

    async with _client() as client:
        response = await client.get("/api/cron/sync/all", params={"secret": "cron-secret"})

    assert response.status_code == HTTPStatus.MULTI_STATUS
    assert response.json()["instagram"]["errors"][0]["user_id"] == "user-9"


@pytest.mark.anyio
async def test_claim_video_maps_errors(overrides) -> None:
    async with _client() as client:
        created = await client.post("/api/content/youtube", headers=USER_HEADERS, json={"reference": "dQw4w9WgXcQ"})
        invalid = await client.post("/api/content/youtube", headers=USER_HEADERS, json={"reference": "nope"})
        missing = await client.post("/api/content/youtube", headers=USER_HEADERS, json={"reference": "missing0000"})

    assert created.status_code == HTTPStatus.CREATED
    assert created.json()["already_linked"] is False
    assert invalid.status_code == HTTPStatus.BAD_REQUEST
    assert missing.status_code == HTTPStatus.NOT_FOUND


@pytest.mark.anyio
async def test_metrics_summary_without_snapshots_is_null(overrides) -> None:
    async with _client() as client:
        response = await client.get("/api/metrics/summary", headers=USER_HEADERS)

    assert response.status_code == 200
    assert response.json() is None


@pytest.fixture()
def history_aggregator(database):
    from app import dependencies
    from app.clients.platform import ContentDescriptor
    from app.models.platform import MetricSnapshot
    from app.services.content_catalog import ContentCatalog
    from app.services.metrics import MetricsAggregator
    from app.services.snapshot_store import SnapshotStore

    catalog = ContentCatalog(database)
    snapshots = SnapshotStore(database)
    catalog.upsert_item(
        Platform.YOUTUBE,
        ContentDescriptor(content_id="vid-1", title="Launch video", link="https://example.com/vid-1"),
    )
    catalog.link_user("user-1", "vid-1")
    for day in range(1, 4):
        snapshots.upsert_snapshot(
            MetricSnapshot(
                content_id="vid-1",
                platform=Platform.YOUTUBE,
                captured_at=datetime(2024, 6, day, tzinfo=timezone.utc),
                view_count=day * 100,
            )
        )

    aggregator = MetricsAggregator(snapshots, catalog)
    app.dependency_overrides[dependencies.get_metrics_aggregator] = lambda: aggregator
    yield aggregator
    app.dependency_overrides.clear()


@pytest.mark.anyio
async def test_content_history_returns_linked_item_snapshots(history_aggregator) -> None:
    async with _client() as client:
        full = await client.get("/api/metrics/content/vid-1", headers=USER_HEADERS)
        limited = await client.get("/api/metrics/content/vid-1", params={"limit": 2}, headers=USER_HEADERS)
        filtered = await client.get(
            "/api/metrics/content/vid-1", params={"platform": "instagram"}, headers=USER_HEADERS
        )

    assert full.status_code == 200
    body = full.json()
    assert body["title"] == "Launch video"
    assert body["platform"] == "youtube"
    assert [point["view_count"] for point in body["snapshots"]] == [100, 200, 300]
    assert [point["view_count"] for point in limited.json()["snapshots"]] == [100, 200]
    assert filtered.status_code == 200
    assert filtered.json()["snapshots"] == []


@pytest.mark.anyio
async def test_content_history_hides_unlinked_items_and_bad_limits(history_aggregator) -> None:
    async with _client() as client:
        stranger = await client.get("/api/metrics/content/vid-1", headers={"X-User-Id": "user-2"})
        unknown = await client.get("/api/metrics/content/nope", headers=USER_HEADERS)
        too_small = await client.get("/api/metrics/content/vid-1", params={"limit": 0}, headers=USER_HEADERS)
        too_large = await client.get("/api/metrics/content/vid-1", params={"limit": 501}, headers=USER_HEADERS)

    assert stranger.status_code == HTTPStatus.NOT_FOUND
    assert unknown.status_code == HTTPStatus.NOT_FOUND
    assert too_small.status_code == HTTPStatus.UNPROCESSABLE_ENTITY
    assert too_large.status_code == HTTPStatus.UNPROCESSABLE_ENTITY
