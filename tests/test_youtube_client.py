from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from app.clients.platform import PlatformAPIError, ReconnectRequiredError
from app.clients.youtube import YouTubeClient
from app.core.config import YouTubeSettings
from app.models.platform import Platform, PlatformToken


class FakeRequest:
    def __init__(self, response: Any) -> None:
        self._response = response

    def execute(self) -> Any:
        if isinstance(self._response, Exception):
            raise self._response
        return self._response


class FakeResource:
    def __init__(self, responses: list[Any], calls: list[dict]) -> None:
        self._responses = responses
        self._calls = calls

    def list(self, **kwargs: Any) -> FakeRequest:
        self._calls.append(kwargs)
        return FakeRequest(self._responses.pop(0))


class FakeYouTubeService:
    """Mimics the discovery client's resource().list().execute() chain."""

    def __init__(self, **responses: list[Any]) -> None:
        self.responses = responses
        self.calls: dict[str, list[dict]] = {name: [] for name in responses}
        self.factory_calls: list[dict] = []

    def factory(self, **kwargs: Any) -> "FakeYouTubeService":
        self.factory_calls.append(kwargs)
        return self

    def _resource(self, name: str) -> FakeResource:
        return FakeResource(self.responses[name], self.calls[name])

    def videos(self) -> FakeResource:
        return self._resource("videos")

    def channels(self) -> FakeResource:
        return self._resource("channels")

    def playlistItems(self) -> FakeResource:  # noqa: N802 - API naming
        return self._resource("playlistItems")


def _settings(api_key: str | None = "api-key") -> YouTubeSettings:
    return YouTubeSettings(
        YOUTUBE_CLIENT_ID="client-id",
        YOUTUBE_CLIENT_SECRET="client-secret",
        YOUTUBE_OAUTH_REDIRECT_URI="https://example.com/youtube/callback",
        YOUTUBE_API_KEY=api_key,
    )


def _http_error(status: int) -> HttpError:
    return HttpError(SimpleNamespace(status=status, reason="error"), b'{"error": {"message": "quota"}}')


def test_authorization_url_requests_offline_consent() -> None:
    client = YouTubeClient(_settings())

    url = client.build_authorization_url("state-123")
    parsed = urlparse(url)
    params = parse_qs(parsed.query)

    assert url.startswith(YouTubeClient.AUTH_BASE_URL)
    assert params["state"] == ["state-123"]
    assert params["access_type"] == ["offline"]
    assert params["prompt"] == ["consent"]
    assert params["redirect_uri"] == ["https://example.com/youtube/callback"]
    assert params["scope"] == ["https://www.googleapis.com/auth/youtube.readonly"]

    forced = parse_qs(urlparse(client.build_authorization_url("s", force_reauth=True)).query)
    assert forced["prompt"] == ["select_account consent"]


def test_keyless_support_follows_api_key() -> None:
    assert YouTubeClient(_settings()).supports_keyless is True
    assert YouTubeClient(_settings(api_key=None)).supports_keyless is False


@pytest.mark.anyio
async def test_fetch_content_metrics_computes_engagement_and_skips_missing() -> None:
    service = FakeYouTubeService(
        videos=[
            {
                "items": [
                    {"id": "vid-1", "statistics": {"viewCount": "1000", "likeCount": "40", "commentCount": "10"}},
                    {"id": "vid-2", "statistics": {"viewCount": "0", "likeCount": "0"}},
                ]
            }
        ]
    )
    client = YouTubeClient(_settings(), service_factory=service.factory)

    batch = await client.fetch_content_metrics(["vid-1", "vid-2", "vid-3", "vid-1"])

    assert service.factory_calls == [{"developer_key": "api-key"}]
    assert service.calls["videos"][0]["id"] == "vid-1,vid-2,vid-3"
    first = batch.metrics["vid-1"]
    assert (first.view_count, first.like_count, first.comment_count) == (1000, 40, 10)
    assert first.share_count is None
    assert first.engagement_rate == pytest.approx(0.05)
    assert batch.metrics["vid-2"].engagement_rate is None
    assert batch.metrics["vid-2"].comment_count is None
    assert "vid-3" not in batch.metrics
    assert batch.errors == {}


@pytest.mark.anyio
async def test_fetch_content_metrics_chunks_and_isolates_chunk_failures() -> None:
    ids = [f"video-{index:03d}" for index in range(120)]
    second_chunk = ids[50:100]
    service = FakeYouTubeService(
        videos=[
            {"items": [{"id": video_id, "statistics": {"viewCount": "10"}} for video_id in ids[:50]]},
            _http_error(403),
            {"items": [{"id": video_id, "statistics": {"viewCount": "20"}} for video_id in ids[100:]]},
        ]
    )
    client = YouTubeClient(_settings(), service_factory=service.factory)

    batch = await client.fetch_content_metrics(ids)

    assert [len(call["id"].split(",")) for call in service.calls["videos"]] == [50, 50, 20]
    assert len(batch.metrics) == 70
    assert set(batch.errors) == set(second_chunk)
    assert "403" in batch.errors[second_chunk[0]]


@pytest.mark.anyio
async def test_user_token_is_used_when_present() -> None:
    service = FakeYouTubeService(videos=[{"items": []}])
    client = YouTubeClient(_settings(api_key=None), service_factory=service.factory)
    token = PlatformToken(user_id="u", platform=Platform.YOUTUBE, access_token="user-access")

    await client.fetch_content_metrics(["vid-1"], token=token)

    credentials = service.factory_calls[0]["credentials"]
    assert credentials.token == "user-access"


@pytest.mark.anyio
async def test_exchange_code_resolves_channel() -> None:
    token_requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        token_requests.append(request)
        return httpx.Response(
            200,
            json={"access_token": "access-1", "refresh_token": "refresh-1", "expires_in": 3600},
        )

    service = FakeYouTubeService(
        channels=[{"items": [{"id": "UC123", "snippet": {"title": "My Channel"}}]}]
    )
    client = YouTubeClient(
        _settings(), service_factory=service.factory, transport=httpx.MockTransport(handler)
    )

    grant = await client.exchange_code("auth-code")

    form = parse_qs(token_requests[0].content.decode())
    assert form["grant_type"] == ["authorization_code"]
    assert form["code"] == ["auth-code"]
    assert grant.access_token == "access-1"
    assert grant.refresh_token == "refresh-1"
    assert grant.account_id == "UC123"
    assert grant.account_username == "My Channel"
    assert service.calls["channels"][0]["mine"] is True
    expires_at = datetime.fromisoformat(grant.expires_at)
    assert timedelta(minutes=59) < expires_at - datetime.now(timezone.utc) <= timedelta(hours=1)


@pytest.mark.anyio
async def test_exchange_code_rejection_raises_platform_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    client = YouTubeClient(_settings(), transport=httpx.MockTransport(handler))

    with pytest.raises(PlatformAPIError) as exc_info:
        await client.exchange_code("bad-code")
    assert exc_info.value.status_code == 400
    assert "invalid_grant" in exc_info.value.body


@pytest.mark.anyio
async def test_refresh_keeps_refresh_token_when_response_omits_it() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["refresh-1"]
        return httpx.Response(200, json={"access_token": "access-2", "expires_in": 3600})

    client = YouTubeClient(_settings(), transport=httpx.MockTransport(handler))
    token = PlatformToken(
        user_id="u",
        platform=Platform.YOUTUBE,
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=(datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat(),
    )

    refreshed = await client.refresh_if_needed(token)

    assert refreshed.access_token == "access-2"
    assert refreshed.refresh_token == "refresh-1"


@pytest.mark.anyio
async def test_refresh_without_refresh_token_requires_reconnect() -> None:
    client = YouTubeClient(_settings())
    token = PlatformToken(user_id="u", platform=Platform.YOUTUBE, access_token="access-1")

    with pytest.raises(ReconnectRequiredError):
        await client.refresh_if_needed(token)


@pytest.mark.anyio
async def test_fetch_video_metadata_not_found() -> None:
    service = FakeYouTubeService(videos=[{"items": []}])
    client = YouTubeClient(_settings(), service_factory=service.factory)

    with pytest.raises(PlatformAPIError) as exc_info:
        await client.fetch_video_metadata("dQw4w9WgXcQ")
    assert exc_info.value.status_code == 404


@pytest.mark.anyio
async def test_fetch_video_metadata_prefers_largest_thumbnail() -> None:
    service = FakeYouTubeService(
        videos=[
            {
                "items": [
                    {
                        "id": "dQw4w9WgXcQ",
                        "snippet": {
                            "title": "A video",
                            "channelTitle": "Channel",
                            "publishedAt": "2024-05-01T10:00:00Z",
                            "thumbnails": {
                                "default": {"url": "https://i.ytimg.com/default.jpg"},
                                "high": {"url": "https://i.ytimg.com/high.jpg"},
                            },
                        },
                    }
                ]
            }
        ]
    )
    client = YouTubeClient(_settings(), service_factory=service.factory)

    descriptor = await client.fetch_video_metadata("dQw4w9WgXcQ")

    assert descriptor.title == "A video"
    assert descriptor.channel == "Channel"
    assert descriptor.link == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
    assert descriptor.thumbnail_url == "https://i.ytimg.com/high.jpg"
    assert descriptor.posted_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


@pytest.mark.anyio
async def test_fetch_content_list_pages_through_uploads() -> None:
    service = FakeYouTubeService(
        channels=[{"items": [{"id": "UC1", "contentDetails": {"relatedPlaylists": {"uploads": "UU1"}}}]}],
        playlistItems=[
            {
                "items": [
                    {
                        "snippet": {"title": "First"},
                        "contentDetails": {"videoId": "vid-1", "videoPublishedAt": "2024-05-01T10:00:00Z"},
                    },
                    {"snippet": {"title": "Broken"}},
                ],
                "nextPageToken": "PAGE2",
            }
        ],
    )
    client = YouTubeClient(_settings(), service_factory=service.factory)

    page = await client.fetch_content_list("UC1", cursor="PAGE1")

    assert [item.content_id for item in page.items] == ["vid-1"]
    assert page.next_cursor == "PAGE2"
    assert service.calls["playlistItems"][0]["playlistId"] == "UU1"
    assert service.calls["playlistItems"][0]["pageToken"] == "PAGE1"


@pytest.mark.anyio
async def test_hidden_subscriber_count_yields_no_follower_insight() -> None:
    as_of = datetime(2024, 6, 1, tzinfo=timezone.utc)
    service = FakeYouTubeService(
        channels=[
            {"items": [{"id": "UC1", "statistics": {"subscriberCount": "1500"}}]},
            {"items": [{"id": "UC1", "statistics": {"hiddenSubscriberCount": True}}]},
        ]
    )
    client = YouTubeClient(_settings(), service_factory=service.factory)

    visible = await client.fetch_account_insights("UC1", ["follower_count"], timedelta(days=30), None, as_of)
    hidden = await client.fetch_account_insights("UC1", ["follower_count"], timedelta(days=30), None, as_of)

    assert [(value.metric, value.value, value.end_time) for value in visible] == [
        ("follower_count", 1500, as_of)
    ]
    assert hidden == []


@pytest.mark.anyio
async def test_transport_failure_only_fails_its_chunk() -> None:
    ids = [f"video-{index:03d}" for index in range(60)]
    service = FakeYouTubeService(
        videos=[
            ConnectionResetError("connection reset by peer"),
            {"items": [{"id": video_id, "statistics": {"viewCount": "5"}} for video_id in ids[50:]]},
        ]
    )
    client = YouTubeClient(_settings(), service_factory=service.factory)

    batch = await client.fetch_content_metrics(ids)

    assert set(batch.metrics) == set(ids[50:])
    assert set(batch.errors) == set(ids[:50])
    assert "connection reset" in batch.errors[ids[0]]


@pytest.mark.anyio
async def test_rejected_user_credentials_become_platform_errors() -> None:
    service = FakeYouTubeService(videos=[RefreshError("invalid_grant")])
    client = YouTubeClient(_settings(api_key=None), service_factory=service.factory)
    token = PlatformToken(user_id="u", platform=Platform.YOUTUBE, access_token="revoked")

    batch = await client.fetch_content_metrics(["vid-1"], token=token)

    assert batch.metrics == {}
    assert "invalid_grant" in batch.errors["vid-1"]
