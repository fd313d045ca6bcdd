from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.clients.instagram import InstagramClient
from app.clients.platform import NoEligibleAccountError, ReconnectRequiredError
from app.core.config import InstagramSettings
from app.models.platform import Platform, PlatformToken

GRAPH = "/v21.0"


def _settings() -> InstagramSettings:
    return InstagramSettings(
        INSTAGRAM_APP_ID="app-id",
        INSTAGRAM_APP_SECRET="app-secret",
        INSTAGRAM_REDIRECT_URI="https://example.com/instagram/callback",
    )


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> InstagramClient:
    return InstagramClient(_settings(), transport=httpx.MockTransport(handler))


def _token(**overrides) -> PlatformToken:
    values = {
        "user_id": "user-1",
        "platform": Platform.INSTAGRAM,
        "access_token": "long-lived",
        "expires_at": (datetime.now(timezone.utc) + timedelta(days=30)).isoformat(),
        "account_id": "IG1",
    }
    values.update(overrides)
    return PlatformToken(**values)


def test_authorization_url_uses_facebook_dialog() -> None:
    client = InstagramClient(_settings())

    url = client.build_authorization_url("state-1", force_reauth=True)
    params = parse_qs(urlparse(url).query)

    assert url.startswith("https://www.facebook.com/v21.0/dialog/oauth")
    assert params["client_id"] == ["app-id"]
    assert params["state"] == ["state-1"]
    assert params["response_type"] == ["code"]
    assert "instagram_manage_insights" in params["scope"][0].split(",")
    assert params["auth_type"] == ["reauthenticate"]
    assert "auth_type" not in parse_qs(urlparse(client.build_authorization_url("s")).query)


@pytest.mark.anyio
async def test_exchange_code_discovers_business_account() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        path = request.url.path
        params = request.url.params
        if path == f"{GRAPH}/oauth/access_token" and "code" in params:
            return httpx.Response(200, json={"access_token": "short-lived"})
        if path == f"{GRAPH}/oauth/access_token":
            assert params["grant_type"] == "fb_exchange_token"
            assert params["fb_exchange_token"] == "short-lived"
            return httpx.Response(200, json={"access_token": "long-lived", "expires_in": 5184000})
        if path == f"{GRAPH}/me/accounts":
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"id": "page-0", "name": "No IG"},
                        {"id": "page-1", "name": "Brand", "instagram_business_account": {"id": "IG1"}},
                    ]
                },
            )
        if path == f"{GRAPH}/IG1":
            return httpx.Response(200, json={"id": "IG1", "username": "creator"})
        return httpx.Response(404, json={"error": {"message": "unexpected"}})

    grant = await _client(handler).exchange_code("auth-code")

    assert grant.access_token == "long-lived"
    assert grant.refresh_token is None
    assert grant.account_id == "IG1"
    assert grant.account_username == "creator"
    lifetime = datetime.fromisoformat(grant.expires_at) - datetime.now(timezone.utc)
    assert timedelta(days=59) < lifetime <= timedelta(days=60)


@pytest.mark.anyio
async def test_exchange_code_without_pages_is_not_eligible() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/oauth/access_token"):
            return httpx.Response(200, json={"access_token": "token"})
        return httpx.Response(200, json={"data": []})

    with pytest.raises(NoEligibleAccountError) as exc_info:
        await _client(handler).exchange_code("auth-code")
    assert "pages_show_list" in str(exc_info.value)


@pytest.mark.anyio
async def test_exchange_code_without_business_account_names_pages() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/oauth/access_token"):
            return httpx.Response(200, json={"access_token": "token"})
        return httpx.Response(200, json={"data": [{"id": "p1", "name": "Personal Page"}]})

    with pytest.raises(NoEligibleAccountError) as exc_info:
        await _client(handler).exchange_code("auth-code")
    assert "Personal Page" in str(exc_info.value)


@pytest.mark.anyio
async def test_expired_token_requires_reconnect() -> None:
    client = InstagramClient(_settings())
    expired = _token(expires_at=(datetime.now(timezone.utc) - timedelta(days=1)).isoformat())

    with pytest.raises(ReconnectRequiredError):
        await client.refresh_if_needed(expired)
    valid = _token()
    assert await client.refresh_if_needed(valid) is valid


@pytest.mark.anyio
async def test_fetch_content_metrics_combines_counts_and_insights() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == f"{GRAPH}/":
            assert request.url.params["ids"] == "m1,m2,m3"
            return httpx.Response(
                200,
                json={
                    "m1": {"id": "m1", "like_count": 10, "comments_count": 5},
                    "m2": {"id": "m2", "like_count": 1, "comments_count": 0},
                },
            )
        if path == f"{GRAPH}/m1/insights":
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"name": "reach", "values": [{"value": 100}]},
                        {"name": "impressions", "values": [{"value": 150}]},
                        {"name": "saved", "values": [{"value": 5}]},
                    ]
                },
            )
        return httpx.Response(400, json={"error": {"message": "unsupported media"}})

    batch = await _client(handler).fetch_content_metrics(["m1", "m2", "m3"], token=_token())

    first = batch.metrics["m1"]
    assert first.view_count == 150
    assert first.reach == 100
    assert first.save_count == 5
    assert first.engagement_rate == pytest.approx(20 / 150)
    second = batch.metrics["m2"]
    assert second.like_count == 1
    assert second.reach is None
    assert second.view_count is None
    assert "m3" not in batch.metrics
    assert batch.errors == {}


@pytest.mark.anyio
async def test_fetch_content_metrics_requires_token() -> None:
    client = InstagramClient(_settings())

    with pytest.raises(ReconnectRequiredError):
        await client.fetch_content_metrics(["m1"], token=None)


@pytest.mark.anyio
async def test_failed_count_lookup_marks_whole_chunk() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="upstream unavailable")

    batch = await _client(handler).fetch_content_metrics(["m1", "m2"], token=_token())

    assert batch.metrics == {}
    assert set(batch.errors) == {"m1", "m2"}


@pytest.mark.anyio
async def test_insight_request_errors_leave_counts_intact() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"{GRAPH}/":
            return httpx.Response(200, json={"m1": {"id": "m1", "like_count": 3, "comments_count": 1}})
        raise httpx.TooManyRedirects("redirect loop", request=request)

    batch = await _client(handler).fetch_content_metrics(["m1"], token=_token())

    assert batch.metrics["m1"].like_count == 3
    assert batch.metrics["m1"].reach is None
    assert batch.errors == {}

@pytest.mark.anyio
async def test_fetch_account_insights_isolates_metric_failures() -> None:
    as_of = datetime(2024, 6, 1, tzinfo=timezone.utc)
    insight_calls: list[httpx.QueryParams] = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = request.url.params
        if path == f"{GRAPH}/IG1":
            return httpx.Response(200, json={"id": "IG1", "followers_count": 1200})
        if path == f"{GRAPH}/IG1/insights":
            insight_calls.append(params)
            metric = params["metric"]
            if metric == "profile_views":
                return httpx.Response(400, json={"error": {"message": "not available"}})
            return httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "name": metric,
                            "values": [
                                {"value": 40, "end_time": "2024-05-30T07:00:00+0000"},
                                {"value": 55, "end_time": "2024-05-31T07:00:00+0000"},
                            ],
                        }
                    ]
                },
            )
        return httpx.Response(404)

    values = await _client(handler).fetch_account_insights(
        "IG1",
        ["follower_count", "reach", "profile_views", "accounts_engaged"],
        timedelta(days=30),
        _token(),
        as_of,
    )

    by_metric: dict[str, list] = {}
    for value in values:
        by_metric.setdefault(value.metric, []).append(value)
    assert [(v.value, v.end_time) for v in by_metric["follower_count"]] == [(1200, as_of)]
    assert [v.value for v in by_metric["reach"]] == [40, 55]
    assert by_metric["reach"][0].end_time == datetime(2024, 5, 30, 7, tzinfo=timezone.utc)
    assert "profile_views" not in by_metric
    assert len(by_metric["accounts_engaged"]) == 2
    assert insight_calls[0]["period"] == "day"
    assert int(insight_calls[0]["until"]) - int(insight_calls[0]["since"]) == 30 * 86400


@pytest.mark.anyio
async def test_fetch_content_list_follows_cursor() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"{GRAPH}/IG1/media"
        if request.url.params.get("after") == "CURSOR-2":
            return httpx.Response(200, json={"data": [{"id": "m3"}], "paging": {"cursors": {"after": "END"}}})
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "id": "m1",
                        "caption": "x" * 300,
                        "permalink": "https://www.instagram.com/p/AAA/",
                        "timestamp": "2024-05-01T10:00:00+0000",
                        "media_url": "https://cdn.example.com/m1.jpg",
                    },
                    {"id": "m2", "shortcode": "BBB", "thumbnail_url": "https://cdn.example.com/m2.jpg"},
                ],
                "paging": {"cursors": {"after": "CURSOR-2"}, "next": "https://graph.facebook.com/next"},
            },
        )

    client = _client(handler)
    first = await client.fetch_content_list("IG1", token=_token())
    second = await client.fetch_content_list("IG1", cursor=first.next_cursor, token=_token())

    m1, m2 = first.items
    assert len(m1.title) == 255
    assert len(m1.description) == 300
    assert m1.link == "https://www.instagram.com/p/AAA/"
    assert m1.thumbnail_url == "https://cdn.example.com/m1.jpg"
    assert m1.posted_at == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    assert m2.link == "https://www.instagram.com/p/BBB/"
    assert m2.title is None
    assert first.next_cursor == "CURSOR-2"
    assert [item.content_id for item in second.items] == ["m3"]
    assert second.next_cursor is None
