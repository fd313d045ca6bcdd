"""
Instagram adapter backed by the Meta Graph API.

Instagram business and creator accounts are reached through the Facebook
Pages the authorizing user manages, so the authorization flow trades a
short-lived user token for a long-lived one and then discovers the linked
business account. Long-lived tokens cannot be refreshed; an expired token
requires the user to reconnect.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, List, Optional, Sequence
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, BeforeValidator, Field, ValidationError

from app.clients.platform import (
    AuthorizationGrant,
    ConfigurationError,
    ContentDescriptor,
    ContentMetrics,
    ContentPage,
    InsightValue,
    MetricsBatch,
    NoEligibleAccountError,
    OAuthTokenExchangeError,
    PlatformAPIError,
    ReconnectRequiredError,
    ResponseShapeError,
    chunked,
    engagement_rate,
    parse_count,
)
from app.core.config import InstagramSettings
from app.models.platform import AccountMetric, Platform, PlatformToken, is_token_expired
from app.utils.http import request_json

logger = logging.getLogger(__name__)

_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def _graph_timestamp(value: Any) -> Any:
    # Graph API offsets come as +0000.
    if isinstance(value, str):
        return _COMPACT_OFFSET.sub(r"\1:\2", value)
    return value


GraphTimestamp = Annotated[Optional[datetime], BeforeValidator(_graph_timestamp)]


class _TokenResponse(BaseModel):
    access_token: str
    expires_in: Optional[int] = None


class _BusinessAccountRef(BaseModel):
    id: str


class _Page(BaseModel):
    id: str
    name: Optional[str] = None
    instagram_business_account: Optional[_BusinessAccountRef] = None


class _PagesResponse(BaseModel):
    data: List[_Page] = Field(default_factory=list)


class _Account(BaseModel):
    id: str
    username: Optional[str] = None
    followers_count: Optional[int] = None


class _MediaCounts(BaseModel):
    id: str
    like_count: Optional[int] = None
    comments_count: Optional[int] = None


class _InsightPoint(BaseModel):
    value: Any = None
    end_time: GraphTimestamp = None


class _InsightSeries(BaseModel):
    name: str
    values: List[_InsightPoint] = Field(default_factory=list)


class _InsightsResponse(BaseModel):
    data: List[_InsightSeries] = Field(default_factory=list)


class _Media(BaseModel):
    id: str
    caption: Optional[str] = None
    timestamp: GraphTimestamp = None
    media_type: Optional[str] = None
    media_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    permalink: Optional[str] = None
    shortcode: Optional[str] = None
    like_count: Optional[int] = None
    comments_count: Optional[int] = None


class _Cursors(BaseModel):
    after: Optional[str] = None


class _Paging(BaseModel):
    cursors: Optional[_Cursors] = None
    next: Optional[str] = None


class _MediaPage(BaseModel):
    data: List[Dict[str, Any]] = Field(default_factory=list)
    paging: Optional[_Paging] = None


def _first_value(series: _InsightsResponse, name: str) -> Optional[int]:
    for entry in series.data:
        if entry.name == name and entry.values:
            return parse_count(entry.values[0].value)
    return None


class InstagramClient:
    """Authorize Instagram business accounts and read media and account insights."""

    platform = Platform.INSTAGRAM

    DEFAULT_TOKEN_LIFETIME = timedelta(days=60)
    MAX_IDS_PER_REQUEST = 50
    MEDIA_PAGE_SIZE = 50
    TITLE_MAX_LENGTH = 255
    MEDIA_LIST_FIELDS = (
        "id,timestamp,caption,media_type,media_url,thumbnail_url,"
        "permalink,shortcode,like_count,comments_count"
    )
    MEDIA_COUNT_FIELDS = "id,like_count,comments_count"
    MEDIA_INSIGHT_METRICS = "reach,impressions,saved"
    WINDOWED_ACCOUNT_METRICS = ("reach", "profile_views", "accounts_engaged")

    def __init__(
        self,
        settings: InstagramSettings,
        *,
        timeout_seconds: float = 15.0,
        max_concurrency: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._timeout = timeout_seconds
        self._max_concurrency = max_concurrency
        self._transport = transport
        self._base = settings.graph_api_base.rstrip("/")

    @property
    def supports_keyless(self) -> bool:
        return False

    @property
    def supports_refresh(self) -> bool:
        return False

    @property
    def redirect_uri(self) -> str:
        self._require_app_settings()
        return str(self._settings.redirect_uri)

    def _require_app_settings(self) -> None:
        missing = [
            name
            for name, value in (
                ("INSTAGRAM_APP_ID", self._settings.app_id),
                ("INSTAGRAM_APP_SECRET", self._settings.app_secret),
                ("INSTAGRAM_REDIRECT_URI", self._settings.redirect_uri),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Instagram OAuth credentials are not configured: {', '.join(missing)}"
            )

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    @staticmethod
    def _access_token(token: Optional[PlatformToken]) -> str:
        if token is None or not token.access_token:
            raise ReconnectRequiredError(
                "No Instagram credentials stored for this user. Please connect your account."
            )
        return token.access_token

    async def _get(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: Dict[str, Any],
        *,
        description: str,
        error_cls: type[PlatformAPIError] = PlatformAPIError,
    ) -> Any:
        return await request_json(
            client,
            "GET",
            f"{self._base}/{path.lstrip('/')}",
            params=params,
            error_cls=error_cls,
            description=description,
        )

    def build_authorization_url(self, state: str, force_reauth: bool = False) -> str:
        self._require_app_settings()
        params = {
            "client_id": self._settings.app_id,
            "redirect_uri": str(self._settings.redirect_uri),
            "state": state,
            "scope": ",".join(self._settings.scopes),
            "response_type": "code",
        }
        if force_reauth:
            params["auth_type"] = "reauthenticate"
        return f"{self._settings.dialog_base}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> AuthorizationGrant:
        """Code to short-lived token to long-lived token, then account discovery."""
        self._require_app_settings()
        async with self._http_client() as client:
            short_lived = await self._token(
                client,
                {
                    "client_id": self._settings.app_id,
                    "client_secret": self._settings.app_secret,
                    "redirect_uri": str(self._settings.redirect_uri),
                    "code": code,
                },
                "short-lived token exchange",
            )
            issued_at = datetime.now(timezone.utc)
            long_lived = await self._token(
                client,
                {
                    "grant_type": "fb_exchange_token",
                    "client_id": self._settings.app_id,
                    "client_secret": self._settings.app_secret,
                    "fb_exchange_token": short_lived.access_token,
                },
                "long-lived token exchange",
            )
            lifetime = (
                timedelta(seconds=long_lived.expires_in)
                if long_lived.expires_in is not None
                else self.DEFAULT_TOKEN_LIFETIME
            )

            account_id = await self._discover_business_account(client, long_lived.access_token)
            username = await self._lookup_username(client, account_id, long_lived.access_token)

        logger.info("Discovered Instagram business account", extra={"account_id": account_id})
        return AuthorizationGrant(
            access_token=long_lived.access_token,
            refresh_token=None,
            expires_at=(issued_at + lifetime).isoformat(),
            account_id=account_id,
            account_username=username,
        )

    async def _token(
        self, client: httpx.AsyncClient, params: Dict[str, Any], description: str
    ) -> _TokenResponse:
        body = await self._get(
            client,
            "oauth/access_token",
            params,
            description=description,
            error_cls=OAuthTokenExchangeError,
        )
        try:
            return _TokenResponse.model_validate(body)
        except ValidationError as exc:
            raise OAuthTokenExchangeError(
                f"No access token received from Instagram ({description})."
            ) from exc

    async def _discover_business_account(self, client: httpx.AsyncClient, access_token: str) -> str:
        body = await self._get(
            client,
            "me/accounts",
            {"fields": "id,name,instagram_business_account", "access_token": access_token},
            description="page discovery",
        )
        try:
            pages = _PagesResponse.model_validate(body).data
        except ValidationError as exc:
            raise ResponseShapeError("Unexpected page discovery payload") from exc

        if not pages:
            raise NoEligibleAccountError(
                "No Facebook pages returned. This indicates missing Page permissions. "
                "Please ensure you granted pages_show_list, pages_read_engagement, and "
                "business_management permissions, then remove the app from your Facebook "
                "settings and reconnect."
            )
        for page in pages:
            if page.instagram_business_account is not None:
                return page.instagram_business_account.id

        page_names = ", ".join(page.name or page.id for page in pages)
        raise NoEligibleAccountError(
            f"No Instagram business account found in any of your Facebook pages ({page_names}). "
            "Please ensure your Instagram account is a Business or Creator account and is "
            "connected to a Facebook Page that is visible in your Facebook account settings."
        )

    async def _lookup_username(
        self, client: httpx.AsyncClient, account_id: str, access_token: str
    ) -> Optional[str]:
        try:
            body = await self._get(
                client,
                account_id,
                {"fields": "id,username", "access_token": access_token},
                description="account profile",
            )
            return _Account.model_validate(body).username
        except (PlatformAPIError, ResponseShapeError, ValidationError):
            logger.warning(
                "Could not resolve Instagram username", extra={"account_id": account_id}
            )
            return None

    async def refresh_if_needed(self, token: PlatformToken) -> PlatformToken:
        """Long-lived tokens have no refresh grant; expiry means reconnect."""
        if is_token_expired(token):
            raise ReconnectRequiredError(
                "Instagram access token has expired. Please reconnect your account."
            )
        return token

    async def fetch_content_metrics(
        self, ids: Sequence[str], token: Optional[PlatformToken] = None
    ) -> MetricsBatch:
        """Counts in batched id lookups, then reach, impressions and saves per item."""
        access_token = self._access_token(token)
        unique_ids = list(dict.fromkeys(media_id for media_id in ids if media_id))
        batch = MetricsBatch()
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async with self._http_client() as client:
            for chunk in chunked(unique_ids, self.MAX_IDS_PER_REQUEST):
                try:
                    body = await self._get(
                        client,
                        "",
                        {
                            "ids": ",".join(chunk),
                            "fields": self.MEDIA_COUNT_FIELDS,
                            "access_token": access_token,
                        },
                        description="media counts",
                    )
                except (PlatformAPIError, ResponseShapeError) as exc:
                    for media_id in chunk:
                        batch.errors[media_id] = str(exc)
                    continue
                if not isinstance(body, dict):
                    for media_id in chunk:
                        batch.errors[media_id] = "Unexpected media counts payload"
                    continue

                counts: Dict[str, _MediaCounts] = {}
                for media_id in chunk:
                    raw = body.get(media_id)
                    if raw is None:
                        continue
                    try:
                        counts[media_id] = _MediaCounts.model_validate(raw)
                    except ValidationError as exc:
                        batch.errors[media_id] = (
                            f"Unexpected media payload: {exc.error_count()} error(s)"
                        )

                async def _with_insights(media_id: str, item: _MediaCounts) -> None:
                    async with semaphore:
                        insights = await self._media_insights(client, media_id, access_token)
                    batch.metrics[media_id] = self._content_metrics(item, insights)

                await asyncio.gather(
                    *(_with_insights(media_id, item) for media_id, item in counts.items())
                )

        logger.info(
            "Fetched Instagram media metrics",
            extra={
                "requested": len(unique_ids),
                "returned": len(batch.metrics),
                "failed": len(batch.errors),
            },
        )
        return batch

    async def _media_insights(
        self, client: httpx.AsyncClient, media_id: str, access_token: str
    ) -> Optional[_InsightsResponse]:
        try:
            body = await self._get(
                client,
                f"{media_id}/insights",
                {"metric": self.MEDIA_INSIGHT_METRICS, "access_token": access_token},
                description="media insights",
            )
            return _InsightsResponse.model_validate(body)
        except (PlatformAPIError, ResponseShapeError, ValidationError) as exc:
            logger.warning(
                "Media insights unavailable",
                extra={"media_id": media_id, "error": str(exc)},
            )
            return None

    @staticmethod
    def _content_metrics(
        counts: _MediaCounts, insights: Optional[_InsightsResponse]
    ) -> ContentMetrics:
        reach = impressions = saves = None
        if insights is not None:
            reach = _first_value(insights, "reach")
            impressions = _first_value(insights, "impressions")
            saves = _first_value(insights, "saved")
        return ContentMetrics(
            view_count=impressions,
            like_count=counts.like_count,
            comment_count=counts.comments_count,
            share_count=None,
            reach=reach,
            save_count=saves,
            engagement_rate=engagement_rate(
                (counts.like_count, counts.comments_count, saves),
                max(reach or 0, impressions or 0, 1),
            ),
        )

    async def fetch_account_insights(
        self,
        account_id: str,
        metrics: Sequence[AccountMetric],
        window: timedelta,
        token: PlatformToken,
        as_of: datetime,
    ) -> List[InsightValue]:
        """Follower count plus daily series; one failing metric does not stop the rest."""
        access_token = self._access_token(token)
        values: List[InsightValue] = []

        async with self._http_client() as client:
            if "follower_count" in metrics:
                try:
                    body = await self._get(
                        client,
                        account_id,
                        {"fields": "id,username,followers_count", "access_token": access_token},
                        description="account followers",
                    )
                    account = _Account.model_validate(body)
                except (PlatformAPIError, ResponseShapeError, ValidationError) as exc:
                    logger.warning(
                        "Failed to fetch follower count",
                        extra={"account_id": account_id, "error": str(exc)},
                    )
                else:
                    if account.followers_count is not None:
                        values.append(
                            InsightValue(
                                metric="follower_count",
                                value=account.followers_count,
                                end_time=as_of,
                            )
                        )

            since = int((as_of - window).timestamp())
            until = int(as_of.timestamp())
            for metric in self.WINDOWED_ACCOUNT_METRICS:
                if metric not in metrics:
                    continue
                try:
                    body = await self._get(
                        client,
                        f"{account_id}/insights",
                        {
                            "metric": metric,
                            "period": "day",
                            "since": since,
                            "until": until,
                            "access_token": access_token,
                        },
                        description=f"account insight {metric}",
                    )
                    series = _InsightsResponse.model_validate(body)
                except (PlatformAPIError, ResponseShapeError, ValidationError) as exc:
                    logger.warning(
                        "Failed to fetch account insight",
                        extra={"account_id": account_id, "metric": metric, "error": str(exc)},
                    )
                    continue
                for entry in series.data:
                    for point in entry.values:
                        numeric = parse_count(point.value)
                        if numeric is None or point.end_time is None:
                            continue
                        values.append(
                            InsightValue(metric=metric, value=numeric, end_time=point.end_time)
                        )
        return values

    def _media_link(self, media: _Media) -> str:
        if media.permalink:
            return media.permalink
        if media.shortcode:
            return f"https://www.instagram.com/p/{media.shortcode}/"
        return f"https://www.instagram.com/p/{media.id}/"

    async def fetch_content_list(
        self,
        account_id: str,
        cursor: Optional[str] = None,
        token: Optional[PlatformToken] = None,
    ) -> ContentPage:
        """One page of the account's media with enough metadata to create records."""
        access_token = self._access_token(token)
        params: Dict[str, Any] = {
            "fields": self.MEDIA_LIST_FIELDS,
            "limit": self.MEDIA_PAGE_SIZE,
            "access_token": access_token,
        }
        if cursor:
            params["after"] = cursor
        async with self._http_client() as client:
            body = await self._get(client, f"{account_id}/media", params, description="media list")
        try:
            page = _MediaPage.model_validate(body)
        except ValidationError as exc:
            raise ResponseShapeError("Unexpected media list payload") from exc

        items: List[ContentDescriptor] = []
        for raw in page.data:
            try:
                media = _Media.model_validate(raw)
            except ValidationError:
                logger.warning("Skipping malformed media entry", extra={"account_id": account_id})
                continue
            caption = media.caption or None
            items.append(
                ContentDescriptor(
                    content_id=media.id,
                    title=caption[: self.TITLE_MAX_LENGTH] if caption else None,
                    description=caption,
                    link=self._media_link(media),
                    posted_at=media.timestamp,
                    thumbnail_url=media.thumbnail_url or media.media_url,
                )
            )

        next_cursor = None
        if page.paging and page.paging.next and page.paging.cursors:
            next_cursor = page.paging.cursors.after
        return ContentPage(items=items, next_cursor=next_cursor)


__all__ = ["InstagramClient"]
