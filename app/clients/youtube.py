"""
YouTube adapter: Google OAuth plus YouTube Data API v3.

Token endpoints are called with httpx. Data API calls go through
google-api-python-client, which is blocking, so every call runs in a worker
thread under a timeout.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlencode

import httplib2
import httpx
from google.auth import exceptions as google_auth_exceptions
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.clients.platform import (
    AuthorizationGrant,
    ConfigurationError,
    ContentDescriptor,
    ContentMetrics,
    ContentPage,
    InsightValue,
    MetricsBatch,
    OAuthTokenExchangeError,
    PlatformAPIError,
    ReconnectRequiredError,
    ResponseShapeError,
    chunked,
    engagement_rate,
)
from app.core.config import YouTubeSettings
from app.models.platform import AccountMetric, Platform, PlatformToken, is_token_expired
from app.utils.http import is_transient_status, request_json

logger = logging.getLogger(__name__)

ServiceFactory = Callable[..., Any]

# Raised by the discovery client below HttpError: socket, DNS and credential refresh failures.
_TRANSPORT_ERRORS = (
    httplib2.HttpLib2Error,
    OSError,
    google_auth_exceptions.TransportError,
    google_auth_exceptions.RefreshError,
)


def build_youtube_service(
    *, credentials: Optional[Credentials] = None, developer_key: Optional[str] = None
) -> Any:
    return build(
        "youtube",
        "v3",
        credentials=credentials,
        developerKey=developer_key,
        cache_discovery=False,
    )


class _TokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


class _Thumbnail(BaseModel):
    url: Optional[str] = None


class _Snippet(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    description: Optional[str] = None
    channel_title: Optional[str] = Field(None, alias="channelTitle")
    published_at: Optional[datetime] = Field(None, alias="publishedAt")
    thumbnails: Dict[str, _Thumbnail] = Field(default_factory=dict)


class _VideoStatistics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    view_count: Optional[int] = Field(None, alias="viewCount")
    like_count: Optional[int] = Field(None, alias="likeCount")
    comment_count: Optional[int] = Field(None, alias="commentCount")


class _VideoItem(BaseModel):
    id: str
    snippet: Optional[_Snippet] = None
    statistics: _VideoStatistics = Field(default_factory=_VideoStatistics)


class _ChannelStatistics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscriber_count: Optional[int] = Field(None, alias="subscriberCount")
    hidden_subscriber_count: bool = Field(False, alias="hiddenSubscriberCount")


class _RelatedPlaylists(BaseModel):
    uploads: Optional[str] = None


class _ChannelContentDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    related_playlists: _RelatedPlaylists = Field(
        default_factory=_RelatedPlaylists, alias="relatedPlaylists"
    )


class _ChannelItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    snippet: Optional[_Snippet] = None
    statistics: Optional[_ChannelStatistics] = None
    content_details: Optional[_ChannelContentDetails] = Field(None, alias="contentDetails")


class _PlaylistItemDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(alias="videoId")
    video_published_at: Optional[datetime] = Field(None, alias="videoPublishedAt")


class _PlaylistItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    snippet: _Snippet = Field(default_factory=_Snippet)
    content_details: _PlaylistItemDetails = Field(alias="contentDetails")


def _best_thumbnail(thumbnails: Dict[str, _Thumbnail]) -> Optional[str]:
    for size in ("maxres", "high", "medium", "default"):
        thumbnail = thumbnails.get(size)
        if thumbnail and thumbnail.url:
            return thumbnail.url
    return None


def video_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


class YouTubeClient:
    """Authorize YouTube channels and read public video and channel statistics."""

    platform = Platform.YOUTUBE

    AUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    MAX_IDS_PER_REQUEST = 50

    def __init__(
        self,
        settings: YouTubeSettings,
        *,
        timeout_seconds: float = 15.0,
        service_factory: ServiceFactory = build_youtube_service,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._timeout = timeout_seconds
        self._service_factory = service_factory
        self._transport = transport

    @property
    def supports_keyless(self) -> bool:
        return bool(self._settings.api_key)

    @property
    def supports_refresh(self) -> bool:
        return True

    @property
    def redirect_uri(self) -> str:
        self._require_oauth_settings()
        return str(self._settings.redirect_uri)

    def _require_oauth_settings(self) -> None:
        missing = [
            name
            for name, value in (
                ("YOUTUBE_CLIENT_ID", self._settings.client_id),
                ("YOUTUBE_CLIENT_SECRET", self._settings.client_secret),
                ("YOUTUBE_OAUTH_REDIRECT_URI", self._settings.redirect_uri),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"YouTube OAuth credentials are not configured: {', '.join(missing)}"
            )

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def build_authorization_url(self, state: str, force_reauth: bool = False) -> str:
        """Construct the Google OAuth consent URL."""
        self._require_oauth_settings()
        params = {
            "client_id": self._settings.client_id,
            "redirect_uri": str(self._settings.redirect_uri),
            "response_type": "code",
            "scope": " ".join(self._settings.scopes),
            "access_type": "offline",
            "include_granted_scopes": "true",
            # Google only returns a refresh token when consent is shown.
            "prompt": "select_account consent" if force_reauth else "consent",
            "state": state,
        }
        return f"{self.AUTH_BASE_URL}?{urlencode(params)}"

    async def _token_request(self, payload: Dict[str, Any], description: str) -> _TokenResponse:
        async with self._http_client() as client:
            body = await request_json(
                client,
                "POST",
                self.TOKEN_URL,
                data=payload,
                error_cls=OAuthTokenExchangeError,
                description=description,
            )
        try:
            return _TokenResponse.model_validate(body)
        except ValidationError as exc:
            raise OAuthTokenExchangeError(
                f"Incomplete token payload returned from Google ({description})."
            ) from exc

    @staticmethod
    def _expires_at(expires_in: Optional[int], issued_at: datetime) -> Optional[str]:
        if expires_in is None:
            return None
        return (issued_at + timedelta(seconds=expires_in)).isoformat()

    async def exchange_code(self, code: str) -> AuthorizationGrant:
        """Exchange an authorization code and resolve the acting channel."""
        self._require_oauth_settings()
        issued_at = datetime.now(timezone.utc)
        tokens = await self._token_request(
            {
                "code": code,
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "redirect_uri": str(self._settings.redirect_uri),
                "grant_type": "authorization_code",
            },
            "authorization code exchange",
        )
        grant = AuthorizationGrant(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=self._expires_at(tokens.expires_in, issued_at),
        )

        credentials = self._credentials(grant.access_token, grant.refresh_token)
        response = await self._execute(
            lambda service: service.channels().list(part="snippet", mine=True, maxResults=1).execute(),
            credentials=credentials,
            description="channels.list(mine)",
        )
        channels = response.get("items") or []
        if channels:
            try:
                channel = _ChannelItem.model_validate(channels[0])
            except ValidationError:
                logger.warning("Unexpected channel payload after authorization")
            else:
                grant.account_id = channel.id
                grant.account_username = channel.snippet.title if channel.snippet else None
        return grant

    async def refresh_if_needed(self, token: PlatformToken) -> PlatformToken:
        """Return a token that is valid now, refreshing through Google when needed.

        Google may omit ``refresh_token`` from a refresh response; the stored
        one is kept in that case.
        """
        if not is_token_expired(token):
            return token
        if not token.refresh_token:
            raise ReconnectRequiredError(
                "Missing refresh token for YouTube integration. Please reconnect your account."
            )
        self._require_oauth_settings()
        issued_at = datetime.now(timezone.utc)
        tokens = await self._token_request(
            {
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "refresh_token": token.refresh_token,
                "grant_type": "refresh_token",
            },
            "token refresh",
        )
        return token.model_copy(
            update={
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token or token.refresh_token,
                "expires_at": self._expires_at(tokens.expires_in, issued_at),
            }
        )

    def _credentials(self, access_token: Optional[str], refresh_token: Optional[str]) -> Credentials:
        return Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=self.TOKEN_URL,
            client_id=self._settings.client_id,
            client_secret=self._settings.client_secret,
            scopes=list(self._settings.scopes),
        )

    def _credentials_for(self, token: Optional[PlatformToken]) -> Optional[Credentials]:
        if token is not None and token.access_token:
            return self._credentials(token.access_token, token.refresh_token)
        if not self._settings.api_key:
            raise ConfigurationError(
                "YOUTUBE_API_KEY is required for YouTube API operations without user credentials."
            )
        return None

    async def _execute(
        self,
        operation: Callable[[Any], Dict[str, Any]],
        *,
        credentials: Optional[Credentials],
        description: str,
    ) -> Dict[str, Any]:
        """Run one Data API request off the event loop, bounded by the timeout."""

        def _run() -> Dict[str, Any]:
            if credentials is not None:
                service = self._service_factory(credentials=credentials)
            else:
                service = self._service_factory(developer_key=self._settings.api_key)
            return operation(service)

        try:
            response = await asyncio.wait_for(asyncio.to_thread(_run), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise PlatformAPIError(f"{description} timed out", transient=True) from exc
        except HttpError as exc:
            status_code = getattr(exc.resp, "status", None)
            status_code = int(status_code) if status_code is not None else None
            body = exc.content.decode("utf-8", errors="replace") if exc.content else None
            logger.warning(
                "YouTube Data API request failed",
                extra={"description": description, "status_code": status_code},
            )
            raise PlatformAPIError(
                f"{description} failed with status {status_code}",
                status_code=status_code,
                body=body,
                transient=status_code is not None and is_transient_status(status_code),
            ) from exc
        except _TRANSPORT_ERRORS as exc:
            logger.warning(
                "YouTube Data API transport failure",
                extra={"description": description, "error": repr(exc)},
            )
            raise PlatformAPIError(f"{description} failed: {exc}", transient=True) from exc
        if not isinstance(response, dict):
            raise ResponseShapeError(f"{description} returned an unexpected payload")
        return response

    async def fetch_content_metrics(
        self, ids: Sequence[str], token: Optional[PlatformToken] = None
    ) -> MetricsBatch:
        """Fetch video statistics in chunks; ids absent from a response are skipped."""
        credentials = self._credentials_for(token)
        unique_ids = list(dict.fromkeys(video_id for video_id in ids if video_id))
        batch = MetricsBatch()

        for chunk in chunked(unique_ids, self.MAX_IDS_PER_REQUEST):
            try:
                response = await self._execute(
                    lambda service, chunk=chunk: service.videos()
                    .list(part="statistics", id=",".join(chunk), maxResults=len(chunk))
                    .execute(),
                    credentials=credentials,
                    description="videos.list(statistics)",
                )
            except (PlatformAPIError, ResponseShapeError) as exc:
                for video_id in chunk:
                    batch.errors[video_id] = str(exc)
                continue

            requested = set(chunk)
            for raw in response.get("items") or []:
                raw_id = raw.get("id") if isinstance(raw, dict) else None
                try:
                    item = _VideoItem.model_validate(raw)
                except ValidationError as exc:
                    if raw_id in requested:
                        batch.errors[raw_id] = f"Unexpected statistics payload: {exc.error_count()} error(s)"
                    else:
                        logger.warning("Dropping unidentifiable video statistics payload")
                    continue
                if item.id not in requested:
                    continue
                stats = item.statistics
                batch.metrics[item.id] = ContentMetrics(
                    view_count=stats.view_count,
                    like_count=stats.like_count,
                    comment_count=stats.comment_count,
                    share_count=None,
                    engagement_rate=engagement_rate(
                        (stats.like_count, stats.comment_count), stats.view_count
                    ),
                )

        logger.info(
            "Fetched YouTube video statistics",
            extra={
                "requested": len(unique_ids),
                "returned": len(batch.metrics),
                "failed": len(batch.errors),
            },
        )
        return batch

    async def fetch_video_metadata(self, video_id: str) -> ContentDescriptor:
        """Public snippet for one video, read with the service API key."""
        credentials = self._credentials_for(None)
        response = await self._execute(
            lambda service: service.videos()
            .list(part="snippet", id=video_id, maxResults=1)
            .execute(),
            credentials=credentials,
            description="videos.list(snippet)",
        )
        items = response.get("items") or []
        if not items:
            raise PlatformAPIError(
                f"Video not found: {video_id}. The video may be private, deleted, or the ID may be invalid.",
                status_code=HTTPStatus.NOT_FOUND,
            )
        try:
            item = _VideoItem.model_validate(items[0])
        except ValidationError as exc:
            raise ResponseShapeError(f"Unexpected metadata payload for video {video_id}") from exc

        snippet = item.snippet or _Snippet()
        return ContentDescriptor(
            content_id=item.id,
            title=snippet.title,
            description=snippet.description,
            link=video_url(item.id),
            channel=snippet.channel_title,
            posted_at=snippet.published_at,
            thumbnail_url=_best_thumbnail(snippet.thumbnails),
        )

    async def _channel(
        self, account_id: str, part: str, credentials: Optional[Credentials]
    ) -> Optional[_ChannelItem]:
        response = await self._execute(
            lambda service: service.channels().list(part=part, id=account_id).execute(),
            credentials=credentials,
            description=f"channels.list({part})",
        )
        items = response.get("items") or []
        if not items:
            return None
        try:
            return _ChannelItem.model_validate(items[0])
        except ValidationError as exc:
            raise ResponseShapeError(f"Unexpected channel payload for {account_id}") from exc

    async def fetch_content_list(
        self,
        account_id: str,
        cursor: Optional[str] = None,
        token: Optional[PlatformToken] = None,
    ) -> ContentPage:
        """One page of the channel's uploads playlist."""
        credentials = self._credentials_for(token)
        channel = await self._channel(account_id, "contentDetails", credentials)
        uploads = (
            channel.content_details.related_playlists.uploads
            if channel and channel.content_details
            else None
        )
        if not uploads:
            return ContentPage()

        params: Dict[str, Any] = {
            "part": "snippet,contentDetails",
            "playlistId": uploads,
            "maxResults": self.MAX_IDS_PER_REQUEST,
        }
        if cursor:
            params["pageToken"] = cursor
        response = await self._execute(
            lambda service: service.playlistItems().list(**params).execute(),
            credentials=credentials,
            description="playlistItems.list",
        )

        items: List[ContentDescriptor] = []
        for raw in response.get("items") or []:
            try:
                entry = _PlaylistItem.model_validate(raw)
            except ValidationError:
                logger.warning("Skipping malformed playlist item", extra={"channel_id": account_id})
                continue
            video_id = entry.content_details.video_id
            items.append(
                ContentDescriptor(
                    content_id=video_id,
                    title=entry.snippet.title,
                    description=entry.snippet.description,
                    link=video_url(video_id),
                    channel=entry.snippet.channel_title,
                    posted_at=entry.content_details.video_published_at
                    or entry.snippet.published_at,
                    thumbnail_url=_best_thumbnail(entry.snippet.thumbnails),
                )
            )
        return ContentPage(items=items, next_cursor=response.get("nextPageToken"))

    async def fetch_account_insights(
        self,
        account_id: str,
        metrics: Sequence[AccountMetric],
        window: timedelta,
        token: Optional[PlatformToken],
        as_of: datetime,
    ) -> List[InsightValue]:
        """Subscriber count as ``follower_count``; YouTube has no other account metrics."""
        if "follower_count" not in metrics:
            return []
        channel = await self._channel(account_id, "statistics", self._credentials_for(token))
        if channel is None or channel.statistics is None:
            return []
        stats = channel.statistics
        if stats.hidden_subscriber_count or stats.subscriber_count is None:
            return []
        return [
            InsightValue(metric="follower_count", value=stats.subscriber_count, end_time=as_of)
        ]


__all__ = ["YouTubeClient", "build_youtube_service", "video_url"]
