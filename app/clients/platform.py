"""
Shared contract for external content platform adapters.

Adapters translate authorization codes into tokens and pull per-content and
per-account metrics, returning the uniform models defined here regardless of
how each platform batches, pages or shapes its responses.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, Field

from app.core.errors import (
    ConfigurationError,
    NoEligibleAccountError,
    OAuthTokenExchangeError,
    PlatformAPIError,
    ReconnectRequiredError,
    ResponseShapeError,
)
from app.models.platform import AccountMetric, Platform, PlatformToken


class AuthorizationGrant(BaseModel):
    """Tokens and account identity obtained from a completed authorization."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[str] = None
    account_id: Optional[str] = None
    account_username: Optional[str] = None


class ContentMetrics(BaseModel):
    """Metrics reported for one content item; ``None`` means not reported."""

    view_count: Optional[int] = None
    like_count: Optional[int] = None
    comment_count: Optional[int] = None
    share_count: Optional[int] = None
    reach: Optional[int] = None
    save_count: Optional[int] = None
    engagement_rate: Optional[float] = None


class MetricsBatch(BaseModel):
    """Per-item metrics plus per-item failures from one fetch."""

    metrics: Dict[str, ContentMetrics] = Field(default_factory=dict)
    errors: Dict[str, str] = Field(default_factory=dict)


class ContentDescriptor(BaseModel):
    """Enough metadata to create a content record on first sight."""

    content_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    link: str
    channel: Optional[str] = None
    posted_at: Optional[datetime] = None
    thumbnail_url: Optional[str] = None


class ContentPage(BaseModel):
    items: List[ContentDescriptor] = Field(default_factory=list)
    next_cursor: Optional[str] = None


class InsightValue(BaseModel):
    metric: AccountMetric
    value: float
    end_time: datetime


@runtime_checkable
class PlatformAdapter(Protocol):
    """Capability surface every platform adapter provides."""

    platform: Platform

    @property
    def supports_keyless(self) -> bool: ...

    @property
    def supports_refresh(self) -> bool: ...

    @property
    def redirect_uri(self) -> str: ...

    def build_authorization_url(self, state: str, force_reauth: bool = False) -> str: ...

    async def exchange_code(self, code: str) -> AuthorizationGrant: ...

    async def refresh_if_needed(self, token: PlatformToken) -> PlatformToken: ...

    async def fetch_content_metrics(
        self, ids: Sequence[str], token: Optional[PlatformToken] = None
    ) -> MetricsBatch: ...

    async def fetch_account_insights(
        self,
        account_id: str,
        metrics: Sequence[AccountMetric],
        window: timedelta,
        token: PlatformToken,
        as_of: datetime,
    ) -> List[InsightValue]: ...

    async def fetch_content_list(
        self,
        account_id: str,
        cursor: Optional[str] = None,
        token: Optional[PlatformToken] = None,
    ) -> ContentPage: ...


def chunked(items: Sequence[str], size: int) -> Iterator[List[str]]:
    """Yield successive slices of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def parse_count(value: object) -> Optional[int]:
    """Coerce a reported count (often a string) to ``int``; unknown stays ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def engagement_rate(
    numerators: Iterable[Optional[int]], denominator: Optional[float]
) -> Optional[float]:
    """Sum of interactions over an audience size.

    Returns ``None`` when the denominator is missing or not positive, when
    every numerator is missing, or when the result is not finite.
    """
    reported = [value for value in numerators if value is not None]
    if not reported or denominator is None or denominator <= 0:
        return None
    rate = sum(reported) / denominator
    if not math.isfinite(rate):
        return None
    return rate


__all__ = [
    "AuthorizationGrant",
    "ConfigurationError",
    "ContentDescriptor",
    "ContentMetrics",
    "ContentPage",
    "InsightValue",
    "MetricsBatch",
    "NoEligibleAccountError",
    "OAuthTokenExchangeError",
    "PlatformAPIError",
    "PlatformAdapter",
    "ReconnectRequiredError",
    "ResponseShapeError",
    "chunked",
    "engagement_rate",
    "parse_count",
]
