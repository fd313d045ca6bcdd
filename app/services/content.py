"""Claiming public YouTube videos as a user's content."""

from __future__ import annotations

import logging
import re
from typing import Optional

from app.clients.youtube import YouTubeClient
from app.models.platform import Platform
from app.schemas.integrations import ClaimVideoResponse
from app.services.content_catalog import ContentCatalog

logger = logging.getLogger(__name__)

_VIDEO_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")
_VIDEO_URL_PATTERNS = (
    re.compile(r"(?:youtube\.com|youtube-nocookie\.com)/(?:watch\?(?:.*&)?v=)([A-Za-z0-9_-]{11})"),
    re.compile(r"(?:youtube\.com|youtube-nocookie\.com)/(?:shorts|embed|live)/([A-Za-z0-9_-]{11})"),
    re.compile(r"youtu\.be/([A-Za-z0-9_-]{11})"),
)


def parse_video_reference(reference: str) -> Optional[str]:
    """Extract a video id from a bare id or a watch, shorts or youtu.be URL."""
    candidate = reference.strip()
    if _VIDEO_ID.match(candidate):
        return candidate
    for pattern in _VIDEO_URL_PATTERNS:
        match = pattern.search(candidate)
        if match:
            return match.group(1)
    return None


class ContentService:
    """Create content records for videos that users claim."""

    def __init__(self, youtube: YouTubeClient, catalog: ContentCatalog) -> None:
        self._youtube = youtube
        self._catalog = catalog

    async def claim_youtube_video(self, user_id: str, reference: str) -> ClaimVideoResponse:
        video_id = parse_video_reference(reference)
        if video_id is None:
            raise ValueError("Provide a YouTube video id or a youtube.com / youtu.be link.")

        descriptor = await self._youtube.fetch_video_metadata(video_id)
        self._catalog.upsert_item(Platform.YOUTUBE, descriptor)
        linked = self._catalog.link_user(user_id, descriptor.content_id, role="creator")
        logger.info(
            "Claimed YouTube video",
            extra={"user_id": user_id, "content_id": descriptor.content_id, "new_link": linked},
        )
        return ClaimVideoResponse(
            content_id=descriptor.content_id,
            title=descriptor.title,
            link=descriptor.link,
            already_linked=not linked,
        )


__all__ = ["ContentService", "parse_video_reference"]
