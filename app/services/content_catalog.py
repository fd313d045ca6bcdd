"""Content records and their links to users."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from app.clients.platform import ContentDescriptor
from app.clients.sqlite_store import SQLiteDatabase
from app.models.platform import ContentItem, Platform

logger = logging.getLogger(__name__)


class ContentCatalog:
    """Create content records, link them to users and resolve id sets."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def upsert_item(self, platform: Platform, descriptor: ContentDescriptor) -> None:
        """Insert a content record or refresh its metadata."""
        now = datetime.now(timezone.utc).isoformat()
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO content_items (
                    content_id, platform, title, description, link,
                    channel, posted_at, thumbnail_url, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (content_id) DO UPDATE SET
                    title = COALESCE(excluded.title, content_items.title),
                    description = COALESCE(excluded.description, content_items.description),
                    link = excluded.link,
                    channel = COALESCE(excluded.channel, content_items.channel),
                    posted_at = COALESCE(excluded.posted_at, content_items.posted_at),
                    thumbnail_url = COALESCE(excluded.thumbnail_url, content_items.thumbnail_url)
                """,
                (
                    descriptor.content_id,
                    platform.value,
                    descriptor.title,
                    descriptor.description,
                    descriptor.link,
                    descriptor.channel,
                    descriptor.posted_at.isoformat() if descriptor.posted_at else None,
                    descriptor.thumbnail_url,
                    now,
                ),
            )

    def link_user(self, user_id: str, content_id: str, role: Optional[str] = None) -> bool:
        """Link content to a user; returns False when the link already existed."""
        try:
            with self._db.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO user_content (user_id, content_id, role, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (user_id, content_id, role, datetime.now(timezone.utc).isoformat()),
                )
        except sqlite3.IntegrityError:
            logger.debug(
                "Content already linked",
                extra={"user_id": user_id, "content_id": content_id},
            )
            return False
        return True

    def get(self, content_id: str) -> Optional[ContentItem]:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM content_items WHERE content_id = ?", (content_id,)
            ).fetchone()
        if row is None:
            return None
        return ContentItem(
            content_id=row["content_id"],
            platform=Platform(row["platform"]),
            title=row["title"],
            description=row["description"],
            link=row["link"],
            channel=row["channel"],
            posted_at=datetime.fromisoformat(row["posted_at"]) if row["posted_at"] else None,
            thumbnail_url=row["thumbnail_url"],
        )

    def content_ids_for_user(self, user_id: str, platform: Optional[Platform] = None) -> List[str]:
        query = """
            SELECT c.content_id FROM content_items AS c
            JOIN user_content AS uc ON uc.content_id = c.content_id
            WHERE uc.user_id = ?
        """
        params: List[object] = [user_id]
        if platform is not None:
            query += " AND c.platform = ?"
            params.append(platform.value)
        query += " ORDER BY c.created_at, c.content_id"
        with self._db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [row["content_id"] for row in rows]

    def content_ids_for_platform(self, platform: Platform) -> List[str]:
        with self._db.connection() as conn:
            rows = conn.execute(
                "SELECT content_id FROM content_items WHERE platform = ? ORDER BY created_at, content_id",
                (platform.value,),
            ).fetchall()
        return [row["content_id"] for row in rows]

    def is_linked(self, user_id: str, content_id: str) -> bool:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM user_content WHERE user_id = ? AND content_id = ?",
                (user_id, content_id),
            ).fetchone()
        return row is not None


__all__ = ["ContentCatalog"]
