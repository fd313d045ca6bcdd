"""
Date-keyed metric snapshots and account insight series.

Snapshots are keyed by (content id, capture date); writing the same key twice
in one day overwrites the earlier row.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from app.clients.platform import InsightValue
from app.clients.sqlite_store import SQLiteDatabase
from app.models.platform import MetricSnapshot, Platform

logger = logging.getLogger(__name__)

_SNAPSHOT_FIELDS = (
    "view_count",
    "like_count",
    "comment_count",
    "share_count",
    "reach",
    "save_count",
    "engagement_rate",
)


def snapshot_date(now: Optional[datetime] = None) -> datetime:
    """UTC midnight of the given instant."""
    current = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return current.replace(hour=0, minute=0, second=0, microsecond=0)


def _as_utc_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class SnapshotStore:
    """Upsert and query metric snapshots and account insights."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def upsert_snapshot(self, snapshot: MetricSnapshot) -> None:
        row = {
            "content_id": snapshot.content_id,
            "platform": snapshot.platform.value,
            "captured_at": _as_utc_text(snapshot.captured_at),
            **{field: getattr(snapshot, field) for field in _SNAPSHOT_FIELDS},
        }
        updates = ", ".join(f"{field} = excluded.{field}" for field in ("platform", *_SNAPSHOT_FIELDS))
        with self._db.connection() as conn:
            conn.execute(
                f"""
                INSERT INTO metric_snapshots ({", ".join(row)})
                VALUES ({", ".join(f":{column}" for column in row)})
                ON CONFLICT (content_id, captured_at) DO UPDATE SET {updates}
                """,
                row,
            )

    def upsert_insights(
        self,
        user_id: str,
        account_id: str,
        values: Iterable[InsightValue],
        *,
        retrieved_at: Optional[datetime] = None,
    ) -> int:
        """Write account insight points; returns how many rows were written."""
        retrieved = _as_utc_text(retrieved_at or datetime.now(timezone.utc))
        rows = [
            (user_id, account_id, value.metric, value.value, _as_utc_text(value.end_time), retrieved)
            for value in values
        ]
        if not rows:
            return 0
        with self._db.connection() as conn:
            conn.executemany(
                """
                INSERT INTO account_insights (user_id, account_id, metric, value, end_time, retrieved_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, account_id, metric, end_time)
                DO UPDATE SET value = excluded.value, retrieved_at = excluded.retrieved_at
                """,
                rows,
            )
        return len(rows)

    @staticmethod
    def _snapshot(row: sqlite3.Row) -> MetricSnapshot:
        return MetricSnapshot(
            content_id=row["content_id"],
            platform=Platform(row["platform"]),
            captured_at=datetime.fromisoformat(row["captured_at"]),
            **{field: row[field] for field in _SNAPSHOT_FIELDS},
        )

    def latest_per_item(self, content_ids: Sequence[str]) -> Dict[str, MetricSnapshot]:
        if not content_ids:
            return {}
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT s.* FROM metric_snapshots AS s
                JOIN (
                    SELECT content_id, MAX(captured_at) AS captured_at
                    FROM metric_snapshots
                    WHERE content_id IN ({_placeholders(len(content_ids))})
                    GROUP BY content_id
                ) AS latest
                ON latest.content_id = s.content_id AND latest.captured_at = s.captured_at
                """,
                list(content_ids),
            ).fetchall()
        return {row["content_id"]: self._snapshot(row) for row in rows}

    def history(
        self,
        content_ids: Sequence[str],
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[MetricSnapshot]:
        """Snapshots for the items, oldest first, capped at ``limit`` rows."""
        if not content_ids:
            return []
        query = f"SELECT * FROM metric_snapshots WHERE content_id IN ({_placeholders(len(content_ids))})"
        params: List[object] = list(content_ids)
        if since is not None:
            query += " AND captured_at >= ?"
            params.append(_as_utc_text(since))
        query += " ORDER BY captured_at ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._snapshot(row) for row in rows]


__all__ = ["SnapshotStore", "snapshot_date"]
