"""SQLite-backed relational store for credentials, OAuth states and snapshots."""

from __future__ import annotations

import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Iterator

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS oauth_states (
        state TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        platform TEXT NOT NULL,
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS platform_tokens (
        user_id TEXT NOT NULL,
        platform TEXT NOT NULL,
        access_token_encrypted TEXT,
        refresh_token_encrypted TEXT,
        expires_at TEXT,
        account_id TEXT,
        account_username TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (user_id, platform)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS content_items (
        content_id TEXT PRIMARY KEY,
        platform TEXT NOT NULL,
        title TEXT,
        description TEXT,
        link TEXT NOT NULL,
        channel TEXT,
        posted_at TEXT,
        thumbnail_url TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_content (
        user_id TEXT NOT NULL,
        content_id TEXT NOT NULL REFERENCES content_items (content_id) ON DELETE CASCADE,
        role TEXT,
        created_at TEXT NOT NULL,
        UNIQUE (user_id, content_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS metric_snapshots (
        content_id TEXT NOT NULL,
        platform TEXT NOT NULL,
        captured_at TEXT NOT NULL,
        view_count INTEGER,
        like_count INTEGER,
        comment_count INTEGER,
        share_count INTEGER,
        reach INTEGER,
        save_count INTEGER,
        engagement_rate REAL,
        PRIMARY KEY (content_id, captured_at)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS account_insights (
        user_id TEXT NOT NULL,
        account_id TEXT NOT NULL,
        metric TEXT NOT NULL CHECK (
            metric IN ('follower_count', 'reach', 'profile_views', 'accounts_engaged')
        ),
        value REAL NOT NULL,
        end_time TEXT NOT NULL,
        retrieved_at TEXT NOT NULL,
        PRIMARY KEY (user_id, account_id, metric, end_time)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_oauth_states_user ON oauth_states (user_id, platform)",
    "CREATE INDEX IF NOT EXISTS idx_content_items_platform ON content_items (platform)",
    "CREATE INDEX IF NOT EXISTS idx_metric_snapshots_captured ON metric_snapshots (captured_at)",
)


class SQLiteDatabase:
    """Own the SQLite file and hand out short-lived connections."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _ensure_schema(self) -> None:
        with self.connection() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success and always closes."""
        with closing(self._connect()) as conn:
            with conn:
                yield conn

    @contextmanager
    def immediate_transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection holding the write lock until commit.

        Reads performed inside see no concurrent writer, so a read followed
        by a delete behaves as one step.
        """
        with closing(self._connect()) as conn:
            conn.isolation_level = None
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")


__all__ = ["SQLiteDatabase"]
