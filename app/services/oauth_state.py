"""
Single-use OAuth state tokens.

A state binds one user and platform to an in-flight authorization attempt.
Consuming a state reads and deletes it under one write lock, so concurrent
callback deliveries cannot both succeed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from app.clients.sqlite_store import SQLiteDatabase
from app.core.config import OAuthSettings
from app.models.platform import OAuthStateRecord, Platform
from app.services.credential_vault import CredentialVault

logger = logging.getLogger(__name__)


class OAuthStateManager:
    """Issue and consume opaque OAuth state tokens."""

    def __init__(
        self,
        database: SQLiteDatabase,
        vault: CredentialVault,
        oauth_settings: OAuthSettings,
    ) -> None:
        self._db = database
        self._vault = vault
        self._ttl = timedelta(seconds=oauth_settings.state_ttl_seconds)

    def create(
        self,
        user_id: str,
        platform: Platform,
        *,
        force_clear_existing: bool = False,
        now: Optional[datetime] = None,
    ) -> Tuple[str, datetime]:
        """Persist a fresh state and return it with its expiry."""
        issued_at = now or datetime.now(timezone.utc)
        if force_clear_existing:
            try:
                self._vault.delete(user_id, platform)
            except Exception:
                # The new grant overwrites the row anyway.
                logger.warning(
                    "Failed to clear existing credentials before re-authorization",
                    exc_info=True,
                    extra={"user_id": user_id, "platform": platform.value},
                )

        state = secrets.token_urlsafe(32)
        expires_at = issued_at + self._ttl
        with self._db.connection() as conn:
            conn.execute(
                "DELETE FROM oauth_states WHERE expires_at < ?",
                (issued_at.isoformat(),),
            )
            conn.execute(
                """
                INSERT INTO oauth_states (state, user_id, platform, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (state, user_id, platform.value, issued_at.isoformat(), expires_at.isoformat()),
            )
        logger.info(
            "Issued OAuth state",
            extra={"user_id": user_id, "platform": platform.value},
        )
        return state, expires_at

    def consume(self, state: str) -> Optional[OAuthStateRecord]:
        """Return and delete the record, or ``None`` when unknown or already used.

        Expiry is not checked here.
        """
        if not state:
            return None
        with self._db.immediate_transaction() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_states WHERE state = ?", (state,)
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM oauth_states WHERE state = ?", (state,))
        return OAuthStateRecord(
            state=row["state"],
            user_id=row["user_id"],
            platform=Platform(row["platform"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
        )

    def has_pending(
        self, user_id: str, platform: Platform, now: Optional[datetime] = None
    ) -> bool:
        current = now or datetime.now(timezone.utc)
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM oauth_states
                WHERE user_id = ? AND platform = ? AND expires_at > ?
                LIMIT 1
                """,
                (user_id, platform.value, current.isoformat()),
            ).fetchone()
        return row is not None

    @staticmethod
    def is_expired(record: OAuthStateRecord, now: Optional[datetime] = None) -> bool:
        current = now or datetime.now(timezone.utc)
        return record.expires_at <= current


__all__ = ["OAuthStateManager"]
