"""
Persistence of per-user platform credentials.

One row per (user, platform). Access and refresh tokens are encrypted at rest
and only decrypted when read back through the vault.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.clients.sqlite_store import SQLiteDatabase
from app.models.platform import Platform, PlatformToken, is_token_expired, parse_timestamp
from app.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class CredentialVault:
    """Read, upsert and expire platform tokens."""

    def __init__(self, database: SQLiteDatabase, token_cipher: TokenCipherService) -> None:
        self._db = database
        self._cipher = token_cipher

    def upsert(
        self,
        user_id: str,
        platform: Platform,
        *,
        access_token: Optional[str] = _UNSET,
        refresh_token: Optional[str] = _UNSET,
        expires_at: Optional[str] = _UNSET,
        account_id: Optional[str] = _UNSET,
        account_username: Optional[str] = _UNSET,
    ) -> None:
        """Insert or merge a token row in a single statement.

        Omitted fields keep their stored values on conflict; passing ``None``
        explicitly clears a field.
        """
        supplied: Dict[str, Any] = {}
        if access_token is not _UNSET:
            supplied["access_token_encrypted"] = self._cipher.encrypt_optional(access_token)
        if refresh_token is not _UNSET:
            supplied["refresh_token_encrypted"] = self._cipher.encrypt_optional(refresh_token)
        if expires_at is not _UNSET:
            supplied["expires_at"] = expires_at
        if account_id is not _UNSET:
            supplied["account_id"] = account_id
        if account_username is not _UNSET:
            supplied["account_username"] = account_username

        now = datetime.now(timezone.utc).isoformat()
        row: Dict[str, Any] = {
            "user_id": user_id,
            "platform": platform.value,
            **supplied,
            "created_at": now,
            "updated_at": now,
        }
        columns = ", ".join(row)
        placeholders = ", ".join(f":{column}" for column in row)
        updates = ", ".join(
            f"{column} = excluded.{column}" for column in [*supplied, "updated_at"]
        )
        with self._db.connection() as conn:
            conn.execute(
                f"""
                INSERT INTO platform_tokens ({columns})
                VALUES ({placeholders})
                ON CONFLICT (user_id, platform) DO UPDATE SET {updates}
                """,
                row,
            )
        logger.info(
            "Stored platform credentials",
            extra={"user_id": user_id, "platform": platform.value, "fields": sorted(supplied)},
        )

    def get(self, user_id: str, platform: Platform) -> Optional[PlatformToken]:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM platform_tokens WHERE user_id = ? AND platform = ?",
                (user_id, platform.value),
            ).fetchone()
        if not row:
            return None
        return PlatformToken(
            user_id=row["user_id"],
            platform=Platform(row["platform"]),
            access_token=self._cipher.decrypt_optional(row["access_token_encrypted"]),
            refresh_token=self._cipher.decrypt_optional(row["refresh_token_encrypted"]),
            expires_at=row["expires_at"],
            account_id=row["account_id"],
            account_username=row["account_username"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def delete(self, user_id: str, platform: Platform) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM platform_tokens WHERE user_id = ? AND platform = ?",
                (user_id, platform.value),
            )
        return cursor.rowcount > 0

    def list_connected_user_ids(self, platform: Platform) -> list[str]:
        """Users holding an access token for the platform."""
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT user_id FROM platform_tokens
                WHERE platform = ? AND access_token_encrypted IS NOT NULL
                ORDER BY user_id
                """,
                (platform.value,),
            ).fetchall()
        return [row["user_id"] for row in rows]

    @staticmethod
    def is_expired(token: Optional[PlatformToken], now: Optional[datetime] = None) -> bool:
        """Absent, undated and unparsable tokens all count as expired."""
        return is_token_expired(token, now)


__all__ = ["CredentialVault"]
