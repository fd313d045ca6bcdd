"""
Resolve usable platform credentials, refreshing and persisting them when needed.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from app.clients.platform import ConfigurationError, PlatformAdapter
from app.models.platform import Platform, PlatformToken
from app.services.credential_vault import CredentialVault

logger = logging.getLogger(__name__)


class CredentialService:
    """Hands out fresh tokens for a user and platform."""

    def __init__(
        self,
        vault: CredentialVault,
        adapters: Mapping[Platform, PlatformAdapter],
    ) -> None:
        self._vault = vault
        self._adapters = adapters

    def _adapter(self, platform: Platform) -> PlatformAdapter:
        try:
            return self._adapters[platform]
        except KeyError as exc:
            raise ConfigurationError(f"No adapter configured for {platform.value}") from exc

    async def get_fresh_token(self, user_id: str, platform: Platform) -> Optional[PlatformToken]:
        """Return a valid token, or ``None`` when the user is not connected.

        Raises ``ReconnectRequiredError`` when the stored token is expired and
        cannot be renewed, and ``PlatformAPIError`` when a refresh call fails.
        """
        token = self._vault.get(user_id, platform)
        if token is None or not token.access_token:
            return None
        if not self._vault.is_expired(token):
            return token

        refreshed = await self._adapter(platform).refresh_if_needed(token)
        if refreshed.access_token != token.access_token or refreshed.expires_at != token.expires_at:
            fields = {
                "access_token": refreshed.access_token,
                "expires_at": refreshed.expires_at,
            }
            # A refresh response may omit the refresh token; only a rotated one is written.
            if refreshed.refresh_token and refreshed.refresh_token != token.refresh_token:
                fields["refresh_token"] = refreshed.refresh_token
            self._vault.upsert(user_id, platform, **fields)
            logger.info(
                "Refreshed platform access token",
                extra={"user_id": user_id, "platform": platform.value},
            )
        return refreshed


__all__ = ["CredentialService"]
