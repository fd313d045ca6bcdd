"""
Connection lifecycle for a user's platform accounts.

Covers starting authorization, completing the provider callback, reporting
status and disconnecting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Literal, Mapping, Optional

from app.clients.platform import (
    ConfigurationError,
    NoEligibleAccountError,
    PlatformAdapter,
    PlatformAPIError,
    ResponseShapeError,
)
from app.models.platform import ConnectionState, Platform
from app.schemas.integrations import AuthorizeResponse, ConnectionStatus
from app.services.credential_vault import CredentialVault
from app.services.oauth_state import OAuthStateManager

logger = logging.getLogger(__name__)

_DISPLAY_NAMES = {Platform.YOUTUBE: "YouTube", Platform.INSTAGRAM: "Instagram"}
_PROVIDER_NAMES = {Platform.YOUTUBE: "Google", Platform.INSTAGRAM: "Facebook"}


@dataclass(slots=True)
class CallbackOutcome:
    """Result of an OAuth callback, rendered into the popup document."""

    status: Literal["success", "error"]
    message: str
    http_status: int = HTTPStatus.OK


def _error(message: str, http_status: int = HTTPStatus.BAD_REQUEST) -> CallbackOutcome:
    return CallbackOutcome(status="error", message=message, http_status=http_status)


class ConnectionService:
    """Drive the authorize/callback handshake and report connection state."""

    def __init__(
        self,
        adapters: Mapping[Platform, PlatformAdapter],
        vault: CredentialVault,
        states: OAuthStateManager,
    ) -> None:
        self._adapters = adapters
        self._vault = vault
        self._states = states

    def _adapter(self, platform: Platform) -> PlatformAdapter:
        try:
            return self._adapters[platform]
        except KeyError as exc:
            raise ConfigurationError(f"No adapter configured for {platform.value}") from exc

    def authorize(
        self, user_id: str, platform: Platform, force_reauth: Optional[bool] = None
    ) -> AuthorizeResponse:
        """Issue a state and build the provider consent URL.

        Instagram re-prompts and clears prior credentials unless told otherwise,
        so newly required scopes are granted.
        """
        adapter = self._adapter(platform)
        redirect_uri = adapter.redirect_uri
        force = platform is Platform.INSTAGRAM if force_reauth is None else force_reauth
        state, _ = self._states.create(user_id, platform, force_clear_existing=force)
        return AuthorizeResponse(
            authorization_url=adapter.build_authorization_url(state, force_reauth=force),
            redirect_uri=redirect_uri,
        )

    async def complete_authorization(
        self,
        platform: Platform,
        *,
        state: Optional[str],
        code: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CallbackOutcome:
        name = _DISPLAY_NAMES[platform]
        if error:
            if state:
                self._states.consume(state)
            return _error(
                error_description
                or f"{_PROVIDER_NAMES[platform]} reported an error while connecting your {name} account."
            )

        record = self._states.consume(state) if state else None
        if record is None:
            return _error(f"Session expired. Please restart the {name} connection.")
        if record.platform is not platform:
            return _error(f"This authorization was started for a different platform. Please restart the {name} connection.")
        if self._states.is_expired(record, now):
            return _error("Session expired. Please start a new connection.")
        if not code:
            return _error(f"Missing authorization code from {_PROVIDER_NAMES[platform]}.")

        try:
            grant = await self._adapter(platform).exchange_code(code)
        except NoEligibleAccountError as exc:
            return _error(str(exc))
        except ConfigurationError:
            logger.exception("Integration is not configured", extra={"platform": platform.value})
            return _error(
                f"{name} integration is not configured.", HTTPStatus.INTERNAL_SERVER_ERROR
            )
        except PlatformAPIError as exc:
            logger.error(
                "Authorization exchange failed",
                extra={
                    "platform": platform.value,
                    "user_id": record.user_id,
                    "status_code": exc.status_code,
                    "body": exc.body,
                },
            )
            return _error(
                f"Failed to connect your {name} account. Please try again.",
                HTTPStatus.BAD_GATEWAY,
            )
        except ResponseShapeError:
            logger.exception("Unexpected provider payload", extra={"platform": platform.value})
            return _error(
                f"Failed to connect your {name} account. Please try again.",
                HTTPStatus.BAD_GATEWAY,
            )

        fields = {
            "access_token": grant.access_token,
            "expires_at": grant.expires_at,
            "account_id": grant.account_id,
            "account_username": grant.account_username,
        }
        # Google omits the refresh token on re-consent; keep the stored one.
        if grant.refresh_token:
            fields["refresh_token"] = grant.refresh_token
        self._vault.upsert(record.user_id, platform, **fields)
        logger.info(
            "Platform connected",
            extra={"user_id": record.user_id, "platform": platform.value, "account_id": grant.account_id},
        )
        return CallbackOutcome(
            status="success",
            message=f"Your {name} account is now connected. You can close this window.",
        )

    def connection_state(
        self, user_id: str, platform: Platform, now: Optional[datetime] = None
    ) -> ConnectionState:
        token = self._vault.get(user_id, platform)
        if token is not None and token.access_token:
            if not self._vault.is_expired(token, now):
                return ConnectionState.CONNECTED
            if token.refresh_token and self._adapter(platform).supports_refresh:
                return ConnectionState.CONNECTED
            return ConnectionState.EXPIRED
        if self._states.has_pending(user_id, platform, now):
            return ConnectionState.PENDING_AUTHORIZATION
        return ConnectionState.DISCONNECTED

    def status(self, user_id: str, platform: Platform) -> ConnectionStatus:
        """Status derived from the stored row; not being connected is not an error."""
        token = self._vault.get(user_id, platform)
        state = self.connection_state(user_id, platform)
        if token is None:
            return ConnectionStatus(platform=platform, connected=False, state=state)
        return ConnectionStatus(
            platform=platform,
            connected=state is ConnectionState.CONNECTED,
            state=state,
            account_id=token.account_id,
            account_username=token.account_username,
            expires_at=token.expires_at,
            updated_at=token.updated_at,
        )

    def disconnect(self, user_id: str, platform: Platform) -> bool:
        removed = self._vault.delete(user_id, platform)
        logger.info(
            "Platform disconnected",
            extra={"user_id": user_id, "platform": platform.value, "removed": removed},
        )
        return removed


__all__ = ["CallbackOutcome", "ConnectionService"]
