"""Schemas for the platform connection flow."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.models.platform import ConnectionState, Platform


class AuthorizeRequest(BaseModel):
    force_reauth: Optional[bool] = Field(
        None,
        description="Ask the provider to prompt again; defaults per platform.",
    )


class AuthorizeResponse(BaseModel):
    """Where to send the user to grant access."""

    authorization_url: str
    redirect_uri: str


class ConnectionStatus(BaseModel):
    """Connection details derived from the stored credentials."""

    platform: Platform
    connected: bool
    state: ConnectionState
    account_id: Optional[str] = None
    account_username: Optional[str] = None
    expires_at: Optional[str] = None
    updated_at: Optional[datetime] = None


class DisconnectResponse(BaseModel):
    platform: Platform
    disconnected: bool


class ClaimVideoRequest(BaseModel):
    reference: str = Field(
        ...,
        min_length=1,
        description="YouTube video id or a watch, shorts or youtu.be URL.",
    )


class ClaimVideoResponse(BaseModel):
    content_id: str
    title: Optional[str] = None
    link: str
    already_linked: bool


__all__ = [
    "AuthorizeRequest",
    "AuthorizeResponse",
    "ClaimVideoRequest",
    "ClaimVideoResponse",
    "ConnectionStatus",
    "DisconnectResponse",
]
