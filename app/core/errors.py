"""
Error taxonomy shared by platform adapters, services and routes.
"""

from typing import Optional


class ConfigurationError(RuntimeError):
    """Raised when process-level platform credentials are missing."""


class PlatformAPIError(Exception):
    """An external API call failed; carries status and body for diagnosis."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.transient = transient


class OAuthTokenExchangeError(PlatformAPIError):
    """Raised when a token endpoint rejects a code or refresh grant."""


class NoEligibleAccountError(Exception):
    """Discovery completed but found no account that can be synced."""


class ReconnectRequiredError(Exception):
    """Stored credentials cannot be renewed without a new authorization."""


class ResponseShapeError(Exception):
    """An external payload did not match the expected structure."""


__all__ = [
    "ConfigurationError",
    "NoEligibleAccountError",
    "OAuthTokenExchangeError",
    "PlatformAPIError",
    "ReconnectRequiredError",
    "ResponseShapeError",
]
