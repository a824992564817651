"""
Closed error taxonomy shared by every layer of the service.

Each class carries the HTTP status, the boundary error code and whether the
caller may retry. Failures are classified where they are raised; callers
dispatch on the class, never on message text.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Dict, Optional

RECONNECTION_REQUIRED = "reconnection_required"
PROVIDER_UNAVAILABLE = "provider_unavailable"
RATE_LIMITED = "rate_limited"
INTERNAL_ERROR = "internal_error"


class NotionLinkError(Exception):
    """Base class for every error surfaced at the service boundary."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    code: str = INTERNAL_ERROR
    retryable: bool = False
    default_message: str = "Unexpected error."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_envelope(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "retryable": self.retryable,
            }
        }


# Configuration -------------------------------------------------------------


class ConfigurationError(NotionLinkError):
    """Raised when process configuration is unusable."""

    default_message = "Service is misconfigured."


class ProviderConfigurationError(ConfigurationError):
    """Raised when provider metadata is present but unusable."""

    default_message = "OAuth provider metadata is invalid."


class DecryptionError(NotionLinkError):
    """Raised when a stored secret fails integrity checks."""

    default_message = "Stored secret could not be decrypted."


# Caller --------------------------------------------------------------------


class InvalidRequestError(NotionLinkError):
    status_code = HTTPStatus.BAD_REQUEST
    default_message = "Invalid request."


class UnsupportedOperationError(InvalidRequestError):
    default_message = "Unsupported operation."


class UnauthenticatedError(NotionLinkError):
    """The caller's session could not be identified."""

    status_code = HTTPStatus.UNAUTHORIZED
    default_message = "Authentication required."


class CsrfRejectedError(NotionLinkError):
    status_code = HTTPStatus.FORBIDDEN
    default_message = "Invalid request origin."


class OAuthStateError(InvalidRequestError):
    default_message = "Invalid OAuth state."


class UnknownStateError(OAuthStateError):
    default_message = "Unknown state parameter."


class ReplayDetectedError(OAuthStateError):
    default_message = "State already consumed; possible replay."


class StateExpiredError(OAuthStateError):
    default_message = "State expired."


class StateOwnershipMismatchError(OAuthStateError):
    status_code = HTTPStatus.FORBIDDEN
    default_message = "State does not belong to this session."


# Authentication ------------------------------------------------------------


class ReconnectionRequiredError(NotionLinkError):
    status_code = HTTPStatus.UNAUTHORIZED
    code = RECONNECTION_REQUIRED
    default_message = "Notion connection expired. Please reconnect."


class NoConnectionError(ReconnectionRequiredError):
    status_code = HTTPStatus.NOT_FOUND
    default_message = "No Notion connection found."


class InvalidGrantError(ReconnectionRequiredError):
    """The token endpoint rejected the refresh token as revoked or rotated."""

    default_message = "Refresh token is no longer valid."


class UpstreamAuthenticationError(ReconnectionRequiredError):
    """The resource API rejected the access token."""

    default_message = "Notion rejected the access token."


# Upstream ------------------------------------------------------------------


class ProviderUnavailableError(NotionLinkError):
    status_code = HTTPStatus.BAD_GATEWAY
    code = PROVIDER_UNAVAILABLE
    retryable = True
    default_message = "Notion is unavailable. Please try again."


class UpstreamNetworkError(ProviderUnavailableError):
    """Transport-level failure: connect error, timeout, reset."""


class TokenExchangeError(ProviderUnavailableError):
    default_message = "Authorization code exchange failed."

    def __init__(self, message: Optional[str] = None, *, retryable: bool) -> None:
        super().__init__(message)
        self.retryable = retryable


class TokenRefreshError(ProviderUnavailableError):
    default_message = "Token refresh failed."


class UpstreamRequestError(ProviderUnavailableError):
    default_message = "Notion request failed."

    def __init__(self, message: Optional[str] = None, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class RateLimitedError(NotionLinkError):
    status_code = HTTPStatus.TOO_MANY_REQUESTS
    code = RATE_LIMITED
    retryable = True
    default_message = "Too many requests, please slow down."

    def __init__(self, message: Optional[str] = None, *, retry_after: float = 5.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


# Concurrency ---------------------------------------------------------------


class ConcurrentRefreshTimeoutError(NotionLinkError):
    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    code = PROVIDER_UNAVAILABLE
    retryable = True
    default_message = "Token refresh in progress, please try again."


__all__ = [
    "INTERNAL_ERROR",
    "PROVIDER_UNAVAILABLE",
    "RATE_LIMITED",
    "RECONNECTION_REQUIRED",
    "ConcurrentRefreshTimeoutError",
    "ConfigurationError",
    "CsrfRejectedError",
    "DecryptionError",
    "InvalidGrantError",
    "InvalidRequestError",
    "NoConnectionError",
    "NotionLinkError",
    "OAuthStateError",
    "ProviderConfigurationError",
    "ProviderUnavailableError",
    "RateLimitedError",
    "ReconnectionRequiredError",
    "ReplayDetectedError",
    "StateExpiredError",
    "StateOwnershipMismatchError",
    "TokenExchangeError",
    "TokenRefreshError",
    "UnauthenticatedError",
    "UnknownStateError",
    "UnsupportedOperationError",
    "UpstreamAuthenticationError",
    "UpstreamNetworkError",
    "UpstreamRequestError",
]
