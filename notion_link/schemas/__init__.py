"""Public schema exports."""

from .auth import AuthorizationUrlResponse, OAuthCallbackPayload, OAuthCallbackResult
from .notion import ConnectionStatus, DisconnectResult, NotionQueryRequest

__all__ = [
    "AuthorizationUrlResponse",
    "ConnectionStatus",
    "DisconnectResult",
    "NotionQueryRequest",
    "OAuthCallbackPayload",
    "OAuthCallbackResult",
]
