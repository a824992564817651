"""
Domain models for OAuth state, token responses and stored connections.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ConnectionStatusValue = Literal["active", "disconnected"]


@dataclass(frozen=True)
class EncryptedSecret:
    """Ciphertext with the 16-byte GCM tag appended, plus its nonce."""

    ciphertext: bytes
    iv: bytes


class AuthorizationServerMetadata(BaseModel):
    """Subset of RFC 8414 authorization server metadata used by the flow."""

    model_config = ConfigDict(extra="ignore")

    issuer: Optional[str] = None
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    revocation_endpoint: Optional[str] = None
    scopes_supported: List[str] = Field(default_factory=list)
    response_types_supported: List[str] = Field(default_factory=list)
    code_challenge_methods_supported: List[str] = Field(default_factory=list)


class ProtectedResourceMetadata(BaseModel):
    """RFC 9728 protected resource metadata."""

    model_config = ConfigDict(extra="ignore")

    resource: Optional[str] = None
    authorization_servers: List[str] = Field(default_factory=list)


class TokenResponse(BaseModel):
    """Token endpoint response. Notion omits ``expires_in`` for non-expiring tokens."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: str = "bearer"
    scope: Optional[str] = None
    workspace_id: Optional[str] = None
    workspace_name: Optional[str] = None
    bot_id: Optional[str] = None


class OAuthStateRecord(BaseModel):
    """Represents a row of the ``oauth_states`` table."""

    id: str
    state_value: str
    user_id: str
    encrypted_pkce_verifier: bytes
    pkce_verifier_iv: bytes
    created_at: datetime
    expires_at: datetime
    consumed: bool = False


class StoredConnection(BaseModel):
    """Represents a row of the ``notion_connections`` table."""

    id: str
    user_id: str
    encrypted_access_token: Optional[bytes] = None
    access_token_iv: Optional[bytes] = None
    encrypted_refresh_token: Optional[bytes] = None
    refresh_token_iv: Optional[bytes] = None
    expires_at: datetime
    scope: Optional[str] = None
    workspace_id: Optional[str] = None
    workspace_name: Optional[str] = None
    status: ConnectionStatusValue = "active"
    refresh_count: int = 0
    last_used_at: Optional[datetime] = None
    refreshed_at: Optional[datetime] = None
    disconnected_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def has_access_token(self) -> bool:
        return bool(self.encrypted_access_token and self.access_token_iv)

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.encrypted_refresh_token and self.refresh_token_iv)


__all__ = [
    "AuthorizationServerMetadata",
    "ConnectionStatusValue",
    "EncryptedSecret",
    "OAuthStateRecord",
    "ProtectedResourceMetadata",
    "StoredConnection",
    "TokenResponse",
]
