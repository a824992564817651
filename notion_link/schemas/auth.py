"""Schemas related to the Notion OAuth flow."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class AuthorizationUrlResponse(BaseModel):
    url: str = Field(..., description="Notion consent URL to send the user to.")


class OAuthCallbackPayload(BaseModel):
    """Payload sent to complete the OAuth callback exchange."""

    code: str = Field(..., min_length=1, description="Authorization code returned by Notion.")
    state: str = Field(..., min_length=1, description="Opaque state issued when starting OAuth.")


class OAuthCallbackResult(BaseModel):
    success: bool
    workspace_name: Optional[str] = None


__all__ = ["AuthorizationUrlResponse", "OAuthCallbackPayload", "OAuthCallbackResult"]
