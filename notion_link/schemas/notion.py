"""Schemas for the Notion proxy endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class ConnectionStatus(BaseModel):
    connected: bool
    workspace_name: Optional[str] = None
    workspace_id: Optional[str] = None
    connected_at: Optional[datetime] = None
    status: Literal["active", "disconnected"]


class NotionQueryRequest(BaseModel):
    """Logical operation to run against the user's workspace."""

    action: str = Field(..., min_length=1, description="Operation name or alias.")
    params: Dict[str, Any] = Field(default_factory=dict)


class DisconnectResult(BaseModel):
    success: bool


__all__ = ["ConnectionStatus", "DisconnectResult", "NotionQueryRequest"]
