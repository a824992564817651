"""
FastAPI routes for the Notion connection service.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from notion_link.core.errors import UnauthenticatedError
from notion_link.dependencies import (
    get_authorization_flow,
    get_callback_handler,
    get_health_monitor,
    get_request_orchestrator,
    get_token_vault,
)
from notion_link.schemas import (
    AuthorizationUrlResponse,
    ConnectionStatus,
    DisconnectResult,
    NotionQueryRequest,
    OAuthCallbackPayload,
    OAuthCallbackResult,
)
from notion_link.services import (
    AuthorizationFlowManager,
    CallbackHandler,
    HealthMonitor,
    RequestOrchestrator,
    TokenVault,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def get_current_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> str:
    """Identity of the signed-in user, supplied by the session layer upstream."""
    if not x_user_id or not x_user_id.strip():
        raise UnauthenticatedError()
    return x_user_id.strip()


UserId = Annotated[str, Depends(get_current_user_id)]


@router.get("/health")
async def healthcheck(
    monitor: Annotated[HealthMonitor, Depends(get_health_monitor)],
) -> JSONResponse:
    """Report whether the database and the shared cache are reachable."""
    report = await monitor.check()
    status_code = (
        HTTPStatus.OK if report["status"] == "ok" else HTTPStatus.SERVICE_UNAVAILABLE
    )
    return JSONResponse(status_code=status_code, content=report)


@router.post("/auth/notion/connect", response_model=AuthorizationUrlResponse)
async def begin_notion_authorization(
    request: Request,
    user_id: UserId,
    flow: Annotated[AuthorizationFlowManager, Depends(get_authorization_flow)],
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Notion consent screen.",
    ),
) -> Any:
    """Start the OAuth flow and return the Notion authorization URL."""
    url = await flow.begin(user_id)
    logger.info("Authorization started for user %s", user_id)

    wants_html = "text/html" in request.headers.get("accept", "").lower()
    if redirect or wants_html:
        return RedirectResponse(url=url, status_code=HTTPStatus.SEE_OTHER)
    return {"url": url}


@router.post("/auth/notion/callback", response_model=OAuthCallbackResult)
async def complete_notion_authorization(
    payload: OAuthCallbackPayload,
    user_id: UserId,
    handler: Annotated[CallbackHandler, Depends(get_callback_handler)],
) -> Dict[str, Any]:
    """Validate the returned state, exchange the code and store the tokens."""
    return await handler.handle_callback(payload.code, payload.state, user_id)


@router.get("/notion/status", response_model=ConnectionStatus)
async def notion_connection_status(
    user_id: UserId,
    vault: Annotated[TokenVault, Depends(get_token_vault)],
) -> Dict[str, Any]:
    return vault.get_connection_status(user_id)


@router.post("/notion/query")
async def run_notion_operation(
    body: NotionQueryRequest,
    user_id: UserId,
    orchestrator: Annotated[RequestOrchestrator, Depends(get_request_orchestrator)],
) -> Dict[str, Any]:
    """Run a logical Notion operation and return its normalized result."""
    logger.info("Notion query %s for user %s", body.action, user_id)
    return await orchestrator.execute(user_id, body.action, body.params)


@router.post("/notion/disconnect", response_model=DisconnectResult)
async def disconnect_notion(
    user_id: UserId,
    vault: Annotated[TokenVault, Depends(get_token_vault)],
) -> Dict[str, Any]:
    logger.info("Disconnect requested by user %s", user_id)
    await vault.disconnect(user_id)
    return {"success": True}


__all__ = ["get_current_user_id", "router"]
