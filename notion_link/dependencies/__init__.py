"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_authorization_flow,
    get_callback_handler,
    get_health_monitor,
    get_http_client,
    get_last_used_recorder,
    get_metadata_discoverer,
    get_notion_api_client,
    get_notion_oauth_client,
    get_request_orchestrator,
    get_shared_cache,
    get_sqlite_store,
    get_state_sweeper,
    get_token_cipher_service,
    get_token_vault,
    use_settings,
)
from .config import get_app_settings

__all__ = [
    "get_app_settings",
    "get_authorization_flow",
    "get_callback_handler",
    "get_health_monitor",
    "get_http_client",
    "get_last_used_recorder",
    "get_metadata_discoverer",
    "get_notion_api_client",
    "get_notion_oauth_client",
    "get_request_orchestrator",
    "get_shared_cache",
    "get_sqlite_store",
    "get_state_sweeper",
    "get_token_cipher_service",
    "get_token_vault",
    "use_settings",
]
