"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache
from typing import Optional

import httpx

from notion_link.clients import (
    NotionAPIClient,
    NotionOAuthClient,
    SharedCache,
    SQLiteStore,
    build_cache,
)
from notion_link.core.config import AppSettings
from notion_link.services import (
    AuthorizationFlowManager,
    CallbackHandler,
    HealthMonitor,
    LastUsedRecorder,
    MetadataCache,
    MetadataDiscoverer,
    RequestOrchestrator,
    StateSweeper,
    TokenCipherService,
    TokenVault,
)

from .config import get_app_settings, pin_settings


@lru_cache()
def get_http_client() -> httpx.AsyncClient:
    """Provide the process-wide outbound HTTP client."""
    return httpx.AsyncClient(follow_redirects=False)


@lru_cache()
def get_sqlite_store() -> SQLiteStore:
    """Provide shared SQLite record store."""
    settings = get_app_settings()
    return SQLiteStore(settings.storage.database_path)


@lru_cache()
def get_shared_cache() -> SharedCache:
    """Provide the token cache and refresh lock backend."""
    settings = get_app_settings()
    return build_cache(settings.storage.redis_url)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = get_app_settings()
    return TokenCipherService.from_base64_key(settings.security.token_encryption_key)


@lru_cache()
def get_metadata_discoverer() -> MetadataDiscoverer:
    settings = get_app_settings()
    return MetadataDiscoverer(
        get_http_client(),
        MetadataCache(ttl_seconds=settings.oauth.metadata_cache_ttl_seconds),
        settings.notion,
        settings.http,
    )


@lru_cache()
def get_notion_oauth_client() -> NotionOAuthClient:
    settings = get_app_settings()
    return NotionOAuthClient(get_http_client(), settings.notion, settings.http)


@lru_cache()
def get_notion_api_client() -> NotionAPIClient:
    settings = get_app_settings()
    return NotionAPIClient(get_http_client(), settings.notion, settings.http)


@lru_cache()
def get_last_used_recorder() -> LastUsedRecorder:
    return LastUsedRecorder(get_sqlite_store())


@lru_cache()
def get_state_sweeper() -> StateSweeper:
    return StateSweeper(get_sqlite_store(), get_app_settings().oauth)


@lru_cache()
def get_token_vault() -> TokenVault:
    """Provide the encrypted token vault."""
    settings = get_app_settings()
    return TokenVault(
        store=get_sqlite_store(),
        cache=get_shared_cache(),
        oauth_client=get_notion_oauth_client(),
        discoverer=get_metadata_discoverer(),
        token_cipher=get_token_cipher_service(),
        token_settings=settings.tokens,
        recorder=get_last_used_recorder(),
    )


def get_authorization_flow() -> AuthorizationFlowManager:
    settings = get_app_settings()
    return AuthorizationFlowManager(
        store=get_sqlite_store(),
        discoverer=get_metadata_discoverer(),
        token_cipher=get_token_cipher_service(),
        notion_settings=settings.notion,
        oauth_settings=settings.oauth,
    )


def get_callback_handler() -> CallbackHandler:
    return CallbackHandler(
        store=get_sqlite_store(),
        discoverer=get_metadata_discoverer(),
        oauth_client=get_notion_oauth_client(),
        token_cipher=get_token_cipher_service(),
        token_vault=get_token_vault(),
    )


def get_request_orchestrator() -> RequestOrchestrator:
    return RequestOrchestrator(
        token_vault=get_token_vault(),
        api_client=get_notion_api_client(),
        token_settings=get_app_settings().tokens,
    )


def get_health_monitor() -> HealthMonitor:
    return HealthMonitor(get_sqlite_store, get_shared_cache)


_SHARED_FACTORIES = (
    get_http_client,
    get_sqlite_store,
    get_shared_cache,
    get_token_cipher_service,
    get_metadata_discoverer,
    get_notion_oauth_client,
    get_notion_api_client,
    get_last_used_recorder,
    get_state_sweeper,
    get_token_vault,
)


def use_settings(settings: Optional[AppSettings]) -> None:
    """Build every shared dependency from ``settings`` from now on.

    Call before the application starts serving; instances built earlier are
    dropped, not closed.
    """
    pin_settings(settings)
    for factory in _SHARED_FACTORIES:
        factory.cache_clear()


__all__ = [
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
