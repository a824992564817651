"""
Execution of logical Notion operations on behalf of a connected user.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Type

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from notion_link.clients import NotionAPIClient
from notion_link.core.config import TokenSettings
from notion_link.core.errors import (
    InvalidRequestError,
    UnsupportedOperationError,
    UpstreamAuthenticationError,
)
from notion_link.services.normalize import (
    normalize_database,
    normalize_page,
    normalize_results,
    normalize_user,
    normalize_user_list,
)
from notion_link.services.notion_tokens import TokenVault
from notion_link.utils.http import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)

JSON = Dict[str, Any]


class _Params(BaseModel):
    model_config = ConfigDict(extra="ignore")


class NoParams(_Params):
    pass


class SearchParams(_Params):
    query: Optional[str] = None
    page_size: int = Field(10, ge=1, le=100)
    start_cursor: Optional[str] = None


class PageParams(_Params):
    page_id: str = Field(..., min_length=1, validation_alias=AliasChoices("page_id", "id"))


class DatabaseParams(_Params):
    database_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("database_id", "id")
    )


class QueryDatabaseParams(DatabaseParams):
    filter: Optional[Dict[str, Any]] = None
    sorts: Optional[List[Dict[str, Any]]] = None
    page_size: int = Field(10, ge=1, le=100)
    start_cursor: Optional[str] = None


class ListUsersParams(_Params):
    page_size: Optional[int] = Field(None, ge=1, le=100)
    start_cursor: Optional[str] = None


OPERATION_ALIASES: Dict[str, str] = {
    "search": "search",
    "search_pages": "search_pages",
    "list_pages": "search_pages",
    "notion-search-pages": "search_pages",
    "search_databases": "search_databases",
    "list_databases": "search_databases",
    "notion-search-databases": "search_databases",
    "get_page": "get_page",
    "fetch_page": "get_page",
    "retrieve_page": "get_page",
    "get_database": "get_database",
    "fetch_database": "get_database",
    "retrieve_database": "get_database",
    "query_database": "query_database",
    "notion-query-database": "query_database",
    "get_self": "get_self",
    "get_bot_user": "get_self",
    "whoami": "get_self",
    "list_users": "list_users",
    "get_users": "list_users",
}

Handler = Callable[[str, Any], Awaitable[JSON]]


class RequestOrchestrator:
    """Maps operation names to Notion calls and recovers once from a 401."""

    def __init__(
        self,
        token_vault: TokenVault,
        api_client: NotionAPIClient,
        token_settings: TokenSettings,
        *,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._vault = token_vault
        self._api = api_client
        self._sleep = sleep
        self._retry = RetryConfig(
            attempts=3,
            backoff_seconds=token_settings.network_retry_base_delay_seconds,
            retry_after_cap_seconds=token_settings.retry_after_cap_seconds,
        )
        self._operations: Dict[str, Tuple[Type[_Params], Handler]] = {
            "search": (SearchParams, self._search),
            "search_pages": (SearchParams, self._search_pages),
            "search_databases": (SearchParams, self._search_databases),
            "get_page": (PageParams, self._get_page),
            "get_database": (DatabaseParams, self._get_database),
            "query_database": (QueryDatabaseParams, self._query_database),
            "get_self": (NoParams, self._get_self),
            "list_users": (ListUsersParams, self._list_users),
        }

    async def execute(
        self, user_id: str, operation: str, params: Optional[Mapping[str, Any]] = None
    ) -> JSON:
        canonical = OPERATION_ALIASES.get(operation)
        if canonical is None:
            raise UnsupportedOperationError(f"Unsupported operation: {operation}")
        model, handler = self._operations[canonical]
        try:
            parsed = model.model_validate(dict(params or {}))
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(loc) for loc in error['loc']) or 'params'}: {error['msg']}"
                for error in exc.errors()
            )
            raise InvalidRequestError(f"Invalid parameters for {operation}: {details}") from exc

        logger.info("Executing Notion operation %s for user %s", canonical, user_id)
        access_token = await self._vault.get_valid_access_token(user_id)
        try:
            result = await self._invoke(handler, access_token, parsed)
        except UpstreamAuthenticationError:
            logger.warning(
                "Notion rejected the token for user %s; refreshing and retrying once",
                user_id,
            )
            access_token = await self._vault.refresh_access_token(
                user_id, rejected_token=access_token
            )
            result = await self._invoke(handler, access_token, parsed)

        self._vault.touch(user_id)
        return result

    async def _invoke(self, handler: Handler, access_token: str, params: Any) -> JSON:
        return await call_with_retry(
            handler, access_token, params, retry_config=self._retry, sleep=self._sleep
        )

    # Operations ------------------------------------------------------------

    async def _search(self, token: str, params: SearchParams) -> JSON:
        return await self._search_kind(token, params, None)

    async def _search_pages(self, token: str, params: SearchParams) -> JSON:
        return await self._search_kind(token, params, "page")

    async def _search_databases(self, token: str, params: SearchParams) -> JSON:
        return await self._search_kind(token, params, "database")

    async def _search_kind(
        self, token: str, params: SearchParams, object_type: Optional[str]
    ) -> JSON:
        payload = await self._api.search(
            token,
            query=params.query,
            object_type=object_type,
            page_size=params.page_size,
            start_cursor=params.start_cursor,
        )
        return normalize_results(payload)

    async def _get_page(self, token: str, params: PageParams) -> JSON:
        return {"page": normalize_page(await self._api.get_page(token, params.page_id))}

    async def _get_database(self, token: str, params: DatabaseParams) -> JSON:
        database = await self._api.get_database(token, params.database_id)
        return {"database": normalize_database(database)}

    async def _query_database(self, token: str, params: QueryDatabaseParams) -> JSON:
        payload = await self._api.query_database(
            token,
            params.database_id,
            filter=params.filter,
            sorts=params.sorts,
            page_size=params.page_size,
            start_cursor=params.start_cursor,
        )
        return normalize_results(payload)

    async def _get_self(self, token: str, params: NoParams) -> JSON:
        return {"user": normalize_user(await self._api.get_bot_user(token))}

    async def _list_users(self, token: str, params: ListUsersParams) -> JSON:
        payload = await self._api.list_users(
            token, page_size=params.page_size, start_cursor=params.start_cursor
        )
        return normalize_user_list(payload)


__all__ = [
    "OPERATION_ALIASES",
    "DatabaseParams",
    "ListUsersParams",
    "PageParams",
    "QueryDatabaseParams",
    "RequestOrchestrator",
    "SearchParams",
]
