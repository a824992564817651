"""
Thin async client for Notion's REST API.

Every method performs exactly one request and classifies failures into the
service's error taxonomy; retry decisions belong to the caller.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any, Dict, List, Optional

import httpx

from notion_link.core.config import HttpSettings, NotionSettings
from notion_link.core.errors import (
    RateLimitedError,
    UpstreamAuthenticationError,
    UpstreamNetworkError,
    UpstreamRequestError,
)
from notion_link.utils.http import parse_retry_after

logger = logging.getLogger(__name__)

JSON = Dict[str, Any]


class NotionAPIClient:
    """Authenticated calls against ``api.notion.com``."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        notion_settings: NotionSettings,
        http_settings: HttpSettings,
    ) -> None:
        self._http = http_client
        self._base_url = notion_settings.api_base_url.rstrip("/")
        self._version = notion_settings.api_version
        self._timeout = http_settings.api_timeout

    async def _request(
        self,
        access_token: str,
        method: str,
        endpoint: str,
        *,
        body: Optional[JSON] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> JSON:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Notion-Version": self._version,
        }
        logger.debug("Notion API request %s %s", method, endpoint)
        try:
            response = await self._http.request(
                method,
                f"{self._base_url}{endpoint}",
                headers=headers,
                json=body,
                params=params,
                timeout=self._timeout,
            )
        except httpx.TransportError as exc:
            raise UpstreamNetworkError(f"Notion request failed: {exc}") from exc

        if response.status_code == HTTPStatus.UNAUTHORIZED:
            raise UpstreamAuthenticationError()
        if response.status_code == HTTPStatus.TOO_MANY_REQUESTS:
            raise RateLimitedError(retry_after=parse_retry_after(response))
        if not response.is_success:
            logger.error(
                "Notion %s %s failed with status %s",
                method,
                endpoint,
                response.status_code,
            )
            raise UpstreamRequestError(
                f"Notion request failed: {response.status_code} {response.text[:200]}",
                status=response.status_code,
            )
        return response.json()

    async def search(
        self,
        access_token: str,
        *,
        query: Optional[str] = None,
        object_type: Optional[str] = None,
        page_size: int = 10,
        start_cursor: Optional[str] = None,
    ) -> JSON:
        """https://developers.notion.com/reference/post-search"""
        body: JSON = {"page_size": page_size}
        if query:
            body["query"] = query
        if start_cursor:
            body["start_cursor"] = start_cursor
        if object_type:
            body["filter"] = {"property": "object", "value": object_type}
        return await self._request(access_token, "POST", "/search", body=body)

    async def get_page(self, access_token: str, page_id: str) -> JSON:
        return await self._request(access_token, "GET", f"/pages/{page_id}")

    async def get_database(self, access_token: str, database_id: str) -> JSON:
        return await self._request(access_token, "GET", f"/databases/{database_id}")

    async def query_database(
        self,
        access_token: str,
        database_id: str,
        *,
        filter: Optional[JSON] = None,
        sorts: Optional[List[JSON]] = None,
        page_size: int = 10,
        start_cursor: Optional[str] = None,
    ) -> JSON:
        """https://developers.notion.com/reference/post-database-query"""
        body: JSON = {"page_size": page_size}
        if start_cursor:
            body["start_cursor"] = start_cursor
        if filter:
            body["filter"] = filter
        if sorts:
            body["sorts"] = sorts
        return await self._request(
            access_token, "POST", f"/databases/{database_id}/query", body=body
        )

    async def get_bot_user(self, access_token: str) -> JSON:
        return await self._request(access_token, "GET", "/users/me")

    async def list_users(
        self,
        access_token: str,
        *,
        page_size: Optional[int] = None,
        start_cursor: Optional[str] = None,
    ) -> JSON:
        params: Dict[str, Any] = {}
        if page_size:
            params["page_size"] = page_size
        if start_cursor:
            params["start_cursor"] = start_cursor
        return await self._request(access_token, "GET", "/users", params=params or None)


__all__ = ["NotionAPIClient"]
