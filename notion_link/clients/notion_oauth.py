"""
Notion OAuth utilities.

These helpers talk to the token endpoint for the authorization-code and
refresh-token grants and classify its failures.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any, Dict

import httpx
from pydantic import ValidationError

from notion_link.core.config import HttpSettings, NotionSettings
from notion_link.core.errors import (
    InvalidGrantError,
    RateLimitedError,
    TokenExchangeError,
    TokenRefreshError,
    UpstreamNetworkError,
)
from notion_link.models.oauth import TokenResponse
from notion_link.utils.http import parse_retry_after

logger = logging.getLogger(__name__)


def _error_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class NotionOAuthClient:
    """Call the Notion token endpoint for code exchange and refresh."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        notion_settings: NotionSettings,
        http_settings: HttpSettings,
    ) -> None:
        self._http = http_client
        self._notion = notion_settings
        self._timeout = http_settings.token_timeout

    async def exchange_authorization_code(
        self, *, token_endpoint: str, code: str, code_verifier: str
    ) -> TokenResponse:
        """Exchange an authorization code plus PKCE verifier for tokens."""
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": str(self._notion.redirect_uri),
            "client_id": self._notion.client_id,
            "code_verifier": code_verifier,
        }
        if self._notion.is_confidential_client:
            payload["client_secret"] = self._notion.client_secret

        try:
            response = await self._http.post(
                token_endpoint,
                data=payload,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.TransportError as exc:
            raise TokenExchangeError(
                f"Network error during token exchange: {exc}", retryable=True
            ) from exc

        if not response.is_success:
            body = _error_body(response)
            description = (
                body.get("error_description") or body.get("error") or "Unknown error"
            )
            raise TokenExchangeError(
                f"Token exchange failed ({response.status_code}): {description}",
                retryable=False,
            )

        try:
            return TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise TokenExchangeError(
                "Incomplete token payload returned from Notion.", retryable=False
            ) from exc

    async def refresh_token(self, *, token_endpoint: str, refresh_token: str) -> TokenResponse:
        """Run one refresh-token grant. Retries are the caller's concern."""
        payload = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        auth = None
        if self._notion.is_confidential_client:
            auth = httpx.BasicAuth(self._notion.client_id, self._notion.client_secret)
        else:
            payload["client_id"] = self._notion.client_id

        try:
            response = await self._http.post(
                token_endpoint,
                data=payload,
                auth=auth,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.TransportError as exc:
            raise UpstreamNetworkError(f"Network error during token refresh: {exc}") from exc

        if response.is_success:
            try:
                return TokenResponse.model_validate(response.json())
            except (ValueError, ValidationError) as exc:
                raise TokenRefreshError(
                    "Incomplete refresh payload returned from Notion."
                ) from exc

        if response.status_code in (HTTPStatus.BAD_REQUEST, HTTPStatus.UNAUTHORIZED):
            if _error_body(response).get("error") == "invalid_grant":
                raise InvalidGrantError()

        if response.status_code == HTTPStatus.TOO_MANY_REQUESTS:
            raise RateLimitedError(
                "Token endpoint rate limited the refresh.",
                retry_after=parse_retry_after(response),
            )

        raise TokenRefreshError(f"Token refresh failed with status {response.status_code}")


__all__ = ["NotionOAuthClient"]
