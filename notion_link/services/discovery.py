"""
OAuth metadata discovery for the Notion authorization server.

Follows RFC 9728 (protected resource metadata) to find the authorization
server, then RFC 8414 for its endpoints. When discovery is unreachable or
incomplete the statically configured Notion endpoints are used instead.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional
from urllib.parse import urlsplit

import httpx
from pydantic import ValidationError

from notion_link.core.config import HttpSettings, NotionSettings
from notion_link.core.errors import ProviderConfigurationError, ProviderUnavailableError
from notion_link.models.oauth import (
    AuthorizationServerMetadata,
    ProtectedResourceMetadata,
)
from notion_link.services.pkce import CHALLENGE_METHOD

logger = logging.getLogger(__name__)

_RESOURCE_WELL_KNOWN = "/.well-known/oauth-protected-resource"
_AS_WELL_KNOWN = "/.well-known/oauth-authorization-server"


class _DiscoveryUnreachable(Exception):
    """Discovery could not reach a well-known document."""


class _DiscoveryIncomplete(Exception):
    """A well-known document was reachable but unusable."""


class MetadataCache:
    """Holds one discovered metadata document for a bounded time."""

    def __init__(
        self, *, ttl_seconds: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._value: Optional[AuthorizationServerMetadata] = None
        self._expires_at = 0.0

    def get(self) -> Optional[AuthorizationServerMetadata]:
        if self._value is None or self._clock() >= self._expires_at:
            return None
        return self._value

    def put(self, metadata: AuthorizationServerMetadata) -> None:
        self._value = metadata
        self._expires_at = self._clock() + self._ttl

    def clear(self) -> None:
        self._value = None
        self._expires_at = 0.0


def authorization_server_metadata_url(issuer: str) -> str:
    """Insert the RFC 8414 well-known segment between origin and issuer path."""
    parts = urlsplit(issuer)
    path = parts.path.rstrip("/")
    return f"{parts.scheme}://{parts.netloc}{_AS_WELL_KNOWN}{path}"


class MetadataDiscoverer:
    """Resolve and cache the authorization server's endpoints."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache: MetadataCache,
        notion_settings: NotionSettings,
        http_settings: HttpSettings,
    ) -> None:
        self._http = http_client
        self._cache = cache
        self._notion = notion_settings
        self._timeout = http_settings.discovery_timeout

    def clear_cache(self) -> None:
        self._cache.clear()

    async def discover(self, *, force_refresh: bool = False) -> AuthorizationServerMetadata:
        """Return usable metadata; both endpoints are guaranteed to be set."""
        if force_refresh:
            self._cache.clear()
        cached = self._cache.get()
        if cached is not None:
            logger.debug("Using cached OAuth metadata")
            return cached

        try:
            metadata = await self._discover_remote()
        except _DiscoveryUnreachable as exc:
            logger.warning("OAuth discovery unreachable: %s", exc)
            metadata = self._static_metadata()
            if metadata is None:
                raise ProviderUnavailableError(
                    "OAuth discovery failed and no static endpoints are configured."
                ) from exc
        except _DiscoveryIncomplete as exc:
            logger.warning("OAuth discovery incomplete: %s", exc)
            metadata = self._static_metadata()
            if metadata is None:
                raise ProviderConfigurationError(
                    f"OAuth metadata is incomplete: {exc}"
                ) from exc

        self._cache.put(metadata)
        logger.info(
            "OAuth metadata cached (authorization_endpoint=%s, token_endpoint=%s)",
            metadata.authorization_endpoint,
            metadata.token_endpoint,
        )
        return metadata

    async def _discover_remote(self) -> AuthorizationServerMetadata:
        resource_url = self._notion.resource_url.rstrip("/") + _RESOURCE_WELL_KNOWN
        logger.info("Fetching protected resource metadata from %s", resource_url)
        try:
            resource = ProtectedResourceMetadata.model_validate(
                await self._get_json(resource_url)
            )
        except ValidationError as exc:
            raise _DiscoveryIncomplete("protected resource metadata is malformed") from exc
        if not resource.authorization_servers:
            raise _DiscoveryIncomplete("no authorization servers advertised")

        as_url = authorization_server_metadata_url(resource.authorization_servers[0])
        logger.info("Fetching authorization server metadata from %s", as_url)
        try:
            metadata = AuthorizationServerMetadata.model_validate(
                await self._get_json(as_url)
            )
        except ValidationError as exc:
            raise _DiscoveryIncomplete(
                "authorization server metadata is malformed"
            ) from exc

        if not metadata.authorization_endpoint or not metadata.token_endpoint:
            raise _DiscoveryIncomplete("authorization server metadata lacks endpoints")
        if CHALLENGE_METHOD not in metadata.code_challenge_methods_supported:
            raise ProviderConfigurationError(
                "Authorization server does not support the S256 PKCE method."
            )
        return metadata

    async def _get_json(self, url: str) -> object:
        try:
            response = await self._http.get(
                url, headers={"Accept": "application/json"}, timeout=self._timeout
            )
        except httpx.TransportError as exc:
            raise _DiscoveryUnreachable(f"{url}: {exc}") from exc
        if response.status_code >= 500:
            raise _DiscoveryUnreachable(f"{url} returned {response.status_code}")
        if not response.is_success:
            raise _DiscoveryIncomplete(f"{url} returned {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise _DiscoveryIncomplete(f"{url} did not return JSON") from exc

    def _static_metadata(self) -> Optional[AuthorizationServerMetadata]:
        authorization_endpoint = self._notion.authorization_endpoint
        token_endpoint = self._notion.token_endpoint
        if not authorization_endpoint or not token_endpoint:
            return None
        logger.info("Using statically configured Notion OAuth endpoints")
        parts = urlsplit(token_endpoint)
        return AuthorizationServerMetadata(
            issuer=f"{parts.scheme}://{parts.netloc}",
            authorization_endpoint=authorization_endpoint,
            token_endpoint=token_endpoint,
            response_types_supported=["code"],
            code_challenge_methods_supported=[CHALLENGE_METHOD],
        )


__all__ = ["MetadataCache", "MetadataDiscoverer", "authorization_server_metadata_url"]
