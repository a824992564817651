"""
Encrypted storage, retrieval and refreshing of Notion OAuth tokens.

A connection moves between ``active`` and ``disconnected``; a refresh happens
under a per-user lock in the shared cache so that concurrent requests, in this
process or another, trigger at most one call to the token endpoint.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from redis.exceptions import RedisError

from notion_link.clients import NotionOAuthClient, SharedCache, SQLiteStore
from notion_link.clients.cache import access_token_key, refresh_lock_key
from notion_link.core.config import TokenSettings
from notion_link.core.errors import (
    ConcurrentRefreshTimeoutError,
    InvalidGrantError,
    NoConnectionError,
    ReconnectionRequiredError,
    TokenRefreshError,
    UpstreamNetworkError,
)
from notion_link.models.oauth import StoredConnection, TokenResponse
from notion_link.services.discovery import MetadataDiscoverer
from notion_link.services.token_cipher import TokenCipherService
from notion_link.services.usage import LastUsedRecorder
from notion_link.utils.http import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenVault:
    """Owns the lifecycle of each user's Notion connection tokens."""

    def __init__(
        self,
        store: SQLiteStore,
        cache: SharedCache,
        oauth_client: NotionOAuthClient,
        discoverer: MetadataDiscoverer,
        token_cipher: TokenCipherService,
        token_settings: TokenSettings,
        *,
        recorder: Optional[LastUsedRecorder] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._oauth = oauth_client
        self._discoverer = discoverer
        self._cipher = token_cipher
        self._settings = token_settings
        self._recorder = recorder
        self._sleep = sleep or asyncio.sleep
        self._buffer = timedelta(seconds=token_settings.refresh_buffer_seconds)
        self._retry = RetryConfig(
            attempts=token_settings.refresh_max_retries,
            backoff_seconds=token_settings.network_retry_base_delay_seconds,
            retry_after_cap_seconds=token_settings.retry_after_cap_seconds,
        )

    # Storage ---------------------------------------------------------------

    def _expiry_from(self, tokens: TokenResponse, now: datetime) -> datetime:
        lifetime = tokens.expires_in or self._settings.default_token_lifetime_seconds
        return now + timedelta(seconds=lifetime)

    async def store(self, user_id: str, tokens: TokenResponse) -> None:
        """Encrypt and upsert a freshly exchanged token set."""
        expires_at = self._expiry_from(tokens, _utcnow())
        self._store.upsert_connection(
            user_id=user_id,
            access_token=self._cipher.encrypt(tokens.access_token),
            refresh_token=(
                self._cipher.encrypt(tokens.refresh_token) if tokens.refresh_token else None
            ),
            expires_at=expires_at,
            scope=tokens.scope,
            workspace_id=tokens.workspace_id,
            workspace_name=tokens.workspace_name,
        )
        await self._cache.delete(access_token_key(user_id))
        logger.info(
            "Stored Notion tokens for user %s (expires %s)", user_id, expires_at.isoformat()
        )

    # Retrieval -------------------------------------------------------------

    def touch(self, user_id: str) -> None:
        if self._recorder is not None:
            self._recorder.notify(user_id)

    async def get_valid_access_token(self, user_id: str) -> str:
        """Return a usable access token, refreshing it when close to expiry."""
        cached = await self._cache.get(access_token_key(user_id))
        if cached:
            return cached

        connection = self._store.find_connection(user_id)
        if connection is None:
            raise NoConnectionError()
        if connection.status != "active" or not connection.has_access_token:
            raise ReconnectionRequiredError()

        now = _utcnow()
        remaining = connection.expires_at - now
        if remaining > self._buffer:
            access_token = self._decrypt_access_token(connection)
            ttl = remaining.total_seconds() - self._settings.cache_safety_margin_seconds
            await self._cache.set(
                access_token_key(user_id), access_token, ttl_seconds=max(1, int(ttl))
            )
            self.touch(user_id)
            return access_token

        logger.info("Access token for user %s is inside the refresh window", user_id)
        return await self.refresh_access_token(user_id)

    def _decrypt_access_token(self, connection: StoredConnection) -> str:
        return self._cipher.decrypt(
            connection.encrypted_access_token, connection.access_token_iv
        )

    # Refresh ---------------------------------------------------------------

    async def refresh_access_token(
        self, user_id: str, *, rejected_token: Optional[str] = None
    ) -> str:
        """Refresh under the per-user lock, or wait for the current holder.

        ``rejected_token`` is the access token the API just refused; a refresh
        counts as done once the stored token differs from it.
        """
        baseline = self._store.find_connection(user_id)
        if baseline is None:
            raise NoConnectionError()
        if baseline.status != "active":
            raise ReconnectionRequiredError()
        if rejected_token is not None:
            await self._cache.delete(access_token_key(user_id))

        lock_key = refresh_lock_key(user_id)
        owner = uuid.uuid4().hex
        acquired = await self._cache.acquire_lock(
            lock_key, owner, ttl_seconds=self._settings.refresh_lock_ttl_seconds
        )
        if not acquired:
            logger.info("Refresh for user %s already in progress; waiting", user_id)
            return await self._wait_for_refresh(
                user_id, baseline.expires_at, rejected_token
            )

        try:
            current = self._store.find_connection(user_id)
            if current is None:
                raise NoConnectionError()
            if current.status != "active":
                raise ReconnectionRequiredError()
            already = self._refreshed_token(current, baseline.expires_at, rejected_token)
            if already is not None:
                logger.info("Token for user %s was refreshed by another worker", user_id)
                return already
            return await self._refresh_locked(current)
        finally:
            await self._release_refresh_lock(user_id, lock_key, owner)

    async def _release_refresh_lock(self, user_id: str, lock_key: str, owner: str) -> None:
        try:
            released = await self._cache.release_lock(lock_key, owner)
        except RedisError as exc:
            logger.warning("Could not release refresh lock for user %s: %s", user_id, exc)
            return
        if not released:
            logger.warning("Refresh lock for user %s expired before it was released", user_id)

    def _refreshed_token(
        self,
        connection: StoredConnection,
        baseline_expires_at: datetime,
        rejected_token: Optional[str],
    ) -> Optional[str]:
        """Return the stored token when it is newer than what the caller saw."""
        if not connection.has_access_token or connection.expires_at <= _utcnow():
            return None
        if rejected_token is None and connection.expires_at <= baseline_expires_at:
            return None
        access_token = self._decrypt_access_token(connection)
        if rejected_token is not None and access_token == rejected_token:
            return None
        return access_token

    async def _wait_for_refresh(
        self,
        user_id: str,
        baseline_expires_at: datetime,
        rejected_token: Optional[str],
    ) -> str:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.refresh_wait_timeout_seconds
        while loop.time() < deadline:
            await self._sleep(self._settings.refresh_wait_poll_seconds)
            connection = self._store.find_connection(user_id)
            if connection is None:
                raise NoConnectionError()
            if connection.status != "active":
                raise ReconnectionRequiredError()
            access_token = self._refreshed_token(
                connection, baseline_expires_at, rejected_token
            )
            if access_token is not None:
                return access_token

        logger.warning("Timed out waiting for concurrent refresh for user %s", user_id)
        raise ConcurrentRefreshTimeoutError()

    async def _refresh_locked(self, connection: StoredConnection) -> str:
        user_id = connection.user_id
        if not connection.has_refresh_token:
            logger.warning("No refresh token stored for user %s; disconnecting", user_id)
            await self.disconnect(user_id)
            raise ReconnectionRequiredError("No refresh token available. Please reconnect.")

        refresh_token = self._cipher.decrypt(
            connection.encrypted_refresh_token, connection.refresh_token_iv
        )
        metadata = await self._discoverer.discover()
        try:
            tokens = await call_with_retry(
                self._oauth.refresh_token,
                token_endpoint=metadata.token_endpoint,
                refresh_token=refresh_token,
                retry_config=self._retry,
                sleep=self._sleep,
            )
        except InvalidGrantError:
            logger.warning("Refresh token for user %s was revoked; disconnecting", user_id)
            await self.disconnect(user_id)
            raise
        except UpstreamNetworkError as exc:
            raise TokenRefreshError(
                f"Token refresh failed after {self._retry.attempts} attempts."
            ) from exc

        now = _utcnow()
        expires_at = self._expiry_from(tokens, now)
        refresh_count = self._store.update_tokens_after_refresh(
            user_id=user_id,
            access_token=self._cipher.encrypt(tokens.access_token),
            refresh_token=self._cipher.encrypt(tokens.refresh_token or refresh_token),
            expires_at=expires_at,
        )
        await self._cache.delete(access_token_key(user_id))
        if refresh_count is None:
            raise ReconnectionRequiredError()

        logger.info(
            "Refreshed Notion token for user %s (refresh_count=%d, expires %s)",
            user_id,
            refresh_count,
            expires_at.isoformat(),
        )
        return tokens.access_token

    # Lifecycle -------------------------------------------------------------

    async def disconnect(self, user_id: str) -> bool:
        """Drop token material for ``user_id``. Safe to call repeatedly."""
        changed = self._store.disconnect_connection(user_id)
        await self._cache.delete(access_token_key(user_id))
        logger.info("Disconnected Notion for user %s", user_id)
        return changed

    def get_connection_status(self, user_id: str) -> Dict[str, Any]:
        connection = self._store.find_connection(user_id)
        if connection is None or connection.status != "active":
            return {
                "connected": False,
                "workspace_name": None,
                "workspace_id": None,
                "connected_at": None,
                "status": "disconnected",
            }
        return {
            "connected": True,
            "workspace_name": connection.workspace_name,
            "workspace_id": connection.workspace_id,
            "connected_at": connection.created_at,
            "status": connection.status,
        }


__all__ = ["TokenVault"]
