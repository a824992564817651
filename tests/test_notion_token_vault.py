try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from redis.exceptions import RedisError

from notion_link.clients import InMemoryCache, SQLiteStore
from notion_link.clients.cache import access_token_key, refresh_lock_key
from notion_link.core.config import AppSettings
from notion_link.core.errors import (
    ConcurrentRefreshTimeoutError,
    InvalidGrantError,
    NoConnectionError,
    RateLimitedError,
    ReconnectionRequiredError,
    TokenRefreshError,
    UpstreamNetworkError,
)
from notion_link.models.oauth import AuthorizationServerMetadata, TokenResponse
from notion_link.services import TokenCipherService, TokenVault


class DummyDiscoverer:
    async def discover(self, *, force_refresh: bool = False) -> AuthorizationServerMetadata:
        return AuthorizationServerMetadata(
            authorization_endpoint="https://notion.test/authorize",
            token_endpoint="https://notion.test/token",
            code_challenge_methods_supported=["S256"],
        )


class DummyOAuthClient:
    """Token endpoint double that hands out numbered access tokens."""

    def __init__(self, *, delay: float = 0.0, errors: Optional[List[Exception]] = None) -> None:
        self.delay = delay
        self.errors = list(errors or [])
        self.refresh_calls: List[str] = []

    async def refresh_token(self, *, token_endpoint: str, refresh_token: str) -> TokenResponse:
        self.refresh_calls.append(refresh_token)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        n = len(self.refresh_calls)
        return TokenResponse(
            access_token=f"access-{n}", refresh_token=f"refresh-{n}", expires_in=3600
        )


class DummyRecorder:
    def __init__(self) -> None:
        self.users: List[str] = []

    def notify(self, user_id: str) -> None:
        self.users.append(user_id)


def _vault(
    settings: AppSettings,
    store: SQLiteStore,
    cipher: TokenCipherService,
    oauth: DummyOAuthClient,
    *,
    cache: Optional[InMemoryCache] = None,
    recorder: Optional[DummyRecorder] = None,
    sleep=None,
    **token_overrides,
) -> TokenVault:
    tokens = settings.tokens.model_copy(
        update={
            "refresh_wait_poll_seconds": 0.01,
            "refresh_wait_timeout_seconds": 2.0,
            **token_overrides,
        }
    )
    return TokenVault(
        store=store,
        cache=cache or InMemoryCache(),
        oauth_client=oauth,
        discoverer=DummyDiscoverer(),
        token_cipher=cipher,
        token_settings=tokens,
        recorder=recorder,
        sleep=sleep,
    )


async def _connect(
    vault: TokenVault, *, expires_in: Optional[int], refresh: Optional[str] = "refresh-0"
) -> None:
    await vault.store(
        "user-1",
        TokenResponse(
            access_token="access-0",
            refresh_token=refresh,
            expires_in=expires_in,
            workspace_id="ws-1",
            workspace_name="Acme",
        ),
    )


@pytest.mark.asyncio
async def test_fresh_token_is_decrypted_cached_and_touched(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    cache = InMemoryCache()
    recorder = DummyRecorder()
    oauth = DummyOAuthClient()
    vault = _vault(settings, store, cipher, oauth, cache=cache, recorder=recorder)
    await _connect(vault, expires_in=3600)

    assert await vault.get_valid_access_token("user-1") == "access-0"
    assert await cache.get(access_token_key("user-1")) == "access-0"
    assert recorder.users == ["user-1"]
    assert oauth.refresh_calls == []


@pytest.mark.asyncio
async def test_missing_expiry_defaults_to_one_year(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    vault = _vault(settings, store, cipher, DummyOAuthClient())
    await _connect(vault, expires_in=None)

    remaining = store.find_connection("user-1").expires_at - datetime.now(timezone.utc)
    assert timedelta(days=364) < remaining <= timedelta(days=365)


@pytest.mark.asyncio
async def test_token_inside_buffer_refreshes_exactly_once(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    oauth = DummyOAuthClient()
    vault = _vault(settings, store, cipher, oauth)
    await _connect(vault, expires_in=120)

    token = await vault.get_valid_access_token("user-1")

    assert token == "access-1"
    assert oauth.refresh_calls == ["refresh-0"]
    connection = store.find_connection("user-1")
    assert connection.refresh_count == 1
    refresh_token = cipher.decrypt(
        connection.encrypted_refresh_token, connection.refresh_token_iv
    )
    assert refresh_token == "refresh-1"
    assert connection.expires_at - datetime.now(timezone.utc) > timedelta(minutes=55)

    assert await vault.get_valid_access_token("user-1") == "access-1"
    assert len(oauth.refresh_calls) == 1


@pytest.mark.asyncio
async def test_concurrent_refreshes_share_one_token_call(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    oauth = DummyOAuthClient(delay=0.05)
    vault = _vault(settings, store, cipher, oauth)
    await _connect(vault, expires_in=60)

    tokens = await asyncio.gather(*(vault.get_valid_access_token("user-1") for _ in range(8)))

    assert tokens == ["access-1"] * 8
    assert len(oauth.refresh_calls) == 1
    assert store.find_connection("user-1").refresh_count == 1


@pytest.mark.asyncio
async def test_waiter_times_out_when_holder_never_finishes(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    cache = InMemoryCache()
    oauth = DummyOAuthClient()
    vault = _vault(
        settings, store, cipher, oauth, cache=cache, refresh_wait_timeout_seconds=0.05
    )
    await _connect(vault, expires_in=60)
    await cache.acquire_lock(refresh_lock_key("user-1"), "someone-else", ttl_seconds=30)

    with pytest.raises(ConcurrentRefreshTimeoutError) as excinfo:
        await vault.refresh_access_token("user-1")

    assert excinfo.value.retryable is True
    assert oauth.refresh_calls == []


@pytest.mark.asyncio
async def test_revoked_refresh_token_disconnects(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    oauth = DummyOAuthClient(errors=[InvalidGrantError()])
    vault = _vault(settings, store, cipher, oauth)
    await _connect(vault, expires_in=60)

    with pytest.raises(ReconnectionRequiredError):
        await vault.get_valid_access_token("user-1")

    connection = store.find_connection("user-1")
    assert connection.status == "disconnected"
    assert connection.encrypted_access_token is None
    assert connection.encrypted_refresh_token is None
    assert len(oauth.refresh_calls) == 1

    with pytest.raises(ReconnectionRequiredError):
        await vault.get_valid_access_token("user-1")
    assert len(oauth.refresh_calls) == 1


@pytest.mark.asyncio
async def test_missing_refresh_token_requires_reconnection(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    oauth = DummyOAuthClient()
    vault = _vault(settings, store, cipher, oauth)
    await _connect(vault, expires_in=60, refresh=None)

    with pytest.raises(ReconnectionRequiredError):
        await vault.get_valid_access_token("user-1")

    assert store.find_connection("user-1").status == "disconnected"
    assert oauth.refresh_calls == []


@pytest.mark.asyncio
async def test_network_errors_are_retried_then_surfaced(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    oauth = DummyOAuthClient(errors=[UpstreamNetworkError("reset")] * 3)
    vault = _vault(settings, store, cipher, oauth, network_retry_base_delay_seconds=0.0)
    await _connect(vault, expires_in=60)

    with pytest.raises(TokenRefreshError) as excinfo:
        await vault.refresh_access_token("user-1")

    assert excinfo.value.retryable is True
    assert len(oauth.refresh_calls) == 3
    # The connection stays usable for a later attempt and the lock is released.
    assert store.find_connection("user-1").status == "active"
    assert await vault.refresh_access_token("user-1") == "access-4"


@pytest.mark.asyncio
async def test_transient_error_then_success(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    oauth = DummyOAuthClient(errors=[UpstreamNetworkError("reset")])
    vault = _vault(settings, store, cipher, oauth, network_retry_base_delay_seconds=0.0)
    await _connect(vault, expires_in=60)

    assert await vault.get_valid_access_token("user-1") == "access-2"
    assert len(oauth.refresh_calls) == 2


@pytest.mark.asyncio
async def test_refresh_retries_use_backoff_and_capped_retry_after(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    delays: List[float] = []

    async def record_sleep(delay: float) -> None:
        delays.append(delay)

    oauth = DummyOAuthClient(
        errors=[UpstreamNetworkError("reset"), RateLimitedError(retry_after=600.0)]
    )
    vault = _vault(settings, store, cipher, oauth, sleep=record_sleep)
    await _connect(vault, expires_in=60)

    assert await vault.refresh_access_token("user-1") == "access-3"
    assert delays == [1.0, settings.tokens.retry_after_cap_seconds]


class LockReleaseFailingCache(InMemoryCache):
    async def release_lock(self, key: str, owner: str) -> bool:
        raise RedisError("connection lost")


@pytest.mark.asyncio
async def test_lock_release_failure_does_not_hide_refresh(
    settings: AppSettings,
    store: SQLiteStore,
    cipher: TokenCipherService,
    caplog: pytest.LogCaptureFixture,
) -> None:
    oauth = DummyOAuthClient()
    vault = _vault(settings, store, cipher, oauth, cache=LockReleaseFailingCache())
    await _connect(vault, expires_in=60)

    assert await vault.refresh_access_token("user-1") == "access-1"
    assert store.find_connection("user-1").refresh_count == 1
    assert "Could not release refresh lock for user user-1" in caplog.text


@pytest.mark.asyncio
async def test_forced_refresh_skips_when_token_already_replaced(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    oauth = DummyOAuthClient()
    vault = _vault(settings, store, cipher, oauth)
    await _connect(vault, expires_in=3600)

    first = await vault.refresh_access_token("user-1", rejected_token="access-0")
    second = await vault.refresh_access_token("user-1", rejected_token="access-0")

    assert first == second == "access-1"
    assert len(oauth.refresh_calls) == 1


@pytest.mark.asyncio
async def test_unknown_user_has_no_connection(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    vault = _vault(settings, store, cipher, DummyOAuthClient())

    with pytest.raises(NoConnectionError) as excinfo:
        await vault.get_valid_access_token("nobody")

    assert excinfo.value.code == "reconnection_required"


@pytest.mark.asyncio
async def test_disconnect_is_idempotent_and_clears_cache(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    cache = InMemoryCache()
    vault = _vault(settings, store, cipher, DummyOAuthClient(), cache=cache)
    await _connect(vault, expires_in=3600)
    await vault.get_valid_access_token("user-1")

    await vault.disconnect("user-1")
    await vault.disconnect("user-1")

    assert await cache.get(access_token_key("user-1")) is None
    assert vault.get_connection_status("user-1") == {
        "connected": False,
        "workspace_name": None,
        "workspace_id": None,
        "connected_at": None,
        "status": "disconnected",
    }
    with pytest.raises(ReconnectionRequiredError):
        await vault.get_valid_access_token("user-1")


@pytest.mark.asyncio
async def test_connection_status_reports_workspace(
    settings: AppSettings, store: SQLiteStore, cipher: TokenCipherService
) -> None:
    vault = _vault(settings, store, cipher, DummyOAuthClient())
    await _connect(vault, expires_in=3600)

    status = vault.get_connection_status("user-1")

    assert status["connected"] is True
    assert status["status"] == "active"
    assert status["workspace_name"] == "Acme"
    assert status["workspace_id"] == "ws-1"
    assert status["connected_at"] == store.find_connection("user-1").created_at
