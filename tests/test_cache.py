try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from notion_link.clients import InMemoryCache, build_cache
from notion_link.clients.cache import access_token_key, refresh_lock_key


def test_key_layout() -> None:
    assert access_token_key("u1") == "access_token:u1"
    assert refresh_lock_key("u1") == "token_refresh:u1"


def test_build_cache_without_url_is_in_memory() -> None:
    assert isinstance(build_cache(None), InMemoryCache)


@pytest.mark.anyio
async def test_lock_is_exclusive_and_owner_checked() -> None:
    cache = InMemoryCache()

    assert await cache.acquire_lock("lock", "owner-a", ttl_seconds=30) is True
    assert await cache.acquire_lock("lock", "owner-b", ttl_seconds=30) is False
    assert await cache.release_lock("lock", "owner-b") is False
    assert await cache.release_lock("lock", "owner-a") is True
    assert await cache.acquire_lock("lock", "owner-b", ttl_seconds=30) is True


@pytest.mark.anyio
async def test_entries_expire() -> None:
    now = [1000.0]
    cache = InMemoryCache(clock=lambda: now[0])

    await cache.set("key", "value", ttl_seconds=5)
    await cache.acquire_lock("lock", "owner", ttl_seconds=5)
    assert await cache.get("key") == "value"

    now[0] += 6
    assert await cache.get("key") is None
    # An expired lock can be taken over; the old owner can no longer release it.
    assert await cache.acquire_lock("lock", "other", ttl_seconds=5) is True
    assert await cache.release_lock("lock", "owner") is False


@pytest.mark.anyio
async def test_delete_and_close() -> None:
    cache = InMemoryCache()
    await cache.set("a", "1", ttl_seconds=60)
    await cache.set("b", "2", ttl_seconds=60)

    await cache.delete("a")
    assert await cache.get("a") is None

    await cache.close()
    assert await cache.get("b") is None
