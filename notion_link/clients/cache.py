"""
Shared key-value cache used for plaintext access tokens and refresh locks.

Entries are advisory: losing them costs a cache miss or a serialized refresh,
never correctness. ``RedisCache`` is shared across processes;
``InMemoryCache`` is single-process only and suits development and tests.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

# Delete the key only when it still holds the caller's owner token.
_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def access_token_key(user_id: str) -> str:
    return f"access_token:{user_id}"


def refresh_lock_key(user_id: str) -> str:
    return f"token_refresh:{user_id}"


class SharedCache(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, *, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def acquire_lock(self, key: str, owner: str, *, ttl_seconds: int) -> bool: ...

    async def release_lock(self, key: str, owner: str) -> bool: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


class RedisCache:
    """Redis-backed cache; the lock is ``SET NX EX`` with owner-checked release."""

    def __init__(self, client: Redis) -> None:
        self._redis = client
        self._release_script = client.register_script(_RELEASE_LOCK_SCRIPT)

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        client = Redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )
        return cls(client)

    # Reads and writes of plain entries degrade to misses; deletes and lock
    # operations propagate.

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._redis.get(key)
        except RedisError as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: str, *, ttl_seconds: int) -> None:
        try:
            await self._redis.set(key, value, ex=max(1, int(ttl_seconds)))
        except RedisError as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def acquire_lock(self, key: str, owner: str, *, ttl_seconds: int) -> bool:
        acquired = await self._redis.set(key, owner, ex=max(1, int(ttl_seconds)), nx=True)
        return bool(acquired)

    async def release_lock(self, key: str, owner: str) -> bool:
        released = await self._release_script(keys=[key], args=[owner])
        return bool(released)

    async def ping(self) -> None:
        await self._redis.ping()

    async def close(self) -> None:
        await self._redis.aclose()


class InMemoryCache:
    """Process-local cache with TTL semantics matching ``RedisCache``."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _live_value(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live_value(key)

    async def set(self, key: str, value: str, *, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + max(1, int(ttl_seconds)))

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def acquire_lock(self, key: str, owner: str, *, ttl_seconds: int) -> bool:
        with self._lock:
            if self._live_value(key) is not None:
                return False
            self._entries[key] = (owner, self._clock() + max(1, int(ttl_seconds)))
            return True

    async def release_lock(self, key: str, owner: str) -> bool:
        with self._lock:
            if self._live_value(key) != owner:
                return False
            del self._entries[key]
            return True

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()


def build_cache(redis_url: Optional[str]) -> SharedCache:
    """Return a Redis cache when configured, else a process-local one."""
    if redis_url:
        return RedisCache.from_url(redis_url)
    logger.warning(
        "REDIS_URL not set; using an in-process cache. Refresh locks will not "
        "coordinate across processes."
    )
    return InMemoryCache()


__all__ = [
    "InMemoryCache",
    "RedisCache",
    "SharedCache",
    "access_token_key",
    "build_cache",
    "refresh_lock_key",
]
