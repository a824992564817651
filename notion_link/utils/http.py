"""HTTP utilities providing retry/backoff semantics."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx

from notion_link.core.errors import RateLimitedError, UpstreamNetworkError

T = TypeVar("T")

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 5.0


class RetryConfig:
    def __init__(
        self,
        *,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
        retry_after_cap_seconds: float = 30.0,
    ) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.retry_after_cap_seconds = retry_after_cap_seconds

    def backoff_for(self, attempt: int) -> float:
        """Exponential delay for a zero-based attempt index."""
        return self.backoff_seconds * (2**attempt)

    def wait_for_rate_limit(self, retry_after: float) -> float:
        return max(0.0, min(retry_after, self.retry_after_cap_seconds))


def parse_retry_after(
    response: httpx.Response, default: float = DEFAULT_RETRY_AFTER_SECONDS
) -> float:
    """Read ``Retry-After`` as seconds, given either as a number or an HTTP-date."""
    raw = response.headers.get("retry-after")
    if not raw:
        return default
    try:
        return max(0.0, float(raw))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


TRANSIENT_ERRORS: Tuple[Type[Exception], ...] = (UpstreamNetworkError, RateLimitedError)


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args,
    retry_config: RetryConfig | None = None,
    retry_on: Tuple[Type[Exception], ...] = TRANSIENT_ERRORS,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    **kwargs,
) -> T:
    """Await ``func`` retrying transient failures; the last failure is re-raised."""
    config = retry_config or RetryConfig()
    pause = sleep or asyncio.sleep
    attempt = 0
    last_exception: Exception | None = None

    while attempt < config.attempts:
        try:
            return await func(*args, **kwargs)
        except retry_on as exc:
            last_exception = exc
            if isinstance(exc, RateLimitedError):
                delay = config.wait_for_rate_limit(exc.retry_after)
            else:
                delay = config.backoff_for(attempt)
            attempt += 1
            if attempt >= config.attempts:
                break
            logger.warning(
                "Transient upstream failure (%s), retry %d/%d in %.2fs",
                type(exc).__name__,
                attempt,
                config.attempts - 1,
                delay,
            )
            await pause(delay)

    if last_exception is not None:
        raise last_exception
    raise RuntimeError("Request failed without raising an exception")


__all__ = [
    "DEFAULT_RETRY_AFTER_SECONDS",
    "RetryConfig",
    "TRANSIENT_ERRORS",
    "call_with_retry",
    "parse_retry_after",
]
