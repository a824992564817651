"""
Origin checks for state-changing requests.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional
from urllib.parse import urlsplit

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from notion_link.core.config import AppSettings
from notion_link.core.errors import CsrfRejectedError

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def origin_of(url: str) -> Optional[str]:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}".lower()


def is_request_allowed(
    method: str,
    headers: Mapping[str, str],
    *,
    allowed_origin: str,
    production: bool,
) -> bool:
    """Origin must match; Referer is consulted only when Origin is absent."""
    if method.upper() in SAFE_METHODS:
        return True

    origin = headers.get("origin")
    if origin:
        return origin_of(origin) == allowed_origin

    referer = headers.get("referer")
    if referer:
        return origin_of(referer) == allowed_origin

    # Browsers may omit both headers for localhost during development.
    return not production


def register_csrf_protection(app: FastAPI, settings: AppSettings) -> None:
    allowed_origin = origin_of(str(settings.security.app_url))
    production = settings.is_production

    @app.middleware("http")
    async def csrf_protection(request: Request, call_next):
        if not is_request_allowed(
            request.method,
            request.headers,
            allowed_origin=allowed_origin,
            production=production,
        ):
            logger.warning(
                "CSRF check rejected %s %s (origin=%s, referer=%s)",
                request.method,
                request.url.path,
                request.headers.get("origin"),
                request.headers.get("referer"),
            )
            error = CsrfRejectedError()
            return JSONResponse(status_code=error.status_code, content=error.to_envelope())
        return await call_next(request)


__all__ = ["SAFE_METHODS", "is_request_allowed", "origin_of", "register_csrf_protection"]
