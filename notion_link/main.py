"""
FastAPI application entrypoint for the Notion connection service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from notion_link.api.csrf import register_csrf_protection
from notion_link.api.routes import router as api_router
from notion_link.core.config import AppSettings, get_settings
from notion_link.core.errors import INTERNAL_ERROR, NotionLinkError
from notion_link.core.logging import configure_logging
from notion_link.dependencies import (
    get_http_client,
    get_last_used_recorder,
    get_shared_cache,
    get_state_sweeper,
    use_settings,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    recorder = get_last_used_recorder()
    sweeper = get_state_sweeper()
    recorder.start()
    sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()
        await recorder.stop()
        await get_http_client().aclose()
        await get_shared_cache().close()


def _error_response(status_code: int, message: str, *, retryable: bool) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {"code": INTERNAL_ERROR, "message": message, "retryable": retryable}
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotionLinkError)
    async def handle_service_error(request: Request, exc: NotionLinkError) -> JSONResponse:
        if exc.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR:
            logger.error(
                "%s on %s %s: %s",
                type(exc).__name__,
                request.method,
                request.url.path,
                exc.message,
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = "; ".join(
            f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        return _error_response(
            HTTPStatus.BAD_REQUEST, f"Invalid request: {details}", retryable=False
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(
            HTTPStatus.INTERNAL_SERVER_ERROR, "Unexpected server error.", retryable=True
        )


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Factory for the FastAPI application.

    Explicit ``settings`` replace the environment for every dependency factory.
    """
    if settings is None:
        settings = get_settings()
    else:
        use_settings(settings)
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Notion Link",
        version="0.1.0",
        description="OAuth connection vault and proxy for the Notion API.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    register_exception_handlers(app)
    register_csrf_protection(app, settings)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
