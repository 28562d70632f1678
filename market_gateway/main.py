"""
FastAPI application entrypoint for the marketplace access gateway.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from market_gateway.api.routes import (
    oauth_error_handler,
    router as api_router,
    upstream_payload_error_handler,
)
from market_gateway.core.config import AppSettings, get_settings
from market_gateway.core.logging import configure_logging
from market_gateway.dependencies.context import AppContext, build_context
from market_gateway.services.oauth_provider import OAuthFlowError
from market_gateway.utils.http import UpstreamPayloadError


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "context", None) is None:
        app.state.context = build_context(app.state.settings)
    try:
        yield
    finally:
        await app.state.context.aclose()


def create_app(
    settings: Optional[AppSettings] = None,
    *,
    context: Optional[AppContext] = None,
) -> FastAPI:
    """Factory for the FastAPI application.

    When ``context`` is given it is used as-is; otherwise one is built from
    ``settings`` on startup.
    """
    if settings is None:
        settings = context.settings if context is not None else get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Marketplace Access Gateway",
        version="0.1.0",
        description="OAuth delegation and rate-limited access to the marketplace API.",
        lifespan=_lifespan,
    )
    app.state.settings = settings
    app.state.context = context
    app.add_exception_handler(OAuthFlowError, oauth_error_handler)
    app.add_exception_handler(UpstreamPayloadError, upstream_payload_error_handler)
    app.include_router(api_router)
    return app


def run() -> None:
    """Serve the gateway with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.server.host, port=settings.server.port)


__all__ = ["create_app", "run"]
