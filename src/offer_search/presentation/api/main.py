"""Offer search API -- FastAPI application entry point."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI

from offer_search import __version__
from offer_search.config import Settings, get_settings
from offer_search.infrastructure.logging import setup_logging
from offer_search.presentation.api.dependencies import Services
from offer_search.presentation.api.routers import health, search
from offer_search.presentation.exceptions.handlers import register_exception_handlers
from offer_search.presentation.middleware.request_id import RequestIdMiddleware
from offer_search.shared.exceptions import DocumentStoreError

logger = structlog.get_logger("offer_search.api")


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Build and configure the FastAPI application.

    Args:
        settings: Configuration; defaults to :func:`get_settings`.
        services: Pre-built service graph (tests inject one backed by the
            in-memory store).  Built from *settings* when omitted.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging(level=settings.log_level, json_output=settings.log_json, log_file=settings.log_file)
        health.reset_startup_time()
        app.state.services = services or Services.from_settings(settings)
        try:
            await app.state.services.store.ensure_index()
        except DocumentStoreError as exc:
            logger.warning("offer_index_not_ensured", error=exc.message)
        await app.state.services.start()
        logger.info("offer_search_started", environment=settings.environment, store=settings.store_backend)
        yield
        await app.state.services.close()
        logger.info("offer_search_stopped")

    app = FastAPI(
        title="Offer Search API",
        version=__version__,
        description="Role-filtered search over the denormalized offer view.",
        lifespan=lifespan,
    )
    app.add_middleware(RequestIdMiddleware)
    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(search.router)

    return app


def run() -> None:
    """Entry point for the ``offer-search`` console script."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    run()
