"""FastAPI application entrypoint.

Serve with ``uvicorn --factory folio.main:create_app``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from folio import __version__
from folio.api.errors import install_error_handlers
from folio.api.routes import api_router
from folio.config import AppSettings, get_settings
from folio.core.logging import setup_logging
from folio.core.telemetry import setup_telemetry
from folio.db.database import Database
from folio.jobs.tasks import build_scheduler
from folio.providers.service import MarketDataService, build_market_data_service

logger = logging.getLogger(__name__)


def create_app(
    database: Database | None = None,
    market_data: MarketDataService | None = None,
    settings: AppSettings | None = None,
) -> FastAPI:
    """Build the application; collaborators default to ones derived from ``settings``."""

    settings = settings or get_settings()
    database = database or Database(settings=settings)
    market_data = market_data or build_market_data_service(settings)
    scheduler = build_scheduler(database, market_data, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await database.create_all()
        logger.info("Starting %s with %s", settings.app_name, settings.dict_for_logging())
        if settings.scheduler_enabled:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler.running:
                await scheduler.stop()
            await market_data.aclose()
            await database.dispose()
            logger.info("Shutdown complete")

    setup_logging()
    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.market_data = market_data
    app.state.scheduler = scheduler
    setup_telemetry(app, settings, engine=database.engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["traceparent", "tracestate", "x-request-id"],
    )
    install_error_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


__all__ = ["create_app"]
