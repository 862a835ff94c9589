"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from billing_engine.config import EngineSettings, get_settings
from billing_engine.logging import logger
from billing_engine.services.engine import BillingEngine
from billing_engine.web.errors import register_error_handlers
from billing_engine.web.routers import setup_routers


def create_app(
    engine: BillingEngine | None = None,
    settings: EngineSettings | None = None,
) -> FastAPI:
    settings = settings or (engine.settings if engine is not None else get_settings())
    engine = engine or BillingEngine(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if settings.environment == "dev":
            await engine.database.create_all()
        logger.info("billing_engine_started", environment=settings.environment)
        try:
            yield
        finally:
            await engine.database.dispose()

    app = FastAPI(title="Billing Engine", lifespan=lifespan)
    app.state.engine = engine
    app.state.settings = settings
    register_error_handlers(app)
    app.include_router(setup_routers())

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    return app


__all__ = ["create_app"]
