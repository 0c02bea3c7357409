"""
FastAPI application entry point for the telemetry engine.

Provides the application factory. Settings are loaded at startup, logging
is configured, and the engine services (database, Redis, caches and
registries) are stored on ``app.state`` for route handlers. The
subscription registry is built once at startup.

Error mapping:
- ``ValidationError`` -> 422 with the offending field and value
- ``SQLAlchemyError`` / ``redis.RedisError`` -> 503 with ``retryable: true``

CHANGELOG:
- 2026-02-28: Build subscription registry at startup
- 2026-02-27: Map store failures to 503
- 2026-02-26: Register points and admin routers
- 2026-02-20: Initial creation
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from telemetry_engine import __version__
from telemetry_engine.api.admin import router as admin_router
from telemetry_engine.api.health import router as health_router
from telemetry_engine.api.ingest import router as ingest_router
from telemetry_engine.api.latest import router as latest_router
from telemetry_engine.api.points import router as points_router
from telemetry_engine.api.series import router as series_router
from telemetry_engine.config import get_settings
from telemetry_engine.errors import ValidationError
from telemetry_engine.logging_setup import configure_logging
from telemetry_engine.services.container import build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build services at startup, release at shutdown."""
    settings = get_settings()
    configure_logging(settings.log_level)

    services = build_services(settings)
    app.state.services = services
    sources = await services.rebuild_subscriptions()
    logger.info(
        "Telemetry engine API ready (composite source systems: %d)", sources
    )
    yield
    logger.info("Telemetry engine API shutting down")
    await services.close()


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": exc.to_dict()})


async def _store_unavailable(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Store failure on %s %s: %s",
        request.method,
        request.url.path,
        type(exc).__name__,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage temporarily unavailable.", "retryable": True},
    )


def create_app() -> FastAPI:
    """Create the FastAPI application.

    Returns:
        FastAPI: Application with all routers and error handlers.
    """
    app = FastAPI(
        title="Telemetry Engine API",
        description="Point, series and aggregation engine for energy telemetry.",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_exception_handler(ValidationError, _validation_error)
    app.add_exception_handler(SQLAlchemyError, _store_unavailable)
    app.add_exception_handler(RedisError, _store_unavailable)

    app.include_router(health_router)
    app.include_router(ingest_router)
    app.include_router(series_router)
    app.include_router(latest_router)
    app.include_router(points_router)
    app.include_router(admin_router)

    @app.get("/")
    async def root() -> dict:
        """Root status endpoint.

        Returns:
            dict: JSON object with application status and version.
        """
        return {"status": "ok", "version": __version__}

    return app


app = create_app()
