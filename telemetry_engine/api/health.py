"""
Health check endpoint.

``GET /health`` reports liveness and, with ``deep=true``, whether the
relational store and Redis answer. No authentication is handled here;
access control belongs to the deployment in front of the engine.

CHANGELOG:
- 2026-02-27: Optional dependency checks
- 2026-02-20: Initial creation

TODO:
- None
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from sqlalchemy import text

from telemetry_engine.api.deps import EngineServices

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(
    services: EngineServices,
    deep: Annotated[bool, Query(description="Also check the database and Redis.")] = False,
):
    """Return the service health.

    Returns:
        dict: ``{"status": "ok"}``, plus per-dependency results when
        ``deep`` is set. Any failing dependency turns the status code
        into 503.
    """
    if not deep:
        return {"status": "ok"}

    checks: dict[str, str] = {}
    try:
        async with services.session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception:
        logger.warning("Health check: database unavailable", exc_info=True)
        checks["database"] = "unavailable"
    try:
        await services.redis.ping()
        checks["redis"] = "ok"
    except Exception:
        logger.warning("Health check: redis unavailable", exc_info=True)
        checks["redis"] = "unavailable"

    healthy = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ok" if healthy else "degraded", "checks": checks},
    )
