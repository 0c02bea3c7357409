"""
Administrative endpoints: aggregation commands, cache maintenance and
composite subscriptions.

These are the operations a scheduler and admin tooling invoke.
Each aggregation sweep answers with one result per system so a failing
system never hides the others.

CHANGELOG:
- 2026-03-06: Registry listing; last-days sweep uses local dates
- 2026-02-28: Composite source definitions and registry rebuild
- 2026-02-26: Retention purge command
- 2026-02-23: Initial creation

TODO:
- None
"""

import datetime
import logging
import time

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from telemetry_engine.api.deps import DbSession, EngineServices, SystemParam
from telemetry_engine.identifiers import PointReference
from telemetry_engine.services import daily
from telemetry_engine.services.retention import purge_expired
from telemetry_engine.services.subscriptions import (
    define_composite_sources,
    remove_composite_point,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class DayRequest(BaseModel):
    """Aggregate one calendar day."""

    day: datetime.date


class LastDaysRequest(BaseModel):
    """Recompute the most recent days."""

    days: int = Field(ge=1, le=366)
    today: datetime.date | None = None


class CatchUpRequest(BaseModel):
    """Aggregate every missing or stale day."""

    include_today: bool = False


class SweepResponse(BaseModel):
    """Per-system outcome of a sweep."""

    ok: bool
    results: list[dict]


class CompositeSourcesIn(BaseModel):
    """Source points of one composite point, as ``"<system>.<point>"``."""

    sources: list[str]


def _sweep_response(results: list[daily.SystemAggregationResult]) -> SweepResponse:
    return SweepResponse(
        ok=all(r.ok for r in results),
        results=[r.as_dict() for r in results],
    )


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


@router.post("/aggregation/day", response_model=SweepResponse)
async def aggregate_day(body: DayRequest, services: EngineServices) -> SweepResponse:
    """Aggregate one day for every system."""
    results = await daily.aggregate_day_for_all_systems(services.session_factory, body.day)
    return _sweep_response(results)


@router.post("/aggregation/catch-up", response_model=SweepResponse)
async def catch_up(body: CatchUpRequest, services: EngineServices) -> SweepResponse:
    """Aggregate every missing or stale day for every system."""
    results = await daily.aggregate_all_missing_days_for_all_systems(
        services.session_factory,
        include_today=body.include_today,
        now_ms=_now_ms(),
    )
    return _sweep_response(results)


@router.post("/aggregation/last-days", response_model=SweepResponse)
async def last_days(body: LastDaysRequest, services: EngineServices) -> SweepResponse:
    """Recompute the most recent days for every system."""
    results = await daily.aggregate_last_n_days(
        services.session_factory, body.days, today=body.today, now_ms=_now_ms()
    )
    return _sweep_response(results)


@router.post("/aggregation/regenerate", response_model=SweepResponse)
async def regenerate(services: EngineServices) -> SweepResponse:
    """Rebuild all daily rows still covered by 5-minute data."""
    logger.warning("Regenerating all daily aggregates")
    results = await daily.regenerate_all(services.session_factory)
    return _sweep_response(results)


@router.post("/aggregation/purge")
async def purge(services: EngineServices) -> dict:
    """Delete data outside the retention windows."""
    result = await purge_expired(services.session_factory, services.settings, _now_ms())
    return result.as_dict()


# ---------------------------------------------------------------------------
# Latest-value cache
# ---------------------------------------------------------------------------


@router.delete("/cache/latest")
async def clear_all_latest(services: EngineServices) -> dict:
    """Drop the latest values of every system."""
    deleted = await services.cache.clear_all()
    return {"deleted": deleted}


@router.delete("/cache/latest/{system_id}")
async def clear_latest(system: SystemParam, services: EngineServices) -> dict:
    """Drop the latest values of one system."""
    await services.cache.clear(system.id)
    return {"system_id": system.id, "cleared": True}


# ---------------------------------------------------------------------------
# Composite subscriptions
# ---------------------------------------------------------------------------


@router.get("/subscriptions")
async def list_subscriptions(services: EngineServices) -> dict:
    """Return the registry: source system -> subscribed composite points."""
    registry = services.registry
    return {
        "subscriptions": {
            str(system_id): registry.entry(system_id).as_dict()
            for system_id in registry.source_system_ids()
        }
    }


@router.post("/subscriptions/rebuild")
async def rebuild_subscriptions(services: EngineServices, db: DbSession) -> dict:
    """Rebuild the subscription registry from the composite definitions."""
    count = await services.registry.build(db)
    return {"source_systems": count}


@router.put("/systems/{system_id}/composite-points/{point_index}/sources")
async def put_composite_sources(
    system: SystemParam,
    point_index: int,
    body: CompositeSourcesIn,
    services: EngineServices,
    db: DbSession,
) -> dict:
    """Replace the source points of one composite point.

    Raises:
        HTTPException: 400 if the system is not composite or a source
            reference is malformed.
    """
    if not system.is_composite:
        raise HTTPException(
            status_code=400, detail=f"System {system.id} is not a composite system."
        )
    refs = []
    for raw in body.sources:
        ref = PointReference.parse(raw)
        if ref is None:
            raise HTTPException(
                status_code=400, detail=f"Invalid point reference '{raw}'."
            )
        refs.append(ref)

    stored = await define_composite_sources(db, system.id, point_index, refs)
    await services.registry.build(db)
    return {"composite": f"{system.id}.{point_index}", "sources": [str(r) for r in stored]}


@router.delete("/systems/{system_id}/composite-points/{point_index}/sources")
async def delete_composite_sources(
    system: SystemParam,
    point_index: int,
    services: EngineServices,
    db: DbSession,
) -> dict:
    """Remove every source of one composite point."""
    removed = await remove_composite_point(db, system.id, point_index)
    await services.registry.build(db)
    return {"composite": f"{system.id}.{point_index}", "removed": removed}
