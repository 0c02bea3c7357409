"""
GET /v1/systems/{system_id}/latest endpoint.

Serves the newest value of every logical path of a system straight from
the Redis latest-value cache. A cache miss is an empty map (or 404 for a
single requested path); the cache is rebuilt by ingestion, never by this
endpoint.

CHANGELOG:
- 2026-02-27: Redis failures surface as 503 instead of a DB fallback
- 2026-02-21: Initial creation

TODO:
- None
"""

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from telemetry_engine.api.deps import EngineServices, SystemParam
from telemetry_engine.cache.latest import LatestValue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["latest"])


class LatestValueOut(BaseModel):
    """Newest value of one logical path."""

    logicalPath: str
    value: float | str | None
    measurementTimeMs: int
    receivedTimeMs: int
    metricUnit: str


class LatestResponse(BaseModel):
    """Response model for the latest endpoint."""

    system: str
    values: dict[str, LatestValueOut]


def _to_out(entry: LatestValue) -> LatestValueOut:
    return LatestValueOut(
        logicalPath=entry.logical_path,
        value=entry.value,
        measurementTimeMs=entry.measurement_time,
        receivedTimeMs=entry.received_time,
        metricUnit=entry.metric_unit,
    )


@router.get("/systems/{system_id}/latest", response_model=LatestResponse)
async def get_latest(
    system: SystemParam,
    services: EngineServices,
    path: Annotated[
        str | None, Query(description="Single logical path, e.g. 'source.solar/power'.")
    ] = None,
) -> LatestResponse:
    """Return cached latest values of a system.

    Raises:
        HTTPException: 404 if ``path`` is given and not cached.
    """
    if path is not None:
        entry = await services.cache.get_latest(system.id, path)
        if entry is None:
            raise HTTPException(
                status_code=404,
                detail=f"No latest value for '{path}' on system {system.id}.",
            )
        values = {path: entry}
    else:
        values = await services.cache.get_all_latest(system.id)

    return LatestResponse(
        system=system.identifier,
        values={p: _to_out(v) for p, v in sorted(values.items())},
    )
