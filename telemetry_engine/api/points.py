"""
Point read and edit endpoints.

- ``GET /v1/systems/{system_id}/points`` lists a system's points.
- ``GET /v1/systems/{system_id}/points/{point_index}`` returns one point.
- ``PATCH /v1/systems/{system_id}/points/{point_index}`` applies a user
  edit (display name, logical path stem, active flag, transform,
  subsystem) and invalidates the system's cached series.

CHANGELOG:
- 2026-02-26: PATCH invalidates cached series through the point manager
- 2026-02-23: Initial creation

TODO:
- None
"""

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from telemetry_engine.api.deps import DbSession, EngineServices, SystemParam
from telemetry_engine.db.models import Point

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["points"])


class PointOut(BaseModel):
    """Point as returned by the API."""

    reference: str
    system_id: int
    point_index: int
    physical_path_tail: str
    logical_path_stem: str | None
    logical_path: str | None
    metric_type: str
    metric_unit: str
    transform: str | None
    energy_source: str
    active: bool
    subsystem: str | None
    default_name: str
    display_name: str | None
    name: str


class PointPatch(BaseModel):
    """User edit of a point; only the fields sent are changed."""

    model_config = {"extra": "forbid"}

    display_name: str | None = None
    logical_path_stem: str | None = None
    active: bool | None = None
    transform: str | None = None
    subsystem: str | None = None


def _to_out(point: Point) -> PointOut:
    return PointOut(
        reference=f"{point.system_id}.{point.point_index}",
        system_id=point.system_id,
        point_index=point.point_index,
        physical_path_tail=point.physical_path_tail,
        logical_path_stem=point.logical_path_stem,
        logical_path=point.logical_path,
        metric_type=point.metric_type,
        metric_unit=point.metric_unit,
        transform=point.transform,
        energy_source=point.energy_source,
        active=point.active,
        subsystem=point.subsystem,
        default_name=point.default_name,
        display_name=point.display_name,
        name=point.name,
    )


@router.get("/systems/{system_id}/points", response_model=list[PointOut])
async def list_points(
    system: SystemParam,
    services: EngineServices,
    db: DbSession,
    active_only: Annotated[bool, Query()] = False,
) -> list[PointOut]:
    """Return the points of a system ordered by index."""
    points = await services.points.list_points(db, system.id, active_only=active_only)
    return [_to_out(p) for p in points]


@router.get("/systems/{system_id}/points/{point_index}", response_model=PointOut)
async def get_point(
    system: SystemParam,
    point_index: int,
    services: EngineServices,
    db: DbSession,
) -> PointOut:
    """Return one point.

    Raises:
        HTTPException: 404 if the point does not exist.
    """
    point = await services.points.get_point(db, system.id, point_index)
    if point is None:
        raise HTTPException(
            status_code=404, detail=f"Point {system.id}.{point_index} not found."
        )
    return _to_out(point)


@router.patch("/systems/{system_id}/points/{point_index}", response_model=PointOut)
async def patch_point(
    system: SystemParam,
    point_index: int,
    patch: PointPatch,
    services: EngineServices,
    db: DbSession,
) -> PointOut:
    """Apply a user edit to a point.

    Raises:
        HTTPException: 404 if the point does not exist.
        ValidationError: 422 for an invalid stem, transform or active flag.
    """
    changes = patch.model_dump(exclude_unset=True)
    point = await services.points.update_point(db, system.id, point_index, changes)
    if point is None:
        raise HTTPException(
            status_code=404, detail=f"Point {system.id}.{point_index} not found."
        )
    return _to_out(point)
