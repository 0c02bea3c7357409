"""
Series listing and history endpoints.

- ``GET /v1/systems/{system_id}/series`` lists the series a system
  exposes, optionally narrowed by glob ``filter`` patterns and an
  ``interval``.
- ``GET /v1/systems/{system_id}/history`` returns aggregate values of the
  matching series in a time window.

CHANGELOG:
- 2026-03-06: Daily history exposes interval_count and day status
- 2026-02-25: History endpoint on the 5-minute and daily stores
- 2026-02-23: Initial creation

TODO:
- None
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel

from telemetry_engine.api.deps import DbSession, EngineServices, SystemParam
from telemetry_engine.errors import ValidationError
from telemetry_engine.identifiers import Interval
from telemetry_engine.services.history import query_history

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["series"])

# Longest window one history request may span.
MAX_HISTORY_WINDOW_MS = {
    Interval.FIVE_MINUTES: 31 * 24 * 3600 * 1000,
    Interval.ONE_DAY: 5 * 366 * 24 * 3600 * 1000,
}


# ---------------------------------------------------------------------------
# Pydantic response models
# ---------------------------------------------------------------------------


class SeriesOut(BaseModel):
    """One series descriptor."""

    id: str
    path: str
    column: str
    intervals: list[str]
    label: str
    unit: str
    metricType: str
    point: str


class SeriesListResponse(BaseModel):
    """Response model for the series list endpoint."""

    system: str
    series: list[SeriesOut]


class HistoryPointOut(BaseModel):
    """One value of one series."""

    time: int | str
    value: float | None
    degraded: bool
    approximate: bool
    interval_count: int | None = None
    status: str | None = None


class HistorySeriesOut(BaseModel):
    """Values of one series."""

    id: str
    unit: str
    data: list[HistoryPointOut]


class HistoryResponse(BaseModel):
    """Response model for the history endpoint."""

    system: str
    interval: str
    start: int
    end: int
    series: list[HistorySeriesOut]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/systems/{system_id}/series", response_model=SeriesListResponse)
async def list_series(
    system: SystemParam,
    services: EngineServices,
    db: DbSession,
    filter: Annotated[
        str | None,
        Query(description="Comma-separated glob patterns, e.g. 'source.solar/*'."),
    ] = None,
    interval: Annotated[str | None, Query(description="5m or 1d.")] = None,
) -> SeriesListResponse:
    """Return the series of a system sorted by id."""
    descriptors = await services.resolver.list_series(
        db, system, filter=filter, interval=interval
    )
    return SeriesListResponse(
        system=system.identifier,
        series=[SeriesOut(**d.as_dict()) for d in descriptors],
    )


@router.get("/systems/{system_id}/history", response_model=HistoryResponse)
async def get_history(
    system: SystemParam,
    services: EngineServices,
    db: DbSession,
    start: Annotated[int, Query(description="Exclusive window start, epoch ms.")],
    end: Annotated[int, Query(description="Inclusive window end, epoch ms.")],
    interval: Annotated[str, Query(description="5m or 1d.")] = "5m",
    series: Annotated[
        str | None, Query(description="Comma-separated glob patterns.")
    ] = None,
) -> HistoryResponse:
    """Return aggregate values of the matching series in ``(start, end]``.

    Raises:
        ValidationError: 422 for an invalid interval, pattern or window.
    """
    if interval not in {i.value for i in Interval}:
        raise ValidationError("interval", interval, "must be '5m' or '1d'")
    resolution = Interval(interval)
    descriptors = await services.resolver.list_series(
        db, system, filter=series, interval=resolution.value
    )
    if end <= start:
        raise ValidationError("end", end, "must be greater than start")
    if end - start > MAX_HISTORY_WINDOW_MS[resolution]:
        raise ValidationError(
            "end", end, f"window too long for interval {resolution.value}"
        )

    values = await query_history(db, system, descriptors, resolution, start, end)
    logger.debug(
        "History: system=%d interval=%s series=%d",
        system.id,
        resolution.value,
        len(values),
    )
    return HistoryResponse(
        system=system.identifier,
        interval=resolution.value,
        start=start,
        end=end,
        series=[
            HistorySeriesOut(
                id=d.series_id,
                unit=d.unit,
                data=[HistoryPointOut(**p.as_dict()) for p in values[d.series_id]],
            )
            for d in descriptors
        ],
    )
