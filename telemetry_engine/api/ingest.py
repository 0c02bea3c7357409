"""
POST /v1/ingest endpoint for batches of vendor-normalized observations.

Accepts observations from vendor adapters (which own polling and vendor
authentication), enforces the batch size limit, and hands the batch to
the ingestion service: points are resolved, raw readings upserted,
5-minute buckets recomputed and latest values cached.

CHANGELOG:
- 2026-02-24: Initial creation

TODO:
- None
"""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from telemetry_engine.api.deps import DbSession, EngineServices
from telemetry_engine.identifiers import DataQuality, EnergySource, MetricKind
from telemetry_engine.services.ingestion import Observation, ingest_observations
from telemetry_engine.services.points import PointMetadata

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["ingest"])


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class ObservationIn(BaseModel):
    """Single observation of one physical path."""

    system_id: int
    physical_path_tail: str = Field(min_length=1)
    measurement_time: int = Field(ge=0, description="Epoch milliseconds.")
    received_time: int = Field(ge=0, description="Epoch milliseconds.")
    value: float | None = None
    data_quality: DataQuality = DataQuality.GOOD
    metric_type: MetricKind
    metric_unit: str | None = None
    default_name: str
    subsystem: str | None = None
    logical_path_stem: str | None = None
    energy_source: EnergySource = EnergySource.COUNTER

    def to_observation(self) -> Observation:
        """Convert to the service-level observation."""
        return Observation(
            system_id=self.system_id,
            physical_path_tail=self.physical_path_tail,
            measurement_time=self.measurement_time,
            received_time=self.received_time,
            value=self.value,
            data_quality=self.data_quality.value,
            metadata=PointMetadata(
                default_name=self.default_name,
                metric_type=self.metric_type.value,
                metric_unit=self.metric_unit,
                subsystem=self.subsystem,
                logical_path_stem=self.logical_path_stem,
                energy_source=self.energy_source.value,
            ),
        )


class IngestPayload(BaseModel):
    """Batch payload for the ingest endpoint."""

    observations: list[ObservationIn]


class IngestResponse(BaseModel):
    """Response from the ingest endpoint."""

    received: int
    stored: int
    points_created: int
    buckets_updated: int
    latest_written: int


# ---------------------------------------------------------------------------
# Route
# ---------------------------------------------------------------------------


@router.post("/ingest", response_model=IngestResponse)
async def ingest(
    payload: IngestPayload,
    services: EngineServices,
    db: DbSession,
) -> IngestResponse:
    """Ingest a batch of observations.

    Raises:
        HTTPException: 413 if the batch exceeds MAX_OBSERVATIONS_PER_REQUEST.
    """
    limit = services.settings.max_observations_per_request
    if len(payload.observations) > limit:
        raise HTTPException(
            status_code=413,
            detail=f"Batch size {len(payload.observations)} exceeds limit of "
            f"{limit}. Split into smaller batches.",
        )

    if not payload.observations:
        return IngestResponse(
            received=0, stored=0, points_created=0, buckets_updated=0, latest_written=0
        )

    result = await ingest_observations(
        db,
        [o.to_observation() for o in payload.observations],
        services.points,
        services.cache,
        max_gap_ms=services.max_gap_ms,
    )
    return IngestResponse(**result.as_dict())
