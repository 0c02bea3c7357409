"""
Ingestion service for vendor-normalized raw observations.

Takes a batch of observations (already fetched and authenticated by a
vendor adapter), resolves each physical path to a point, upserts the raw
readings, recomputes the affected 5-minute buckets and commits. Only after
the commit are the newest values pushed into the latest-value cache, so
the cache never shows data the store does not hold.

Re-delivering a timestamp overwrites value, received time and quality.

CHANGELOG:
- 2026-03-06: Recompute buckets reached by a late reading's carry-in
- 2026-02-28: Latest values written after commit, events via the cache
- 2026-02-24: Recompute touched buckets in the same transaction
- 2026-02-23: Initial creation

TODO:
- None
"""

import logging
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_engine.cache.latest import LatestValueCache
from telemetry_engine.db.models import Point, PointReading
from telemetry_engine.db.upsert import upsert
from telemetry_engine.identifiers import (
    DataQuality,
    EnergySource,
    MetricKind,
    Transform,
)
from telemetry_engine.services.aggregation import (
    DEFAULT_MAX_GAP_MS,
    affected_interval_ends,
    aggregate_buckets,
)
from telemetry_engine.services.points import PointManager, PointMetadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    """One vendor-normalized raw observation.

    Attributes:
        system_id: System the observation belongs to.
        physical_path_tail: Vendor-native path of the point.
        measurement_time: Measurement time in epoch milliseconds.
        received_time: Receipt time in epoch milliseconds.
        value: Observed value, None when the vendor reported an error.
        data_quality: DataQuality value.
        metadata: Vendor description used when the point is first seen.
    """

    system_id: int
    physical_path_tail: str
    measurement_time: int
    received_time: int
    value: float | None
    metadata: PointMetadata
    data_quality: str = DataQuality.GOOD


@dataclass
class IngestResult:
    """Summary of one ingest call."""

    received: int = 0
    stored: int = 0
    points_created: int = 0
    buckets_updated: int = 0
    latest_written: int = 0

    def as_dict(self) -> dict:
        """Return a JSON-serialisable description."""
        return {
            "received": self.received,
            "stored": self.stored,
            "points_created": self.points_created,
            "buckets_updated": self.buckets_updated,
            "latest_written": self.latest_written,
        }


def _latest_value(point: Point, value: float | None) -> float | None:
    """Apply the point's display transform to a latest value."""
    if value is not None and point.transform == Transform.INVERT:
        return -value
    return value


async def ingest_observations(
    db: AsyncSession,
    observations: list[Observation],
    points: PointManager,
    cache: LatestValueCache | None = None,
    max_gap_ms: int = DEFAULT_MAX_GAP_MS,
) -> IngestResult:
    """Store a batch of observations and refresh derived state.

    Args:
        db: Async SQLAlchemy session; committed by this call.
        observations: Observations in any order, possibly several systems.
        points: Point manager used to resolve physical paths.
        cache: Latest-value cache; None skips the cache update.
        max_gap_ms: Longest power segment that is still integrated.

    Returns:
        IngestResult: Counts for the batch.

    Raises:
        ValueError: If an observation's data quality or metric type is
            unknown.
        sqlalchemy.exc.SQLAlchemyError: On store failure (nothing committed).
        redis.RedisError: On cache failure (store already committed).
    """
    result = IngestResult(received=len(observations))
    if not observations:
        return result

    by_system: dict[int, list[Observation]] = defaultdict(list)
    for obs in observations:
        DataQuality(obs.data_quality)
        by_system[obs.system_id].append(obs)

    # Newest reading per point, for the cache after commit.
    newest: dict[tuple[int, int], tuple[Point, Observation]] = {}

    for system_id, system_obs in sorted(by_system.items()):
        path_map = await points.load_path_map(db, system_id)
        rows: dict[tuple[int, int], dict] = {}
        for obs in system_obs:
            point, created = await points.resolve_point(
                db, system_id, obs.physical_path_tail, obs.metadata, path_map
            )
            if created:
                result.points_created += 1
            # Last occurrence of a (point, time) key within the batch wins.
            rows[(point.point_index, obs.measurement_time)] = {
                "system_id": system_id,
                "point_index": point.point_index,
                "measurement_time": obs.measurement_time,
                "received_time": obs.received_time,
                "value": obs.value,
                "data_quality": obs.data_quality,
            }
            key = (system_id, point.point_index)
            current = newest.get(key)
            if current is None or obs.measurement_time >= current[1].measurement_time:
                newest[key] = (point, obs)

        result.stored += await upsert(
            db,
            PointReading,
            list(rows.values()),
            index_elements=["system_id", "point_index", "measurement_time"],
            update_columns=["received_time", "value", "data_quality"],
        )

        touched_points = sorted({point_index for point_index, _ in rows})
        result.buckets_updated += await aggregate_buckets(
            db,
            system_id,
            affected_interval_ends((t for _, t in rows), max_gap_ms),
            point_indexes=touched_points,
            max_gap_ms=max_gap_ms,
        )

    await db.commit()
    logger.info(
        "Ingested %d/%d observations: systems=%d points_created=%d buckets=%d",
        result.stored,
        result.received,
        len(by_system),
        result.points_created,
        result.buckets_updated,
    )

    if cache is None:
        return result

    for (system_id, point_index), (point, obs) in sorted(newest.items()):
        logical_path = point.logical_path
        if logical_path is None or not point.active:
            continue
        if point.kind is MetricKind.ENERGY and point.energy_source == EnergySource.POWER:
            # The cached value is instantaneous power, not energy.
            unit = "W"
        else:
            unit = point.metric_unit
        if await cache.put_latest(
            system_id,
            logical_path,
            _latest_value(point, obs.value),
            obs.measurement_time,
            obs.received_time,
            unit,
            point_index=point_index,
        ):
            result.latest_written += 1
    return result
