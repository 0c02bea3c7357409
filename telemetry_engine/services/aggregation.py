"""
5-minute aggregation of raw point readings.

Recomputes 5-minute buckets from the raw readings store and upserts them
into ``point_aggregates_5m``. A bucket is always recomputed from scratch,
so re-running over unchanged raw data rewrites identical rows.

Chained points look one step back:
- differentiate points take the raw ``last`` of the immediately preceding
  bucket as baseline (computed earlier in the same run, else stored);
- energy points fed with power samples integrate from the last raw sample
  before the bucket so the segment across the boundary is not lost.

Buckets are processed in chronological order per point so a run covering
several consecutive buckets chains through its own results.

CHANGELOG:
- 2026-03-06: Late readings recompute every bucket their carry-in reaches
- 2026-03-04: Carry-in sample for power integration across buckets
- 2026-02-26: Find raw buckets without aggregates (retention safety)
- 2026-02-22: Initial creation

TODO:
- None
"""

import bisect
import logging
import math
from collections import defaultdict
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_engine.db.models import Point, PointAggregate5m, PointReading
from telemetry_engine.db.upsert import upsert
from telemetry_engine.identifiers import EnergySource, MetricKind, Transform
from telemetry_engine.services.rollup import (
    INTERVAL_MS,
    BucketStats,
    Sample,
    compute_bucket,
    interval_end_for,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_GAP_MS = 900 * 1000

_VALUE_COLUMNS = [
    "avg",
    "min",
    "max",
    "last",
    "delta",
    "sample_count",
    "error_count",
    "degraded",
]


def affected_interval_ends(
    measurement_times: Iterable[int], max_gap_ms: int = 0
) -> list[int]:
    """Return the buckets touched by new readings plus the buckets after them.

    The following bucket depends on the touched one through the
    differentiate baseline. Power integration carries a sample into any
    bucket starting within ``max_gap_ms`` of it, so those buckets are
    included as well.
    """
    following = max(1, math.ceil(max_gap_ms / INTERVAL_MS))
    ends: set[int] = set()
    for t in measurement_times:
        end = interval_end_for(t)
        ends.update(end + k * INTERVAL_MS for k in range(following + 1))
    return sorted(ends)


def _uses_carry_in(point: Point) -> bool:
    return (
        point.kind is MetricKind.ENERGY
        and point.energy_source == EnergySource.POWER
        and point.transform != Transform.DIFFERENTIATE
    )


async def _load_samples(
    db: AsyncSession,
    system_id: int,
    point_indexes: list[int],
    start_exclusive: int,
    end_inclusive: int,
) -> dict[int, list[Sample]]:
    """Return raw samples per point in ``(start, end]``, oldest first."""
    result = await db.execute(
        select(
            PointReading.point_index,
            PointReading.measurement_time,
            PointReading.value,
            PointReading.data_quality,
        )
        .where(
            PointReading.system_id == system_id,
            PointReading.point_index.in_(point_indexes),
            PointReading.measurement_time > start_exclusive,
            PointReading.measurement_time <= end_inclusive,
        )
        .order_by(PointReading.point_index, PointReading.measurement_time)
    )
    samples: dict[int, list[Sample]] = defaultdict(list)
    for point_index, measurement_time, value, quality in result.all():
        samples[point_index].append(Sample(measurement_time, value, quality))
    return samples


async def _load_previous_lasts(
    db: AsyncSession,
    system_id: int,
    point_indexes: list[int],
    previous_ends: set[int],
) -> dict[tuple[int, int], float | None]:
    """Return stored ``last`` values keyed by ``(point_index, interval_end)``."""
    if not point_indexes or not previous_ends:
        return {}
    result = await db.execute(
        select(
            PointAggregate5m.point_index,
            PointAggregate5m.interval_end,
            PointAggregate5m.last,
        ).where(
            PointAggregate5m.system_id == system_id,
            PointAggregate5m.point_index.in_(point_indexes),
            PointAggregate5m.interval_end.in_(sorted(previous_ends)),
        )
    )
    return {(row[0], row[1]): row[2] for row in result.all()}


async def aggregate_buckets(
    db: AsyncSession,
    system_id: int,
    interval_ends: Iterable[int],
    point_indexes: Iterable[int] | None = None,
    max_gap_ms: int = DEFAULT_MAX_GAP_MS,
) -> int:
    """Recompute and upsert 5-minute buckets of one system.

    Buckets without any raw sample are skipped, never written empty. The
    caller owns the transaction.

    Args:
        db: Async SQLAlchemy session.
        system_id: System whose points are aggregated.
        interval_ends: Bucket end times (epoch ms, 5-minute aligned).
        point_indexes: Restrict to these points; None means all points.
        max_gap_ms: Longest power segment that is still integrated.

    Returns:
        int: Number of bucket rows written.
    """
    ends = sorted({interval_end_for(e) for e in interval_ends})
    if not ends:
        return 0

    stmt = select(Point).where(Point.system_id == system_id)
    if point_indexes is not None:
        wanted = sorted(set(point_indexes))
        if not wanted:
            return 0
        stmt = stmt.where(Point.point_index.in_(wanted))
    points = list((await db.execute(stmt)).scalars().all())
    if not points:
        return 0
    indexes = [p.point_index for p in points]

    lookback = max_gap_ms if any(_uses_carry_in(p) for p in points) else 0
    samples = await _load_samples(
        db, system_id, indexes, ends[0] - INTERVAL_MS - lookback, ends[-1]
    )
    differentiate = [
        p.point_index for p in points if p.transform == Transform.DIFFERENTIATE
    ]
    stored_lasts = await _load_previous_lasts(
        db, system_id, differentiate, {e - INTERVAL_MS for e in ends}
    )

    rows: list[dict] = []
    for point in points:
        point_samples = samples.get(point.point_index, [])
        times = [s.time for s in point_samples]
        computed: dict[int, BucketStats] = {}

        for end in ends:
            start = end - INTERVAL_MS
            lo = bisect.bisect_right(times, start)
            hi = bisect.bisect_right(times, end)
            in_bucket = point_samples[lo:hi]
            if not in_bucket:
                continue

            previous_last = None
            if point.transform == Transform.DIFFERENTIATE:
                if start in computed:
                    previous_last = computed[start].last
                else:
                    previous_last = stored_lasts.get((point.point_index, start))

            carry_in = None
            if _uses_carry_in(point) and lo > 0:
                carry_in = point_samples[lo - 1]

            stats = compute_bucket(
                point.kind,
                in_bucket,
                transform=point.transform,
                energy_source=point.energy_source,
                previous_last=previous_last,
                carry_in=carry_in,
                max_gap_ms=max_gap_ms,
            )
            if stats is None:
                continue
            computed[end] = stats
            rows.append(
                {
                    "system_id": system_id,
                    "point_index": point.point_index,
                    "interval_end": end,
                    **stats.as_row(),
                }
            )

    written = await upsert(
        db,
        PointAggregate5m,
        rows,
        index_elements=["system_id", "point_index", "interval_end"],
        update_columns=_VALUE_COLUMNS,
    )
    logger.debug(
        "Aggregated system %d: buckets=%d points=%d rows=%d",
        system_id,
        len(ends),
        len(points),
        written,
    )
    return written


async def find_unaggregated_buckets(
    db: AsyncSession, system_id: int, before_ms: int
) -> list[int]:
    """Return bucket ends with raw readings but no 5-minute row.

    Only buckets that end at or before ``before_ms`` are considered, i.e.
    buckets made up entirely of readings older than that time.
    """
    bucket_end = (
        (PointReading.measurement_time + (INTERVAL_MS - 1)) // INTERVAL_MS
    ) * INTERVAL_MS
    raw_pairs = await db.execute(
        select(PointReading.point_index, bucket_end)
        .where(
            PointReading.system_id == system_id,
            PointReading.measurement_time <= before_ms,
        )
        .distinct()
    )
    candidates = {
        (point_index, interval_end_for(int(end)))
        for point_index, end in raw_pairs.all()
    }
    candidates = {c for c in candidates if c[1] <= before_ms}
    if not candidates:
        return []

    existing = await db.execute(
        select(PointAggregate5m.point_index, PointAggregate5m.interval_end).where(
            PointAggregate5m.system_id == system_id,
            PointAggregate5m.interval_end <= before_ms,
        )
    )
    present = {(p, e) for p, e in existing.all()}
    return sorted({end for _, end in candidates - present})
