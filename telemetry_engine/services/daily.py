"""
Daily aggregation of 5-minute point aggregates.

A day's rows in ``point_aggregates_1d`` are always derived from that
day's 5-minute rows, never from raw readings. ``aggregate_day`` is the
single unit of work: read, combine per point, delete rows of points that
no longer have data, upsert the rest, commit. Running it twice for the
same input yields the same rows.

The sweeps run one system at a time in their own session. A failing
system is logged and reported in its ``SystemAggregationResult``; the
sweep carries on with the next system.

CHANGELOG:
- 2026-03-06: Last-N-days sweep uses each system's local date
- 2026-03-02: Flag approximate energy days and warn for bidirectional stems
- 2026-02-26: Stale-day detection in the catch-up sweep
- 2026-02-23: Initial creation

TODO:
- None
"""

import datetime
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from telemetry_engine.db.models import (
    Point,
    PointAggregate1d,
    PointAggregate5m,
    System,
)
from telemetry_engine.db.upsert import upsert
from telemetry_engine.identifiers import is_bidirectional
from telemetry_engine.services.rollup import (
    BucketStats,
    DailyStats,
    DayStatus,
    combine_buckets,
    day_for_interval_end,
    day_window,
    local_today,
)
from telemetry_engine.services.systems import list_systems

logger = logging.getLogger(__name__)

_VALUE_COLUMNS = [
    "avg",
    "min",
    "max",
    "last",
    "delta",
    "sample_count",
    "error_count",
    "interval_count",
    "degraded",
    "approximate",
]


@dataclass
class SystemAggregationResult:
    """Outcome of a sweep for one system.

    Attributes:
        system_id: The system that was processed.
        ok: False when the system failed; ``error`` then holds the reason.
        days_aggregated: Days recomputed for this system.
        rows_written: Daily rows upserted for this system.
        error: Failure description, or None.
    """

    system_id: int
    ok: bool = True
    days_aggregated: list[datetime.date] = field(default_factory=list)
    rows_written: int = 0
    error: str | None = None

    def as_dict(self) -> dict:
        """Return a JSON-serialisable description."""
        return {
            "system_id": self.system_id,
            "ok": self.ok,
            "days_aggregated": [d.isoformat() for d in self.days_aggregated],
            "rows_written": self.rows_written,
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Single day
# ---------------------------------------------------------------------------


def _warn_approximate(system: System, point: Point, day: datetime.date) -> None:
    logger.warning(
        "Approximate daily energy for point %d.%d on %s: "
        "no intraday power samples, using average power * 24h",
        system.id,
        point.point_index,
        day.isoformat(),
    )
    if is_bidirectional(point.logical_path_stem):
        logger.warning(
            "Point %d.%d (%s) is bidirectional; the approximation cannot "
            "separate the two flow directions",
            system.id,
            point.point_index,
            point.logical_path_stem,
        )


async def aggregate_day(db: AsyncSession, system: System, day: datetime.date) -> int:
    """Recompute one system's daily rows for ``day`` and commit.

    Args:
        db: Async SQLAlchemy session.
        system: The system to aggregate.
        day: Local calendar day in the system's UTC offset.

    Returns:
        int: Number of daily rows written.
    """
    start, end = day_window(day, system.timezone_offset_min)
    result = await db.execute(
        select(PointAggregate5m)
        .where(
            PointAggregate5m.system_id == system.id,
            PointAggregate5m.interval_end > start,
            PointAggregate5m.interval_end <= end,
        )
        .order_by(PointAggregate5m.point_index, PointAggregate5m.interval_end)
    )
    buckets: dict[int, list[tuple[int, BucketStats]]] = defaultdict(list)
    for row in result.scalars().all():
        buckets[row.point_index].append(
            (
                row.interval_end,
                BucketStats(
                    avg=row.avg,
                    min=row.min,
                    max=row.max,
                    last=row.last,
                    delta=row.delta,
                    sample_count=row.sample_count,
                    error_count=row.error_count,
                    degraded=row.degraded,
                ),
            )
        )

    points = {}
    if buckets:
        point_rows = await db.execute(
            select(Point).where(
                Point.system_id == system.id,
                Point.point_index.in_(sorted(buckets)),
            )
        )
        points = {p.point_index: p for p in point_rows.scalars().all()}

    rows: list[dict] = []
    partial = 0
    for point_index, point_buckets in buckets.items():
        point = points.get(point_index)
        if point is None:
            continue
        stats: DailyStats | None = combine_buckets(
            point.kind, point_buckets, energy_source=point.energy_source
        )
        if stats is None:
            continue
        if stats.approximate:
            _warn_approximate(system, point, day)
        if stats.status is not DayStatus.COMPLETE:
            partial += 1
        rows.append(
            {
                "system_id": system.id,
                "point_index": point_index,
                "day": day,
                **stats.as_row(),
            }
        )

    stale = delete(PointAggregate1d).where(
        PointAggregate1d.system_id == system.id,
        PointAggregate1d.day == day,
    )
    if rows:
        stale = stale.where(
            PointAggregate1d.point_index.not_in([r["point_index"] for r in rows])
        )
    await db.execute(stale)
    written = await upsert(
        db,
        PointAggregate1d,
        rows,
        index_elements=["system_id", "point_index", "day"],
        update_columns=_VALUE_COLUMNS,
    )
    await db.commit()
    logger.debug(
        "Aggregated day %s for system %d: rows=%d partial=%d",
        day.isoformat(),
        system.id,
        written,
        partial,
    )
    return written


# ---------------------------------------------------------------------------
# Day discovery
# ---------------------------------------------------------------------------


async def days_with_5m_data(db: AsyncSession, system: System) -> dict[datetime.date, int]:
    """Return ``{day: 5-minute row count}`` for every day with 5-minute data."""
    result = await db.execute(
        select(PointAggregate5m.interval_end).where(
            PointAggregate5m.system_id == system.id
        )
    )
    counts: dict[datetime.date, int] = defaultdict(int)
    for (interval_end,) in result.all():
        counts[day_for_interval_end(interval_end, system.timezone_offset_min)] += 1
    return dict(counts)


async def _daily_interval_counts(
    db: AsyncSession, system_id: int
) -> dict[datetime.date, int]:
    """Return ``{day: sum(interval_count)}`` of the stored daily rows."""
    result = await db.execute(
        select(PointAggregate1d.day, func.sum(PointAggregate1d.interval_count))
        .where(PointAggregate1d.system_id == system_id)
        .group_by(PointAggregate1d.day)
    )
    return {day: int(total or 0) for day, total in result.all()}


async def find_days_needing_aggregation(
    db: AsyncSession, system: System, before: datetime.date | None = None
) -> list[datetime.date]:
    """Return days whose daily rows are missing or stale, oldest first.

    A day is stale when the number of 5-minute rows behind it differs from
    the stored ``interval_count`` total, e.g. because late data arrived
    after the day was aggregated.

    Args:
        db: Async SQLAlchemy session.
        system: System to inspect.
        before: Only consider days strictly before this day.
    """
    bucket_counts = await days_with_5m_data(db, system)
    daily_counts = await _daily_interval_counts(db, system.id)
    days = [
        day
        for day, count in bucket_counts.items()
        if (before is None or day < before) and daily_counts.get(day) != count
    ]
    return sorted(days)


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------


async def _system_ids(session_factory: async_sessionmaker[AsyncSession]) -> list[int]:
    async with session_factory() as db:
        return [s.id for s in await list_systems(db)]


async def _run_per_system(
    session_factory: async_sessionmaker[AsyncSession],
    label: str,
    work,
) -> list[SystemAggregationResult]:
    """Run ``work(db, system, result)`` for every system, isolating failures."""
    results: list[SystemAggregationResult] = []
    for system_id in await _system_ids(session_factory):
        outcome = SystemAggregationResult(system_id=system_id)
        async with session_factory() as db:
            try:
                system = await db.get(System, system_id)
                if system is not None:
                    await work(db, system, outcome)
            except Exception as exc:
                await db.rollback()
                outcome.ok = False
                outcome.error = str(exc)
                logger.error(
                    "%s failed for system %d", label, system_id, exc_info=True
                )
        results.append(outcome)

    failed = sum(1 for r in results if not r.ok)
    logger.info(
        "%s finished: systems=%d failed=%d rows=%d",
        label,
        len(results),
        failed,
        sum(r.rows_written for r in results),
    )
    return results


async def aggregate_day_for_all_systems(
    session_factory: async_sessionmaker[AsyncSession], day: datetime.date
) -> list[SystemAggregationResult]:
    """Aggregate one calendar day for every system."""

    async def work(db, system, outcome):
        outcome.rows_written += await aggregate_day(db, system, day)
        outcome.days_aggregated.append(day)

    return await _run_per_system(session_factory, f"Daily aggregation {day}", work)


async def aggregate_all_missing_days_for_all_systems(
    session_factory: async_sessionmaker[AsyncSession],
    include_today: bool = False,
    now_ms: int | None = None,
) -> list[SystemAggregationResult]:
    """Aggregate every missing or stale day of every system, oldest first.

    Args:
        session_factory: Session factory; each system gets its own session.
        include_today: Also aggregate the (incomplete) current local day.
        now_ms: Current time in epoch ms, used to determine "today".
    """

    async def work(db, system, outcome):
        before = None
        if not include_today and now_ms is not None:
            before = local_today(now_ms, system.timezone_offset_min)
        for day in await find_days_needing_aggregation(db, system, before=before):
            outcome.rows_written += await aggregate_day(db, system, day)
            outcome.days_aggregated.append(day)

    return await _run_per_system(session_factory, "Catch-up aggregation", work)


async def aggregate_last_n_days(
    session_factory: async_sessionmaker[AsyncSession],
    n: int,
    today: datetime.date | None = None,
    now_ms: int | None = None,
) -> list[SystemAggregationResult]:
    """Recompute the ``n`` most recent days for every system, unconditionally.

    Args:
        session_factory: Session factory.
        n: Number of days ending with ``today`` (inclusive).
        today: Last day to recompute for every system. When omitted each
            system uses its own local date at ``now_ms``.
        now_ms: Current time in epoch ms; defaults to the wall clock.

    Raises:
        ValueError: If ``n`` is smaller than 1.
    """
    if n < 1:
        raise ValueError("n must be >= 1")
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    async def work(db, system, outcome):
        last = today or local_today(now_ms, system.timezone_offset_min)
        for offset in range(n - 1, -1, -1):
            day = last - datetime.timedelta(days=offset)
            outcome.rows_written += await aggregate_day(db, system, day)
            outcome.days_aggregated.append(day)

    return await _run_per_system(session_factory, f"Last {n} day(s) aggregation", work)


async def regenerate_all(
    session_factory: async_sessionmaker[AsyncSession],
) -> list[SystemAggregationResult]:
    """Rebuild daily rows for every day still covered by 5-minute data.

    Destructive: daily rows of those days are deleted first. Daily rows of
    older days, whose 5-minute data has been purged, are kept because they
    cannot be rebuilt.
    """

    async def work(db, system, outcome):
        days = sorted(await days_with_5m_data(db, system))
        if not days:
            return
        await db.execute(
            delete(PointAggregate1d).where(
                PointAggregate1d.system_id == system.id,
                PointAggregate1d.day.in_(days),
            )
        )
        await db.commit()
        logger.warning(
            "Cleared daily aggregates of system %d for %d day(s) %s..%s",
            system.id,
            len(days),
            days[0].isoformat(),
            days[-1].isoformat(),
        )
        for day in days:
            outcome.rows_written += await aggregate_day(db, system, day)
            outcome.days_aggregated.append(day)

    return await _run_per_system(session_factory, "Regenerate daily aggregates", work)
