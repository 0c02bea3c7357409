"""
Retention purge for raw readings and aggregates.

Deletes data older than the configured windows, coarsest-safe first:
before raw readings are dropped, any bucket that still lacks a 5-minute
row is aggregated; before 5-minute rows are dropped, any day that still
lacks (or has stale) daily rows is aggregated. Nothing is deleted that
the next resolution has not captured.

Cutoffs are aligned so a purge never splits a unit of aggregation: the
raw cutoff is floored to a 5-minute boundary and the 5-minute cutoff to
the system's local midnight.

CHANGELOG:
- 2026-02-26: Initial creation

TODO:
- None
"""

import datetime
import logging
from dataclasses import dataclass

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from telemetry_engine.config import EngineSettings
from telemetry_engine.db.models import (
    PointAggregate1d,
    PointAggregate5m,
    PointReading,
    System,
)
from telemetry_engine.services.aggregation import (
    aggregate_buckets,
    find_unaggregated_buckets,
)
from telemetry_engine.services.daily import aggregate_day, find_days_needing_aggregation
from telemetry_engine.services.rollup import (
    DAY_MS,
    day_window,
    floor_to_interval,
    local_today,
)
from telemetry_engine.services.systems import list_systems

logger = logging.getLogger(__name__)


@dataclass
class PurgeResult:
    """Rows removed (and safety rows written) by one purge run."""

    raw_deleted: int = 0
    agg_5m_deleted: int = 0
    agg_1d_deleted: int = 0
    buckets_backfilled: int = 0
    days_backfilled: int = 0

    def as_dict(self) -> dict:
        """Return a JSON-serialisable description."""
        return {
            "raw_deleted": self.raw_deleted,
            "agg_5m_deleted": self.agg_5m_deleted,
            "agg_1d_deleted": self.agg_1d_deleted,
            "buckets_backfilled": self.buckets_backfilled,
            "days_backfilled": self.days_backfilled,
        }


async def _purge_system(
    db: AsyncSession,
    system: System,
    settings: EngineSettings,
    now_ms: int,
    result: PurgeResult,
) -> None:
    offset = system.timezone_offset_min

    # Raw readings
    raw_cutoff = floor_to_interval(now_ms - settings.raw_retention_days * DAY_MS)
    missing = await find_unaggregated_buckets(db, system.id, raw_cutoff)
    if missing:
        result.buckets_backfilled += await aggregate_buckets(
            db,
            system.id,
            missing,
            max_gap_ms=settings.integration_max_gap_s * 1000,
        )
        await db.commit()
    deleted = await db.execute(
        delete(PointReading).where(
            PointReading.system_id == system.id,
            PointReading.measurement_time <= raw_cutoff,
        )
    )
    result.raw_deleted += deleted.rowcount or 0

    # 5-minute aggregates
    cutoff_day = local_today(now_ms - settings.agg_5m_retention_days * DAY_MS, offset)
    agg_cutoff, _ = day_window(cutoff_day, offset)
    for day in await find_days_needing_aggregation(db, system, before=cutoff_day):
        await aggregate_day(db, system, day)
        result.days_backfilled += 1
    deleted = await db.execute(
        delete(PointAggregate5m).where(
            PointAggregate5m.system_id == system.id,
            PointAggregate5m.interval_end <= agg_cutoff,
        )
    )
    result.agg_5m_deleted += deleted.rowcount or 0

    # Daily aggregates (0 keeps forever)
    if settings.agg_1d_retention_days > 0:
        daily_cutoff = local_today(
            now_ms - settings.agg_1d_retention_days * DAY_MS, offset
        )
        deleted = await db.execute(
            delete(PointAggregate1d).where(
                PointAggregate1d.system_id == system.id,
                PointAggregate1d.day < daily_cutoff,
            )
        )
        result.agg_1d_deleted += deleted.rowcount or 0

    await db.commit()


async def purge_expired(
    session_factory: async_sessionmaker[AsyncSession],
    settings: EngineSettings,
    now_ms: int | None = None,
) -> PurgeResult:
    """Delete readings and aggregates outside the retention windows.

    Args:
        session_factory: Session factory; each system gets its own session.
        settings: Retention windows and integration gap.
        now_ms: Current time in epoch ms; defaults to the wall clock.

    Returns:
        PurgeResult: Totals across all systems.
    """
    if now_ms is None:
        now_ms = int(datetime.datetime.now(datetime.UTC).timestamp() * 1000)

    result = PurgeResult()
    async with session_factory() as db:
        systems = await list_systems(db)

    for system in systems:
        async with session_factory() as db:
            await _purge_system(db, system, settings, now_ms, result)

    logger.info(
        "Retention purge: raw=%d 5m=%d 1d=%d backfilled_buckets=%d backfilled_days=%d",
        result.raw_deleted,
        result.agg_5m_deleted,
        result.agg_1d_deleted,
        result.buckets_backfilled,
        result.days_backfilled,
    )
    return result
