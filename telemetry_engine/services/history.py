"""
Historical aggregate queries for resolved series.

Reads 5-minute or daily aggregate rows for the points behind a set of
series descriptors and returns one time-ordered list of values per
series. Points without rows in the window simply yield empty lists.

CHANGELOG:
- 2026-03-06: Daily values carry interval_count and day status
- 2026-02-25: Initial creation

TODO:
- None
"""

import datetime
import logging
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import select, tuple_
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_engine.db.models import PointAggregate1d, PointAggregate5m, System
from telemetry_engine.identifiers import Interval, PointReference
from telemetry_engine.services.rollup import DayStatus, day_for_interval_end, day_status
from telemetry_engine.services.series import SeriesDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryPoint:
    """One value of one series.

    Attributes:
        time: Bucket end in epoch ms (5m) or ISO date (1d).
        value: Column value, None when the bucket had no usable data.
        degraded: True when the underlying data was all bad quality.
        approximate: True for daily energy estimated from average power.
        interval_count: Daily only: 5-minute buckets behind the day.
        status: Daily only: ``missing``, ``partial`` or ``complete``.
    """

    time: int | str
    value: float | None
    degraded: bool
    approximate: bool = False
    interval_count: int | None = None
    status: DayStatus | None = None

    def as_dict(self) -> dict:
        """Return a JSON-serialisable description."""
        return {
            "time": self.time,
            "value": self.value,
            "degraded": self.degraded,
            "approximate": self.approximate,
            "interval_count": self.interval_count,
            "status": self.status.value if self.status is not None else None,
        }


async def query_history(
    db: AsyncSession,
    system: System,
    descriptors: list[SeriesDescriptor],
    interval: Interval,
    start_ms: int,
    end_ms: int,
) -> dict[str, list[HistoryPoint]]:
    """Return the values of each series in ``(start_ms, end_ms]``.

    For daily data the window selects the local days of ``system`` whose
    last bucket falls inside it. Each day carries its bucket count and
    status so partial days can be told apart from complete ones.

    Args:
        db: Async SQLAlchemy session.
        system: System whose offset defines day boundaries.
        descriptors: Series to read (from the series resolver).
        interval: ``5m`` or ``1d``.
        start_ms: Exclusive window start in epoch ms.
        end_ms: Inclusive window end in epoch ms.

    Returns:
        dict[str, list[HistoryPoint]]: Series id -> values, oldest first.
    """
    series = [d for d in descriptors if interval in d.intervals]
    out: dict[str, list[HistoryPoint]] = {d.series_id: [] for d in series}
    if not series or end_ms <= start_ms:
        return out

    refs = sorted({d.point for d in series})
    keys = [(r.system_id, r.point_index) for r in refs]

    if interval is Interval.FIVE_MINUTES:
        model = PointAggregate5m
        stmt = select(model).where(
            tuple_(model.system_id, model.point_index).in_(keys),
            model.interval_end > start_ms,
            model.interval_end <= end_ms,
        ).order_by(model.interval_end)
    else:
        model = PointAggregate1d
        first_day = day_for_interval_end(start_ms + 1, system.timezone_offset_min)
        last_day = day_for_interval_end(end_ms, system.timezone_offset_min)
        stmt = select(model).where(
            tuple_(model.system_id, model.point_index).in_(keys),
            model.day >= first_day,
            model.day <= last_day,
        ).order_by(model.day)

    rows_by_point = defaultdict(list)
    for row in (await db.execute(stmt)).scalars().all():
        rows_by_point[PointReference(row.system_id, row.point_index)].append(row)

    for descriptor in series:
        column = descriptor.column.value
        for row in rows_by_point.get(descriptor.point, []):
            value = getattr(row, column)
            if interval is Interval.FIVE_MINUTES:
                point = HistoryPoint(row.interval_end, value, row.degraded)
            else:
                day: datetime.date = row.day
                point = HistoryPoint(
                    time=day.isoformat(),
                    value=value,
                    degraded=row.degraded,
                    approximate=row.approximate,
                    interval_count=row.interval_count,
                    status=day_status(row.interval_count),
                )
            out[descriptor.series_id].append(point)

    logger.debug(
        "History query system=%d interval=%s series=%d points=%d",
        system.id,
        interval.value,
        len(series),
        len(refs),
    )
    return out
