"""
Pure rollup math for raw readings, 5-minute buckets and days.

Turns raw samples into 5-minute bucket statistics and 5-minute buckets
into daily statistics. Every function here is pure: no database, no
clock, no logging. The database-facing services in ``aggregation`` and
``daily`` feed rows in and write results out.

Bucket conventions:
- A bucket covers ``(interval_end - 5 min, interval_end]`` in UTC
  milliseconds, so a sample exactly on a 5-minute mark belongs to the
  bucket that ends there.
- A day covers the buckets whose ``interval_end`` lies in
  ``(local midnight, next local midnight]`` for the system's UTC offset.

Sums use ``math.fsum`` so that the result does not depend on row order;
re-aggregating unchanged input gives identical floats.

CHANGELOG:
- 2026-03-04: Integrate power across bucket boundaries via carry-in sample
- 2026-03-02: Energy from power samples (trapezoidal) and degraded daily mode
- 2026-02-22: Initial creation

TODO:
- None
"""

from __future__ import annotations

import datetime
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from enum import StrEnum
from itertools import pairwise

from telemetry_engine.identifiers import (
    AggregationColumn,
    DataQuality,
    EnergySource,
    MetricKind,
    Transform,
)

INTERVAL_MS = 5 * 60 * 1000
DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000
BUCKETS_PER_DAY = DAY_MS // INTERVAL_MS

_EPOCH_DATE = datetime.date(1970, 1, 1)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def interval_end_for(measurement_time: int) -> int:
    """Return the end of the 5-minute bucket containing ``measurement_time``."""
    return -(-measurement_time // INTERVAL_MS) * INTERVAL_MS


def floor_to_interval(ms: int) -> int:
    """Floor ``ms`` to a 5-minute boundary."""
    return ms - ms % INTERVAL_MS


def day_window(day: datetime.date, offset_min: int = 0) -> tuple[int, int]:
    """Return ``(start_exclusive, end_inclusive)`` interval_end bounds of a day.

    Args:
        day: Calendar day in the system's local time.
        offset_min: System UTC offset in minutes (e.g. 600 for UTC+10).
    """
    start = (day - _EPOCH_DATE).days * DAY_MS - offset_min * 60_000
    return start, start + DAY_MS


def day_for_interval_end(interval_end: int, offset_min: int = 0) -> datetime.date:
    """Return the local day a bucket ending at ``interval_end`` belongs to."""
    local_ms = interval_end + offset_min * 60_000 - 1
    return _EPOCH_DATE + datetime.timedelta(days=local_ms // DAY_MS)


def local_today(now_ms: int, offset_min: int = 0) -> datetime.date:
    """Return the local calendar day of ``now_ms``."""
    local_ms = now_ms + offset_min * 60_000
    return _EPOCH_DATE + datetime.timedelta(days=local_ms // DAY_MS)


class DayStatus(StrEnum):
    """Completeness of a day's 5-minute coverage."""

    MISSING = "missing"
    PARTIAL = "partial"
    COMPLETE = "complete"


def day_status(interval_count: int, expected: int = BUCKETS_PER_DAY) -> DayStatus:
    """Classify a day by how many of the expected buckets contributed."""
    if interval_count <= 0:
        return DayStatus.MISSING
    if interval_count < expected:
        return DayStatus.PARTIAL
    return DayStatus.COMPLETE


# ---------------------------------------------------------------------------
# Samples and integration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Sample:
    """A raw reading as seen by the rollup math.

    Attributes:
        time: Measurement time in epoch milliseconds.
        value: Observed value, None when the vendor reported an error.
        quality: DataQuality value.
    """

    time: int
    value: float | None
    quality: str = DataQuality.GOOD

    @property
    def is_good(self) -> bool:
        """True for a non-null value of good quality."""
        return self.value is not None and self.quality == DataQuality.GOOD


def integrate_trapezoidal(
    samples: Iterable[tuple[int, float | None]],
    max_gap_ms: int | None = None,
) -> float | None:
    """Integrate power samples into energy with the trapezoidal rule.

    ``energy += (p[i] + p[i+1]) / 2 * dt_hours`` for each pair of
    consecutive samples. A segment is skipped when either endpoint is
    None, when time does not advance, or when the gap exceeds
    ``max_gap_ms``. Skipping a segment never affects its neighbours.

    Args:
        samples: ``(time_ms, power)`` pairs in chronological order.
        max_gap_ms: Longest segment still integrated, or None for no limit.

    Returns:
        float | None: Energy in watt-hours (for power in watts), or None
        when no segment could be integrated. No data is not zero energy.
    """
    parts: list[float] = []
    for (t0, p0), (t1, p1) in pairwise(samples):
        if p0 is None or p1 is None:
            continue
        dt = t1 - t0
        if dt <= 0:
            continue
        if max_gap_ms is not None and dt > max_gap_ms:
            continue
        parts.append((p0 + p1) / 2 * dt / HOUR_MS)
    if not parts:
        return None
    return math.fsum(parts)


# ---------------------------------------------------------------------------
# 5-minute buckets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BucketStats:
    """Statistics of one 5-minute bucket for one point."""

    avg: float | None = None
    min: float | None = None
    max: float | None = None
    last: float | None = None
    delta: float | None = None
    sample_count: int = 0
    error_count: int = 0
    degraded: bool = False

    def as_row(self) -> dict:
        """Return the statistics as a column dict."""
        return {
            "avg": self.avg,
            "min": self.min,
            "max": self.max,
            "last": self.last,
            "delta": self.delta,
            "sample_count": self.sample_count,
            "error_count": self.error_count,
            "degraded": self.degraded,
        }


def _invert(sample: Sample) -> Sample:
    if sample.value is None:
        return sample
    return replace(sample, value=-sample.value)


def compute_bucket(
    kind: MetricKind,
    samples: Sequence[Sample],
    *,
    transform: str | None = None,
    energy_source: str = EnergySource.COUNTER,
    previous_last: float | None = None,
    carry_in: Sample | None = None,
    max_gap_ms: int | None = None,
) -> BucketStats | None:
    """Compute one bucket from its raw samples.

    Good-quality samples feed avg/min/max. ``last`` is the value of the
    chronologically final sample with a value, whatever its quality, so a
    bucket keeps reporting current status through estimated or error
    periods. A bucket whose samples are all bad is still returned, with
    ``degraded=True`` and no avg/min/max.

    Args:
        kind: Metric kind of the point; selects the legal columns.
        samples: Raw samples inside the bucket.
        transform: Point transform (``invert`` or ``differentiate``).
        energy_source: For energy points, ``counter`` or ``power``.
        previous_last: Raw ``last`` of the preceding bucket (differentiate).
        carry_in: Last raw sample before the bucket (energy from power).
        max_gap_ms: Longest power segment that is still integrated.

    Returns:
        BucketStats | None: None when the bucket has no samples at all.
    """
    if not samples:
        return None

    ordered = sorted(samples, key=lambda s: s.time)
    if transform == Transform.INVERT:
        ordered = [_invert(s) for s in ordered]
        if carry_in is not None:
            carry_in = _invert(carry_in)

    good = [s.value for s in ordered if s.is_good]
    with_value = [s.value for s in ordered if s.value is not None]
    last = with_value[-1] if with_value else None
    counts = {
        "sample_count": len(good),
        "error_count": len(ordered) - len(good),
        "degraded": not good,
    }

    if transform == Transform.DIFFERENTIATE:
        delta = None
        if last is not None and previous_last is not None:
            delta = last - previous_last
            if delta < 0:
                # Counter reset or rollover; no trustworthy delta.
                delta = None
        return BucketStats(last=last, delta=delta, **counts)

    stored = kind.spec.stored
    avg = low = high = None
    if good and AggregationColumn.AVG in stored:
        avg = math.fsum(good) / len(good)
        low = min(good)
        high = max(good)

    delta = None
    if kind is MetricKind.ENERGY:
        if energy_source == EnergySource.POWER:
            chain = ([carry_in] if carry_in is not None else []) + ordered
            delta = integrate_trapezoidal(
                ((s.time, s.value if s.is_good else None) for s in chain),
                max_gap_ms=max_gap_ms,
            )
            # Mean power is kept for the degraded daily approximation.
            if good:
                avg = math.fsum(good) / len(good)
        elif good:
            delta = math.fsum(good)

    return BucketStats(
        avg=avg,
        min=low,
        max=high,
        last=last if AggregationColumn.LAST in stored else None,
        delta=delta,
        **counts,
    )


# ---------------------------------------------------------------------------
# Days
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DailyStats:
    """Statistics of one day for one point."""

    avg: float | None
    min: float | None
    max: float | None
    last: float | None
    delta: float | None
    sample_count: int
    error_count: int
    interval_count: int
    degraded: bool
    approximate: bool

    @property
    def status(self) -> DayStatus:
        """Completeness of the day."""
        return day_status(self.interval_count)

    def as_row(self) -> dict:
        """Return the statistics as a column dict."""
        return {
            "avg": self.avg,
            "min": self.min,
            "max": self.max,
            "last": self.last,
            "delta": self.delta,
            "sample_count": self.sample_count,
            "error_count": self.error_count,
            "interval_count": self.interval_count,
            "degraded": self.degraded,
            "approximate": self.approximate,
        }


def combine_buckets(
    kind: MetricKind,
    buckets: Sequence[tuple[int, BucketStats]],
    *,
    energy_source: str = EnergySource.COUNTER,
) -> DailyStats | None:
    """Combine a day's 5-minute buckets into daily statistics.

    ``avg`` is the mean of bucket averages (all buckets span the same
    time), ``min``/``max`` the extremes, ``last`` the final bucket's last
    value and ``delta`` the sum of bucket deltas.

    For energy points fed with power samples, a day without any
    integrable segment but with average power (e.g. a vendor delivering a
    single daily-average reading) gets ``delta = mean(avg) * 24 h`` and
    ``approximate=True``. Callers must surface that flag; the estimate
    cannot separate charge from discharge or import from export.

    Args:
        kind: Metric kind of the point.
        buckets: ``(interval_end, stats)`` pairs for the day.
        energy_source: For energy points, ``counter`` or ``power``.

    Returns:
        DailyStats | None: None when there are no buckets.
    """
    if not buckets:
        return None

    ordered = [stats for _, stats in sorted(buckets, key=lambda b: b[0])]
    avgs = [b.avg for b in ordered if b.avg is not None]
    mins = [b.min for b in ordered if b.min is not None]
    maxs = [b.max for b in ordered if b.max is not None]
    lasts = [b.last for b in ordered if b.last is not None]
    deltas = [b.delta for b in ordered if b.delta is not None]

    avg = math.fsum(avgs) / len(avgs) if avgs else None
    delta = math.fsum(deltas) if deltas else None
    approximate = False
    if (
        kind is MetricKind.ENERGY
        and energy_source == EnergySource.POWER
        and delta is None
        and avg is not None
    ):
        delta = avg * 24
        approximate = True

    return DailyStats(
        avg=avg,
        min=min(mins) if mins else None,
        max=max(maxs) if maxs else None,
        last=lasts[-1] if lasts else None,
        delta=delta,
        sample_count=sum(b.sample_count for b in ordered),
        error_count=sum(b.error_count for b in ordered),
        interval_count=len(ordered),
        degraded=any(b.degraded for b in ordered),
        approximate=approximate,
    )
