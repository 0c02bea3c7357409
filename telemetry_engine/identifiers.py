"""
Canonical identifiers for points, logical paths and series.

Defines the closed set of metric kinds together with the aggregation
columns each kind stores and exposes, the logical path grammar
(``<stem>/<metric_type>``), point references (``<system_id>.<point_index>``)
and series identifiers (``<system>/<logical_path>.<column>``).

Everything in this module is pure: no I/O, no clock.

CHANGELOG:
- 2026-03-02: Add EnergySource for energy points fed with power samples
- 2026-02-24: Split stored vs. exposed columns per metric kind
- 2026-02-20: Initial creation

TODO:
- None
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Interval(StrEnum):
    """Resolution of a stored aggregate series."""

    FIVE_MINUTES = "5m"
    ONE_DAY = "1d"


class AggregationColumn(StrEnum):
    """Aggregate columns stored on 5-minute and daily rows."""

    AVG = "avg"
    MIN = "min"
    MAX = "max"
    LAST = "last"
    DELTA = "delta"


class Transform(StrEnum):
    """Unary transform applied to raw samples before aggregation."""

    INVERT = "invert"
    DIFFERENTIATE = "differentiate"


class EnergySource(StrEnum):
    """How an energy point's raw values relate to energy.

    COUNTER: each raw value is the energy accumulated since the previous
        reading (Wh) and is summed directly.
    POWER: raw values are instantaneous power (W) and are integrated
        trapezoidally into Wh.
    """

    COUNTER = "counter"
    POWER = "power"


class DataQuality(StrEnum):
    """Quality flag attached to a raw reading."""

    GOOD = "good"
    ERROR = "error"
    ESTIMATED = "estimated"
    INTERPOLATED = "interpolated"


_AVG_MIN_MAX = (AggregationColumn.AVG, AggregationColumn.MIN, AggregationColumn.MAX)
_CONTINUOUS = (*_AVG_MIN_MAX, AggregationColumn.LAST)
_DELTA = (AggregationColumn.DELTA,)
_LAST = (AggregationColumn.LAST,)


@dataclass(frozen=True)
class KindSpec:
    """Aggregation shape of one metric kind.

    Attributes:
        stored: Columns computed on 5-minute and daily rows.
        series_5m: Columns exposed as series at 5-minute resolution.
        series_1d: Columns exposed as series at daily resolution.
        default_unit: Unit used when the vendor does not supply one.
    """

    stored: tuple[AggregationColumn, ...]
    series_5m: tuple[AggregationColumn, ...]
    series_1d: tuple[AggregationColumn, ...]
    default_unit: str


class MetricKind(StrEnum):
    """Closed set of metric types a point can carry."""

    POWER = "power"
    ENERGY = "energy"
    SOC = "soc"
    DIAGNOSTIC = "diagnostic"
    STATUS = "status"
    TIME = "time"

    @property
    def spec(self) -> KindSpec:
        """Return the aggregation shape for this kind."""
        return _KIND_SPECS[self]

    def series_columns(self, interval: Interval) -> tuple[AggregationColumn, ...]:
        """Return the series columns this kind exposes at ``interval``."""
        if interval is Interval.FIVE_MINUTES:
            return self.spec.series_5m
        return self.spec.series_1d

    def supported_intervals(self, column: AggregationColumn) -> tuple[Interval, ...]:
        """Return the intervals in which ``column`` is exposed for this kind."""
        return tuple(i for i in Interval if column in self.series_columns(i))

    def all_series_columns(self) -> tuple[AggregationColumn, ...]:
        """Return every exposed column, in a stable order."""
        seen: list[AggregationColumn] = []
        for interval in Interval:
            for column in self.series_columns(interval):
                if column not in seen:
                    seen.append(column)
        return tuple(seen)


_KIND_SPECS: dict[MetricKind, KindSpec] = {
    MetricKind.POWER: KindSpec(_CONTINUOUS, _CONTINUOUS, _AVG_MIN_MAX, "W"),
    MetricKind.ENERGY: KindSpec(_DELTA, _DELTA, _DELTA, "Wh"),
    MetricKind.SOC: KindSpec(_AVG_MIN_MAX, _AVG_MIN_MAX, _AVG_MIN_MAX, "%"),
    MetricKind.DIAGNOSTIC: KindSpec(_CONTINUOUS, _CONTINUOUS, _AVG_MIN_MAX, ""),
    MetricKind.STATUS: KindSpec(_LAST, _LAST, _LAST, "text"),
    MetricKind.TIME: KindSpec(_LAST, _LAST, _LAST, "epochMs"),
}


def parse_interval(value: str | None) -> Interval | None:
    """Parse an interval string, returning None for an absent value.

    Raises:
        ValueError: If ``value`` is not ``5m`` or ``1d``.
    """
    if value is None or value == "":
        return None
    return Interval(value)


# ---------------------------------------------------------------------------
# Logical paths
# ---------------------------------------------------------------------------

_STEM_PATTERN = re.compile(r"^[a-z0-9]+(\.[a-z0-9]+)*$")


def is_valid_logical_path_stem(stem: str) -> bool:
    """Return True when ``stem`` is dot-separated lowercase segments.

    >>> is_valid_logical_path_stem("source.solar")
    True
    >>> is_valid_logical_path_stem("source..solar")
    False
    """
    return bool(_STEM_PATTERN.match(stem))


def build_logical_path(stem: str | None, metric_type: str) -> str | None:
    """Combine a stem and metric type, or None when the stem is unset."""
    if not stem:
        return None
    return f"{stem}/{metric_type}"


def split_logical_path(path: str) -> tuple[str, str] | None:
    """Split ``stem/metric_type``; None if the path is malformed."""
    stem, sep, metric_type = path.partition("/")
    if not sep or not metric_type or "/" in metric_type:
        return None
    if not is_valid_logical_path_stem(stem):
        return None
    return stem, metric_type


def is_bidirectional(stem: str | None) -> bool:
    """Return True for flows that can run both ways (``bidi.*`` stems)."""
    return bool(stem) and (stem == "bidi" or stem.startswith("bidi."))


# ---------------------------------------------------------------------------
# References and series ids
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class PointReference:
    """Reference to a point by ``(system_id, point_index)``."""

    system_id: int
    point_index: int

    def __str__(self) -> str:
        return f"{self.system_id}.{self.point_index}"

    @classmethod
    def parse(cls, raw: str) -> PointReference | None:
        """Parse ``"<system_id>.<point_index>"``; None when malformed."""
        system_part, sep, point_part = raw.strip().partition(".")
        if not sep or not system_part.isdigit() or not point_part.isdigit():
            return None
        return cls(int(system_part), int(point_part))


def build_series_path(logical_path: str, column: str) -> str:
    """Return the series path without the system prefix."""
    return f"{logical_path}.{column}"


def build_series_id(system_identifier: str, logical_path: str, column: str) -> str:
    """Return the full series id ``<system>/<logical_path>.<column>``."""
    return f"{system_identifier}/{build_series_path(logical_path, column)}"
