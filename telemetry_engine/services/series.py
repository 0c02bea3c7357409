"""
Series resolver: which series a system exposes.

A series is one aggregation column of one point with a logical path,
identified as ``<system_identifier>/<stem>/<metric_type>.<column>``. The
resolver builds descriptors from the point store, filters them by
interval membership and glob patterns, and returns them sorted by id.

Descriptors of non-composite systems are cached per system and dropped
whole when a point of that system changes (``invalidate`` is registered
as a PointManager mutation listener). Composite systems are resolved from
their composite definitions on every call and never cached.

CHANGELOG:
- 2026-02-26: Cache invalidation driven by point mutation listeners
- 2026-02-24: Composite systems resolve their source points
- 2026-02-23: Initial creation

TODO:
- None
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_engine.db.models import CompositePointSource, Point, System
from telemetry_engine.errors import ValidationError
from telemetry_engine.identifiers import (
    AggregationColumn,
    Interval,
    MetricKind,
    PointReference,
    build_series_id,
    build_series_path,
    parse_interval,
)
from telemetry_engine.services.series_filter import (
    matches_any,
    split_patterns,
    validate_pattern,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeriesDescriptor:
    """One queryable series.

    Attributes:
        series_id: ``<system_identifier>/<logical_path>.<column>``.
        system_identifier: Identifier of the system exposing the series.
        logical_path: ``<stem>/<metric_type>`` of the backing point.
        column: Aggregation column.
        intervals: Resolutions at which the series exists.
        label: Human-readable name.
        unit: Unit of the values.
        metric_type: Metric kind of the backing point.
        point: The point whose aggregates back the series.
    """

    series_id: str
    system_identifier: str
    logical_path: str
    column: AggregationColumn
    intervals: tuple[Interval, ...]
    label: str
    unit: str
    metric_type: str
    point: PointReference

    @property
    def path(self) -> str:
        """Series path without the system prefix (what filters match)."""
        return build_series_path(self.logical_path, self.column)

    def as_dict(self) -> dict:
        """Return a JSON-serialisable description."""
        return {
            "id": self.series_id,
            "path": self.path,
            "column": self.column.value,
            "intervals": [i.value for i in self.intervals],
            "label": self.label,
            "unit": self.unit,
            "metricType": self.metric_type,
            "point": str(self.point),
        }


def _unit_for(point: Point) -> str:
    return point.metric_unit or point.kind.spec.default_unit


def descriptors_for_point(system_identifier: str, point: Point) -> list[SeriesDescriptor]:
    """Build every series a point exposes, or none without a logical path."""
    logical_path = point.logical_path
    if logical_path is None:
        return []
    kind: MetricKind = point.kind
    descriptors = []
    for column in kind.all_series_columns():
        descriptors.append(
            SeriesDescriptor(
                series_id=build_series_id(system_identifier, logical_path, column),
                system_identifier=system_identifier,
                logical_path=logical_path,
                column=column,
                intervals=kind.supported_intervals(column),
                label=f"{point.name} ({column.value})",
                unit=_unit_for(point),
                metric_type=kind.value,
                point=PointReference(point.system_id, point.point_index),
            )
        )
    return descriptors


def parse_filter(raw: str | list[str] | None) -> list[str]:
    """Split and validate filter patterns.

    Raises:
        ValidationError: If any pattern is invalid.
    """
    if raw is None:
        return []
    pieces = raw if isinstance(raw, list) else [raw]
    patterns: list[str] = []
    for piece in pieces:
        patterns.extend(split_patterns(piece))
    for pattern in patterns:
        check = validate_pattern(pattern)
        if not check.valid:
            raise ValidationError("filter", pattern, check.error or "invalid pattern")
    return patterns


class SeriesResolver:
    """Lists the series of a system, with a per-system descriptor cache."""

    def __init__(self) -> None:
        self._cache: dict[int, list[SeriesDescriptor]] = {}

    def invalidate(self, system_id: int) -> None:
        """Drop the cached descriptors of one system."""
        if self._cache.pop(system_id, None) is not None:
            logger.debug("Invalidated series cache for system %d", system_id)

    def invalidate_all(self) -> None:
        """Drop every cached descriptor list."""
        self._cache.clear()

    def is_cached(self, system_id: int) -> bool:
        """True when descriptors of the system are cached."""
        return system_id in self._cache

    async def _build(self, db: AsyncSession, system: System) -> list[SeriesDescriptor]:
        result = await db.execute(
            select(Point)
            .where(Point.system_id == system.id, Point.active.is_(True))
            .order_by(Point.point_index)
        )
        descriptors: list[SeriesDescriptor] = []
        for point in result.scalars().all():
            descriptors.extend(descriptors_for_point(system.identifier, point))
        return descriptors

    async def _build_composite(
        self, db: AsyncSession, system: System
    ) -> list[SeriesDescriptor]:
        result = await db.execute(
            select(Point)
            .join(
                CompositePointSource,
                (CompositePointSource.source_system_id == Point.system_id)
                & (CompositePointSource.source_point_index == Point.point_index),
            )
            .where(
                CompositePointSource.composite_system_id == system.id,
                Point.active.is_(True),
            )
            .distinct()
        )
        descriptors: list[SeriesDescriptor] = []
        for point in result.scalars().all():
            descriptors.extend(descriptors_for_point(system.identifier, point))
        return descriptors

    async def list_series(
        self,
        db: AsyncSession,
        system: System,
        filter: str | list[str] | None = None,
        interval: str | None = None,
    ) -> list[SeriesDescriptor]:
        """Return the series of a system, filtered and sorted by id.

        Args:
            db: Async SQLAlchemy session.
            system: The system to resolve.
            filter: Glob patterns (comma-separated string or list) matched
                against the series path without the system prefix.
            interval: ``5m`` or ``1d`` to keep only series existing at
                that resolution.

        Returns:
            list[SeriesDescriptor]: Matching series sorted by series id.

        Raises:
            ValidationError: If a pattern or the interval is invalid.
        """
        patterns = parse_filter(filter)
        try:
            wanted = parse_interval(interval)
        except ValueError:
            raise ValidationError("interval", interval, "must be '5m' or '1d'") from None

        if system.is_composite:
            descriptors = await self._build_composite(db, system)
        else:
            descriptors = self._cache.get(system.id)
            if descriptors is None:
                descriptors = await self._build(db, system)
                self._cache[system.id] = descriptors

        if wanted is not None:
            descriptors = [d for d in descriptors if wanted in d.intervals]
        if patterns:
            descriptors = [d for d in descriptors if matches_any(d.path, patterns)]
        return sorted(descriptors, key=lambda d: d.series_id)

    async def find_series(
        self, db: AsyncSession, system: System, series_path: str
    ) -> SeriesDescriptor | None:
        """Return the series with the given path (no system prefix), or None."""
        for descriptor in await self.list_series(db, system):
            if descriptor.path == series_path:
                return descriptor
        return None
