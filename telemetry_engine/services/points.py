"""
Point identity management.

Creates points on first observation of a physical path (get-or-create keyed
by ``(system_id, physical_path_tail)``), applies validated user edits and
tells listeners (the series resolver) about every mutation so cached views
can be dropped.

Vendor metadata refreshes only ever touch ``default_name``; logical path
stem, display name, active flag and transform belong to the user.

CHANGELOG:
- 2026-03-06: Retry index allocation on conflict; notify on vendor renames
- 2026-02-26: Mutation listeners replace the direct series cache call
- 2026-02-23: Initial creation

TODO:
- None
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_engine.db.models import Point
from telemetry_engine.db.upsert import insert_missing
from telemetry_engine.errors import ValidationError
from telemetry_engine.identifiers import (
    EnergySource,
    MetricKind,
    Transform,
    is_valid_logical_path_stem,
)

logger = logging.getLogger(__name__)

# Index allocation retries when concurrent writers keep taking the index.
MAX_INDEX_ATTEMPTS = 5

# Fields a user (or admin) may change through update_point().
EDITABLE_FIELDS = frozenset(
    {"display_name", "logical_path_stem", "active", "transform", "subsystem"}
)


@dataclass(frozen=True)
class PointMetadata:
    """Vendor-supplied description of a point, seen at discovery time.

    Attributes:
        default_name: Vendor name of the point.
        metric_type: MetricKind value.
        metric_unit: Unit reported by the vendor, or None for the default.
        subsystem: Optional vendor grouping.
        logical_path_stem: Optional canonical stem suggested by the adapter.
        energy_source: For energy points, ``counter`` or ``power``.
    """

    default_name: str
    metric_type: str
    metric_unit: str | None = None
    subsystem: str | None = None
    logical_path_stem: str | None = None
    energy_source: str = EnergySource.COUNTER


def get_logical_path(point: Point) -> str | None:
    """Return the point's logical path, or None when it has no stem.

    Points without a logical path are addressable only by
    ``(system_id, point_index)``.
    """
    return point.logical_path


def validate_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Validate a user edit and return the normalised patch.

    Raises:
        ValidationError: For unknown fields, a malformed logical path stem,
            an unknown transform or a non-boolean active flag.
    """
    cleaned: dict[str, Any] = {}
    for field, value in patch.items():
        if field not in EDITABLE_FIELDS:
            raise ValidationError(field, value, "field is not editable")

        if field == "logical_path_stem":
            if value is not None and (
                not isinstance(value, str) or not is_valid_logical_path_stem(value)
            ):
                raise ValidationError(
                    field,
                    value,
                    "must be dot-separated segments of [a-z0-9]",
                )
        elif field == "transform":
            if value is not None and value not in {t.value for t in Transform}:
                raise ValidationError(
                    field, value, "must be null, 'invert' or 'differentiate'"
                )
        elif field == "active":
            if not isinstance(value, bool):
                raise ValidationError(field, value, "must be a boolean")
        elif value is not None and not isinstance(value, str):
            raise ValidationError(field, value, "must be a string or null")
        cleaned[field] = value
    return cleaned


class PointManager:
    """Reads and mutates points, notifying listeners of every change.

    Args:
        listeners: Callables invoked with the system id after a point of
            that system was created or updated.
    """

    def __init__(self, listeners: list[Callable[[int], None]] | None = None) -> None:
        self._listeners: list[Callable[[int], None]] = list(listeners or [])

    def add_mutation_listener(self, listener: Callable[[int], None]) -> None:
        """Register a callable to run after points of a system change."""
        self._listeners.append(listener)

    def _notify(self, system_id: int) -> None:
        # A failing listener propagates: the caller must learn that a
        # cached view may be stale.
        for listener in self._listeners:
            listener(system_id)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def get_point(
        self, db: AsyncSession, system_id: int, point_index: int
    ) -> Point | None:
        """Return a point by identity, or None when it does not exist."""
        return await db.get(Point, (system_id, point_index))

    async def list_points(
        self, db: AsyncSession, system_id: int, *, active_only: bool = False
    ) -> list[Point]:
        """Return the points of a system ordered by index."""
        stmt = select(Point).where(Point.system_id == system_id)
        if active_only:
            stmt = stmt.where(Point.active.is_(True))
        result = await db.execute(stmt.order_by(Point.point_index))
        return list(result.scalars().all())

    async def load_path_map(self, db: AsyncSession, system_id: int) -> dict[str, Point]:
        """Return the points of a system keyed by physical path tail."""
        return {p.physical_path_tail: p for p in await self.list_points(db, system_id)}

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    async def resolve_point(
        self,
        db: AsyncSession,
        system_id: int,
        physical_path_tail: str,
        metadata: PointMetadata,
        path_map: dict[str, Point] | None = None,
    ) -> tuple[Point, bool]:
        """Get or create the point observed at ``physical_path_tail``.

        A new point is created active with the vendor metadata and the next
        free ``point_index`` of the system. An index or path taken by a
        concurrent writer leaves the insert a no-op and the index is
        allocated again. An existing point only gets its ``default_name``
        refreshed. Listeners are told about both changes. The caller owns
        the transaction.

        Args:
            db: Async SQLAlchemy session.
            system_id: Owning system.
            physical_path_tail: Vendor-native path of the point.
            metadata: Vendor description of the point.
            path_map: Optional preloaded ``load_path_map`` result; updated
                in place with the resolved point.

        Returns:
            tuple[Point, bool]: The point and whether it was created.

        Raises:
            ValueError: If ``metadata.metric_type`` is not a MetricKind.
            RuntimeError: If no free index was found after retrying.
        """
        kind = MetricKind(metadata.metric_type)

        existing = (path_map or {}).get(physical_path_tail)
        if existing is None:
            result = await db.execute(
                select(Point).where(
                    Point.system_id == system_id,
                    Point.physical_path_tail == physical_path_tail,
                )
            )
            existing = result.scalar_one_or_none()

        if existing is not None:
            await self._refresh_default_name(db, existing, metadata.default_name)
            if path_map is not None:
                path_map[physical_path_tail] = existing
            return existing, False

        stem = metadata.logical_path_stem
        if stem is not None and not is_valid_logical_path_stem(stem):
            logger.warning(
                "Ignoring invalid logical path stem %r for %s on system %d",
                stem,
                physical_path_tail,
                system_id,
            )
            stem = None

        row = {
            "system_id": system_id,
            "physical_path_tail": physical_path_tail,
            "logical_path_stem": stem,
            "metric_type": kind.value,
            "metric_unit": metadata.metric_unit or kind.spec.default_unit,
            "transform": None,
            "energy_source": EnergySource(metadata.energy_source).value,
            "active": True,
            "subsystem": metadata.subsystem,
            "default_name": metadata.default_name,
            "display_name": None,
        }
        # A concurrent writer may take the index or the path first; the
        # insert then does nothing and the lookup below tells which.
        for _ in range(MAX_INDEX_ATTEMPTS):
            next_index = await self._next_index(db, system_id)
            inserted = await insert_missing(
                db, Point, [{**row, "point_index": next_index}]
            )
            point = await self._find_by_path(db, system_id, physical_path_tail)
            if point is not None:
                break
            logger.debug(
                "Point index %d.%d already taken, retrying", system_id, next_index
            )
        else:
            raise RuntimeError(
                f"Could not allocate a point index for {physical_path_tail} "
                f"on system {system_id}"
            )

        created = inserted > 0
        if created:
            logger.info(
                "Created point %d.%d for %s (%s)",
                system_id,
                point.point_index,
                physical_path_tail,
                kind.value,
            )
            self._notify(system_id)
        else:
            await self._refresh_default_name(db, point, metadata.default_name)
        if path_map is not None:
            path_map[physical_path_tail] = point
        return point, created

    async def _next_index(self, db: AsyncSession, system_id: int) -> int:
        return await db.scalar(
            select(func.coalesce(func.max(Point.point_index), 0) + 1).where(
                Point.system_id == system_id
            )
        )

    async def _find_by_path(
        self, db: AsyncSession, system_id: int, physical_path_tail: str
    ) -> Point | None:
        result = await db.execute(
            select(Point)
            .where(
                Point.system_id == system_id,
                Point.physical_path_tail == physical_path_tail,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _refresh_default_name(
        self, db: AsyncSession, point: Point, default_name: str
    ) -> None:
        """Apply a vendor rename; the series labels change with it."""
        if point.default_name == default_name:
            return
        point.default_name = default_name
        await db.flush()
        self._notify(point.system_id)

    async def update_point(
        self,
        db: AsyncSession,
        system_id: int,
        point_index: int,
        patch: dict[str, Any],
    ) -> Point | None:
        """Apply a validated user edit and invalidate cached series.

        The update is committed before listeners run; a listener failure
        propagates so the caller knows the series view may be stale.

        Args:
            db: Async SQLAlchemy session.
            system_id: Owning system.
            point_index: Index of the point within the system.
            patch: Field -> new value (see EDITABLE_FIELDS).

        Returns:
            Point | None: The updated point, or None when it does not exist.

        Raises:
            ValidationError: If the patch is invalid.
        """
        cleaned = validate_patch(patch)
        point = await self.get_point(db, system_id, point_index)
        if point is None:
            return None

        for field, value in cleaned.items():
            setattr(point, field, value)
        await db.commit()
        logger.info(
            "Updated point %d.%d fields=%s",
            system_id,
            point_index,
            sorted(cleaned),
        )
        self._notify(system_id)
        return point

    async def deactivate_point(
        self, db: AsyncSession, system_id: int, point_index: int
    ) -> Point | None:
        """Soft-delete a point; its history is retained."""
        return await self.update_point(db, system_id, point_index, {"active": False})
