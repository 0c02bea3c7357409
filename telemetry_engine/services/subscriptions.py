"""
Composite subscription registry and fan-out.

Composite systems present points of other systems under their own
identity. Administrators define, per composite point, the source points
that feed it (``composite_point_sources``). This module keeps the reverse
mapping in memory::

    source_system_id -> {
        point_subscribers: {source_point_index: [PointReference, ...]},
        last_updated_ms: int,
    }

and uses it to copy every newly cached source value into the latest-value
hash of each subscribing composite system.

The registry is owned state of one process. ``build`` replaces entries
wholesale so a rebuild never leaves stale subscribers behind.

CHANGELOG:
- 2026-03-06: Registry entries exposed for inspection
- 2026-02-28: CompositeFanout handler on the event bus
- 2026-02-24: Initial creation

TODO:
- None
"""

import logging
import time
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_engine.cache.latest import LatestValue, LatestValueCache
from telemetry_engine.db.models import CompositePointSource
from telemetry_engine.identifiers import PointReference
from telemetry_engine.services.events import RawValueCommitted

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionEntry:
    """Subscribers of one source system."""

    point_subscribers: dict[int, list[PointReference]] = field(default_factory=dict)
    last_updated_ms: int = 0

    def as_dict(self) -> dict:
        """Return a JSON-serialisable description."""
        return {
            "point_subscribers": {
                str(index): [str(ref) for ref in refs]
                for index, refs in self.point_subscribers.items()
            },
            "last_updated_ms": self.last_updated_ms,
        }


class SubscriptionRegistry:
    """Reverse index from source points to the composite points they feed."""

    def __init__(self) -> None:
        self._entries: dict[int, SubscriptionEntry] = {}

    async def build(self, db: AsyncSession, system_id: int | None = None) -> int:
        """Rebuild entries from the composite definitions.

        Args:
            db: Async SQLAlchemy session.
            system_id: Rebuild only the entry of this source system; None
                rebuilds (and fully replaces) every entry.

        Returns:
            int: Number of source systems with subscribers after the build.
        """
        stmt = select(CompositePointSource)
        if system_id is not None:
            stmt = stmt.where(CompositePointSource.source_system_id == system_id)
        result = await db.execute(stmt)

        now_ms = int(time.time() * 1000)
        grouped: dict[int, dict[int, set[PointReference]]] = defaultdict(
            lambda: defaultdict(set)
        )
        for row in result.scalars().all():
            grouped[row.source_system_id][row.source_point_index].add(
                PointReference(row.composite_system_id, row.composite_point_index)
            )

        entries = {
            source_id: SubscriptionEntry(
                point_subscribers={
                    index: sorted(refs) for index, refs in sorted(points.items())
                },
                last_updated_ms=now_ms,
            )
            for source_id, points in grouped.items()
        }

        if system_id is None:
            self._entries = entries
        elif system_id in entries:
            self._entries[system_id] = entries[system_id]
        else:
            self._entries.pop(system_id, None)

        logger.info(
            "Built subscription registry: scope=%s source_systems=%d",
            "all" if system_id is None else system_id,
            len(entries),
        )
        return len(self._entries)

    def get_subscribers(
        self, system_id: int, source_point_index: int
    ) -> list[PointReference]:
        """Return the composite points fed by a source point (may be empty)."""
        entry = self._entries.get(system_id)
        if entry is None:
            return []
        return list(entry.point_subscribers.get(source_point_index, []))

    def entry(self, system_id: int) -> SubscriptionEntry | None:
        """Return the entry of a source system, or None."""
        return self._entries.get(system_id)

    def source_system_ids(self) -> list[int]:
        """Return the ids of systems that currently have subscribers."""
        return sorted(self._entries)


# ---------------------------------------------------------------------------
# Composite definitions
# ---------------------------------------------------------------------------


async def define_composite_sources(
    db: AsyncSession,
    composite_system_id: int,
    composite_point_index: int,
    sources: Iterable[PointReference],
) -> list[PointReference]:
    """Replace the source points of one composite point and commit.

    Callers rebuild the registry afterwards (for every affected source
    system, or fully).

    Returns:
        list[PointReference]: The stored sources, de-duplicated and sorted.
    """
    unique = sorted(set(sources))
    await db.execute(
        delete(CompositePointSource).where(
            CompositePointSource.composite_system_id == composite_system_id,
            CompositePointSource.composite_point_index == composite_point_index,
        )
    )
    db.add_all(
        CompositePointSource(
            composite_system_id=composite_system_id,
            composite_point_index=composite_point_index,
            source_system_id=ref.system_id,
            source_point_index=ref.point_index,
        )
        for ref in unique
    )
    await db.commit()
    logger.info(
        "Defined %d source(s) for composite point %d.%d",
        len(unique),
        composite_system_id,
        composite_point_index,
    )
    return unique


async def remove_composite_point(
    db: AsyncSession, composite_system_id: int, composite_point_index: int
) -> int:
    """Delete every source definition of one composite point and commit.

    Returns:
        int: Number of definitions removed.
    """
    result = await db.execute(
        delete(CompositePointSource).where(
            CompositePointSource.composite_system_id == composite_system_id,
            CompositePointSource.composite_point_index == composite_point_index,
        )
    )
    await db.commit()
    return result.rowcount or 0


async def list_composite_sources(
    db: AsyncSession, composite_system_id: int
) -> list[CompositePointSource]:
    """Return the source definitions of a composite system."""
    result = await db.execute(
        select(CompositePointSource)
        .where(CompositePointSource.composite_system_id == composite_system_id)
        .order_by(
            CompositePointSource.composite_point_index,
            CompositePointSource.source_system_id,
            CompositePointSource.source_point_index,
        )
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------


class CompositeFanout:
    """Copies committed source values into subscribing composite systems.

    Register with ``bus.subscribe(RawValueCommitted, fanout)``. Copies are
    written with ``LatestValueCache.write_many`` and therefore never
    publish again.
    """

    def __init__(self, registry: SubscriptionRegistry, cache: LatestValueCache) -> None:
        self._registry = registry
        self._cache = cache

    async def __call__(self, event: RawValueCommitted) -> None:
        subscribers = self._registry.get_subscribers(event.system_id, event.point_index)
        if not subscribers:
            return

        entry = LatestValue(
            value=event.value,
            logical_path=event.logical_path,
            measurement_time=event.measurement_time,
            received_time=event.received_time,
            metric_unit=event.metric_unit,
        )
        for composite_system_id in sorted({ref.system_id for ref in subscribers}):
            await self._cache.write_many(composite_system_id, [entry])
        logger.debug(
            "Fanned out %s from %d.%d to %d composite point(s)",
            event.logical_path,
            event.system_id,
            event.point_index,
            len(subscribers),
        )
