"""
Tests for composite definitions, the subscription registry and fan-out.

CHANGELOG:
- 2026-02-28: Fan-out through the event bus
- 2026-02-24: Initial creation

TODO:
- None
"""

from telemetry_engine.identifiers import PointReference
from telemetry_engine.services.subscriptions import (
    SubscriptionRegistry,
    define_composite_sources,
    list_composite_sources,
    remove_composite_point,
)


def _refs(*raw: str) -> list[PointReference]:
    return [PointReference.parse(r) for r in raw]


class TestCompositeDefinitions:
    """Storing composite point sources."""

    async def test_define_deduplicates_and_sorts(self, db) -> None:
        stored = await define_composite_sources(db, 10, 1, _refs("2.1", "1.3", "1.2", "1.3"))

        assert stored == _refs("1.2", "1.3", "2.1")
        rows = await list_composite_sources(db, 10)
        assert [(r.source_system_id, r.source_point_index) for r in rows] == [
            (1, 2),
            (1, 3),
            (2, 1),
        ]

    async def test_define_replaces_previous_sources(self, db) -> None:
        await define_composite_sources(db, 10, 1, _refs("1.2", "1.3"))
        await define_composite_sources(db, 10, 1, _refs("1.4"))

        rows = await list_composite_sources(db, 10)
        assert [(r.source_system_id, r.source_point_index) for r in rows] == [(1, 4)]

    async def test_remove(self, db) -> None:
        await define_composite_sources(db, 10, 1, _refs("1.2", "1.3"))
        await define_composite_sources(db, 10, 2, _refs("1.2"))

        assert await remove_composite_point(db, 10, 1) == 2
        assert await remove_composite_point(db, 10, 1) == 0
        rows = await list_composite_sources(db, 10)
        assert [r.composite_point_index for r in rows] == [2]


class TestSubscriptionRegistry:
    """Reverse mapping from source points to composite points."""

    async def test_build(self, db) -> None:
        await define_composite_sources(db, 10, 1, _refs("1.2", "2.1"))
        await define_composite_sources(db, 11, 5, _refs("1.2"))
        registry = SubscriptionRegistry()

        assert await registry.build(db) == 2

        assert registry.get_subscribers(1, 2) == _refs("10.1", "11.5")
        assert registry.get_subscribers(2, 1) == _refs("10.1")
        assert registry.get_subscribers(1, 9) == []
        assert registry.get_subscribers(3, 1) == []
        assert registry.source_system_ids() == [1, 2]
        assert registry.entry(1).last_updated_ms > 0
        assert registry.entry(1).as_dict()["point_subscribers"] == {"2": ["10.1", "11.5"]}
        assert registry.entry(3) is None

    async def test_full_build_drops_stale_entries(self, db) -> None:
        await define_composite_sources(db, 10, 1, _refs("1.2", "2.1"))
        registry = SubscriptionRegistry()
        await registry.build(db)

        await remove_composite_point(db, 10, 1)
        await define_composite_sources(db, 10, 2, _refs("3.1"))
        await registry.build(db)

        assert registry.source_system_ids() == [3]
        assert registry.get_subscribers(1, 2) == []

    async def test_single_system_rebuild(self, db) -> None:
        """A scoped rebuild only touches the entry of that source system."""
        await define_composite_sources(db, 10, 1, _refs("1.2", "2.1"))
        registry = SubscriptionRegistry()
        await registry.build(db)

        await define_composite_sources(db, 10, 1, _refs("1.2"))
        assert await registry.build(db, system_id=2) == 1

        assert registry.source_system_ids() == [1]
        assert registry.get_subscribers(1, 2) == _refs("10.1")

    async def test_returned_lists_are_copies(self, db) -> None:
        await define_composite_sources(db, 10, 1, _refs("1.2"))
        registry = SubscriptionRegistry()
        await registry.build(db)

        registry.get_subscribers(1, 2).clear()

        assert registry.get_subscribers(1, 2) == _refs("10.1")


class TestCompositeFanout:
    """Copying source values into composite latest-value hashes."""

    async def test_source_write_reaches_composites(self, db, services) -> None:
        await define_composite_sources(db, 10, 1, _refs("1.2"))
        await define_composite_sources(db, 10, 2, _refs("1.2"))
        await define_composite_sources(db, 11, 1, _refs("1.2"))
        await services.rebuild_subscriptions()

        await services.cache.put_latest(
            1, "source.solar/power", 3200.0, 1000, 1500, "W", point_index=2
        )

        for composite_id in (10, 11):
            copied = await services.cache.get_latest(composite_id, "source.solar/power")
            assert copied.value == 3200.0
            assert copied.measurement_time == 1000
            assert copied.received_time == 1500

    async def test_unsubscribed_point_is_not_copied(self, db, services) -> None:
        await define_composite_sources(db, 10, 1, _refs("1.2"))
        await services.rebuild_subscriptions()

        await services.cache.put_latest(1, "load/power", 1.0, 1000, 1000, "W", point_index=3)

        assert await services.cache.get_all_latest(10) == {}

    async def test_out_of_order_composite_copy_is_dropped(self, db, services) -> None:
        """Composite hashes obey the same ordering rule as source hashes."""
        await define_composite_sources(db, 10, 1, _refs("1.2", "2.2"))
        await services.rebuild_subscriptions()
        path = "source.solar/power"

        await services.cache.put_latest(1, path, 5.0, 2000, 2000, "W", point_index=2)
        await services.cache.put_latest(2, path, 7.0, 1000, 1000, "W", point_index=2)

        assert (await services.cache.get_latest(10, path)).value == 5.0
        assert (await services.cache.get_latest(2, path)).value == 7.0
