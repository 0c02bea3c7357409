"""
Tests for the ORM models, the upsert helper and system lookups.

CHANGELOG:
- 2026-03-06: insert_missing
- 2026-03-02: energy_source and approximate columns
- 2026-02-24: composite_point_sources
- 2026-02-20: Initial creation

TODO:
- None
"""

from sqlalchemy import inspect, select

from telemetry_engine.db.models import (
    Base,
    CompositePointSource,
    Point,
    PointAggregate1d,
    PointAggregate5m,
    PointReading,
    System,
)
from telemetry_engine.db.upsert import insert_missing, upsert
from telemetry_engine.services.systems import (
    get_system,
    get_system_by_identifier,
    list_systems,
)


class TestSchema:
    """Table layout."""

    def test_tables(self) -> None:
        assert set(Base.metadata.tables) == {
            "systems",
            "points",
            "point_readings",
            "point_aggregates_5m",
            "point_aggregates_1d",
            "composite_point_sources",
        }

    def test_primary_keys(self) -> None:
        def pk(model) -> list[str]:
            return [c.name for c in inspect(model).primary_key]

        assert pk(Point) == ["system_id", "point_index"]
        assert pk(PointReading) == ["system_id", "point_index", "measurement_time"]
        assert pk(PointAggregate5m) == ["system_id", "point_index", "interval_end"]
        assert pk(PointAggregate1d) == ["system_id", "point_index", "day"]
        assert pk(CompositePointSource) == [
            "composite_system_id",
            "composite_point_index",
            "source_system_id",
            "source_point_index",
        ]

    def test_physical_path_unique_per_system(self) -> None:
        constraints = {c.name for c in Point.__table__.constraints}
        assert "uq_points_system_physical_path" in constraints


class TestModelProperties:
    """Derived attributes on systems and points."""

    def test_system_identifier(self) -> None:
        assert System(id=3, short_name="home").identifier == "home"
        assert System(id=3).identifier == "3"

    def test_composite(self) -> None:
        assert System(id=1, vendor_type="composite").is_composite
        assert not System(id=1, vendor_type="solaredge").is_composite

    def test_point_name_and_path(self) -> None:
        point = Point(
            system_id=1,
            point_index=2,
            metric_type="soc",
            logical_path_stem="bidi.battery",
            default_name="Battery SoC",
        )
        assert point.logical_path == "bidi.battery/soc"
        assert point.name == "Battery SoC"
        point.display_name = "House battery"
        assert point.name == "House battery"
        assert point.kind.value == "soc"


class TestUpsert:
    """INSERT ... ON CONFLICT DO UPDATE."""

    async def test_updates_on_conflict(self, db, make_system, make_point) -> None:
        await make_system()
        await make_point(1, 1)
        row = {
            "system_id": 1,
            "point_index": 1,
            "measurement_time": 1000,
            "received_time": 1000,
            "value": 1.0,
            "data_quality": "good",
        }

        await upsert(
            db,
            PointReading,
            [row],
            index_elements=["system_id", "point_index", "measurement_time"],
            update_columns=["value"],
        )
        written = await upsert(
            db,
            PointReading,
            [{**row, "value": 2.0, "received_time": 5000}],
            index_elements=["system_id", "point_index", "measurement_time"],
            update_columns=["value"],
        )
        await db.commit()

        assert written == 1
        stored = (await db.execute(select(*PointReading.__table__.c))).one()
        assert stored.value == 2.0
        assert stored.received_time == 1000

    async def test_chunks_large_batches(self, db, make_system, make_point) -> None:
        await make_system()
        await make_point(1, 1)
        rows = [
            {
                "system_id": 1,
                "point_index": 1,
                "measurement_time": t,
                "received_time": t,
                "value": float(t),
                "data_quality": "good",
            }
            for t in range(1, 1201)
        ]

        written = await upsert(
            db,
            PointReading,
            rows,
            index_elements=["system_id", "point_index", "measurement_time"],
            update_columns=["value"],
        )
        await db.commit()

        assert written == 1200
        count = len((await db.execute(select(PointReading.measurement_time))).all())
        assert count == 1200

    async def test_insert_missing_skips_conflicts(self, db, make_system, make_point) -> None:
        await make_system()
        await make_point(1, 1)
        row = {
            "system_id": 1,
            "point_index": 1,
            "measurement_time": 1000,
            "received_time": 1000,
            "value": 1.0,
            "data_quality": "good",
        }

        first = await insert_missing(db, PointReading, [row])
        second = await insert_missing(db, PointReading, [{**row, "value": 9.0}])
        await db.commit()

        assert (first, second) == (1, 0)
        stored = (await db.execute(select(PointReading.value))).scalars().all()
        assert stored == [1.0]

    async def test_empty(self, db) -> None:
        assert await upsert(db, PointReading, [], ["system_id"], ["value"]) == 0


class TestSystemLookups:
    """Read access to systems."""

    async def test_lookups(self, db, make_system) -> None:
        await make_system(2, short_name="cabin")
        await make_system(1)

        assert [s.id for s in await list_systems(db)] == [1, 2]
        assert (await get_system(db, 2)).short_name == "cabin"
        assert await get_system(db, 9) is None
        assert (await get_system_by_identifier(db, "cabin")).id == 2
        assert (await get_system_by_identifier(db, "1")).id == 1
        assert await get_system_by_identifier(db, "nowhere") is None
