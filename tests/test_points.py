"""
Tests for point discovery and user edits.

CHANGELOG:
- 2026-03-06: Vendor rename notifications, index allocation retry
- 2026-02-26: Mutation listener tests
- 2026-02-23: Initial creation

TODO:
- None
"""

import logging

import pytest

from telemetry_engine.errors import ValidationError
from telemetry_engine.services.points import (
    PointManager,
    PointMetadata,
    get_logical_path,
    validate_patch,
)

SOLAR = PointMetadata(
    default_name="PV power",
    metric_type="power",
    logical_path_stem="source.solar",
    subsystem="solar",
)


class TestResolvePoint:
    """Get-or-create keyed by physical path."""

    async def test_creates_points_with_increasing_indexes(self, db, make_system) -> None:
        await make_system()
        notified: list[int] = []
        manager = PointManager([notified.append])

        first, created_first = await manager.resolve_point(db, 1, "inverter/pv", SOLAR)
        second, created_second = await manager.resolve_point(
            db,
            1,
            "meter/import",
            PointMetadata(default_name="Import", metric_type="energy"),
        )
        await db.commit()

        assert (first.point_index, created_first) == (1, True)
        assert (second.point_index, created_second) == (2, True)
        assert first.metric_unit == "W"
        assert second.metric_unit == "Wh"
        assert first.active is True
        assert first.subsystem == "solar"
        assert get_logical_path(first) == "source.solar/power"
        assert get_logical_path(second) is None
        assert notified == [1, 1]

    async def test_existing_point_only_refreshes_default_name(self, db, make_system) -> None:
        """Rediscovery never overwrites user-owned fields."""
        await make_system()
        manager = PointManager()
        point, _ = await manager.resolve_point(db, 1, "inverter/pv", SOLAR)
        await db.commit()
        await manager.update_point(db, 1, point.point_index, {"logical_path_stem": "source.roof"})

        again, created = await manager.resolve_point(
            db,
            1,
            "inverter/pv",
            PointMetadata(
                default_name="PV power (renamed)",
                metric_type="power",
                logical_path_stem="source.solar",
            ),
        )
        await db.commit()

        assert created is False
        assert again.point_index == point.point_index
        assert again.default_name == "PV power (renamed)"
        assert again.logical_path_stem == "source.roof"

    async def test_vendor_rename_notifies(self, db, make_system) -> None:
        await make_system()
        notified: list[int] = []
        manager = PointManager([notified.append])
        await manager.resolve_point(db, 1, "inverter/pv", SOLAR)

        await manager.resolve_point(db, 1, "inverter/pv", SOLAR)
        assert notified == [1]

        await manager.resolve_point(
            db, 1, "inverter/pv", PointMetadata(default_name="Roof", metric_type="power")
        )
        assert notified == [1, 1]

    async def test_taken_index_is_allocated_again(
        self, db, make_system, make_point, monkeypatch
    ) -> None:
        """An index claimed by another writer makes the insert retry."""
        await make_system()
        await make_point(1, 1)
        manager = PointManager()
        allocate = manager._next_index
        calls: list[int] = []

        async def stale_then_fresh(session, system_id):
            calls.append(system_id)
            if len(calls) == 1:
                return 1
            return await allocate(session, system_id)

        monkeypatch.setattr(manager, "_next_index", stale_then_fresh)

        point, created = await manager.resolve_point(db, 1, "inverter/pv", SOLAR)
        await db.commit()

        assert created is True
        assert point.point_index == 2
        assert point.physical_path_tail == "inverter/pv"
        assert calls == [1, 1]

    async def test_indexes_are_per_system(self, db, make_system) -> None:
        await make_system(1)
        await make_system(2)
        manager = PointManager()

        await manager.resolve_point(db, 1, "a", SOLAR)
        await manager.resolve_point(db, 1, "b", SOLAR)
        other, _ = await manager.resolve_point(db, 2, "a", SOLAR)
        await db.commit()

        assert other.point_index == 1

    async def test_invalid_stem_is_ignored(self, db, make_system, caplog) -> None:
        await make_system()
        manager = PointManager()
        metadata = PointMetadata(
            default_name="X", metric_type="power", logical_path_stem="Solar PV"
        )

        with caplog.at_level(logging.WARNING, logger="telemetry_engine.services.points"):
            point, created = await manager.resolve_point(db, 1, "x", metadata)

        assert created
        assert point.logical_path_stem is None
        assert "Ignoring invalid logical path stem" in caplog.text

    async def test_unknown_metric_type(self, db, make_system) -> None:
        await make_system()
        with pytest.raises(ValueError):
            await PointManager().resolve_point(
                db, 1, "x", PointMetadata(default_name="X", metric_type="voltage")
            )

    async def test_path_map_is_updated(self, db, make_system) -> None:
        await make_system()
        manager = PointManager()
        path_map = await manager.load_path_map(db, 1)
        assert path_map == {}

        point, _ = await manager.resolve_point(db, 1, "inverter/pv", SOLAR, path_map)
        again, created = await manager.resolve_point(db, 1, "inverter/pv", SOLAR, path_map)

        assert path_map["inverter/pv"] is point
        assert again is point
        assert created is False


class TestValidatePatch:
    """Validation of user edits."""

    def test_accepts_editable_fields(self) -> None:
        patch = {
            "display_name": "Roof",
            "logical_path_stem": "source.solar.roof",
            "active": False,
            "transform": "invert",
            "subsystem": None,
        }
        assert validate_patch(patch) == patch

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("metric_type", "energy"),
            ("physical_path_tail", "x"),
            ("logical_path_stem", "Source.Solar"),
            ("logical_path_stem", 5),
            ("transform", "square"),
            ("active", "yes"),
            ("display_name", 12),
        ],
    )
    def test_rejects(self, field: str, value: object) -> None:
        with pytest.raises(ValidationError) as info:
            validate_patch({field: value})
        assert info.value.field == field
        assert info.value.value == value

    def test_null_stem_and_transform_allowed(self) -> None:
        assert validate_patch({"logical_path_stem": None, "transform": None}) == {
            "logical_path_stem": None,
            "transform": None,
        }


class TestUpdatePoint:
    """Applying user edits."""

    async def test_update_and_notify(self, db, make_system, make_point) -> None:
        await make_system()
        await make_point(1, 1, "power")
        notified: list[int] = []
        manager = PointManager()
        manager.add_mutation_listener(notified.append)

        point = await manager.update_point(
            db, 1, 1, {"logical_path_stem": "load", "display_name": "House"}
        )

        assert point.logical_path == "load/power"
        assert point.name == "House"
        assert notified == [1]

    async def test_unknown_point(self, db, make_system) -> None:
        await make_system()
        notified: list[int] = []
        manager = PointManager([notified.append])

        assert await manager.update_point(db, 1, 99, {"active": False}) is None
        assert notified == []

    async def test_invalid_patch_changes_nothing(self, db, make_system, make_point) -> None:
        await make_system()
        await make_point(1, 1, "power", stem="load")
        manager = PointManager()

        with pytest.raises(ValidationError):
            await manager.update_point(db, 1, 1, {"logical_path_stem": "load..x"})

        point = await manager.get_point(db, 1, 1)
        assert point.logical_path_stem == "load"

    async def test_deactivate(self, db, make_system, make_point) -> None:
        """Deactivated points are kept but hidden from active listings."""
        await make_system()
        await make_point(1, 1, "power")
        await make_point(1, 2, "power")
        manager = PointManager()

        await manager.deactivate_point(db, 1, 1)

        assert [p.point_index for p in await manager.list_points(db, 1)] == [1, 2]
        active = await manager.list_points(db, 1, active_only=True)
        assert [p.point_index for p in active] == [2]
