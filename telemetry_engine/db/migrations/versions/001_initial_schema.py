"""
Initial schema: systems, points, raw readings and aggregate tables.

Creates the relational store of the engine:
1. systems (minimal mirror of the external system manager)
2. points with the (system_id, physical_path_tail) unique key
3. point_readings keyed by (system_id, point_index, measurement_time)
4. point_aggregates_5m keyed by (system_id, point_index, interval_end)
5. point_aggregates_1d keyed by (system_id, point_index, day)
6. composite_point_sources

All times are BIGINT epoch milliseconds.

Revision ID: 001
Revises: None
Create Date: 2026-02-20

CHANGELOG:
- 2026-03-02: points.energy_source and point_aggregates_1d.approximate
- 2026-02-20: Initial creation

TODO:
- None
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# Revision identifiers used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _aggregate_columns() -> list[sa.Column]:
    return [
        sa.Column("avg", sa.Double(), nullable=True),
        sa.Column("min", sa.Double(), nullable=True),
        sa.Column("max", sa.Double(), nullable=True),
        sa.Column("last", sa.Double(), nullable=True),
        sa.Column("delta", sa.Double(), nullable=True),
        sa.Column("sample_count", sa.Integer(), nullable=False),
        sa.Column("error_count", sa.Integer(), nullable=False),
        sa.Column(
            "degraded", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
    ]


def upgrade() -> None:
    """Create all engine tables."""
    op.create_table(
        "systems",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("short_name", sa.Text(), nullable=True),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("vendor_type", sa.Text(), nullable=False),
        sa.Column(
            "timezone_offset_min",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("short_name"),
    )

    op.create_table(
        "points",
        sa.Column("system_id", sa.Integer(), nullable=False),
        sa.Column("point_index", sa.Integer(), nullable=False),
        sa.Column("physical_path_tail", sa.Text(), nullable=False),
        sa.Column("logical_path_stem", sa.Text(), nullable=True),
        sa.Column("metric_type", sa.Text(), nullable=False),
        sa.Column("metric_unit", sa.Text(), nullable=False),
        sa.Column("transform", sa.Text(), nullable=True),
        sa.Column(
            "energy_source",
            sa.Text(),
            nullable=False,
            server_default=sa.text("'counter'"),
        ),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("subsystem", sa.Text(), nullable=True),
        sa.Column("default_name", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("system_id", "point_index"),
        sa.UniqueConstraint(
            "system_id", "physical_path_tail", name="uq_points_system_physical_path"
        ),
    )

    op.create_table(
        "point_readings",
        sa.Column("system_id", sa.Integer(), nullable=False),
        sa.Column("point_index", sa.Integer(), nullable=False),
        sa.Column("measurement_time", sa.BigInteger(), nullable=False),
        sa.Column("received_time", sa.BigInteger(), nullable=False),
        sa.Column("value", sa.Double(), nullable=True),
        sa.Column(
            "data_quality", sa.Text(), nullable=False, server_default=sa.text("'good'")
        ),
        sa.PrimaryKeyConstraint("system_id", "point_index", "measurement_time"),
        sa.ForeignKeyConstraint(
            ["system_id", "point_index"],
            ["points.system_id", "points.point_index"],
            ondelete="CASCADE",
        ),
    )

    op.create_table(
        "point_aggregates_5m",
        sa.Column("system_id", sa.Integer(), nullable=False),
        sa.Column("point_index", sa.Integer(), nullable=False),
        sa.Column("interval_end", sa.BigInteger(), nullable=False),
        *_aggregate_columns(),
        sa.PrimaryKeyConstraint("system_id", "point_index", "interval_end"),
    )
    # Day-range scans of one system hit (system_id, interval_end).
    op.create_index(
        "ix_point_aggregates_5m_system_interval_end",
        "point_aggregates_5m",
        ["system_id", "interval_end"],
    )

    op.create_table(
        "point_aggregates_1d",
        sa.Column("system_id", sa.Integer(), nullable=False),
        sa.Column("point_index", sa.Integer(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        *_aggregate_columns(),
        sa.Column("interval_count", sa.Integer(), nullable=False),
        sa.Column(
            "approximate", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.PrimaryKeyConstraint("system_id", "point_index", "day"),
    )

    op.create_table(
        "composite_point_sources",
        sa.Column("composite_system_id", sa.Integer(), nullable=False),
        sa.Column("composite_point_index", sa.Integer(), nullable=False),
        sa.Column("source_system_id", sa.Integer(), nullable=False),
        sa.Column("source_point_index", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint(
            "composite_system_id",
            "composite_point_index",
            "source_system_id",
            "source_point_index",
        ),
    )
    op.create_index(
        "ix_composite_point_sources_source",
        "composite_point_sources",
        ["source_system_id", "source_point_index"],
    )


def downgrade() -> None:
    """Drop all engine tables."""
    op.drop_index("ix_composite_point_sources_source", "composite_point_sources")
    op.drop_table("composite_point_sources")
    op.drop_table("point_aggregates_1d")
    op.drop_index(
        "ix_point_aggregates_5m_system_interval_end", "point_aggregates_5m"
    )
    op.drop_table("point_aggregates_5m")
    op.drop_table("point_readings")
    op.drop_table("points")
    op.drop_table("systems")
