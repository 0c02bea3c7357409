"""
SQLAlchemy ORM models for the telemetry store.

Defines systems, points, raw point readings, 5-minute and daily point
aggregates, and composite point source definitions. All timestamps are
integer Unix epoch milliseconds in UTC; days are calendar dates in the
owning system's fixed UTC offset.

Unique keys double as upsert targets:
- points: (system_id, point_index), (system_id, physical_path_tail)
- point_readings: (system_id, point_index, measurement_time)
- point_aggregates_5m: (system_id, point_index, interval_end)
- point_aggregates_1d: (system_id, point_index, day)

CHANGELOG:
- 2026-03-02: Add points.energy_source and approximate flag on daily rows
- 2026-02-24: Add composite_point_sources
- 2026-02-20: Initial creation

TODO:
- None
"""

import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    Double,
    ForeignKeyConstraint,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from telemetry_engine.identifiers import MetricKind, build_logical_path


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all engine ORM models."""

    pass


class System(Base):
    """A monitored installation (or a composite of other installations).

    Systems are owned by an external system manager; the engine only
    reads them to resolve identifiers, time zones and composite status.

    Attributes:
        id: Numeric system id.
        short_name: Optional human identifier used in series ids.
        display_name: Human-readable name.
        vendor_type: Vendor adapter name, ``composite`` for composites.
        timezone_offset_min: Fixed UTC offset used for day boundaries.
    """

    __tablename__ = "systems"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    short_name: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    vendor_type: Mapped[str] = mapped_column(Text, nullable=False)
    timezone_offset_min: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )

    @property
    def identifier(self) -> str:
        """Identifier used as the first component of series ids."""
        return self.short_name or str(self.id)

    @property
    def is_composite(self) -> bool:
        """True when the system aggregates points of other systems."""
        return self.vendor_type == "composite"

    def __repr__(self) -> str:
        """Return string representation of the System."""
        return f"System(id={self.id!r}, vendor_type={self.vendor_type!r})"


class Point(Base):
    """A single monitored quantity of one system.

    Attributes:
        system_id: Owning system.
        point_index: Index of the point within the system (1-based).
        physical_path_tail: Vendor-native sub-path, immutable.
        logical_path_stem: Canonical dot-separated classification, or None.
        metric_type: One of the MetricKind values.
        metric_unit: Display unit.
        transform: None, ``invert`` or ``differentiate``.
        energy_source: ``counter`` or ``power`` (energy points only).
        active: Inactive points are hidden from default queries.
        subsystem: Descriptive vendor grouping (e.g. ``battery``).
        default_name: Vendor-supplied name, refreshed on discovery.
        display_name: User override of the name.
    """

    __tablename__ = "points"
    __table_args__ = (
        UniqueConstraint(
            "system_id", "physical_path_tail", name="uq_points_system_physical_path"
        ),
    )

    system_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    point_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    physical_path_tail: Mapped[str] = mapped_column(Text, nullable=False)
    logical_path_stem: Mapped[str | None] = mapped_column(Text, nullable=True)
    metric_type: Mapped[str] = mapped_column(Text, nullable=False)
    metric_unit: Mapped[str] = mapped_column(Text, nullable=False)
    transform: Mapped[str | None] = mapped_column(Text, nullable=True)
    energy_source: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("'counter'")
    )
    active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true")
    )
    subsystem: Mapped[str | None] = mapped_column(Text, nullable=True)
    default_name: Mapped[str] = mapped_column(Text, nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def kind(self) -> MetricKind:
        """Metric kind of the point."""
        return MetricKind(self.metric_type)

    @property
    def logical_path(self) -> str | None:
        """``stem/metric_type``, or None when the stem is unset."""
        return build_logical_path(self.logical_path_stem, self.metric_type)

    @property
    def name(self) -> str:
        """Display name when set by the user, otherwise the vendor name."""
        return self.display_name or self.default_name

    def __repr__(self) -> str:
        """Return string representation of the Point."""
        return (
            f"Point(system_id={self.system_id!r}, "
            f"point_index={self.point_index!r}, "
            f"physical_path_tail={self.physical_path_tail!r})"
        )


class PointReading(Base):
    """One raw observation of one point.

    The primary key (system_id, point_index, measurement_time) makes
    re-delivery of a timestamp overwrite instead of duplicating.
    """

    __tablename__ = "point_readings"
    __table_args__ = (
        ForeignKeyConstraint(
            ["system_id", "point_index"],
            ["points.system_id", "points.point_index"],
            ondelete="CASCADE",
        ),
    )

    system_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    point_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    measurement_time: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    received_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    value: Mapped[float | None] = mapped_column(Double, nullable=True)
    data_quality: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("'good'")
    )

    def __repr__(self) -> str:
        """Return string representation of the PointReading."""
        return (
            f"PointReading(system_id={self.system_id!r}, "
            f"point_index={self.point_index!r}, "
            f"measurement_time={self.measurement_time!r}, value={self.value!r})"
        )


class PointAggregate5m(Base):
    """5-minute rollup of one point's raw readings.

    The bucket covers ``(interval_end - 5 min, interval_end]``.

    Attributes:
        sample_count: Good-quality samples that fed avg/min/max.
        error_count: Samples with a null value or non-good quality.
        degraded: True when the bucket had no good-quality sample.
    """

    __tablename__ = "point_aggregates_5m"
    __table_args__ = (
        Index("ix_point_aggregates_5m_system_interval_end", "system_id", "interval_end"),
    )

    system_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    point_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    interval_end: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    avg: Mapped[float | None] = mapped_column(Double, nullable=True)
    min: Mapped[float | None] = mapped_column(Double, nullable=True)
    max: Mapped[float | None] = mapped_column(Double, nullable=True)
    last: Mapped[float | None] = mapped_column(Double, nullable=True)
    delta: Mapped[float | None] = mapped_column(Double, nullable=True)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False)
    degraded: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )


class PointAggregate1d(Base):
    """Daily rollup of one point's 5-minute aggregates.

    Attributes:
        interval_count: Number of 5-minute buckets that contributed.
        degraded: True when any contributing bucket was degraded.
        approximate: True when ``delta`` was estimated from average power
            instead of integrated from intraday samples.
    """

    __tablename__ = "point_aggregates_1d"

    system_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    point_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    day: Mapped[datetime.date] = mapped_column(Date, primary_key=True)
    avg: Mapped[float | None] = mapped_column(Double, nullable=True)
    min: Mapped[float | None] = mapped_column(Double, nullable=True)
    max: Mapped[float | None] = mapped_column(Double, nullable=True)
    last: Mapped[float | None] = mapped_column(Double, nullable=True)
    delta: Mapped[float | None] = mapped_column(Double, nullable=True)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False)
    interval_count: Mapped[int] = mapped_column(Integer, nullable=False)
    degraded: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    approximate: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )


class CompositePointSource(Base):
    """One source point feeding a composite point.

    Admin-managed; scanned by the subscription registry to build the
    reverse mapping from source points to composite points.
    """

    __tablename__ = "composite_point_sources"
    __table_args__ = (
        Index(
            "ix_composite_point_sources_source",
            "source_system_id",
            "source_point_index",
        ),
    )

    composite_system_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    composite_point_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    source_system_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    source_point_index: Mapped[int] = mapped_column(Integer, primary_key=True)
