"""
SQLAlchemy ORM models for the collector database.

Tables:

- plants: vendor plants with health state and last sync time.
- devices: inverters, each belonging to one plant.
- string_readings: append-only per-string measurements.
- alerts: underperformance alerts with open/resolved lifecycle.
- string_hourly / string_daily: per-string rollups, unique on
  (device_id, string_number, bucket) so recomputation is an upsert.

Timestamps are stored timezone-aware in UTC.

CHANGELOG:
- 2026-03-02: Add alerts.resolved_by and string_daily.health_score
- 2026-02-27: Initial creation, adapted from vps models (STORY-021)

TODO:
- None
"""

import datetime

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    Double,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all collector ORM models."""

    pass


class Plant(Base):
    """A solar plant (site) synced from one vendor cloud.

    Attributes:
        id: Vendor plant identifier.
        provider: Provider id (``huawei``, ``growatt``, ``solis``).
        name: Display name.
        capacity_kw: Rated capacity in kW (nullable).
        address: Free-text address (nullable).
        latitude: Site latitude (nullable).
        longitude: Site longitude (nullable).
        health_state: 3 healthy, 2 faulty, 1 disconnected (nullable).
        last_synced: Time of the last plant sync or health refresh.
    """

    __tablename__ = "plants"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    capacity_kw: Mapped[float | None] = mapped_column(Double, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    latitude: Mapped[float | None] = mapped_column(Double, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Double, nullable=True)
    health_state: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_synced: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        """Return string representation of the Plant."""
        return f"Plant(id={self.id!r}, provider={self.provider!r}, name={self.name!r})"


class Device(Base):
    """An inverter belonging to one plant.

    ``max_strings`` is discovered from the first reading that reports it and
    is never shrunk afterwards.
    """

    __tablename__ = "devices"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    plant_id: Mapped[str] = mapped_column(
        Text, ForeignKey("plants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str | None] = mapped_column(Text, nullable=True)
    device_type: Mapped[str] = mapped_column(Text, nullable=False)
    max_strings: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_synced: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        """Return string representation of the Device."""
        return (
            f"Device(id={self.id!r}, plant_id={self.plant_id!r}, "
            f"device_type={self.device_type!r}, max_strings={self.max_strings!r})"
        )


class StringReading(Base):
    """One string measurement at one poll timestamp (append-only)."""

    __tablename__ = "string_readings"
    __table_args__ = (
        Index("ix_string_readings_device_ts", "device_id", "ts"),
        Index("ix_string_readings_ts", "ts"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(
        Text, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False
    )
    plant_id: Mapped[str] = mapped_column(Text, nullable=False)
    string_number: Mapped[int] = mapped_column(Integer, nullable=False)
    voltage: Mapped[float] = mapped_column(Double, nullable=False)
    current: Mapped[float] = mapped_column(Double, nullable=False)
    power: Mapped[float] = mapped_column(Double, nullable=False)
    ts: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        """Return string representation of the StringReading."""
        return (
            f"StringReading(device_id={self.device_id!r}, "
            f"string_number={self.string_number!r}, ts={self.ts!r}, "
            f"current={self.current!r})"
        )


class Alert(Base):
    """A string underperformance alert.

    Open while ``resolved_at`` is NULL. At most one open alert exists per
    (device_id, string_number, severity); the alert engine enforces this.
    """

    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_device_open", "device_id", "resolved_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(
        Text, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False
    )
    plant_id: Mapped[str] = mapped_column(Text, nullable=False)
    string_number: Mapped[int] = mapped_column(Integer, nullable=False)
    severity: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    expected_value: Mapped[float | None] = mapped_column(Double, nullable=True)
    actual_value: Mapped[float | None] = mapped_column(Double, nullable=True)
    gap_percent: Mapped[float | None] = mapped_column(Double, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    resolved_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_by: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        """Return string representation of the Alert."""
        return (
            f"Alert(id={self.id!r}, device_id={self.device_id!r}, "
            f"string_number={self.string_number!r}, severity={self.severity!r}, "
            f"resolved_at={self.resolved_at!r})"
        )


class HourlyAggregate(Base):
    """Per-string rollup for one hour bucket (site-local hour start, in UTC)."""

    __tablename__ = "string_hourly"
    __table_args__ = (
        UniqueConstraint("device_id", "string_number", "hour", name="uq_string_hourly_bucket"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(
        Text, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False
    )
    plant_id: Mapped[str] = mapped_column(Text, nullable=False)
    string_number: Mapped[int] = mapped_column(Integer, nullable=False)
    hour: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    avg_current: Mapped[float] = mapped_column(Double, nullable=False)
    min_current: Mapped[float | None] = mapped_column(Double, nullable=True)
    max_current: Mapped[float | None] = mapped_column(Double, nullable=True)
    avg_voltage: Mapped[float] = mapped_column(Double, nullable=False)
    avg_power: Mapped[float] = mapped_column(Double, nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))

    def __repr__(self) -> str:
        """Return string representation of the HourlyAggregate."""
        return (
            f"HourlyAggregate(device_id={self.device_id!r}, "
            f"string_number={self.string_number!r}, hour={self.hour!r})"
        )


class DailyAggregate(Base):
    """Per-string rollup for one site-local calendar day, with health score."""

    __tablename__ = "string_daily"
    __table_args__ = (
        UniqueConstraint("device_id", "string_number", "date", name="uq_string_daily_bucket"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(
        Text, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False
    )
    plant_id: Mapped[str] = mapped_column(Text, nullable=False)
    string_number: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    avg_current: Mapped[float] = mapped_column(Double, nullable=False)
    min_current: Mapped[float | None] = mapped_column(Double, nullable=True)
    max_current: Mapped[float | None] = mapped_column(Double, nullable=True)
    avg_voltage: Mapped[float] = mapped_column(Double, nullable=False)
    avg_power: Mapped[float] = mapped_column(Double, nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    health_score: Mapped[float] = mapped_column(Double, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of the DailyAggregate."""
        return (
            f"DailyAggregate(device_id={self.device_id!r}, "
            f"string_number={self.string_number!r}, date={self.date!r}, "
            f"health_score={self.health_score!r})"
        )
