"""
Initial schema: plants, devices, string readings, alerts and rollups.

Creates every collector table with the natural-key unique constraints used
by the aggregate upserts, (device_id, string_number, hour) and
(device_id, string_number, date), and the indexes used by the alert engine
and the retention job.

Revision ID: 001
Revises: None
Create Date: 2026-02-27

CHANGELOG:
- 2026-02-27: Initial creation (STORY-021)

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

_BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _string_key_columns() -> list[sa.Column]:
    return [
        sa.Column("id", _BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column(
            "device_id",
            sa.Text(),
            sa.ForeignKey("devices.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("plant_id", sa.Text(), nullable=False),
        sa.Column("string_number", sa.Integer(), nullable=False),
    ]


def _rollup_metrics() -> list[sa.Column]:
    return [
        sa.Column("avg_current", sa.Double(), nullable=False),
        sa.Column("min_current", sa.Double(), nullable=True),
        sa.Column("max_current", sa.Double(), nullable=True),
        sa.Column("avg_voltage", sa.Double(), nullable=False),
        sa.Column("avg_power", sa.Double(), nullable=False),
        sa.Column("sample_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
    ]


def upgrade() -> None:
    """Create all collector tables and indexes."""
    op.create_table(
        "plants",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("capacity_kw", sa.Double(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("latitude", sa.Double(), nullable=True),
        sa.Column("longitude", sa.Double(), nullable=True),
        sa.Column("health_state", sa.Integer(), nullable=True),
        sa.Column("last_synced", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "devices",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column(
            "plant_id",
            sa.Text(),
            sa.ForeignKey("plants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("model", sa.Text(), nullable=True),
        sa.Column("device_type", sa.Text(), nullable=False),
        sa.Column("max_strings", sa.Integer(), nullable=True),
        sa.Column("last_synced", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_devices_plant_id", "devices", ["plant_id"])

    op.create_table(
        "string_readings",
        *_string_key_columns(),
        sa.Column("voltage", sa.Double(), nullable=False),
        sa.Column("current", sa.Double(), nullable=False),
        sa.Column("power", sa.Double(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_string_readings_device_ts", "string_readings", ["device_id", "ts"])
    op.create_index("ix_string_readings_ts", "string_readings", ["ts"])

    op.create_table(
        "alerts",
        *_string_key_columns(),
        sa.Column("severity", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("expected_value", sa.Double(), nullable=True),
        sa.Column("actual_value", sa.Double(), nullable=True),
        sa.Column("gap_percent", sa.Double(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.Text(), nullable=True),
    )
    op.create_index("ix_alerts_device_open", "alerts", ["device_id", "resolved_at"])

    op.create_table(
        "string_hourly",
        *_string_key_columns(),
        sa.Column("hour", sa.DateTime(timezone=True), nullable=False),
        *_rollup_metrics(),
        sa.UniqueConstraint(
            "device_id", "string_number", "hour", name="uq_string_hourly_bucket"
        ),
    )

    op.create_table(
        "string_daily",
        *_string_key_columns(),
        sa.Column("date", sa.Date(), nullable=False),
        *_rollup_metrics(),
        sa.Column("health_score", sa.Double(), nullable=False),
        sa.UniqueConstraint(
            "device_id", "string_number", "date", name="uq_string_daily_bucket"
        ),
    )


def downgrade() -> None:
    """Drop all collector tables in reverse dependency order."""
    op.drop_table("string_daily")
    op.drop_table("string_hourly")
    op.drop_table("alerts")
    op.drop_table("string_readings")
    op.drop_index("ix_devices_plant_id", table_name="devices")
    op.drop_table("devices")
    op.drop_table("plants")
