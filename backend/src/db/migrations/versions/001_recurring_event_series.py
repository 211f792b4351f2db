"""Create recurring event series tables.

Revision ID: 001_recurring_event_series
Revises:
Create Date: 2026-03-01

Creates recurring_event_series, series_instances and
volunteer_registrations. Instances reference their series with
ON DELETE RESTRICT so cancelling or removing a series can never erase
history; (series_id, instance_number) is unique.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID


# revision identifiers, used by Alembic.
revision = '001_recurring_event_series'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create series, instance and registration tables."""
    is_sqlite = op.get_bind().dialect.name == "sqlite"

    uuid_type = sa.LargeBinary(16) if is_sqlite else PG_UUID(as_uuid=True)
    json_type = sa.JSON() if is_sqlite else JSONB()

    op.create_table(
        "recurring_event_series",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", uuid_type, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("location", sa.String(500), nullable=True),
        sa.Column("instructions", sa.Text, nullable=True),
        sa.Column("max_volunteers", sa.Integer, nullable=True),
        sa.Column("duration_minutes", sa.Integer, nullable=True),
        sa.Column("recurrence_type", sa.String(20), nullable=False),
        sa.Column("recurrence_value", json_type, nullable=False),
        sa.Column("start_date", sa.DateTime, nullable=False),
        sa.Column("end_date", sa.DateTime, nullable=True),
        sa.Column("max_instances", sa.Integer, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("total_instances_created", sa.Integer, nullable=False, server_default="0"),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.CheckConstraint(
            "total_instances_created >= 0",
            name="ck_series_counter_non_negative"
        ),
    )
    op.create_index("ix_recurring_event_series_uuid", "recurring_event_series", ["uuid"], unique=True)
    op.create_index("ix_recurring_event_series_organization_id", "recurring_event_series", ["organization_id"])
    op.create_index("ix_recurring_event_series_creator_id", "recurring_event_series", ["creator_id"])
    op.create_index("idx_series_creator_status", "recurring_event_series", ["creator_id", "status"])
    op.create_index("idx_series_organization_status", "recurring_event_series", ["organization_id", "status"])

    op.create_table(
        "series_instances",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", uuid_type, nullable=False),
        sa.Column(
            "series_id",
            sa.Integer,
            sa.ForeignKey(
                "recurring_event_series.id",
                name="fk_series_instances_series_id",
                ondelete="RESTRICT"
            ),
            nullable=False,
        ),
        sa.Column("instance_number", sa.Integer, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("location", sa.String(500), nullable=True),
        sa.Column("instructions", sa.Text, nullable=True),
        sa.Column("max_volunteers", sa.Integer, nullable=True),
        sa.Column("start_date_time", sa.DateTime, nullable=False),
        sa.Column("end_date_time", sa.DateTime, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("series_id", "instance_number", name="uq_series_instance_number"),
    )
    op.create_index("ix_series_instances_uuid", "series_instances", ["uuid"], unique=True)
    op.create_index("ix_series_instances_series_id", "series_instances", ["series_id"])
    op.create_index("ix_series_instances_start_date_time", "series_instances", ["start_date_time"])
    op.create_index("idx_instances_series_start", "series_instances", ["series_id", "start_date_time"])

    op.create_table(
        "volunteer_registrations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", uuid_type, nullable=False),
        sa.Column(
            "instance_id",
            sa.Integer,
            sa.ForeignKey(
                "series_instances.id",
                name="fk_volunteer_registrations_instance_id",
                ondelete="CASCADE"
            ),
            nullable=False,
        ),
        sa.Column("volunteer_ref", sa.String(64), nullable=False),
        sa.Column("attended", sa.Boolean, nullable=True),
        sa.Column("registered_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("instance_id", "volunteer_ref", name="uq_registration_volunteer"),
    )
    op.create_index("ix_volunteer_registrations_uuid", "volunteer_registrations", ["uuid"], unique=True)
    op.create_index("ix_volunteer_registrations_instance_id", "volunteer_registrations", ["instance_id"])


def downgrade() -> None:
    """Drop registration, instance and series tables."""
    op.drop_table("volunteer_registrations")
    op.drop_table("series_instances")
    op.drop_table("recurring_event_series")
