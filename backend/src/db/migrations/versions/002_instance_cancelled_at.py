"""Add cancelled_at to series instances.

Revision ID: 002_instance_cancelled_at
Revises: 001_recurring_event_series
Create Date: 2026-10-18

Cancelling a series stamps the instances that have not started yet;
past and running instances keep cancelled_at NULL.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002_instance_cancelled_at'
down_revision = '001_recurring_event_series'
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Add nullable cancelled_at column."""
    with op.batch_alter_table("series_instances") as batch_op:
        batch_op.add_column(sa.Column("cancelled_at", sa.DateTime, nullable=True))


def downgrade() -> None:
    """Drop cancelled_at column."""
    with op.batch_alter_table("series_instances") as batch_op:
        batch_op.drop_column("cancelled_at")
