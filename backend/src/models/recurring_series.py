"""
RecurringEventSeries model for recurring volunteering events.

A series is the template an organizer marks as "recurring" plus its
lifecycle state. Dated SeriesInstance rows are generated from it one at a
time, strictly in increasing order.

Design Rationale:
- Template fields (title, description, location, ...) are copied onto each
  instance at creation time, so editing the series never rewrites history
- recurrence_value stores the normalized rule consumed by the occurrence
  calculator; it is opaque to everything else
- total_instances_created only ever increases and is the authoritative source
  of the next instance number; it is claimed with a compare-and-swap update
- Cancelling a series never deletes its instances (RESTRICT on delete)
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON, Index, CheckConstraint
)
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin


class SeriesStatus(str, enum.Enum):
    """Lifecycle status of a recurring series."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"    # Terminal, reached a bound
    CANCELLED = "cancelled"    # Terminal, organizer action


class RecurrenceType(str, enum.Enum):
    """How often a series produces a new instance."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class RecurringEventSeries(Base, GuidMixin):
    """
    Recurring event series model.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid: UUIDv7 for external identification (inherited from GuidMixin)
        guid: GUID string property (ser_xxx, inherited from GuidMixin)

        Template Fields (copied onto every instance):
            title, description, location, instructions, max_volunteers
            duration_minutes: Duration of the first instance (NULL = default)

        Recurrence Fields:
            recurrence_type: daily, weekly or monthly
            recurrence_value: Normalized rule (JSON)
            start_date: Start of the first instance
            end_date: No instance may start after this (NULL = open-ended)
            max_instances: Upper bound on instances ever created (NULL = unlimited)

        Lifecycle Fields:
            status: active, paused, completed, cancelled
            total_instances_created: Monotonic instance counter

        Ownership (opaque to the engine):
            organization_id, creator_id

        Timestamps:
            created_at, updated_at

    Relationships:
        instances: Generated instances (one-to-many, ordered by instance_number)
    """

    __tablename__ = "recurring_event_series"

    GUID_PREFIX = "ser"

    # Primary key
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Template fields
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(500), nullable=True)
    instructions = Column(Text, nullable=True)
    max_volunteers = Column(Integer, nullable=True)
    duration_minutes = Column(Integer, nullable=True)

    # Recurrence
    recurrence_type = Column(String(20), nullable=False)
    recurrence_value = Column(JSON, nullable=False, default=dict)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    max_instances = Column(Integer, nullable=True)

    # Lifecycle
    status = Column(String(20), default=SeriesStatus.ACTIVE.value, nullable=False)
    total_instances_created = Column(Integer, default=0, nullable=False)

    # Ownership
    organization_id = Column(String(64), nullable=False, index=True)
    creator_id = Column(String(64), nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    # Relationships
    instances = relationship(
        "SeriesInstance",
        back_populates="series",
        order_by="SeriesInstance.instance_number",
        passive_deletes="all",
    )

    __table_args__ = (
        CheckConstraint(
            "total_instances_created >= 0",
            name="ck_series_counter_non_negative"
        ),
        Index("idx_series_creator_status", "creator_id", "status"),
        Index("idx_series_organization_status", "organization_id", "status"),
    )

    @property
    def status_enum(self) -> SeriesStatus:
        """Status as a SeriesStatus member."""
        return SeriesStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        """True once the series is completed or cancelled."""
        return self.status in (SeriesStatus.COMPLETED.value, SeriesStatus.CANCELLED.value)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<RecurringEventSeries("
            f"id={self.id}, "
            f"title='{self.title}', "
            f"status={self.status}, "
            f"total_instances_created={self.total_instances_created}"
            f")>"
        )

    def __str__(self) -> str:
        """Human-readable string representation."""
        return f"{self.title} ({self.recurrence_type}, {self.status})"
