"""
SeriesInstance model for dated occurrences of a recurring series.

Each instance is one concrete volunteering event generated from a
RecurringEventSeries. Instances are numbered 1, 2, 3... per series with no
gaps; the number is claimed atomically from the series counter.

Design Rationale:
- Template fields are copied, not referenced, so later series edits never
  alter past instances
- The (series_id, instance_number) unique constraint backs up the
  compare-and-swap counter claim
- Volunteers belong to the registration subsystem; the engine only reads them
"""

from datetime import datetime, timedelta

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin


class SeriesInstance(Base, GuidMixin):
    """
    One dated occurrence of a recurring series.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid / guid: External identifier (evt_xxx)
        series_id: FK to RecurringEventSeries
        instance_number: 1-based position in the series
        title, description, location, instructions, max_volunteers:
            Copied from the series at creation time
        start_date_time / end_date_time: Computed by the occurrence calculator
        cancelled_at: When a series cancel reached this not-yet-started
            instance (None otherwise)
        created_at: Creation timestamp

    Relationships:
        series: Parent series (many-to-one)
        registrations: Volunteer registrations (read-only for the engine)
    """

    __tablename__ = "series_instances"

    GUID_PREFIX = "evt"

    id = Column(Integer, primary_key=True, autoincrement=True)

    series_id = Column(
        Integer,
        ForeignKey("recurring_event_series.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    instance_number = Column(Integer, nullable=False)

    # Copied template fields
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(500), nullable=True)
    instructions = Column(Text, nullable=True)
    max_volunteers = Column(Integer, nullable=True)

    # Time fields
    start_date_time = Column(DateTime, nullable=False, index=True)
    end_date_time = Column(DateTime, nullable=False)

    # Set when the series is cancelled before this instance starts
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    series = relationship("RecurringEventSeries", back_populates="instances")
    registrations = relationship(
        "VolunteerRegistration",
        back_populates="instance",
        lazy="select",
    )

    __table_args__ = (
        UniqueConstraint(
            "series_id", "instance_number",
            name="uq_series_instance_number"
        ),
        Index("idx_instances_series_start", "series_id", "start_date_time"),
    )

    @property
    def duration(self) -> timedelta:
        """Length of the instance."""
        return self.end_date_time - self.start_date_time

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<SeriesInstance("
            f"id={self.id}, "
            f"series_id={self.series_id}, "
            f"instance_number={self.instance_number}, "
            f"start={self.start_date_time}"
            f")>"
        )

    def __str__(self) -> str:
        """Human-readable string representation."""
        return f"{self.title} #{self.instance_number} - {self.start_date_time}"
