"""
VolunteerRegistration model.

Rows are written by the registration and attendance subsystems; the
recurring series engine reads them only to compute statistics.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin


class VolunteerRegistration(Base, GuidMixin):
    """
    A volunteer signed up for one series instance.

    Attributes:
        instance_id: FK to SeriesInstance
        volunteer_ref: Opaque volunteer identifier from the user subsystem
        attended: True/False once attendance is marked, NULL until then
        registered_at: Registration timestamp
    """

    __tablename__ = "volunteer_registrations"

    GUID_PREFIX = "reg"

    id = Column(Integer, primary_key=True, autoincrement=True)
    instance_id = Column(
        Integer,
        ForeignKey("series_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    volunteer_ref = Column(String(64), nullable=False)
    attended = Column(Boolean, nullable=True)
    registered_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    instance = relationship("SeriesInstance", back_populates="registrations")

    __table_args__ = (
        UniqueConstraint("instance_id", "volunteer_ref", name="uq_registration_volunteer"),
    )

    def __repr__(self) -> str:
        return (
            f"<VolunteerRegistration("
            f"instance_id={self.instance_id}, "
            f"volunteer_ref='{self.volunteer_ref}', "
            f"attended={self.attended}"
            f")>"
        )
