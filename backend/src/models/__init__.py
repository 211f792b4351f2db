"""
SQLAlchemy models for the recurring events backend.

This module provides the declarative base class and imports all models
to ensure they are registered with SQLAlchemy's metadata.
"""

from sqlalchemy.orm import declarative_base

# All models inherit from this Base class
Base = declarative_base()


# Import all models here so they are registered with Base.metadata
# This is required for Alembic autogenerate to detect models
from backend.src.models.recurring_series import (
    RecurringEventSeries,
    RecurrenceType,
    SeriesStatus,
)
from backend.src.models.series_instance import SeriesInstance
from backend.src.models.volunteer_registration import VolunteerRegistration

__all__ = [
    "Base",
    "RecurringEventSeries",
    "RecurrenceType",
    "SeriesStatus",
    "SeriesInstance",
    "VolunteerRegistration",
]
