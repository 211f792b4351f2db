"""
Pydantic schemas for recurring series API request/response validation.

Provides data validation and serialization for:
- Series creation and status commands
- Series and instance responses
- Next-instance and instance-completion outcomes
- Series statistics

Design:
- GUIDs are exposed via guid property, never internal IDs
- recurrence_value accepts a structured rule, an integer or a legacy string
  ("Monday", "15", "3rd Saturday"); the service normalizes all of them
- Datetimes are stored as naive UTC and serialized with a Z suffix
"""

import enum
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_serializer, field_validator

from backend.src.models import RecurrenceType


# ============================================================================
# Request Schemas
# ============================================================================


class RecurrenceRuleSchema(BaseModel):
    """
    Structured recurrence rule.

    Fields:
        interval: Step in days, weeks or months (default: 1)
        weekday: 0=Monday ... 6=Sunday
        day_of_month: Monthly anchor day (1-31, clamped to short months)
        ordinal: Monthly ordinal weekday (1-5, -1 for last), requires weekday
    """

    interval: int = Field(default=1, description="Step between occurrences")
    weekday: Optional[int] = Field(default=None, description="0=Monday ... 6=Sunday")
    day_of_month: Optional[int] = Field(default=None, description="Monthly day anchor")
    ordinal: Optional[int] = Field(default=None, description="1-5, or -1 for last")

    model_config = {"extra": "forbid"}


class SeriesCreate(BaseModel):
    """
    Schema for creating a recurring series.

    Example:
        >>> create = SeriesCreate(
        ...     title="Beach cleanup",
        ...     recurrence_type="monthly",
        ...     recurrence_value="3rd Saturday",
        ...     start_date="2026-01-17T09:00:00Z",
        ...     organization_id="org-42",
        ...     creator_id="user-7",
        ... )
    """

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=500)
    instructions: Optional[str] = None
    max_volunteers: Optional[int] = Field(default=None, ge=1)
    duration_minutes: Optional[int] = Field(
        default=None,
        ge=1,
        description="Duration of the first instance (server default when omitted)"
    )

    recurrence_type: RecurrenceType
    recurrence_value: Optional[Union[RecurrenceRuleSchema, int, str]] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    max_instances: Optional[int] = Field(default=None, ge=1)

    organization_id: str = Field(..., min_length=1, max_length=64)
    creator_id: str = Field(..., min_length=1, max_length=64)

    create_first_instance: bool = Field(
        default=True,
        description="Also create instance #1 at start_date"
    )

    @field_validator("title")
    @classmethod
    def validate_title_not_whitespace(cls, v: str) -> str:
        """Ensure title is not just whitespace."""
        if not v.strip():
            raise ValueError("Title cannot be empty or whitespace")
        return v.strip()

    def recurrence_value_for_service(self) -> Any:
        """Recurrence value as the service expects it (dict, int, str or None)."""
        if isinstance(self.recurrence_value, RecurrenceRuleSchema):
            return self.recurrence_value.model_dump(exclude_none=True)
        return self.recurrence_value

    model_config = {
        "json_schema_extra": {
            "example": {
                "title": "Beach cleanup",
                "location": "North pier",
                "max_volunteers": 20,
                "duration_minutes": 180,
                "recurrence_type": "monthly",
                "recurrence_value": {"ordinal": 3, "weekday": 5},
                "start_date": "2026-01-17T09:00:00Z",
                "max_instances": 12,
                "organization_id": "org-42",
                "creator_id": "user-7",
            }
        }
    }


class StatusCommand(str, enum.Enum):
    """Organizer commands for a series."""
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"


class SeriesStatusUpdate(BaseModel):
    """Schema for a pause/resume/cancel command."""

    command: StatusCommand

    model_config = {
        "json_schema_extra": {"example": {"command": "pause"}}
    }


# ============================================================================
# Response Schemas
# ============================================================================


class InstanceResponse(BaseModel):
    """A generated series instance."""

    guid: str = Field(..., description="Instance GUID (evt_xxx)")
    series_guid: str = Field(..., description="Series GUID (ser_xxx)")
    instance_number: int
    title: str
    description: Optional[str]
    location: Optional[str]
    instructions: Optional[str]
    max_volunteers: Optional[int]
    start_date_time: datetime
    end_date_time: datetime
    cancelled_at: Optional[datetime] = Field(
        default=None,
        description="Set when the series was cancelled before this instance started"
    )
    created_at: datetime

    @field_serializer("start_date_time", "end_date_time", "cancelled_at", "created_at")
    def serialize_datetime_utc(self, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone (Z suffix)."""
        return v.isoformat() + "Z" if v else None

    model_config = {"from_attributes": True}


class SeriesResponse(BaseModel):
    """
    Schema for recurring series API responses.

    available_commands lists the organizer commands accepted from the
    current status (empty once the series is completed or cancelled).
    """

    guid: str = Field(..., description="Series GUID (ser_xxx)")
    title: str
    description: Optional[str]
    location: Optional[str]
    instructions: Optional[str]
    max_volunteers: Optional[int]
    duration_minutes: Optional[int]

    recurrence_type: str
    recurrence_value: Dict[str, Any]
    start_date: datetime
    end_date: Optional[datetime]
    max_instances: Optional[int]

    status: str
    total_instances_created: int
    available_commands: List[str] = Field(default_factory=list)

    organization_id: str
    creator_id: str

    created_at: datetime
    updated_at: datetime

    @field_serializer("start_date", "end_date", "created_at", "updated_at")
    def serialize_datetime_utc(self, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone (Z suffix)."""
        return v.isoformat() + "Z" if v else None

    model_config = {
        "from_attributes": True,
        "json_schema_extra": {
            "example": {
                "guid": "ser_01hgw2bbg0000000000000001",
                "title": "Beach cleanup",
                "description": None,
                "location": "North pier",
                "instructions": None,
                "max_volunteers": 20,
                "duration_minutes": 180,
                "recurrence_type": "monthly",
                "recurrence_value": {"interval": 1, "ordinal": 3, "weekday": 5},
                "start_date": "2026-01-17T09:00:00Z",
                "end_date": None,
                "max_instances": 12,
                "status": "active",
                "total_instances_created": 1,
                "available_commands": ["pause", "cancel"],
                "organization_id": "org-42",
                "creator_id": "user-7",
                "created_at": "2026-01-02T10:00:00Z",
                "updated_at": "2026-01-02T10:00:00Z",
            }
        }
    }


class SeriesDetailResponse(SeriesResponse):
    """Series with all of its instances."""

    instances: List[InstanceResponse] = Field(default_factory=list)


class SeriesListResponse(BaseModel):
    """Paginated list of series."""

    items: List[SeriesResponse]
    total: int
    limit: int
    offset: int


class NextInstanceResponse(BaseModel):
    """
    Outcome of a next-instance request.

    outcome is "created" (instance set) or "series_completed" (bound_reason
    set to "max_instances_reached" or "end_date_passed").
    """

    outcome: str
    series: SeriesResponse
    instance: Optional[InstanceResponse] = None
    bound_reason: Optional[str] = None


class InstanceCompletionResponse(BaseModel):
    """
    Outcome of completing an instance.

    outcome is one of "chained", "already_chained", "series_completed" or
    "not_chained".
    """

    outcome: str
    series_guid: str
    series_status: str
    completed_instance_guid: str
    next_instance: Optional[InstanceResponse] = None


class SeriesStatsResponse(BaseModel):
    """Aggregated statistics for a series."""

    series_guid: str
    series_status: str
    total_instances: int
    completed_instances: int
    upcoming_instances: int
    in_progress_instances: int
    total_registrations: int
    total_attendances: int
    average_attendance: float
    computed_at: datetime

    @field_serializer("computed_at")
    def serialize_datetime_utc(self, v: datetime) -> str:
        """Serialize datetime as ISO 8601 with explicit UTC timezone (Z suffix)."""
        return v.isoformat() + "Z"

    model_config = {
        "json_schema_extra": {
            "example": {
                "series_guid": "ser_01hgw2bbg0000000000000001",
                "series_status": "active",
                "total_instances": 6,
                "completed_instances": 4,
                "upcoming_instances": 2,
                "in_progress_instances": 0,
                "total_registrations": 48,
                "total_attendances": 37,
                "average_attendance": 9.25,
                "computed_at": "2026-06-01T12:00:00Z",
            }
        }
    }
