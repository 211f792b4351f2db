"""
Pydantic schemas for API request/response validation.

This module exports all schema classes for use in API endpoints.
"""

from backend.src.schemas.recurring_series import (
    RecurrenceRuleSchema,
    SeriesCreate,
    StatusCommand,
    SeriesStatusUpdate,
    InstanceResponse,
    SeriesResponse,
    SeriesDetailResponse,
    SeriesListResponse,
    NextInstanceResponse,
    InstanceCompletionResponse,
    SeriesStatsResponse,
)

__all__ = [
    "RecurrenceRuleSchema",
    "SeriesCreate",
    "StatusCommand",
    "SeriesStatusUpdate",
    "InstanceResponse",
    "SeriesResponse",
    "SeriesDetailResponse",
    "SeriesListResponse",
    "NextInstanceResponse",
    "InstanceCompletionResponse",
    "SeriesStatsResponse",
]
