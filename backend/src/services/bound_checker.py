"""
Bound checks for recurring series.

Decides whether one more instance may be created given the series counter,
its optional max_instances and its optional end_date. The caller passes the
already computed start of the candidate instance.
"""

import enum
from datetime import datetime
from typing import Optional, Protocol


class BoundDecision(str, enum.Enum):
    """Result of a bound check."""
    ALLOWED = "allowed"
    BLOCKED_BY_MAX_INSTANCES = "max_instances_reached"
    BLOCKED_BY_END_DATE = "end_date_passed"

    @property
    def is_blocked(self) -> bool:
        return self is not BoundDecision.ALLOWED


class SeriesBounds(Protocol):
    """Attributes of a series the bound check reads."""
    total_instances_created: int
    max_instances: Optional[int]
    end_date: Optional[datetime]


def can_create_next(series: SeriesBounds, candidate_start: datetime) -> BoundDecision:
    """
    Check the series bounds for a candidate instance.

    The instance count bound is checked first. A candidate starting exactly
    at end_date is still allowed.

    Args:
        series: Series (or any object exposing the bound attributes)
        candidate_start: Start of the instance that would be created

    Returns:
        BoundDecision
    """
    if (
        series.max_instances is not None
        and series.total_instances_created >= series.max_instances
    ):
        return BoundDecision.BLOCKED_BY_MAX_INSTANCES

    if series.end_date is not None and candidate_start > series.end_date:
        return BoundDecision.BLOCKED_BY_END_DATE

    return BoundDecision.ALLOWED
