"""
Occurrence calculator for recurring series.

Computes the start/end of the next occurrence from a reference instance and
a recurrence rule. Pure: no database access and no dependency on the
current time, so identical inputs always yield identical dates and a retried
creation attempt recomputes exactly the same candidate.

Rules:
- daily:   start + N days
- weekly:  start + N weeks, or with a fixed weekday the first such day
           after start + (N - 1) weeks
- monthly: same day-of-month N months later, clamped to the month's last
           day (Jan 31 -> Feb 28/29), or an ordinal weekday such as
           "3rd Saturday" / "last Friday" N months later

The duration of the reference instance is always preserved.
"""

import re
from dataclasses import dataclass, asdict, fields
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta, MO, TU, WE, TH, FR, SA, SU

from backend.src.models.recurring_series import RecurrenceType
from backend.src.services.exceptions import ValidationError


WEEKDAY_NAMES = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

# Indexed by datetime.weekday() (0=Monday)
_RELATIVE_WEEKDAYS = (MO, TU, WE, TH, FR, SA, SU)

LAST = -1

ORDINAL_WORDS = {
    "1st": 1, "first": 1,
    "2nd": 2, "second": 2,
    "3rd": 3, "third": 3,
    "4th": 4, "fourth": 4,
    "5th": 5, "fifth": 5,
    "last": LAST,
}

_ORDINAL_WEEKDAY_PATTERN = re.compile(r"^(\w+)\s+(\w+)$")


@dataclass(frozen=True)
class RecurrenceRule:
    """
    Normalized recurrence value.

    Attributes:
        interval: Step between occurrences (days, weeks or months)
        weekday: 0=Monday ... 6=Sunday. Weekly: fixed weekday of each
            occurrence. Monthly: weekday paired with ordinal.
        day_of_month: Monthly day-of-month anchor (1-31)
        ordinal: Monthly ordinal weekday (1-5, or -1 for the last one)
    """

    interval: int = 1
    weekday: Optional[int] = None
    day_of_month: Optional[int] = None
    ordinal: Optional[int] = None

    @property
    def is_ordinal_weekday(self) -> bool:
        return self.ordinal is not None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for storage, omitting unset fields."""
        return {key: value for key, value in asdict(self).items() if value is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecurrenceRule":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValidationError(
                f"Unknown recurrence rule fields: {', '.join(sorted(unknown))}",
                field="recurrence_value"
            )
        return cls(**{key: value for key, value in data.items() if value is not None})


def coerce_recurrence_type(value: Union[str, RecurrenceType]) -> RecurrenceType:
    """Convert a raw recurrence type to the enum, rejecting unknown values."""
    try:
        return RecurrenceType(value)
    except ValueError:
        valid = ", ".join(t.value for t in RecurrenceType)
        raise ValidationError(
            f"Invalid recurrence type '{value}'. Valid types: {valid}",
            field="recurrence_type"
        )


def parse_recurrence_value(
    recurrence_type: Union[str, RecurrenceType],
    value: Any,
) -> RecurrenceRule:
    """
    Build a RecurrenceRule from any accepted representation.

    Accepted values:
        None                    -> every 1 day/week/month
        RecurrenceRule or dict  -> structured rule
        int or digit string     -> step for daily/weekly, day-of-month for monthly
        "Monday"                -> weekly on a fixed weekday
        "3rd Saturday"          -> monthly ordinal weekday ("last Friday" too)

    Raises:
        ValidationError: If the value cannot be interpreted for this type
    """
    recurrence_type = coerce_recurrence_type(recurrence_type)

    if value is None:
        rule = RecurrenceRule()
    elif isinstance(value, RecurrenceRule):
        rule = value
    elif isinstance(value, dict):
        rule = RecurrenceRule.from_dict(value)
    elif isinstance(value, bool):
        raise ValidationError("Recurrence value cannot be a boolean", field="recurrence_value")
    elif isinstance(value, int):
        rule = _rule_from_number(recurrence_type, value)
    elif isinstance(value, str):
        rule = _rule_from_text(recurrence_type, value.strip())
    else:
        raise ValidationError(
            f"Unsupported recurrence value type: {type(value).__name__}",
            field="recurrence_value"
        )

    validate_rule(recurrence_type, rule)
    return rule


def _rule_from_number(recurrence_type: RecurrenceType, number: int) -> RecurrenceRule:
    if recurrence_type == RecurrenceType.MONTHLY:
        return RecurrenceRule(day_of_month=number)
    return RecurrenceRule(interval=number)


def _rule_from_text(recurrence_type: RecurrenceType, text: str) -> RecurrenceRule:
    if not text:
        return RecurrenceRule()

    if re.fullmatch(r"-?\d+", text):
        return _rule_from_number(recurrence_type, int(text))

    lowered = text.lower()

    if recurrence_type == RecurrenceType.WEEKLY and lowered in WEEKDAY_NAMES:
        return RecurrenceRule(weekday=WEEKDAY_NAMES[lowered])

    match = _ORDINAL_WEEKDAY_PATTERN.match(lowered)
    if (
        recurrence_type == RecurrenceType.MONTHLY
        and match
        and match.group(1) in ORDINAL_WORDS
        and match.group(2) in WEEKDAY_NAMES
    ):
        return RecurrenceRule(
            ordinal=ORDINAL_WORDS[match.group(1)],
            weekday=WEEKDAY_NAMES[match.group(2)],
        )

    raise ValidationError(
        f"Cannot interpret recurrence value '{text}' for {recurrence_type.value} recurrence",
        field="recurrence_value"
    )


def validate_rule(
    recurrence_type: Union[str, RecurrenceType],
    rule: RecurrenceRule,
    max_interval: Optional[int] = None,
) -> None:
    """
    Check that a rule is well-formed for the recurrence type.

    A zero or negative step is rejected: it would never advance the date.

    Raises:
        ValidationError: On the first problem found
    """
    recurrence_type = coerce_recurrence_type(recurrence_type)

    if not isinstance(rule.interval, int) or isinstance(rule.interval, bool) or rule.interval < 1:
        raise ValidationError(
            f"Recurrence interval must be a positive integer, got {rule.interval!r}",
            field="recurrence_value.interval"
        )
    if max_interval is not None and rule.interval > max_interval:
        raise ValidationError(
            f"Recurrence interval cannot exceed {max_interval}",
            field="recurrence_value.interval"
        )

    if rule.weekday is not None and rule.weekday not in range(7):
        raise ValidationError(
            "Weekday must be between 0 (Monday) and 6 (Sunday)",
            field="recurrence_value.weekday"
        )

    if recurrence_type == RecurrenceType.DAILY:
        if rule.weekday is not None or rule.day_of_month is not None or rule.ordinal is not None:
            raise ValidationError(
                "Daily recurrence only accepts an interval",
                field="recurrence_value"
            )

    elif recurrence_type == RecurrenceType.WEEKLY:
        if rule.day_of_month is not None or rule.ordinal is not None:
            raise ValidationError(
                "Weekly recurrence accepts an interval and an optional weekday",
                field="recurrence_value"
            )

    else:
        if rule.day_of_month is not None and rule.ordinal is not None:
            raise ValidationError(
                "Monthly recurrence takes either a day of month or an ordinal weekday, not both",
                field="recurrence_value"
            )
        if rule.day_of_month is not None and rule.day_of_month not in range(1, 32):
            raise ValidationError(
                "Day of month must be between 1 and 31",
                field="recurrence_value.day_of_month"
            )
        if rule.ordinal is not None:
            if rule.ordinal != LAST and rule.ordinal not in range(1, 6):
                raise ValidationError(
                    "Ordinal must be between 1 and 5, or -1 for the last weekday",
                    field="recurrence_value.ordinal"
                )
            if rule.weekday is None:
                raise ValidationError(
                    "Ordinal weekday recurrence requires a weekday",
                    field="recurrence_value.weekday"
                )
        elif rule.weekday is not None:
            raise ValidationError(
                "Monthly weekday recurrence requires an ordinal",
                field="recurrence_value.ordinal"
            )


def anchor_rule(
    recurrence_type: Union[str, RecurrenceType],
    rule: RecurrenceRule,
    start_date: datetime,
) -> RecurrenceRule:
    """
    Pin a monthly rule without an anchor to the series start day.

    Without this, a clamped occurrence (Jan 31 -> Feb 28) would become the
    reference for every later month and the series would drift to the 28th.
    """
    if (
        coerce_recurrence_type(recurrence_type) == RecurrenceType.MONTHLY
        and rule.day_of_month is None
        and rule.ordinal is None
    ):
        return RecurrenceRule(interval=rule.interval, day_of_month=start_date.day)
    return rule


def next_occurrence(
    reference_start: datetime,
    reference_end: datetime,
    recurrence_type: Union[str, RecurrenceType],
    rule: RecurrenceRule,
) -> Tuple[datetime, datetime]:
    """
    Compute the occurrence following a reference instance.

    Args:
        reference_start: Start of the reference (most recent) instance
        reference_end: End of the reference instance
        recurrence_type: daily, weekly or monthly
        rule: Recurrence rule for the series

    Returns:
        (start, end) of the next occurrence, end - start == reference duration

    Raises:
        ValidationError: If the rule is malformed or the reference ends
            before it starts
    """
    recurrence_type = coerce_recurrence_type(recurrence_type)
    validate_rule(recurrence_type, rule)

    duration = reference_end - reference_start
    if duration < timedelta(0):
        raise ValidationError(
            "Reference instance ends before it starts",
            field="end_date_time"
        )

    if recurrence_type == RecurrenceType.DAILY:
        start = reference_start + timedelta(days=rule.interval)
    elif recurrence_type == RecurrenceType.WEEKLY:
        start = _advance_weekly(reference_start, rule)
    else:
        start = _advance_monthly(reference_start, rule)

    return start, start + duration


def _advance_weekly(reference: datetime, rule: RecurrenceRule) -> datetime:
    if rule.weekday is None:
        return reference + timedelta(weeks=rule.interval)

    # First rule weekday strictly after reference + (N - 1) weeks
    base = reference + timedelta(weeks=rule.interval - 1)
    days_ahead = (rule.weekday - base.weekday()) % 7 or 7
    return base + timedelta(days=days_ahead)


def _advance_monthly(reference: datetime, rule: RecurrenceRule) -> datetime:
    if rule.is_ordinal_weekday:
        return _nth_weekday(reference, rule.interval, rule.weekday, rule.ordinal)

    # relativedelta clamps the day to the length of the target month
    day = rule.day_of_month or reference.day
    return reference + relativedelta(months=rule.interval, day=day)


def _nth_weekday(reference: datetime, months: int, weekday: int, ordinal: int) -> datetime:
    relative_weekday = _RELATIVE_WEEKDAYS[weekday]
    last_in_month = reference + relativedelta(months=months, day=31, weekday=relative_weekday(LAST))

    if ordinal == LAST:
        return last_in_month

    candidate = reference + relativedelta(months=months, day=1, weekday=relative_weekday(ordinal))
    if candidate.month != last_in_month.month:
        # No fifth occurrence this month: use the last one
        return last_in_month
    return candidate
