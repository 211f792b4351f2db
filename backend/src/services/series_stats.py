"""
Statistics aggregation for recurring series.

compute_stats is a pure function over instance snapshots and an explicit
"now", so calling it twice with the same inputs returns identical results.
An instance that has started but not ended counts as neither completed nor
upcoming.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from backend.src.models import RecurringEventSeries, SeriesInstance


@dataclass(frozen=True)
class InstanceSnapshot:
    """
    Read-only view of an instance for statistics.

    attendance is None when no attendance has been recorded for the
    instance; such instances are left out of the average.
    """

    instance_number: int
    start_date_time: datetime
    end_date_time: datetime
    registrations: int = 0
    attendance: Optional[int] = None


@dataclass(frozen=True)
class SeriesStats:
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

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def snapshot_instance(instance: SeriesInstance) -> InstanceSnapshot:
    """Build a snapshot from an instance and its registrations."""
    registrations = list(instance.registrations)
    marked = [r for r in registrations if r.attended is not None]

    return InstanceSnapshot(
        instance_number=instance.instance_number,
        start_date_time=instance.start_date_time,
        end_date_time=instance.end_date_time,
        registrations=len(registrations),
        attendance=sum(1 for r in marked if r.attended) if marked else None,
    )


def compute_stats(
    series: RecurringEventSeries,
    instances: Iterable[InstanceSnapshot],
    now: datetime,
) -> SeriesStats:
    """
    Aggregate statistics for a series.

    Args:
        series: Series the instances belong to
        instances: Snapshots of the series' instances
        now: Reference time (naive UTC)

    Returns:
        SeriesStats, average_attendance rounded to 2 decimals (0.0 when no
        instance has recorded attendance)
    """
    total = completed = upcoming = in_progress = 0
    total_registrations = 0
    total_attendances = 0
    attended_instances = 0

    for snapshot in instances:
        total += 1
        total_registrations += snapshot.registrations

        if snapshot.end_date_time < now:
            completed += 1
        elif snapshot.start_date_time > now:
            upcoming += 1
        else:
            in_progress += 1

        if snapshot.attendance is not None:
            attended_instances += 1
            total_attendances += snapshot.attendance

    average = round(total_attendances / attended_instances, 2) if attended_instances else 0.0

    return SeriesStats(
        series_guid=series.guid,
        series_status=series.status,
        total_instances=total,
        completed_instances=completed,
        upcoming_instances=upcoming,
        in_progress_instances=in_progress,
        total_registrations=total_registrations,
        total_attendances=total_attendances,
        average_attendance=average,
        computed_at=now,
    )
