"""
Recurring series service.

Orchestrates the recurring event engine: series creation, lifecycle
commands, incremental instance generation and statistics.

Design:
- Instances are generated one at a time, never in bulk
- The next instance number is claimed with a compare-and-swap UPDATE on
  total_instances_created (guarded by status = 'active') inside the same
  transaction as the instance INSERT; losing the race raises
  ConcurrentModificationError or SeriesNotActiveError and leaves no trace
- Reaching max_instances or end_date completes the series and is reported
  as an outcome, not an error
- Pause and resume never touch existing instances; cancel only stamps
  cancelled_at on instances that have not started yet
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import (
    RecurringEventSeries,
    RecurrenceType,
    SeriesInstance,
    SeriesStatus,
)
from backend.src.services.bound_checker import BoundDecision, can_create_next
from backend.src.services.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    SeriesNotActiveError,
    ValidationError,
)
from backend.src.services.guid import GuidService
from backend.src.services.occurrence_calculator import (
    RecurrenceRule,
    anchor_rule,
    coerce_recurrence_type,
    next_occurrence,
    parse_recurrence_value,
    validate_rule,
)
from backend.src.services.series_state_machine import SeriesCommand, SeriesStateMachine
from backend.src.services.series_stats import SeriesStats, compute_stats, snapshot_instance
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


class CreationOutcome(str, enum.Enum):
    """Result of a next-instance request."""
    CREATED = "created"
    SERIES_COMPLETED = "series_completed"


class ChainOutcome(str, enum.Enum):
    """Result of completing an instance."""
    CHAINED = "chained"
    ALREADY_CHAINED = "already_chained"
    SERIES_COMPLETED = "series_completed"
    NOT_CHAINED = "not_chained"


@dataclass
class InstanceCreationResult:
    outcome: CreationOutcome
    series: RecurringEventSeries
    instance: Optional[SeriesInstance] = None
    bound: Optional[BoundDecision] = None


@dataclass
class InstanceCompletionResult:
    outcome: ChainOutcome
    series: RecurringEventSeries
    completed_instance: SeriesInstance
    next_instance: Optional[SeriesInstance] = None


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class RecurringSeriesService:
    """
    Service for recurring event series.

    Usage:
        >>> service = RecurringSeriesService(db_session)
        >>> series = service.create_series(
        ...     title="Beach cleanup",
        ...     recurrence_type="monthly",
        ...     recurrence_value="3rd Saturday",
        ...     start_date=datetime(2026, 1, 17, 9, 0),
        ...     organization_id="org-42",
        ...     creator_id="user-7",
        ... )
        >>> result = service.create_next_instance(series.guid)
        >>> result.outcome
        <CreationOutcome.CREATED: 'created'>
    """

    def __init__(self, db: Session, settings: Optional[AppSettings] = None):
        """
        Initialize recurring series service.

        Args:
            db: SQLAlchemy database session
            settings: Application settings (defaults to get_settings())
        """
        self.db = db
        self.settings = settings or get_settings()

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_series_by_guid(self, guid: str) -> RecurringEventSeries:
        """
        Get a series by GUID.

        Args:
            guid: Series GUID (ser_xxx format)

        Returns:
            RecurringEventSeries instance

        Raises:
            NotFoundError: If series not found
        """
        if not GuidService.validate_guid(guid, "ser"):
            raise NotFoundError("Series", guid)

        try:
            uuid_value = GuidService.parse_guid(guid, "ser")
        except ValueError:
            raise NotFoundError("Series", guid)

        series = (
            self.db.query(RecurringEventSeries)
            .filter(RecurringEventSeries.uuid == uuid_value)
            .first()
        )
        if not series:
            raise NotFoundError("Series", guid)

        return series

    def get_instance_by_guid(self, guid: str) -> SeriesInstance:
        """
        Get an instance by GUID.

        Raises:
            NotFoundError: If instance not found
        """
        if not GuidService.validate_guid(guid, "evt"):
            raise NotFoundError("Instance", guid)

        try:
            uuid_value = GuidService.parse_guid(guid, "evt")
        except ValueError:
            raise NotFoundError("Instance", guid)

        instance = (
            self.db.query(SeriesInstance)
            .filter(SeriesInstance.uuid == uuid_value)
            .first()
        )
        if not instance:
            raise NotFoundError("Instance", guid)

        return instance

    def list_series(
        self,
        organization_id: Optional[str] = None,
        creator_id: Optional[str] = None,
        status: Optional[Union[str, SeriesStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[RecurringEventSeries], int]:
        """
        List series with optional filtering.

        Args:
            organization_id: Filter by organization
            creator_id: Filter by creator
            status: Filter by status
            limit: Maximum number of results
            offset: Number of results to skip

        Returns:
            Tuple of (list of series, total count)

        Raises:
            ValidationError: If status is not a known status
        """
        query = self.db.query(RecurringEventSeries)

        if organization_id:
            query = query.filter(RecurringEventSeries.organization_id == organization_id)
        if creator_id:
            query = query.filter(RecurringEventSeries.creator_id == creator_id)
        if status:
            try:
                status_value = SeriesStatus(status).value
            except ValueError:
                raise ValidationError(f"Invalid status '{status}'", field="status")
            query = query.filter(RecurringEventSeries.status == status_value)

        total = query.count()

        series_list = (
            query
            .order_by(RecurringEventSeries.created_at.desc(), RecurringEventSeries.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

        return series_list, total

    def list_instances(self, guid: str) -> List[SeriesInstance]:
        """
        List the instances of a series in instance_number order.

        Raises:
            NotFoundError: If series not found
        """
        series = self.get_series_by_guid(guid)
        return (
            self.db.query(SeriesInstance)
            .filter(SeriesInstance.series_id == series.id)
            .order_by(SeriesInstance.instance_number.asc())
            .all()
        )

    # =========================================================================
    # Creation
    # =========================================================================

    def create_series(
        self,
        title: str,
        recurrence_type: Union[str, RecurrenceType],
        start_date: datetime,
        organization_id: str,
        creator_id: str,
        recurrence_value: Any = None,
        description: Optional[str] = None,
        location: Optional[str] = None,
        instructions: Optional[str] = None,
        max_volunteers: Optional[int] = None,
        duration_minutes: Optional[int] = None,
        end_date: Optional[datetime] = None,
        max_instances: Optional[int] = None,
        create_first_instance: bool = True,
    ) -> RecurringEventSeries:
        """
        Create a new recurring series.

        The recurrence value is normalized to a RecurrenceRule before being
        stored. A monthly rule without an anchor is pinned to start_date's
        day of month.

        Args:
            title: Template title copied onto every instance
            recurrence_type: daily, weekly or monthly
            start_date: Start of the first instance
            organization_id: Owning organization (opaque)
            creator_id: Creating user (opaque)
            recurrence_value: Rule as dict, int or legacy string
            description: Template description
            location: Template location
            instructions: Template volunteer instructions
            max_volunteers: Template volunteer cap
            duration_minutes: Duration of the first instance
            end_date: No instance may start after this
            max_instances: Upper bound on instances ever created
            create_first_instance: Also create instance #1

        Returns:
            Created RecurringEventSeries

        Raises:
            ValidationError: On invalid template, recurrence or bounds
        """
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title is required", field="title")

        start_date = to_naive_utc(start_date)
        end_date = to_naive_utc(end_date)

        if end_date is not None and end_date < start_date:
            raise ValidationError("End date must not be before start date", field="end_date")
        if max_instances is not None and max_instances < 1:
            raise ValidationError("max_instances must be at least 1", field="max_instances")
        if duration_minutes is not None and duration_minutes < 1:
            raise ValidationError("duration_minutes must be at least 1", field="duration_minutes")
        if max_volunteers is not None and max_volunteers < 1:
            raise ValidationError("max_volunteers must be at least 1", field="max_volunteers")

        rtype = coerce_recurrence_type(recurrence_type)
        rule = parse_recurrence_value(rtype, recurrence_value)
        validate_rule(rtype, rule, max_interval=self.settings.max_recurrence_interval)
        rule = anchor_rule(rtype, rule, start_date)

        series = RecurringEventSeries(
            title=title,
            description=description,
            location=location,
            instructions=instructions,
            max_volunteers=max_volunteers,
            duration_minutes=duration_minutes,
            recurrence_type=rtype.value,
            recurrence_value=rule.to_dict(),
            start_date=start_date,
            end_date=end_date,
            max_instances=max_instances,
            status=SeriesStatus.ACTIVE.value,
            total_instances_created=0,
            organization_id=organization_id,
            creator_id=creator_id,
        )

        self.db.add(series)
        self.db.commit()
        self.db.refresh(series)

        logger.info(
            f"Created recurring series: {series.guid} - {title}",
            extra={
                "series_guid": series.guid,
                "recurrence_type": rtype.value,
                "recurrence_value": rule.to_dict(),
            }
        )

        if create_first_instance:
            self._create_next(series)

        return series

    def create_next_instance(self, guid: str) -> InstanceCreationResult:
        """
        Create the next instance of a series.

        Args:
            guid: Series GUID

        Returns:
            InstanceCreationResult with outcome CREATED (and the instance) or
            SERIES_COMPLETED (and the bound that was reached)

        Raises:
            NotFoundError: If series not found
            SeriesNotActiveError: If the series is paused, completed or cancelled
            ConcurrentModificationError: If another writer claimed the number first
            ValidationError: If the stored recurrence rule is invalid
        """
        series = self.get_series_by_guid(guid)
        return self._create_next(series)

    def complete_instance(
        self,
        instance_guid: str,
        now: Optional[datetime] = None,
    ) -> InstanceCompletionResult:
        """
        Mark an instance as finished and chain the next one.

        Safe to call more than once: if the following instance already
        exists it is returned instead of creating another.

        Args:
            instance_guid: Instance GUID (evt_xxx)
            now: Reference time (defaults to current UTC time)

        Returns:
            InstanceCompletionResult

        Raises:
            NotFoundError: If instance not found
            ValidationError: If the instance has not ended yet
            ConcurrentModificationError: If another writer claimed the number first
        """
        now = to_naive_utc(now) or datetime.utcnow()
        instance = self.get_instance_by_guid(instance_guid)

        if instance.end_date_time > now:
            raise ValidationError(
                f"Instance {instance_guid} has not ended yet",
                field="end_date_time"
            )

        series = instance.series

        successor = (
            self.db.query(SeriesInstance)
            .filter(
                SeriesInstance.series_id == series.id,
                SeriesInstance.instance_number == instance.instance_number + 1,
            )
            .first()
        )
        if successor:
            return InstanceCompletionResult(
                outcome=ChainOutcome.ALREADY_CHAINED,
                series=series,
                completed_instance=instance,
                next_instance=successor,
            )

        if not SeriesStateMachine.can_generate(series.status):
            logger.info(
                f"Instance {instance_guid} completed; series {series.guid} is {series.status}, not chaining",
                extra={"series_guid": series.guid, "instance_guid": instance_guid}
            )
            return InstanceCompletionResult(
                outcome=ChainOutcome.NOT_CHAINED,
                series=series,
                completed_instance=instance,
            )

        creation = self._create_next(series)
        if creation.outcome == CreationOutcome.SERIES_COMPLETED:
            return InstanceCompletionResult(
                outcome=ChainOutcome.SERIES_COMPLETED,
                series=creation.series,
                completed_instance=instance,
            )

        return InstanceCompletionResult(
            outcome=ChainOutcome.CHAINED,
            series=creation.series,
            completed_instance=instance,
            next_instance=creation.instance,
        )

    def _create_next(self, series: RecurringEventSeries) -> InstanceCreationResult:
        SeriesStateMachine.ensure_can_generate(series)

        series_guid = series.guid
        expected_count = series.total_instances_created
        rule = self._rule_for(series)
        start, end = self._next_dates(series, rule)

        decision = can_create_next(series, start)
        if decision.is_blocked:
            self._complete_on_bound(series, decision)
            return InstanceCreationResult(
                outcome=CreationOutcome.SERIES_COMPLETED,
                series=series,
                bound=decision,
            )

        if not self._claim_instance_number(series, expected_count):
            self._raise_lost_race(series, expected_count)

        instance = SeriesInstance(
            series_id=series.id,
            instance_number=expected_count + 1,
            title=series.title,
            description=series.description,
            location=series.location,
            instructions=series.instructions,
            max_volunteers=series.max_volunteers,
            start_date_time=start,
            end_date_time=end,
        )
        self.db.add(instance)

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(
                f"Instance #{expected_count + 1} of series {series_guid} already exists: {e}",
                extra={"series_guid": series_guid, "expected_count": expected_count}
            )
            raise ConcurrentModificationError(series_guid, expected_count)

        self.db.refresh(series)
        self.db.refresh(instance)

        logger.info(
            f"Created instance #{instance.instance_number} of series {series_guid}",
            extra={
                "series_guid": series_guid,
                "instance_guid": instance.guid,
                "instance_number": instance.instance_number,
                "start_date_time": start.isoformat(),
            }
        )
        return InstanceCreationResult(
            outcome=CreationOutcome.CREATED,
            series=series,
            instance=instance,
        )

    def _rule_for(self, series: RecurringEventSeries) -> RecurrenceRule:
        return parse_recurrence_value(series.recurrence_type, series.recurrence_value)

    def _next_dates(
        self,
        series: RecurringEventSeries,
        rule: RecurrenceRule,
    ) -> Tuple[datetime, datetime]:
        reference = (
            self.db.query(SeriesInstance)
            .filter(SeriesInstance.series_id == series.id)
            .order_by(SeriesInstance.instance_number.desc())
            .first()
        )
        if reference is None:
            minutes = series.duration_minutes or self.settings.default_duration_minutes
            return series.start_date, series.start_date + timedelta(minutes=minutes)

        return next_occurrence(
            reference.start_date_time,
            reference.end_date_time,
            series.recurrence_type,
            rule,
        )

    def _claim_instance_number(self, series: RecurringEventSeries, expected_count: int) -> bool:
        result = self.db.execute(
            update(RecurringEventSeries)
            .where(
                RecurringEventSeries.id == series.id,
                RecurringEventSeries.total_instances_created == expected_count,
                RecurringEventSeries.status == SeriesStatus.ACTIVE.value,
            )
            .values(
                total_instances_created=expected_count + 1,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _complete_on_bound(self, series: RecurringEventSeries, decision: BoundDecision) -> None:
        target = SeriesStateMachine.next_status(series.status, SeriesCommand.COMPLETE)
        expected_count = series.total_instances_created

        result = self.db.execute(
            update(RecurringEventSeries)
            .where(
                RecurringEventSeries.id == series.id,
                RecurringEventSeries.status == SeriesStatus.ACTIVE.value,
            )
            .values(status=target.value, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._raise_lost_race(series, expected_count)

        self.db.commit()
        self.db.refresh(series)

        logger.info(
            f"Series {series.guid} completed: {decision.value}",
            extra={
                "series_guid": series.guid,
                "bound": decision.value,
                "total_instances_created": series.total_instances_created,
            }
        )

    def _raise_lost_race(self, series: RecurringEventSeries, expected_count: Optional[int]) -> None:
        self.db.rollback()
        self.db.refresh(series)

        logger.warning(
            f"Lost compare-and-swap on series {series.guid}",
            extra={
                "series_guid": series.guid,
                "expected_count": expected_count,
                "actual_count": series.total_instances_created,
                "status": series.status,
            }
        )

        if not SeriesStateMachine.can_generate(series.status):
            raise SeriesNotActiveError(series.guid, series.status)
        raise ConcurrentModificationError(series.guid, expected_count)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def set_status(
        self,
        guid: str,
        command: Union[str, SeriesCommand],
        now: Optional[datetime] = None,
    ) -> RecurringEventSeries:
        """
        Apply a pause, resume or cancel command to a series.

        Pause and resume leave instances unchanged. Cancel stamps
        cancelled_at on instances that have not started yet, in the same
        transaction as the status change; past and running instances are
        never modified.

        Args:
            guid: Series GUID
            command: pause, resume or cancel
            now: Reference time for cancel (defaults to current UTC time)

        Returns:
            Updated series

        Raises:
            NotFoundError: If series not found
            ValidationError: If the command is unknown or internal
            InvalidTransitionError: If the command is not allowed from the
                current status, including a terminal status reached concurrently
            ConcurrentModificationError: If the status changed concurrently
                to another non-terminal status
        """
        try:
            command = SeriesCommand(command)
        except ValueError:
            raise ValidationError(f"Unknown command '{command}'", field="command")
        if command == SeriesCommand.COMPLETE:
            raise ValidationError(
                "Series complete automatically when a bound is reached",
                field="command"
            )

        series = self.get_series_by_guid(guid)
        current = series.status_enum
        target = SeriesStateMachine.next_status(current, command)

        result = self.db.execute(
            update(RecurringEventSeries)
            .where(
                RecurringEventSeries.id == series.id,
                RecurringEventSeries.status == current.value,
            )
            .values(status=target.value, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            self.db.refresh(series)
            logger.warning(
                f"Status of series {guid} changed during {command.value}",
                extra={
                    "series_guid": guid,
                    "expected_status": current.value,
                    "actual_status": series.status,
                }
            )
            if SeriesStateMachine.is_terminal(series.status):
                raise InvalidTransitionError(series.status, command.value)
            raise ConcurrentModificationError(guid)

        cancelled_instances = 0
        if target == SeriesStatus.CANCELLED:
            cancelled_instances = self._cancel_future_instances(series, now)

        self.db.commit()
        self.db.refresh(series)

        logger.info(
            f"Series {guid}: {current.value} -> {target.value}",
            extra={
                "series_guid": guid,
                "command": command.value,
                "cancelled_instances": cancelled_instances,
            }
        )
        return series

    def cancel_series(self, guid: str, now: Optional[datetime] = None) -> RecurringEventSeries:
        """Cancel a series; instances that have not started are marked cancelled."""
        return self.set_status(guid, SeriesCommand.CANCEL, now=now)

    def _cancel_future_instances(self, series: RecurringEventSeries, now: Optional[datetime]) -> int:
        now = to_naive_utc(now) or datetime.utcnow()
        result = self.db.execute(
            update(SeriesInstance)
            .where(
                SeriesInstance.series_id == series.id,
                SeriesInstance.start_date_time > now,
                SeriesInstance.cancelled_at.is_(None),
            )
            .values(cancelled_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self, guid: str, now: Optional[datetime] = None) -> SeriesStats:
        """
        Compute statistics for a series.

        Args:
            guid: Series GUID
            now: Reference time (defaults to current UTC time)

        Returns:
            SeriesStats

        Raises:
            NotFoundError: If series not found
        """
        now = to_naive_utc(now) or datetime.utcnow()
        series = self.get_series_by_guid(guid)

        instances = (
            self.db.query(SeriesInstance)
            .options(selectinload(SeriesInstance.registrations))
            .filter(SeriesInstance.series_id == series.id)
            .order_by(SeriesInstance.instance_number.asc())
            .all()
        )

        return compute_stats(series, [snapshot_instance(i) for i in instances], now)

    # =========================================================================
    # Response builders
    # =========================================================================

    def build_instance_response(self, instance: SeriesInstance) -> dict:
        """
        Build a response dictionary for an instance.

        Returns:
            Dictionary suitable for InstanceResponse schema
        """
        return {
            "guid": instance.guid,
            "series_guid": instance.series.guid,
            "instance_number": instance.instance_number,
            "title": instance.title,
            "description": instance.description,
            "location": instance.location,
            "instructions": instance.instructions,
            "max_volunteers": instance.max_volunteers,
            "start_date_time": instance.start_date_time,
            "end_date_time": instance.end_date_time,
            "cancelled_at": instance.cancelled_at,
            "created_at": instance.created_at,
        }

    def build_series_response(
        self,
        series: RecurringEventSeries,
        include_instances: bool = False,
    ) -> dict:
        """
        Build a response dictionary for a series.

        Args:
            series: RecurringEventSeries instance
            include_instances: Also embed the instances

        Returns:
            Dictionary suitable for SeriesResponse / SeriesDetailResponse schema
        """
        data = {
            "guid": series.guid,
            "title": series.title,
            "description": series.description,
            "location": series.location,
            "instructions": series.instructions,
            "max_volunteers": series.max_volunteers,
            "duration_minutes": series.duration_minutes,
            "recurrence_type": series.recurrence_type,
            "recurrence_value": series.recurrence_value,
            "start_date": series.start_date,
            "end_date": series.end_date,
            "max_instances": series.max_instances,
            "status": series.status,
            "total_instances_created": series.total_instances_created,
            "available_commands": SeriesStateMachine.available_commands(series.status),
            "organization_id": series.organization_id,
            "creator_id": series.creator_id,
            "created_at": series.created_at,
            "updated_at": series.updated_at,
        }

        if include_instances:
            data["instances"] = [
                self.build_instance_response(i) for i in self.list_instances(series.guid)
            ]

        return data
