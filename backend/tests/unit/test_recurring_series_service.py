"""
Unit tests for RecurringSeriesService.

Tests cover:
- Series creation and first instance
- Monotonic instance numbering
- max_instances and end_date bounds completing the series
- Pause/resume/cancel and terminal finality
- Cancel marking only instances that have not started
- Status commands overtaken by concurrent status changes
- Monthly clamping through the service
- Compare-and-swap conflicts (counter race, cancel race, duplicate number)
- Completion chaining
- Statistics
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from backend.src.models import RecurringEventSeries, SeriesInstance, SeriesStatus
from backend.src.services import occurrence_calculator
from backend.src.services.bound_checker import BoundDecision
from backend.src.services.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    SeriesNotActiveError,
    ValidationError,
)
from backend.src.services.recurring_series_service import ChainOutcome, CreationOutcome
from backend.src.services.series_state_machine import SeriesStateMachine


CALCULATOR_PATH = "backend.src.services.recurring_series_service.next_occurrence"


def _numbers(service, series):
    return [i.instance_number for i in service.list_instances(series.guid)]


class TestCreateSeries:
    """Tests for create_series."""

    def test_creates_first_instance(self, series_service, sample_series):
        """Test that instance #1 starts at start_date with the series duration."""
        series = sample_series()

        instances = series_service.list_instances(series.guid)

        assert series.guid.startswith("ser_")
        assert series.status == SeriesStatus.ACTIVE.value
        assert series.total_instances_created == 1
        assert len(instances) == 1
        assert instances[0].guid.startswith("evt_")
        assert instances[0].instance_number == 1
        assert instances[0].start_date_time == datetime(2026, 3, 7, 9, 0)
        assert instances[0].end_date_time == datetime(2026, 3, 7, 12, 0)

    def test_without_first_instance(self, series_service, sample_series):
        """Test deferring instance #1 to the first create_next_instance call."""
        series = sample_series(create_first_instance=False)
        assert series.total_instances_created == 0

        result = series_service.create_next_instance(series.guid)

        assert result.outcome == CreationOutcome.CREATED
        assert result.instance.instance_number == 1
        assert result.instance.start_date_time == datetime(2026, 3, 7, 9, 0)

    def test_default_duration(self, series_service, sample_series):
        """Test the configured default duration when none is given."""
        series = sample_series(duration_minutes=None)

        instance = series_service.list_instances(series.guid)[0]

        assert instance.duration == timedelta(minutes=120)

    def test_copies_template_fields(self, series_service, sample_series, test_db_session):
        """Test that instances keep their copy when the series is edited."""
        series = sample_series(location="North pier", max_volunteers=12, instructions="Bring gloves")

        series.title = "Renamed"
        test_db_session.commit()

        instance = series_service.list_instances(series.guid)[0]
        assert instance.title == "Beach cleanup"
        assert instance.location == "North pier"
        assert instance.max_volunteers == 12
        assert instance.instructions == "Bring gloves"

    def test_legacy_value_stored_normalized(self, sample_series):
        """Test that a legacy string is stored as a structured rule."""
        series = sample_series(recurrence_type="monthly", recurrence_value="3rd Saturday",
                               start_date=datetime(2026, 1, 17, 9, 0))

        assert series.recurrence_value == {"interval": 1, "weekday": 5, "ordinal": 3}

    def test_monthly_pinned_to_start_day(self, sample_series):
        """Test that a monthly rule without anchor stores the start day."""
        series = sample_series(recurrence_type="monthly", start_date=datetime(2026, 1, 31, 9, 0))

        assert series.recurrence_value == {"interval": 1, "day_of_month": 31}

    def test_aware_start_date_stored_as_naive_utc(self, sample_series):
        """Test timezone normalization of start_date."""
        from datetime import timezone

        aware = datetime(2026, 3, 7, 10, 0, tzinfo=timezone(timedelta(hours=1)))
        series = sample_series(start_date=aware)

        assert series.start_date == datetime(2026, 3, 7, 9, 0)

    @pytest.mark.parametrize("overrides,field", [
        ({"title": "   "}, "title"),
        ({"recurrence_value": {"interval": 0}}, "recurrence_value.interval"),
        ({"recurrence_value": {"interval": 99}}, "recurrence_value.interval"),
        ({"recurrence_type": "yearly"}, "recurrence_type"),
        ({"end_date": datetime(2026, 3, 1)}, "end_date"),
        ({"max_instances": 0}, "max_instances"),
        ({"duration_minutes": 0}, "duration_minutes"),
    ])
    def test_rejects_invalid_input(self, series_service, sample_series, overrides, field):
        """Test that invalid input persists nothing."""
        with pytest.raises(ValidationError) as exc_info:
            sample_series(**overrides)

        assert exc_info.value.field == field
        assert series_service.list_series()[1] == 0


class TestInstanceGeneration:
    """Tests for create_next_instance."""

    def test_numbers_are_sequential(self, series_service, sample_series):
        """Test numbering 1, 2, 3... with weekly dates."""
        series = sample_series()

        for _ in range(4):
            series_service.create_next_instance(series.guid)

        instances = series_service.list_instances(series.guid)
        assert [i.instance_number for i in instances] == [1, 2, 3, 4, 5]
        assert [i.start_date_time.day for i in instances] == [7, 14, 21, 28, 4]
        assert series_service.get_series_by_guid(series.guid).total_instances_created == 5

    def test_max_instances_completes_series(self, series_service, sample_series):
        """Test that the attempt after the last allowed instance completes the series."""
        series = sample_series(max_instances=3)

        assert series_service.create_next_instance(series.guid).outcome == CreationOutcome.CREATED
        assert series_service.create_next_instance(series.guid).outcome == CreationOutcome.CREATED

        result = series_service.create_next_instance(series.guid)

        assert result.outcome == CreationOutcome.SERIES_COMPLETED
        assert result.bound == BoundDecision.BLOCKED_BY_MAX_INSTANCES
        assert result.instance is None
        assert result.series.status == SeriesStatus.COMPLETED.value
        assert _numbers(series_service, series) == [1, 2, 3]

    def test_end_date_completes_series(self, series_service, sample_series):
        """Test that no instance starts after end_date."""
        series = sample_series(
            recurrence_type="daily",
            end_date=datetime(2026, 3, 9, 9, 0),
        )

        outcomes = [series_service.create_next_instance(series.guid) for _ in range(2)]
        final = series_service.create_next_instance(series.guid)

        assert [o.outcome for o in outcomes] == [CreationOutcome.CREATED, CreationOutcome.CREATED]
        assert final.outcome == CreationOutcome.SERIES_COMPLETED
        assert final.bound == BoundDecision.BLOCKED_BY_END_DATE
        assert final.series.status == SeriesStatus.COMPLETED.value

        instances = series_service.list_instances(series.guid)
        assert len(instances) == 3
        assert all(i.start_date_time <= datetime(2026, 3, 9, 9, 0) for i in instances)

    def test_completed_series_rejects_creation(self, series_service, sample_series):
        """Test that a completed series stays completed."""
        series = sample_series(max_instances=1)
        series_service.create_next_instance(series.guid)

        with pytest.raises(SeriesNotActiveError):
            series_service.create_next_instance(series.guid)

    def test_monthly_clamp(self, series_service, sample_series):
        """Test Jan 31 -> Feb 28 -> Mar 31."""
        series = sample_series(recurrence_type="monthly", start_date=datetime(2026, 1, 31, 9, 0))

        february = series_service.create_next_instance(series.guid).instance
        march = series_service.create_next_instance(series.guid).instance

        assert february.start_date_time == datetime(2026, 2, 28, 9, 0)
        assert march.start_date_time == datetime(2026, 3, 31, 9, 0)

    def test_monthly_clamp_leap_year(self, series_service, sample_series):
        """Test Jan 31 -> Feb 29 in a leap year."""
        series = sample_series(recurrence_type="monthly", start_date=datetime(2028, 1, 31, 9, 0))

        assert series_service.create_next_instance(series.guid).instance.start_date_time == datetime(2028, 2, 29, 9, 0)

    def test_unknown_series(self, series_service):
        """Test NotFoundError for unknown or malformed GUIDs."""
        from backend.src.services.guid import GuidService

        for guid in ("nope", GuidService.generate_guid("ser"), GuidService.generate_guid("evt")):
            with pytest.raises(NotFoundError):
                series_service.create_next_instance(guid)


class TestLifecycle:
    """Tests for status commands."""

    def test_pause_blocks_creation_without_touching_history(self, series_service, sample_series):
        """Test pause, rejected creation, then resume."""
        series = sample_series()
        series_service.create_next_instance(series.guid)
        before = [(i.guid, i.start_date_time) for i in series_service.list_instances(series.guid)]

        paused = series_service.set_status(series.guid, "pause")
        assert paused.status == SeriesStatus.PAUSED.value

        with pytest.raises(SeriesNotActiveError) as exc_info:
            series_service.create_next_instance(series.guid)
        assert exc_info.value.code == "series_not_active"

        after = [(i.guid, i.start_date_time) for i in series_service.list_instances(series.guid)]
        assert after == before
        assert series_service.get_series_by_guid(series.guid).total_instances_created == 2

        series_service.set_status(series.guid, "resume")
        result = series_service.create_next_instance(series.guid)
        assert result.instance.instance_number == 3

    def test_cancel_keeps_instances(self, series_service, sample_series):
        """Test that cancelling leaves existing instances in place."""
        series = sample_series()
        series_service.create_next_instance(series.guid)

        cancelled = series_service.cancel_series(series.guid)

        assert cancelled.status == SeriesStatus.CANCELLED.value
        assert _numbers(series_service, series) == [1, 2]

    def test_cancel_marks_only_future_instances(self, series_service, sample_series):
        """Test that past and running instances keep cancelled_at unset."""
        series = sample_series(recurrence_type="daily")
        series_service.create_next_instance(series.guid)
        series_service.create_next_instance(series.guid)
        now = datetime(2026, 3, 8, 10, 0)

        series_service.cancel_series(series.guid, now=now)

        past, running, future = series_service.list_instances(series.guid)
        assert past.cancelled_at is None
        assert running.cancelled_at is None
        assert future.cancelled_at == now
        assert future.is_cancelled is True
        assert (past.start_date_time, running.start_date_time) == (
            datetime(2026, 3, 7, 9, 0),
            datetime(2026, 3, 8, 9, 0),
        )

    def test_pause_and_resume_leave_instances_unmarked(self, series_service, sample_series):
        """Test that only cancel marks instances."""
        series = sample_series(start_date=datetime(2099, 1, 3, 9, 0))

        series_service.set_status(series.guid, "pause", now=datetime(2026, 3, 1))
        series_service.set_status(series.guid, "resume", now=datetime(2026, 3, 1))

        assert all(i.cancelled_at is None for i in series_service.list_instances(series.guid))

    @pytest.mark.parametrize("command", ["pause", "resume", "cancel"])
    def test_cancelled_is_final(self, series_service, sample_series, command):
        """Test that no command leaves cancelled."""
        series = sample_series()
        series_service.cancel_series(series.guid)

        with pytest.raises(InvalidTransitionError):
            series_service.set_status(series.guid, command)

        with pytest.raises(SeriesNotActiveError):
            series_service.create_next_instance(series.guid)

    @pytest.mark.parametrize("command", ["pause", "resume", "cancel"])
    def test_completed_is_final(self, series_service, sample_series, command):
        """Test that no command leaves completed."""
        series = sample_series(max_instances=1)
        series_service.create_next_instance(series.guid)

        with pytest.raises(InvalidTransitionError):
            series_service.set_status(series.guid, command)

    def test_resume_active_rejected(self, series_service, sample_series):
        """Test that resuming an active series is an invalid transition."""
        series = sample_series()

        with pytest.raises(InvalidTransitionError) as exc_info:
            series_service.set_status(series.guid, "resume")

        assert "Cannot resume a series that is active" in str(exc_info.value)

    @pytest.mark.parametrize("command", ["complete", "archive"])
    def test_non_organizer_commands_rejected(self, series_service, sample_series, command):
        """Test that internal or unknown commands are validation errors."""
        series = sample_series()

        with pytest.raises(ValidationError):
            series_service.set_status(series.guid, command)

    def test_series_rows_cannot_be_deleted_with_instances(self, sample_series, test_db_session):
        """Test that instances protect their series from deletion."""
        series = sample_series()

        test_db_session.delete(series)
        with pytest.raises(IntegrityError):
            test_db_session.commit()
        test_db_session.rollback()


class TestConcurrency:
    """Tests for compare-and-swap conflicts."""

    def test_lost_counter_race(self, series_service, sample_series, test_db_session, mocker):
        """Test that a competing writer claiming the number first wins."""
        series = sample_series()
        series_id = series.id

        def competing_writer(*args, **kwargs):
            start, end = occurrence_calculator.next_occurrence(*args, **kwargs)
            test_db_session.add(SeriesInstance(
                series_id=series_id,
                instance_number=2,
                title="Beach cleanup",
                start_date_time=start,
                end_date_time=end,
            ))
            test_db_session.execute(
                update(RecurringEventSeries)
                .where(RecurringEventSeries.id == series_id)
                .values(total_instances_created=2)
                .execution_options(synchronize_session=False)
            )
            test_db_session.commit()
            return start, end

        mocker.patch(CALCULATOR_PATH, side_effect=competing_writer)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            series_service.create_next_instance(series.guid)

        assert exc_info.value.expected_count == 1
        assert _numbers(series_service, series) == [1, 2]
        assert series_service.get_series_by_guid(series.guid).total_instances_created == 2

    def test_retry_after_lost_race_succeeds(self, series_service, sample_series, test_db_session, mocker):
        """Test that a caller retry uses the updated counter."""
        series = sample_series()
        series_id = series.id
        real = occurrence_calculator.next_occurrence

        def bump_once(*args, **kwargs):
            test_db_session.execute(
                update(RecurringEventSeries)
                .where(RecurringEventSeries.id == series_id)
                .values(total_instances_created=2)
                .execution_options(synchronize_session=False)
            )
            test_db_session.commit()
            return real(*args, **kwargs)

        patcher = mocker.patch(CALCULATOR_PATH, side_effect=bump_once)
        with pytest.raises(ConcurrentModificationError):
            series_service.create_next_instance(series.guid)

        patcher.side_effect = real
        result = series_service.create_next_instance(series.guid)

        assert result.instance.instance_number == 3

    def test_cancel_wins_race(self, series_service, sample_series, test_db_session, mocker):
        """Test that a cancel landing mid-creation yields SeriesNotActiveError."""
        series = sample_series()
        series_id = series.id
        real = occurrence_calculator.next_occurrence

        def cancel_meanwhile(*args, **kwargs):
            test_db_session.execute(
                update(RecurringEventSeries)
                .where(RecurringEventSeries.id == series_id)
                .values(status=SeriesStatus.CANCELLED.value)
                .execution_options(synchronize_session=False)
            )
            test_db_session.commit()
            return real(*args, **kwargs)

        mocker.patch(CALCULATOR_PATH, side_effect=cancel_meanwhile)

        with pytest.raises(SeriesNotActiveError) as exc_info:
            series_service.create_next_instance(series.guid)

        assert exc_info.value.status == SeriesStatus.CANCELLED.value
        assert _numbers(series_service, series) == [1]
        assert series_service.get_series_by_guid(series.guid).total_instances_created == 1

    def test_duplicate_number_rolls_back_counter(self, series_service, sample_series, test_db_session, mocker):
        """Test that the unique (series, number) constraint backs up the counter."""
        series = sample_series()
        series_id = series.id

        def insert_without_claim(*args, **kwargs):
            start, end = occurrence_calculator.next_occurrence(*args, **kwargs)
            test_db_session.add(SeriesInstance(
                series_id=series_id,
                instance_number=2,
                title="Beach cleanup",
                start_date_time=start,
                end_date_time=end,
            ))
            test_db_session.commit()
            return start, end

        mocker.patch(CALCULATOR_PATH, side_effect=insert_without_claim)

        with pytest.raises(ConcurrentModificationError):
            series_service.create_next_instance(series.guid)

        assert series_service.get_series_by_guid(series.guid).total_instances_created == 1
        assert _numbers(series_service, series) == [1, 2]


class TestStatusRaces:
    """Tests for status commands losing their compare-and-swap."""

    def _patch_transition(self, mocker, test_db_session, series_id, status):
        real = SeriesStateMachine.next_status

        def change_status_meanwhile(current, command):
            test_db_session.execute(
                update(RecurringEventSeries)
                .where(RecurringEventSeries.id == series_id)
                .values(status=status)
                .execution_options(synchronize_session=False)
            )
            test_db_session.commit()
            return real(current, command)

        mocker.patch.object(SeriesStateMachine, "next_status", side_effect=change_status_meanwhile)

    @pytest.mark.parametrize("terminal", ["cancelled", "completed"])
    def test_lost_to_terminal_status(self, series_service, sample_series, test_db_session, mocker, terminal):
        """Test that a command overtaken by a terminal status is an invalid transition."""
        series = sample_series()
        self._patch_transition(mocker, test_db_session, series.id, terminal)

        with pytest.raises(InvalidTransitionError) as exc_info:
            series_service.set_status(series.guid, "pause")

        assert exc_info.value.current_status == terminal
        assert series_service.get_series_by_guid(series.guid).status == terminal

    def test_lost_to_non_terminal_status(self, series_service, sample_series, test_db_session, mocker):
        """Test that a command overtaken by a pause is retryable."""
        series = sample_series()
        self._patch_transition(mocker, test_db_session, series.id, "paused")

        with pytest.raises(ConcurrentModificationError):
            series_service.set_status(series.guid, "cancel")

        assert series_service.get_series_by_guid(series.guid).status == "paused"


class TestCompleteInstance:
    """Tests for completion chaining."""

    AFTER = datetime(2026, 3, 7, 13, 0)

    def test_chains_next_instance(self, series_service, sample_series):
        """Test that completing the latest instance creates the next one."""
        series = sample_series()
        first = series_service.list_instances(series.guid)[0]

        result = series_service.complete_instance(first.guid, now=self.AFTER)

        assert result.outcome == ChainOutcome.CHAINED
        assert result.completed_instance.guid == first.guid
        assert result.next_instance.instance_number == 2
        assert result.next_instance.start_date_time == datetime(2026, 3, 14, 9, 0)

    def test_second_call_returns_existing_successor(self, series_service, sample_series):
        """Test that repeated completion signals never duplicate instances."""
        series = sample_series()
        first = series_service.list_instances(series.guid)[0]

        chained = series_service.complete_instance(first.guid, now=self.AFTER)
        repeated = series_service.complete_instance(first.guid, now=self.AFTER)

        assert repeated.outcome == ChainOutcome.ALREADY_CHAINED
        assert repeated.next_instance.guid == chained.next_instance.guid
        assert _numbers(series_service, series) == [1, 2]

    def test_manual_create_then_completion(self, series_service, sample_series):
        """Test that a manual create followed by the completion signal is a no-op."""
        series = sample_series()
        first = series_service.list_instances(series.guid)[0]
        manual = series_service.create_next_instance(series.guid)

        result = series_service.complete_instance(first.guid, now=self.AFTER)

        assert result.outcome == ChainOutcome.ALREADY_CHAINED
        assert result.next_instance.guid == manual.instance.guid

    def test_not_ended_rejected(self, series_service, sample_series):
        """Test that an instance still running cannot be completed."""
        series = sample_series()
        first = series_service.list_instances(series.guid)[0]

        with pytest.raises(ValidationError):
            series_service.complete_instance(first.guid, now=datetime(2026, 3, 7, 10, 0))

    def test_paused_series_not_chained(self, series_service, sample_series):
        """Test that completion on a paused series creates nothing."""
        series = sample_series()
        first = series_service.list_instances(series.guid)[0]
        series_service.set_status(series.guid, "pause")

        result = series_service.complete_instance(first.guid, now=self.AFTER)

        assert result.outcome == ChainOutcome.NOT_CHAINED
        assert result.next_instance is None
        assert _numbers(series_service, series) == [1]

    def test_bound_reached(self, series_service, sample_series):
        """Test that completing the last allowed instance completes the series."""
        series = sample_series(max_instances=1)
        first = series_service.list_instances(series.guid)[0]

        result = series_service.complete_instance(first.guid, now=self.AFTER)

        assert result.outcome == ChainOutcome.SERIES_COMPLETED
        assert result.series.status == SeriesStatus.COMPLETED.value


class TestStatsAndListing:
    """Tests for get_stats and list_series."""

    def test_stats(self, series_service, sample_series, add_registrations):
        """Test one ended, one running, one upcoming, two volunteers each."""
        series = sample_series(recurrence_type="daily")
        series_service.create_next_instance(series.guid)
        series_service.create_next_instance(series.guid)

        instances = series_service.list_instances(series.guid)
        add_registrations(instances[0], [True, False])
        add_registrations(instances[1], [None, None])
        add_registrations(instances[2], [None, None])

        now = datetime(2026, 3, 8, 10, 0)
        stats = series_service.get_stats(series.guid, now=now)

        assert stats.total_instances == 3
        assert stats.completed_instances == 1
        assert stats.upcoming_instances == 1
        assert stats.in_progress_instances == 1
        assert stats.total_registrations == 6
        assert stats.total_attendances == 1
        assert stats.average_attendance == 1.0
        assert series_service.get_stats(series.guid, now=now) == stats

    def test_list_series_filters(self, series_service, sample_series):
        """Test organization, creator and status filters."""
        first = sample_series(organization_id="org-1", creator_id="alice")
        sample_series(organization_id="org-1", creator_id="bob")
        sample_series(organization_id="org-2", creator_id="alice")
        series_service.set_status(first.guid, "pause")

        _, org_total = series_service.list_series(organization_id="org-1")
        _, alice_total = series_service.list_series(creator_id="alice")
        paused, paused_total = series_service.list_series(status="paused")

        assert org_total == 2
        assert alice_total == 2
        assert paused_total == 1
        assert paused[0].guid == first.guid

    def test_list_series_invalid_status(self, series_service):
        """Test that an unknown status filter is rejected."""
        with pytest.raises(ValidationError):
            series_service.list_series(status="archived")
