"""
Lifecycle state machine for recurring series.

    active  --pause-->    paused
    paused  --resume-->   active
    active  --cancel-->   cancelled
    paused  --cancel-->   cancelled
    active  --complete--> completed   (bound reached during generation)

completed and cancelled are terminal: no command leaves them. Only an active
series may generate instances.
"""

import enum
from typing import Dict, List, Tuple, Union

from backend.src.models.recurring_series import SeriesStatus
from backend.src.services.exceptions import InvalidTransitionError, SeriesNotActiveError


class SeriesCommand(str, enum.Enum):
    """Events that move a series between statuses."""
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"
    COMPLETE = "complete"   # Internal, issued when a bound is reached


TRANSITIONS: Dict[Tuple[SeriesStatus, SeriesCommand], SeriesStatus] = {
    (SeriesStatus.ACTIVE, SeriesCommand.PAUSE): SeriesStatus.PAUSED,
    (SeriesStatus.PAUSED, SeriesCommand.RESUME): SeriesStatus.ACTIVE,
    (SeriesStatus.ACTIVE, SeriesCommand.CANCEL): SeriesStatus.CANCELLED,
    (SeriesStatus.PAUSED, SeriesCommand.CANCEL): SeriesStatus.CANCELLED,
    (SeriesStatus.ACTIVE, SeriesCommand.COMPLETE): SeriesStatus.COMPLETED,
}

TERMINAL_STATUSES = frozenset({SeriesStatus.COMPLETED, SeriesStatus.CANCELLED})

# Commands an organizer may issue through the API
USER_COMMANDS = (SeriesCommand.PAUSE, SeriesCommand.RESUME, SeriesCommand.CANCEL)


class SeriesStateMachine:
    """Table-driven transitions for series status."""

    @staticmethod
    def next_status(
        current: Union[str, SeriesStatus],
        command: Union[str, SeriesCommand],
    ) -> SeriesStatus:
        """
        Resolve the status a command leads to.

        Raises:
            InvalidTransitionError: If the command is not allowed from current
        """
        current = SeriesStatus(current)
        command = SeriesCommand(command)

        target = TRANSITIONS.get((current, command))
        if target is None:
            raise InvalidTransitionError(current.value, command.value)
        return target

    @staticmethod
    def is_terminal(status: Union[str, SeriesStatus]) -> bool:
        return SeriesStatus(status) in TERMINAL_STATUSES

    @staticmethod
    def can_generate(status: Union[str, SeriesStatus]) -> bool:
        return SeriesStatus(status) == SeriesStatus.ACTIVE

    @staticmethod
    def ensure_can_generate(series) -> None:
        """
        Raises:
            SeriesNotActiveError: If the series is not active
        """
        if not SeriesStateMachine.can_generate(series.status):
            raise SeriesNotActiveError(series.guid, series.status)

    @staticmethod
    def available_commands(status: Union[str, SeriesStatus]) -> List[str]:
        """Organizer commands accepted from a status."""
        status = SeriesStatus(status)
        return [
            command.value
            for command in USER_COMMANDS
            if (status, command) in TRANSITIONS
        ]
