"""
Custom exceptions for service layer.

Provides specific exception types for business logic errors
that can be translated to appropriate HTTP responses.

Reaching a series bound during instance creation is NOT an exception:
it is reported as a creation outcome (see CreationOutcome).
"""

from typing import Any, Optional


class ServiceError(Exception):
    """Base exception for service layer errors."""
    pass


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class ValidationError(ServiceError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class ConflictError(ServiceError):
    """Raised when an operation conflicts with existing state."""

    code = "conflict"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class SeriesNotActiveError(ConflictError):
    """Raised when instance creation is attempted on a series that is not active.

    No mutation is performed when this is raised.
    """

    code = "series_not_active"

    def __init__(self, series_guid: str, status: str):
        self.series_guid = series_guid
        self.status = status
        super().__init__(
            f"Series '{series_guid}' is {status}; "
            "new instances can only be created while it is active"
        )


class InvalidTransitionError(ConflictError):
    """Raised when a status command is not legal from the current status."""

    code = "invalid_transition"

    def __init__(self, current_status: str, command: str):
        self.current_status = current_status
        self.command = command
        super().__init__(
            f"Cannot {command} a series that is {current_status}"
        )


class ConcurrentModificationError(ConflictError):
    """Raised when a compare-and-swap on a series row loses a race.

    The engine never retries on its own; callers may retry with backoff.
    """

    code = "concurrent_modification"

    def __init__(self, series_guid: str, expected_count: Optional[int] = None):
        self.series_guid = series_guid
        self.expected_count = expected_count
        super().__init__(
            f"Series '{series_guid}' was modified concurrently; retry the request"
        )
