"""
Service layer for business logic.

Only dependency-free modules are re-exported here; service classes that
touch the models are imported from their own modules so that the models
package can use the GUID helpers without an import cycle.
"""

from backend.src.services.exceptions import (
    ServiceError,
    NotFoundError,
    ValidationError,
    ConflictError,
    SeriesNotActiveError,
    InvalidTransitionError,
    ConcurrentModificationError,
)
from backend.src.services.guid import GuidService

__all__ = [
    "ServiceError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "SeriesNotActiveError",
    "InvalidTransitionError",
    "ConcurrentModificationError",
    "GuidService",
]
