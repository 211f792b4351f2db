"""
Recurring events API endpoints.

Provides:
- Create a recurring series (optionally with its first instance)
- List series and get series details with instances
- Pause, resume and cancel a series
- Create the next instance of a series
- Complete an instance (chains the next one)
- Get series statistics

Design:
- Uses dependency injection for services
- All endpoints use GUID format (ser_xxx, evt_xxx) for identifiers
- Conflicts return 409 with a machine-readable code:
  series_not_active, invalid_transition, concurrent_modification
- concurrent_modification also carries a Retry-After header; the server
  never retries on its own
- Reaching a series bound is a 200 outcome, not an error
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from backend.src.config.settings import get_settings
from backend.src.db.database import get_db
from backend.src.models import SeriesStatus
from backend.src.schemas.recurring_series import (
    SeriesCreate,
    SeriesStatusUpdate,
    InstanceResponse,
    SeriesResponse,
    SeriesDetailResponse,
    SeriesListResponse,
    NextInstanceResponse,
    InstanceCompletionResponse,
    SeriesStatsResponse,
)
from backend.src.services.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from backend.src.services.recurring_series_service import (
    CreationOutcome,
    RecurringSeriesService,
)
from backend.src.utils.logging_config import get_logger


logger = get_logger("api")

router = APIRouter(
    prefix="/recurring-events",
    tags=["Recurring Events"],
)


# ============================================================================
# Dependencies
# ============================================================================


def get_recurring_series_service(db: Session = Depends(get_db)) -> RecurringSeriesService:
    """Create RecurringSeriesService instance with database session."""
    return RecurringSeriesService(db=db)


def conflict_exception(exc: ConflictError) -> HTTPException:
    """Translate a conflict error to a 409 response."""
    headers = None
    if isinstance(exc, ConcurrentModificationError):
        headers = {"Retry-After": str(get_settings().retry_after_seconds)}
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"code": exc.code, "message": exc.message},
        headers=headers,
    )


# ============================================================================
# Series Endpoints
# ============================================================================


@router.post(
    "/series",
    response_model=SeriesResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create recurring series",
)
async def create_series(
    series_data: SeriesCreate,
    service: RecurringSeriesService = Depends(get_recurring_series_service),
) -> SeriesResponse:
    """
    Create a recurring series.

    Instance #1 is created at start_date unless create_first_instance is false.

    Returns:
        SeriesResponse

    Raises:
        400 Bad Request: If the recurrence rule or bounds are invalid

    Example:
        POST /api/recurring-events/series
        {
          "title": "Food bank shift",
          "recurrence_type": "weekly",
          "recurrence_value": "Tuesday",
          "start_date": "2026-03-03T17:00:00Z",
          "organization_id": "org-42",
          "creator_id": "user-7"
        }
    """
    try:
        series = service.create_series(
            title=series_data.title,
            recurrence_type=series_data.recurrence_type,
            recurrence_value=series_data.recurrence_value_for_service(),
            start_date=series_data.start_date,
            end_date=series_data.end_date,
            max_instances=series_data.max_instances,
            description=series_data.description,
            location=series_data.location,
            instructions=series_data.instructions,
            max_volunteers=series_data.max_volunteers,
            duration_minutes=series_data.duration_minutes,
            organization_id=series_data.organization_id,
            creator_id=series_data.creator_id,
            create_first_instance=series_data.create_first_instance,
        )

    except ValidationError as e:
        logger.warning(f"Series creation rejected: {e.message}", extra={"field": e.field})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    except ConflictError as e:
        raise conflict_exception(e)

    logger.info(
        f"Created series: {series.title}",
        extra={"series_guid": series.guid},
    )
    return SeriesResponse.model_validate(service.build_series_response(series))


@router.get(
    "/series",
    response_model=SeriesListResponse,
    summary="List recurring series",
)
async def list_series(
    organization_id: Optional[str] = Query(None, description="Filter by organization"),
    creator_id: Optional[str] = Query(None, description="Filter by creator"),
    series_status: Optional[SeriesStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: RecurringSeriesService = Depends(get_recurring_series_service),
) -> SeriesListResponse:
    """
    List series, newest first.

    Example:
        GET /api/recurring-events/series?organization_id=org-42&status=active
    """
    series_list, total = service.list_series(
        organization_id=organization_id,
        creator_id=creator_id,
        status=series_status,
        limit=limit,
        offset=offset,
    )

    return SeriesListResponse(
        items=[
            SeriesResponse.model_validate(service.build_series_response(s))
            for s in series_list
        ],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/series/{guid}",
    response_model=SeriesDetailResponse,
    summary="Get series details",
)
async def get_series(
    guid: str,
    service: RecurringSeriesService = Depends(get_recurring_series_service),
) -> SeriesDetailResponse:
    """
    Get a series with all of its instances.

    Raises:
        404 Not Found: If series doesn't exist
    """
    try:
        series = service.get_series_by_guid(guid)
        data = service.build_series_response(series, include_instances=True)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return SeriesDetailResponse.model_validate(data)


@router.get(
    "/series/{guid}/instances",
    response_model=List[InstanceResponse],
    summary="List series instances",
)
async def list_instances(
    guid: str,
    service: RecurringSeriesService = Depends(get_recurring_series_service),
) -> List[InstanceResponse]:
    """
    List the instances of a series in instance_number order.

    Raises:
        404 Not Found: If series doesn't exist
    """
    try:
        instances = service.list_instances(guid)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return [InstanceResponse.model_validate(service.build_instance_response(i)) for i in instances]


@router.patch(
    "/series/{guid}/status",
    response_model=SeriesResponse,
    summary="Pause, resume or cancel a series",
)
async def update_series_status(
    guid: str,
    update: SeriesStatusUpdate,
    service: RecurringSeriesService = Depends(get_recurring_series_service),
) -> SeriesResponse:
    """
    Apply a lifecycle command to a series.

    Pause and resume leave instances unchanged; cancel marks instances that
    have not started yet as cancelled.

    Raises:
        404 Not Found: If series doesn't exist
        409 Conflict: invalid_transition (e.g. resume a cancelled series)
            or concurrent_modification

    Example:
        PATCH /api/recurring-events/series/ser_01hgw2bbg0000000000000001/status
        {"command": "pause"}
    """
    try:
        series = service.set_status(guid, update.command.value)

    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    except ConflictError as e:
        logger.warning(
            f"Status command rejected for series {guid}: {e.message}",
            extra={"series_guid": guid, "command": update.command.value, "code": e.code},
        )
        raise conflict_exception(e)

    return SeriesResponse.model_validate(service.build_series_response(series))


@router.delete(
    "/series/{guid}",
    response_model=SeriesResponse,
    summary="Cancel a series",
)
async def cancel_series(
    guid: str,
    service: RecurringSeriesService = Depends(get_recurring_series_service),
) -> SeriesResponse:
    """
    Cancel a series. Instances are kept; those that have not started yet
    get cancelled_at set.

    Raises:
        404 Not Found: If series doesn't exist
        409 Conflict: If the series is already completed or cancelled
    """
    try:
        series = service.cancel_series(guid)

    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    except ConflictError as e:
        raise conflict_exception(e)

    return SeriesResponse.model_validate(service.build_series_response(series))


@router.post(
    "/series/{guid}/next-instance",
    response_model=NextInstanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create the next instance",
    responses={200: {"model": NextInstanceResponse, "description": "Series completed, no instance created"}},
)
async def create_next_instance(
    guid: str,
    response: Response,
    service: RecurringSeriesService = Depends(get_recurring_series_service),
) -> NextInstanceResponse:
    """
    Create the next instance of an active series.

    Returns 201 with the new instance, or 200 with outcome
    "series_completed" when max_instances or end_date has been reached.

    Raises:
        404 Not Found: If series doesn't exist
        409 Conflict: series_not_active or concurrent_modification
    """
    try:
        result = service.create_next_instance(guid)

    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    except ConflictError as e:
        logger.warning(
            f"Next instance rejected for series {guid}: {e.message}",
            extra={"series_guid": guid, "code": e.code},
        )
        raise conflict_exception(e)

    if result.outcome == CreationOutcome.SERIES_COMPLETED:
        response.status_code = status.HTTP_200_OK

    return NextInstanceResponse(
        outcome=result.outcome.value,
        series=SeriesResponse.model_validate(service.build_series_response(result.series)),
        instance=(
            InstanceResponse.model_validate(service.build_instance_response(result.instance))
            if result.instance else None
        ),
        bound_reason=result.bound.value if result.bound else None,
    )


@router.get(
    "/series/{guid}/stats",
    response_model=SeriesStatsResponse,
    summary="Get series statistics",
)
async def get_series_stats(
    guid: str,
    now: Optional[datetime] = Query(None, description="Reference time (defaults to now)"),
    service: RecurringSeriesService = Depends(get_recurring_series_service),
) -> SeriesStatsResponse:
    """
    Get aggregated statistics for a series.

    Example:
        GET /api/recurring-events/series/ser_01hgw2bbg0000000000000001/stats

        Response:
        {
          "series_guid": "ser_01hgw2bbg0000000000000001",
          "total_instances": 6,
          "completed_instances": 4,
          "upcoming_instances": 2,
          "total_registrations": 48,
          "average_attendance": 9.25,
          ...
        }
    """
    try:
        stats = service.get_stats(guid, now=now)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return SeriesStatsResponse(**stats.to_dict())


# ============================================================================
# Instance Endpoints
# ============================================================================


@router.post(
    "/instances/{guid}/complete",
    response_model=InstanceCompletionResponse,
    summary="Complete an instance",
)
async def complete_instance(
    guid: str,
    service: RecurringSeriesService = Depends(get_recurring_series_service),
) -> InstanceCompletionResponse:
    """
    Mark an instance as finished and create the next one if the series is
    still active.

    Calling this again for the same instance returns the instance already
    chained after it.

    Raises:
        400 Bad Request: If the instance has not ended yet
        404 Not Found: If instance doesn't exist
        409 Conflict: concurrent_modification
    """
    try:
        result = service.complete_instance(guid)

    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    except ConflictError as e:
        raise conflict_exception(e)

    logger.info(
        f"Completed instance {guid}: {result.outcome.value}",
        extra={"instance_guid": guid, "series_guid": result.series.guid},
    )

    return InstanceCompletionResponse(
        outcome=result.outcome.value,
        series_guid=result.series.guid,
        series_status=result.series.status,
        completed_instance_guid=result.completed_instance.guid,
        next_instance=(
            InstanceResponse.model_validate(service.build_instance_response(result.next_instance))
            if result.next_instance else None
        ),
    )
