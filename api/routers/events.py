"""
Events API Endpoints.

Endpoints for tracking conversion events and inspecting their delivery status.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import ServiceContainer, get_services
from api.models import EventListResponse, EventResponse, TrackEventRequest, TrackEventResponse
from domain.errors import StoreError
from domain.event import EventStatus
from services.attribution_capture import get_stored_attribution
from services.retry_scheduler import TrackRequest

router = APIRouter()


@router.post(
    "/events",
    response_model=TrackEventResponse,
    status_code=202,
    summary="Track Event",
    description="Queue a conversion event for storage and delivery to the Conversions API."
)
async def track_event(request: TrackEventRequest, services: ServiceContainer = Depends(get_services)):
    """
    Queue a tracked event.

    The session's captured attribution (if any) is snapshotted now; storage
    and delivery happen on the background consumer, so delivery failures
    never surface here. Returns 503 only when the tracking queue is full.
    """
    attribution = None
    if request.session_id:
        attribution = get_stored_attribution(services.find_session(request.session_id))

    accepted = services.scheduler.submit(
        TrackRequest(
            event_name=request.event_name,
            event_data=request.data,
            attribution=attribution,
            value=request.value,
            currency=request.currency,
            event_id=request.event_id,
        )
    )
    if not accepted:
        raise HTTPException(status_code=503, detail="Tracking queue is full, try again later")

    return TrackEventResponse(accepted=True, queued=services.scheduler.queued)


@router.get(
    "/events",
    response_model=EventListResponse,
    summary="List Events By Status",
)
async def list_events(
    status: EventStatus = Query(EventStatus.PENDING, description="pending, sent or failed"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of results to return"),
    services: ServiceContainer = Depends(get_services),
):
    try:
        events = await services.event_repository.list_events_by_status(status, limit=limit)
    except StoreError as e:
        raise HTTPException(status_code=500, detail=f"Failed to list events: {str(e)}")

    return EventListResponse(
        items=[EventResponse.from_event(event) for event in events],
        total_count=len(events),
        status=status,
    )


@router.get(
    "/events/{event_id}",
    response_model=EventResponse,
    summary="Get Event",
)
async def get_event(event_id: str, services: ServiceContainer = Depends(get_services)):
    try:
        event = await services.event_repository.get_event_by_id(event_id)
    except StoreError as e:
        raise HTTPException(status_code=500, detail=f"Failed to get event: {str(e)}")

    if event is None:
        raise HTTPException(status_code=404, detail=f"Event not found: {event_id}")

    return EventResponse.from_event(event)
