"""Event history routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from deploywatch.api.deps import get_monitor
from deploywatch.api.schemas.events import EventResponse, EventsResponse
from deploywatch.core.coordinator import DeployMonitor
from deploywatch.models.events import EventType

router = APIRouter(prefix="/api/v1/events", tags=["events"])


@router.get("", response_model=EventsResponse)
async def list_events(
    event_type: str | None = None,
    project: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    monitor: DeployMonitor = Depends(get_monitor),
) -> EventsResponse:
    parsed_event_type: EventType | None = None
    if event_type is not None:
        try:
            parsed_event_type = EventType(event_type)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid event_type",
            ) from exc

    events = monitor.events(event_type=parsed_event_type, project=project, limit=limit)
    return EventsResponse(items=[EventResponse.from_event(event) for event in events])
