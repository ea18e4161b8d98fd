"""Event API schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from deploywatch.models.events import EventType, EventValue, WatchEvent


class EventResponse(BaseModel):
    """One component notification from the monitor's history."""

    id: str
    event_type: EventType
    project: str
    payload: dict[str, EventValue]
    timestamp: datetime

    @classmethod
    def from_event(cls, event: WatchEvent) -> EventResponse:
        return cls(
            id=event.id,
            event_type=event.event_type,
            project=event.project,
            payload=dict(event.payload),
            timestamp=event.timestamp,
        )


class EventsResponse(BaseModel):
    items: list[EventResponse]
