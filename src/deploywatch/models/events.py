"""Event models emitted by deploywatch components."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

type EventValue = str | int | float | bool | None


class EventType(str, Enum):
    """Notification categories handed to the coordinator."""

    CHANGE_DETECTED = "change.detected"
    LOG_MESSAGE = "log.message"
    PROJECT_FOUND = "project.found"
    PROJECT_REMOVED = "project.removed"
    PROJECT_UPDATED = "project.updated"
    DEPLOY_STARTED = "deploy.started"
    DEPLOY_COMPLETED = "deploy.completed"


class WatchEvent(BaseModel):
    """Fire-and-forget notification from a core component."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: EventType
    project: str = ""
    payload: dict[str, EventValue] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
