"""Watch control and log schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class WatchStatusResponse(BaseModel):
    """Current watch state."""

    watching: bool
    projects: int
    active_deploy: str | None = None
    pending_deploys: list[str] = Field(default_factory=list)


class LogsResponse(BaseModel):
    """Lines from one of the monitor's log buffers."""

    stream: str
    lines: list[str]
