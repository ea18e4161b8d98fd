"""Project API schemas."""

from __future__ import annotations

from pydantic import BaseModel

from deploywatch.models.project import ProjectDescriptor


class ProjectsResponse(BaseModel):
    """Collection response for projects."""

    items: list[ProjectDescriptor]


class ProjectLogResponse(BaseModel):
    """Captured output of the latest deploy run."""

    name: str
    log: str


class DeployTriggerResponse(BaseModel):
    """Manual deploy trigger result."""

    name: str
    queued: bool
