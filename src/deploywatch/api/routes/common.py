"""Common route helpers."""

from __future__ import annotations

from fastapi import HTTPException, status

from deploywatch.core.coordinator import DeployMonitor
from deploywatch.models.project import ProjectDescriptor


def require_project(project_name: str, monitor: DeployMonitor) -> ProjectDescriptor:
    """Load project or return 404."""
    project = monitor.project(project_name)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project
