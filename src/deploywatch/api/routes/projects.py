"""Project routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from deploywatch.api.deps import get_monitor
from deploywatch.api.routes.common import require_project
from deploywatch.api.schemas.projects import (
    DeployTriggerResponse,
    ProjectLogResponse,
    ProjectsResponse,
)
from deploywatch.core.coordinator import DeployMonitor
from deploywatch.models.project import ProjectDescriptor

router = APIRouter(prefix="/api/v1/projects", tags=["projects"])


@router.get("", response_model=ProjectsResponse)
async def list_projects(monitor: DeployMonitor = Depends(get_monitor)) -> ProjectsResponse:
    return ProjectsResponse(items=monitor.projects())


@router.get("/{project_name}")
async def get_project(
    project_name: str, monitor: DeployMonitor = Depends(get_monitor)
) -> dict[str, ProjectDescriptor]:
    return {"project": require_project(project_name, monitor)}


@router.get("/{project_name}/log", response_model=ProjectLogResponse)
async def get_project_log(
    project_name: str, monitor: DeployMonitor = Depends(get_monitor)
) -> ProjectLogResponse:
    project = require_project(project_name, monitor)
    return ProjectLogResponse(name=project.name, log=project.last_deploy_log)


@router.post(
    "/{project_name}/deploy",
    response_model=DeployTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_deploy(
    project_name: str, monitor: DeployMonitor = Depends(get_monitor)
) -> DeployTriggerResponse:
    project = require_project(project_name, monitor)
    if not project.has_deploy_descriptor:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Project has no deploy script"
        )
    return DeployTriggerResponse(name=project.name, queued=monitor.manual_deploy(project.name))
