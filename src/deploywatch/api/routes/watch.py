"""Watch control routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from deploywatch.api.deps import get_monitor
from deploywatch.api.schemas.projects import ProjectsResponse
from deploywatch.api.schemas.watch import WatchStatusResponse
from deploywatch.core.coordinator import DeployMonitor

router = APIRouter(prefix="/api/v1/watch", tags=["watch"])


def _status(monitor: DeployMonitor) -> WatchStatusResponse:
    return WatchStatusResponse(
        watching=monitor.is_watching,
        projects=len(monitor.registry),
        active_deploy=monitor.orchestrator.active(),
        pending_deploys=monitor.orchestrator.pending(),
    )


@router.get("", response_model=WatchStatusResponse)
async def watch_status(monitor: DeployMonitor = Depends(get_monitor)) -> WatchStatusResponse:
    return _status(monitor)


@router.post("/start", response_model=WatchStatusResponse)
async def watch_start(monitor: DeployMonitor = Depends(get_monitor)) -> WatchStatusResponse:
    try:
        monitor.start_watch()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _status(monitor)


@router.post("/stop", response_model=WatchStatusResponse)
async def watch_stop(monitor: DeployMonitor = Depends(get_monitor)) -> WatchStatusResponse:
    monitor.stop_watch()
    return _status(monitor)


@router.post("/rescan", response_model=ProjectsResponse)
async def watch_rescan(monitor: DeployMonitor = Depends(get_monitor)) -> ProjectsResponse:
    try:
        projects = monitor.rescan()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return ProjectsResponse(items=projects)
