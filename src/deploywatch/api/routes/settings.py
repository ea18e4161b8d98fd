"""Settings routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from deploywatch.api.deps import get_monitor
from deploywatch.api.schemas.settings import SettingsResponse, SettingsUpdateRequest
from deploywatch.config import WatchSettings
from deploywatch.core.coordinator import DeployMonitor

router = APIRouter(prefix="/api/v1/settings", tags=["settings"])


def _response(settings: WatchSettings) -> SettingsResponse:
    return SettingsResponse(**settings.model_dump())


@router.get("", response_model=SettingsResponse)
async def read_settings(monitor: DeployMonitor = Depends(get_monitor)) -> SettingsResponse:
    return _response(monitor.settings)


@router.put("", response_model=SettingsResponse)
async def update_settings(
    request: SettingsUpdateRequest,
    monitor: DeployMonitor = Depends(get_monitor),
) -> SettingsResponse:
    try:
        updated = monitor.update_settings(**request.model_dump(exclude_none=True))
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _response(updated)
