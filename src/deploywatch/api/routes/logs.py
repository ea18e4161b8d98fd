"""Log buffer routes."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query

from deploywatch.api.deps import get_monitor
from deploywatch.api.schemas.watch import LogsResponse
from deploywatch.core.coordinator import DeployMonitor

router = APIRouter(prefix="/api/v1/logs", tags=["logs"])


@router.get("", response_model=LogsResponse)
async def read_logs(
    stream: Literal["watch", "deploy"] = "watch",
    limit: int | None = Query(default=None, ge=1),
    monitor: DeployMonitor = Depends(get_monitor),
) -> LogsResponse:
    return LogsResponse(stream=stream, lines=monitor.logs(stream, limit))
