"""Settings API schemas."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field


class SettingsResponse(BaseModel):
    """Persisted watch settings."""

    repository_folder: Path
    deploy_folder: Path
    interval_seconds: int
    default_branch: str
    auto_start: bool
    deploy_script_name: str


class SettingsUpdateRequest(BaseModel):
    """Partial settings update; omitted fields keep their value."""

    repository_folder: Path | None = None
    deploy_folder: Path | None = None
    interval_seconds: int | None = Field(default=None, ge=1)
    default_branch: str | None = None
    auto_start: bool | None = None
    deploy_script_name: str | None = None
