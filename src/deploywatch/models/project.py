"""Project domain models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class ProjectStatus(str, Enum):
    """Lifecycle status for a watched project."""

    IDLE = "idle"
    CHECKING = "checking"
    DEPLOYING = "deploying"
    SUCCESS = "success"
    ERROR = "error"
    NOT_CONFIGURED = "not_configured"


class ProjectDescriptor(BaseModel):
    """One deployable unit backed by a bare repository."""

    name: str
    repository_path: Path
    working_copy_path: Path | None = None
    has_deploy_descriptor: bool = False
    deploy_script_path: str = ""
    branch: str = "master"
    last_known_commit_hash: str = ""
    container_name_prefix: str = ""
    deploy_trigger_paths: list[str] = Field(default_factory=list)
    status: ProjectStatus = ProjectStatus.IDLE
    last_message: str = ""
    last_deploy_log: str = ""
    last_deploy_time: datetime | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def container_filter(self) -> str:
        """Container name prefix used for health checks."""
        return self.container_name_prefix or self.name


@dataclass(slots=True)
class DeployOutcome:
    """Result of a single deploy run."""

    project_name: str
    success: bool
    log: str
    failed_container: str | None = None
