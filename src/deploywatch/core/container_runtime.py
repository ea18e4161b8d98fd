"""Container runtime queries used for post-deploy health verification."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from typing import Literal

CONTAINER_TIMEOUT_SECONDS = 30.0
LOG_TAIL_LINES = 20

type ContainerHealth = Literal["running", "unhealthy", "not_running"]

_PS_FORMAT = "{{.Names}}|{{.Status}}|{{.State}}"


@dataclass(slots=True)
class ContainerState:
    """One container row reported by the runtime."""

    name: str
    status: str
    state: str

    @property
    def health(self) -> ContainerHealth:
        if self.state.lower() != "running":
            return "not_running"
        if "unhealthy" in self.status.lower():
            return "unhealthy"
        return "running"


@dataclass(slots=True)
class HealthReport:
    """Aggregate health of the containers matching a prefix."""

    healthy: bool
    running: int
    total: int
    summary: str
    failed_container: str | None = None
    containers: list[ContainerState] = field(default_factory=list)


def parse_container_rows(output: str, prefix: str) -> list[ContainerState]:
    """Parse ``name|status|state`` rows, keeping names that start with ``<prefix>-``."""
    containers: list[ContainerState] = []
    for line in output.splitlines():
        parts = line.split("|")
        if len(parts) < 3:
            continue
        name = parts[0].strip()
        if not name.startswith(f"{prefix}-"):
            continue
        containers.append(
            ContainerState(name=name, status=parts[1].strip(), state=parts[2].strip())
        )
    return containers


def summarize_health(containers: list[ContainerState]) -> HealthReport:
    """Classify containers; success needs at least one, all running, none unhealthy."""
    if not containers:
        return HealthReport(healthy=False, running=0, total=0, summary="no containers found")

    running = 0
    failed: str | None = None
    for container in containers:
        health = container.health
        if health != "not_running":
            running += 1
        if health == "unhealthy":
            failed = container.name
        elif health == "not_running" and failed is None:
            failed = container.name

    total = len(containers)
    healthy = running == total and failed is None
    summary = f"{running}/{total} containers running"
    if not healthy and failed is not None:
        summary += f" ({failed} failed)"
    return HealthReport(
        healthy=healthy,
        running=running,
        total=total,
        summary=summary,
        failed_container=failed,
        containers=containers,
    )


class ContainerRuntime:
    """Thin wrapper around the docker CLI."""

    def __init__(
        self,
        *,
        executable: str = "docker",
        timeout_seconds: float = CONTAINER_TIMEOUT_SECONDS,
    ) -> None:
        self._executable = executable
        self._timeout_seconds = timeout_seconds

    def list_containers(self, prefix: str) -> list[ContainerState]:
        completed = self._run("ps", "-a", "--filter", f"name={prefix}-", "--format", _PS_FORMAT)
        return parse_container_rows(completed.stdout or "", prefix)

    def check_health(self, prefix: str) -> HealthReport:
        try:
            containers = self.list_containers(prefix)
        except RuntimeError as exc:
            return HealthReport(
                healthy=False,
                running=0,
                total=0,
                summary=f"container check failed: {exc}",
            )
        return summarize_health(containers)

    def tail_logs(self, name: str, lines: int = LOG_TAIL_LINES) -> list[str]:
        completed = self._run("logs", "--tail", str(lines), name)
        output = (completed.stdout or "") + (completed.stderr or "")
        return [line for line in output.splitlines() if line.strip()][-lines:]

    def _run(self, *args: str) -> subprocess.CompletedProcess[str]:
        command = [self._executable, *args]
        try:
            completed = subprocess.run(
                command,
                check=False,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self._timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            msg = f"{' '.join(command)} timed out after {self._timeout_seconds}s"
            raise RuntimeError(msg) from exc
        except OSError as exc:
            msg = f"{' '.join(command)} could not start: {exc}"
            raise RuntimeError(msg) from exc
        if completed.returncode != 0:
            msg = f"{' '.join(command)} failed: {(completed.stderr or '').strip()}"
            raise RuntimeError(msg)
        return completed
