"""Serialized deploy execution.

Every accepted project goes through one FIFO queue. A single admission gate lets
exactly one drain loop run, so at most one deploy is active across all projects.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from collections import deque
from datetime import UTC, datetime
from pathlib import Path

from deploywatch.core.container_runtime import ContainerRuntime, HealthReport
from deploywatch.core.event_channel import EventChannel
from deploywatch.core.git_manager import GitManager
from deploywatch.core.process_runner import ProcessRunner, StreamName
from deploywatch.core.project_registry import ProjectRecord, ProjectRegistry
from deploywatch.core.repo_scanner import DEFAULT_DEPLOY_SCRIPT
from deploywatch.models.events import EventType
from deploywatch.models.project import DeployOutcome, ProjectDescriptor, ProjectStatus

logger = logging.getLogger(__name__)

SYNC_TIMEOUT_SECONDS = 120.0
DEPLOY_TIMEOUT_SECONDS = 600.0
DEPLOY_ARGUMENT = "auto"


def deploy_command(script: Path) -> list[str]:
    """Build the argv used to run a deployment script in unattended mode."""
    suffix = script.suffix.lower()
    if suffix in {".bat", ".cmd"}:
        return ["cmd", "/c", str(script), DEPLOY_ARGUMENT]
    if suffix == ".sh":
        return ["sh", str(script), DEPLOY_ARGUMENT]
    return [str(script), DEPLOY_ARGUMENT]


class DeployLog:
    """Per-run log buffer mirrored to the orchestrator's channel."""

    def __init__(self, project_name: str, channel: EventChannel) -> None:
        self._project_name = project_name
        self._channel = channel
        self._lines: list[str] = []
        self._lock = threading.Lock()

    def add(self, message: str) -> None:
        stamp = datetime.now().strftime("%H:%M:%S")
        self._append(f"[{stamp}] {message}")
        self._channel.log(message, self._project_name)

    def output(self, line: str) -> None:
        self._append(line)
        self._channel.log(line, self._project_name)

    def text(self) -> str:
        with self._lock:
            return "\n".join(self._lines) + ("\n" if self._lines else "")

    def _append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)


class DeployOrchestrator:
    """Queue deploys and run them one at a time."""

    def __init__(
        self,
        registry: ProjectRegistry,
        *,
        runner: ProcessRunner | None = None,
        git: GitManager | None = None,
        containers: ContainerRuntime | None = None,
        sync_timeout_seconds: float = SYNC_TIMEOUT_SECONDS,
        deploy_timeout_seconds: float = DEPLOY_TIMEOUT_SECONDS,
    ) -> None:
        self.events = EventChannel("deploy")
        self._registry = registry
        self._runner = runner or ProcessRunner()
        self._git = git or GitManager()
        self._containers = containers or ContainerRuntime()
        self._sync_timeout_seconds = sync_timeout_seconds
        self._deploy_timeout_seconds = deploy_timeout_seconds

        self._queue: deque[str] = deque()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._gate = threading.Lock()
        self._active: str | None = None

    def enqueue(self, project_name: str) -> bool:
        """Queue a deploy; False when the project cannot be deployed or is already waiting."""
        record = self._registry.get(project_name)
        if record is None:
            return False
        project = record.snapshot()
        if not project.has_deploy_descriptor or project.status is ProjectStatus.NOT_CONFIGURED:
            return False
        if project.status is ProjectStatus.DEPLOYING:
            return False
        with self._lock:
            if project_name in self._queue or project_name == self._active:
                return False
            self._queue.append(project_name)
        threading.Thread(target=self._drain, name="deploywatch-drain", daemon=True).start()
        return True

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._queue)

    def active(self) -> str | None:
        with self._lock:
            return self._active

    def wait_idle(self, timeout: float | None = None) -> bool:
        with self._idle:
            return self._idle.wait_for(lambda: not self._queue and self._active is None, timeout)

    def _drain(self) -> None:
        while True:
            if not self._gate.acquire(blocking=False):
                return
            try:
                while (name := self._pop()) is not None:
                    try:
                        record = self._registry.get(name)
                        if record is not None:
                            self.run_deploy(record)
                    finally:
                        self._finish_active()
            finally:
                self._gate.release()
            with self._lock:
                if not self._queue:
                    return

    def _pop(self) -> str | None:
        with self._lock:
            if not self._queue:
                return None
            self._active = self._queue.popleft()
            return self._active

    def _finish_active(self) -> None:
        with self._idle:
            self._active = None
            self._idle.notify_all()

    def run_deploy(self, record: ProjectRecord) -> DeployOutcome:
        """Sync, run the deploy script and verify containers; never raises."""
        project = record.snapshot()
        log = DeployLog(project.name, self.events)
        try:
            return self._run(record, project, log)
        except Exception as exc:
            logger.exception("[%s] deploy run failed", project.name)
            log.add(f"[EXCEPTION] {exc}")
            return self._finish(record, log, success=False, message=f"run error: {exc}")

    def _run(
        self, record: ProjectRecord, project: ProjectDescriptor, log: DeployLog
    ) -> DeployOutcome:
        working_copy = project.working_copy_path
        if working_copy is None:
            log.add("no deploy path")
            return self._finish(record, log, success=False, message="no deploy path")

        record.update(status=ProjectStatus.DEPLOYING, last_message="syncing source...")
        self.events.emit(EventType.DEPLOY_STARTED, project.name)
        log.add("source sync started")
        sync_error = self._sync_source(project, working_copy, log)
        if sync_error is not None:
            return self._finish(record, log, success=False, message=sync_error)

        script_path = project.deploy_script_path or DEFAULT_DEPLOY_SCRIPT
        script = working_copy / script_path
        record.update(last_message=f"running {script_path}...")
        log.add(f"running {script_path} {DEPLOY_ARGUMENT}")

        def on_line(stream: StreamName, line: str) -> None:
            log.output(f"[ERR] {line}" if stream == "stderr" else line)

        result = self._runner.run(
            deploy_command(script),
            cwd=working_copy,
            timeout_seconds=self._deploy_timeout_seconds,
            on_line=on_line,
        )
        if result.timed_out:
            log.add(f"[TIMEOUT] deploy exceeded {self._deploy_timeout_seconds:g}s")
            return self._finish(
                record,
                log,
                success=False,
                message=f"timeout ({self._deploy_timeout_seconds:g}s exceeded)",
            )
        if result.returncode != 0:
            log.add(f"[ERROR] deploy failed (exit code {result.returncode})")
            return self._finish(
                record,
                log,
                success=False,
                message=f"deploy failed (exit code {result.returncode})",
            )

        report = self._containers.check_health(project.container_filter)
        for container in report.containers:
            log.add(f"{container.name}: {container.health}")
        if report.healthy:
            log.add(f"[SUCCESS] {report.summary}")
            return self._finish(record, log, success=True, message=report.summary)

        log.add(f"[ERROR] container check failed - {report.summary}")
        self._log_failed_container(report, log)
        return self._finish(
            record,
            log,
            success=False,
            message=report.summary,
            failed_container=report.failed_container,
        )

    def _sync_source(
        self, project: ProjectDescriptor, working_copy: Path, log: DeployLog
    ) -> str | None:
        """Clone or pull the working copy; returns an error message on failure."""
        if (working_copy / ".git").is_dir():
            log.add("git pull")
            command = self._git.pull_command()
            cwd = working_copy
        else:
            log.add("git clone (first deploy)")
            if working_copy.exists():
                try:
                    shutil.rmtree(working_copy)
                except OSError as exc:
                    log.add(f"[ERROR] failed to remove existing folder: {exc}")
                    return "failed to remove existing folder"
            working_copy.parent.mkdir(parents=True, exist_ok=True)
            command = self._git.clone_command(project.repository_path, project.branch, working_copy)
            cwd = working_copy.parent

        try:
            result = self._runner.run(
                command,
                cwd=cwd,
                timeout_seconds=self._sync_timeout_seconds,
                on_line=lambda _stream, line: log.output(line),
            )
        except (OSError, subprocess.SubprocessError) as exc:
            log.add(f"[ERROR] git error: {exc}")
            return f"git error: {exc}"
        if result.timed_out:
            log.add("[TIMEOUT] git command timed out")
            return "git command timed out"
        if result.returncode != 0:
            log.add(f"[ERROR] git command failed (exit code {result.returncode})")
            return f"git failed (exit {result.returncode})"
        return None

    def _log_failed_container(self, report: HealthReport, log: DeployLog) -> None:
        name = report.failed_container
        if not name:
            return
        try:
            lines = self._containers.tail_logs(name)
        except (RuntimeError, OSError) as exc:
            log.add(f"failed to fetch logs for {name}: {exc}")
            return
        log.add(f"=== {name} logs (last {len(lines)} lines) ===")
        for line in lines:
            log.output(f"  {line}")

    def _finish(
        self,
        record: ProjectRecord,
        log: DeployLog,
        *,
        success: bool,
        message: str,
        failed_container: str | None = None,
    ) -> DeployOutcome:
        record.update(
            status=ProjectStatus.SUCCESS if success else ProjectStatus.ERROR,
            last_message=message,
            last_deploy_log=log.text(),
            last_deploy_time=datetime.now(UTC),
        )
        outcome = DeployOutcome(
            project_name=record.name,
            success=success,
            log=log.text(),
            failed_container=failed_container,
        )
        outcome_text = "succeeded" if success else "failed"
        logger.info("[%s] deploy %s: %s", record.name, outcome_text, message)
        self.events.emit(
            EventType.DEPLOY_COMPLETED,
            record.name,
            success=success,
            message=message,
            failed_container=failed_container,
        )
        return outcome
