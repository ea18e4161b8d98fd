"""Headless coordinator wiring scanner, detector and orchestrator together."""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Literal

from deploywatch.config import WatchSettings, save_settings
from deploywatch.core.change_detector import ChangeDetector
from deploywatch.core.deploy_orchestrator import DeployOrchestrator
from deploywatch.core.event_channel import EventChannel
from deploywatch.core.project_registry import ProjectRegistry
from deploywatch.core.repo_scanner import RepoScanner
from deploywatch.models.events import EventType, WatchEvent
from deploywatch.models.project import ProjectDescriptor, ProjectStatus

logger = logging.getLogger(__name__)

LOG_BUFFER_LINES = 500
EVENT_HISTORY = 500

type LogStream = Literal["watch", "deploy"]


def _is_configured(folder: Path) -> bool:
    return str(folder).strip() not in {"", "."}


class DeployMonitor:
    """Consume component channels and expose watch control for the API and CLI."""

    def __init__(
        self,
        settings: WatchSettings,
        *,
        settings_path: Path | None = None,
        registry: ProjectRegistry | None = None,
        scanner: RepoScanner | None = None,
        detector: ChangeDetector | None = None,
        orchestrator: DeployOrchestrator | None = None,
    ) -> None:
        self._settings = settings
        self._settings_path = settings_path
        self.registry = registry if registry is not None else ProjectRegistry()
        self.scanner = (
            scanner
            if scanner is not None
            else RepoScanner(deploy_script_name=settings.deploy_script_name)
        )
        self.detector = (
            detector if detector is not None else ChangeDetector(self.registry, self.scanner)
        )
        self.orchestrator = (
            orchestrator if orchestrator is not None else DeployOrchestrator(self.registry)
        )

        self._watch_logs: deque[str] = deque(maxlen=LOG_BUFFER_LINES)
        self._deploy_logs: deque[str] = deque(maxlen=LOG_BUFFER_LINES)
        self._events: deque[WatchEvent] = deque(maxlen=EVENT_HISTORY)
        self._history_lock = threading.Lock()

        self._control_lock = threading.RLock()
        self._watching = False
        self._closing = threading.Event()
        self._pumps: list[threading.Thread] = []

    @property
    def settings(self) -> WatchSettings:
        return self._settings

    @property
    def is_watching(self) -> bool:
        return self._watching

    @property
    def channels(self) -> list[EventChannel]:
        return [self.detector.events, self.orchestrator.events, self.registry.events]

    def open(self) -> None:
        """Start consuming component channels; begin watching when auto-start is set."""
        if self._pumps:
            return
        self._closing.clear()
        for channel in self.channels:
            pump = threading.Thread(
                target=self._pump,
                args=(channel,),
                name=f"deploywatch-pump-{channel.name}",
                daemon=True,
            )
            pump.start()
            self._pumps.append(pump)
        if self._settings.auto_start:
            try:
                self.start_watch()
            except ValueError as exc:
                self.add_log("watch", str(exc))

    def close(self) -> None:
        self.stop_watch()
        self._closing.set()
        for pump in self._pumps:
            pump.join(timeout=2)
        self._pumps.clear()
        self.dispatch_pending()

    def start_watch(self) -> list[ProjectDescriptor]:
        with self._control_lock:
            if self._watching:
                return self.registry.snapshots()
            settings = self._settings
            folders = (settings.repository_folder, settings.deploy_folder)
            if not all(_is_configured(folder) for folder in folders):
                msg = "repository and deploy folders must be configured before watching"
                raise ValueError(msg)
            projects = self._scan()
            if projects:
                self.add_log("watch", f"watching {len(projects)} project(s)")
            self.detector.start(
                projects,
                settings.interval_seconds,
                settings.repository_folder,
                settings.deploy_folder,
                settings.default_branch,
            )
            self._watching = True
            return projects

    def stop_watch(self) -> None:
        with self._control_lock:
            self.detector.stop()
            self._watching = False

    def rescan(self) -> list[ProjectDescriptor]:
        with self._control_lock:
            was_watching = self._watching
            if was_watching:
                self.stop_watch()
                return self.start_watch()
            return self._scan()

    def manual_deploy(self, project_name: str) -> bool:
        record = self.registry.get(project_name)
        if record is None:
            raise KeyError(project_name)
        if not record.snapshot().has_deploy_descriptor:
            return False
        self.add_log("deploy", f"[{project_name}] manual deploy requested")
        return self.orchestrator.enqueue(project_name)

    def update_settings(self, **changes: object) -> WatchSettings:
        with self._control_lock:
            merged = self._settings.model_dump()
            merged.update({key: value for key, value in changes.items() if value is not None})
            updated = WatchSettings(**merged)
            self._settings = updated
            save_settings(updated, self._settings_path)
            self.scanner.deploy_script_name = updated.deploy_script_name
            if self._watching:
                self.stop_watch()
                self.start_watch()
            return updated

    def project(self, project_name: str) -> ProjectDescriptor | None:
        record = self.registry.get(project_name)
        return record.snapshot() if record is not None else None

    def projects(self) -> list[ProjectDescriptor]:
        return self.registry.snapshots()

    def logs(self, stream: LogStream = "watch", limit: int | None = None) -> list[str]:
        with self._history_lock:
            entries = list(self._deploy_logs if stream == "deploy" else self._watch_logs)
        if limit is not None and limit > 0:
            return entries[-limit:]
        return entries

    def events(
        self,
        *,
        event_type: EventType | None = None,
        project: str | None = None,
        limit: int | None = None,
    ) -> list[WatchEvent]:
        with self._history_lock:
            entries = list(self._events)
        if event_type is not None:
            entries = [event for event in entries if event.event_type is event_type]
        if project:
            entries = [event for event in entries if event.project == project]
        if limit is not None and limit > 0:
            return entries[-limit:]
        return entries

    def add_log(self, stream: LogStream, text: str) -> None:
        line = f"[{datetime.now().strftime('%H:%M:%S')}] {text}"
        with self._history_lock:
            (self._deploy_logs if stream == "deploy" else self._watch_logs).append(line)

    def dispatch(self, event: WatchEvent) -> None:
        """Apply one component notification."""
        with self._history_lock:
            self._events.append(event)
        if event.event_type is EventType.LOG_MESSAGE:
            text = str(event.payload.get("text", ""))
            stream: LogStream = "deploy" if event.payload.get("source") == "deploy" else "watch"
            self.add_log(stream, f"[{event.project}] {text}" if event.project else text)
        elif event.event_type is EventType.CHANGE_DETECTED:
            self._on_change(event.project)
        elif event.event_type is EventType.DEPLOY_COMPLETED:
            logger.info(
                "[%s] deploy completed (success=%s)", event.project, event.payload.get("success")
            )

    def dispatch_pending(self) -> int:
        count = 0
        for channel in self.channels:
            for event in channel.drain():
                self.dispatch(event)
                count += 1
        return count

    def _on_change(self, project_name: str) -> None:
        record = self.registry.get(project_name)
        if record is None:
            return
        if record.status in {ProjectStatus.SUCCESS, ProjectStatus.ERROR}:
            record.update(status=ProjectStatus.IDLE)
        self.orchestrator.enqueue(project_name)

    def _scan(self) -> list[ProjectDescriptor]:
        settings = self._settings
        self.add_log("watch", "scanning projects...")
        scanned = self.scanner.scan(
            settings.repository_folder, settings.deploy_folder, settings.default_branch
        )
        projects = [record.snapshot() for record in self.registry.reconcile(scanned)]
        if projects:
            self.add_log("watch", f"{len(projects)} project(s) with a deploy script found")
        else:
            self.add_log(
                "watch",
                f"no project has a {self.scanner.deploy_script_name}; add one to a repository",
            )
        return projects

    def _pump(self, channel: EventChannel) -> None:
        while not self._closing.is_set():
            event = channel.get(timeout=0.2)
            if event is None:
                continue
            try:
                self.dispatch(event)
            except Exception:
                logger.exception("Failed to dispatch %s event", event.event_type.value)
