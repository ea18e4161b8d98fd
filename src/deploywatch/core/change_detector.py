"""Commit change detection for bare repositories.

Two independent signal sources converge on :meth:`ChangeDetector.check_project`:
filesystem watches on each repository's refs (``watchdog``) and a fixed-interval
poll thread that also discovers repositories added after watching started.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

from deploywatch.core.event_channel import EventChannel
from deploywatch.core.project_registry import ProjectRecord, ProjectRegistry
from deploywatch.core.repo_scanner import RepoScanner, iter_bare_repositories, read_commit_hash
from deploywatch.models.events import EventType
from deploywatch.models.project import ProjectDescriptor, ProjectStatus

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 30
SETTLE_SECONDS = 0.2

type Sleeper = Callable[[float], None]
type ObserverFactory = Callable[[], BaseObserver]


class _RefChangeHandler(FileSystemEventHandler):
    """Forward writes to one project's branch ref or packed-refs to the detector."""

    def __init__(self, detector: ChangeDetector, project_name: str, branch: str) -> None:
        self._detector = detector
        self._project_name = project_name
        self._ref_suffix = f"refs/heads/{branch}"

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        # git writes <ref>.lock and renames it over the ref
        self._handle(event, event.dest_path)

    def matches(self, path: str | bytes) -> bool:
        candidate = Path(os.fsdecode(path))
        if candidate.name == "packed-refs":
            return True
        return candidate.as_posix().endswith(self._ref_suffix)

    def _handle(self, event: FileSystemEvent, path: str | bytes) -> None:
        if event.is_directory or not self.matches(path):
            return
        self._detector.on_ref_event(self._project_name)


class ChangeDetector:
    """Track the last known commit per project and announce new ones."""

    def __init__(
        self,
        registry: ProjectRegistry,
        scanner: RepoScanner,
        *,
        settle_seconds: float = SETTLE_SECONDS,
        sleeper: Sleeper | None = None,
        observer_factory: ObserverFactory | None = None,
    ) -> None:
        self.events = EventChannel("watch")
        self._registry = registry
        self._scanner = scanner
        self._settle_seconds = settle_seconds
        self._sleep = sleeper or time.sleep
        self._observer_factory = observer_factory or Observer

        self._known_hashes: dict[str, str] = {}
        self._hashes_lock = threading.Lock()
        self._project_locks: dict[str, threading.Lock] = {}

        self._state_lock = threading.RLock()
        self._running = False
        self._observer: BaseObserver | None = None
        self._watches: dict[str, list[ObservedWatch]] = {}
        self._stop_event = threading.Event()
        self._poll_thread: threading.Thread | None = None
        self._seeded = threading.Event()

        self._interval_seconds: float = DEFAULT_INTERVAL_SECONDS
        self._root_folder: Path | None = None
        self._working_root: Path | None = None
        self._default_branch = "master"

    @property
    def is_running(self) -> bool:
        return self._running

    def known_hash(self, project_name: str) -> str:
        with self._hashes_lock:
            return self._known_hashes.get(project_name, "")

    def start(
        self,
        projects: Iterable[ProjectDescriptor],
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        root_folder: Path | None = None,
        working_root: Path | None = None,
        default_branch: str = "master",
    ) -> None:
        with self._state_lock:
            if self._running:
                return
            self._running = True
            self._interval_seconds = interval_seconds
            self._root_folder = root_folder
            self._working_root = working_root
            self._default_branch = default_branch
            for project in projects:
                self._registry.add(project)
            with self._hashes_lock:
                self._known_hashes.clear()

            self._seeded.clear()
            threading.Thread(
                target=self._seed_hashes, name="deploywatch-seed", daemon=True
            ).start()

            self._observer = self._observer_factory()
            for record in self._registry.records():
                project = record.snapshot()
                if project.has_deploy_descriptor:
                    self._watch(project)
            self._observer.start()

            self._stop_event = threading.Event()
            self._poll_thread = threading.Thread(
                target=self._poll_loop,
                args=(self._stop_event,),
                name="deploywatch-poll",
                daemon=True,
            )
            self._poll_thread.start()
        logger.info("Watching %d project(s), poll every %ss", len(self._registry), interval_seconds)
        self.events.log("watching started")

    def stop(self) -> None:
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()
            observer = self._observer
            poll_thread = self._poll_thread
            self._observer = None
            self._poll_thread = None
            self._watches.clear()

        if observer is not None:
            observer.unschedule_all()
            observer.stop()
            if observer.is_alive():
                observer.join(timeout=5)
        if poll_thread is not None and poll_thread is not threading.current_thread():
            poll_thread.join(timeout=5)
        logger.info("Watching stopped")
        self.events.log("watching stopped")

    def wait_until_seeded(self, timeout: float | None = None) -> bool:
        return self._seeded.wait(timeout)

    def on_ref_event(self, project_name: str) -> None:
        """Handle a watch notification; called from the observer thread."""
        self._sleep(self._settle_seconds)
        if not self._running:
            return
        record = self._registry.get(project_name)
        if record is not None:
            self.check_project(record)

    def poll_once(self) -> None:
        """One poll tick: check idle projects, then look for new repositories."""
        for record in self._registry.records():
            project = record.snapshot()
            if not project.has_deploy_descriptor or project.status is ProjectStatus.DEPLOYING:
                continue
            self.check_project(record)
        self.scan_for_new_projects()

    def check_project(self, record: ProjectRecord) -> bool:
        """Compare the current branch tip with the known one; True when a change was raised."""
        name = record.name
        try:
            with self._lock_for(name):
                project = record.snapshot()
                current = read_commit_hash(project.repository_path, project.branch)
                if not current:
                    return False
                with self._hashes_lock:
                    known = self._known_hashes.get(name, "")
                    if known == current:
                        return False
                    self._known_hashes[name] = current
                record.update(last_known_commit_hash=current)
                if not known:
                    return False
            logger.info("[%s] new commit %s", name, current[:7])
            self.events.log(f"new commit detected ({current[:7]})", name)
            self._announce_change(record, current)
            return True
        except Exception as exc:
            logger.warning("[%s] commit check failed: %s", name, exc)
            self.events.log(f"commit check failed: {exc}", name)
            return False

    def scan_for_new_projects(self) -> list[ProjectRecord]:
        root = self._root_folder
        found: list[ProjectRecord] = []
        if root is None:
            return found
        for name, repository_path in iter_bare_repositories(root):
            if name in self._registry:
                continue
            try:
                record = self._discover(name, repository_path)
            except Exception as exc:
                logger.exception("[%s] new project scan failed", name)
                self.events.log(f"new project scan failed: {exc}", name)
                continue
            if record is not None:
                found.append(record)
        return found

    def _discover(self, name: str, repository_path: Path) -> ProjectRecord | None:
        project = self._scanner.describe(
            name, repository_path, self._working_root, self._default_branch
        )
        if project is None:
            return None
        record = self._registry.add(project)
        if project.last_known_commit_hash:
            with self._hashes_lock:
                self._known_hashes[name] = project.last_known_commit_hash
        with self._state_lock:
            if self._running and self._observer is not None:
                self._watch(project)
        logger.info("[%s] new project found", name)
        self.events.log("new project found", name)
        self.events.emit(EventType.PROJECT_FOUND, name)
        return record

    def _announce_change(self, record: ProjectRecord, commit_hash: str) -> None:
        project = record.snapshot()
        descriptor = self._scanner.find_deploy_descriptor(
            project.repository_path, project.branch, project.name
        )
        if descriptor is None:
            self._retire(record)
            return
        record.update(
            has_deploy_descriptor=True,
            deploy_script_path=descriptor.path,
            container_name_prefix=descriptor.metadata.container_name_prefix,
            deploy_trigger_paths=descriptor.metadata.deploy_trigger_paths,
        )
        self.events.emit(EventType.CHANGE_DETECTED, project.name, hash=commit_hash)

    def _retire(self, record: ProjectRecord) -> None:
        name = record.name
        record.update(
            status=ProjectStatus.NOT_CONFIGURED,
            has_deploy_descriptor=False,
            last_message="deploy script missing",
        )
        self._registry.remove(name)
        self._unwatch(name)
        with self._hashes_lock:
            self._known_hashes.pop(name, None)
        logger.info("[%s] deploy script missing, no longer tracked", name)
        self.events.log("deploy script missing (removed from watch list)", name)
        self.events.emit(EventType.PROJECT_REMOVED, name)

    def _seed_hashes(self) -> None:
        try:
            for record in self._registry.records():
                if record.snapshot().has_deploy_descriptor:
                    self.check_project(record)
        finally:
            self._seeded.set()

    def _poll_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._interval_seconds):
            try:
                self.poll_once()
            except Exception:
                logger.exception("Poll pass failed")

    def _lock_for(self, project_name: str) -> threading.Lock:
        with self._hashes_lock:
            lock = self._project_locks.get(project_name)
            if lock is None:
                lock = threading.Lock()
                self._project_locks[project_name] = lock
            return lock

    def _watch(self, project: ProjectDescriptor) -> None:
        observer = self._observer
        if observer is None:
            return
        handler = _RefChangeHandler(self, project.name, project.branch)
        repository = project.repository_path
        refs_dir = repository / "refs" / "heads"
        watches: list[ObservedWatch] = []
        if refs_dir.is_dir():
            try:
                watches.append(observer.schedule(handler, str(refs_dir), recursive=True))
            except OSError as exc:
                logger.warning("[%s] cannot watch refs: %s", project.name, exc)
                self.events.log(f"cannot watch refs: {exc}", project.name)
        try:
            watches.append(
                observer.schedule(handler, str(repository), recursive=not refs_dir.is_dir())
            )
        except OSError as exc:
            logger.debug("[%s] cannot watch packed-refs: %s", project.name, exc)
        self._watches[project.name] = watches

    def _unwatch(self, project_name: str) -> None:
        with self._state_lock:
            observer = self._observer
            watches = self._watches.pop(project_name, [])
        if observer is None:
            return
        for watch in watches:
            try:
                observer.unschedule(watch)
            except KeyError:
                continue
