from __future__ import annotations

import threading
from pathlib import Path

import pytest
from watchdog.events import (
    DirModifiedEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from deploywatch.core.change_detector import ChangeDetector
from deploywatch.core.project_registry import ProjectRegistry
from deploywatch.core.repo_scanner import RepoScanner
from deploywatch.models.events import EventType, WatchEvent
from deploywatch.models.project import ProjectStatus
from tests.support.deploy_helpers import (
    HASH_A,
    HASH_B,
    HASH_C,
    FakeGit,
    FakeObserver,
    make_bare_repo,
    no_sleep,
    write_packed_refs,
    write_ref,
)


class DetectorHarness:
    def __init__(self, tmp_path: Path) -> None:
        self.root = tmp_path / "repos"
        self.working_root = tmp_path / "deploy"
        self.root.mkdir()
        self.git = FakeGit()
        self.scanner = RepoScanner(self.git, deploy_script_name="deploy.sh")
        self.registry = ProjectRegistry()
        self.observers: list[FakeObserver] = []
        self.detector = ChangeDetector(
            self.registry,
            self.scanner,
            sleeper=no_sleep,
            observer_factory=self._observer,
        )

    def _observer(self) -> FakeObserver:
        observer = FakeObserver()
        self.observers.append(observer)
        return observer

    @property
    def observer(self) -> FakeObserver:
        return self.observers[-1]

    def add_repo(self, name: str, commit: str = HASH_A, *, descriptor: bool = True) -> Path:
        repo = make_bare_repo(self.root, f"{name}.git", commit=commit)
        files = {"README.md": f"# {name}"}
        if descriptor:
            files["deploy.sh"] = "docker compose up -d\n"
        self.git.set_tree(repo, files)
        return repo

    def start(self) -> None:
        projects = self.scanner.scan(self.root, self.working_root, "master")
        # long interval: tests drive poll_once directly
        self.detector.start(projects, 3600, self.root, self.working_root, "master")
        assert self.detector.wait_until_seeded(timeout=5)
        self.drain()

    def drain(self) -> list[WatchEvent]:
        return self.detector.events.drain()

    def changes(self, events: list[WatchEvent]) -> list[WatchEvent]:
        return [event for event in events if event.event_type is EventType.CHANGE_DETECTED]


@pytest.fixture
def harness(tmp_path: Path):  # type: ignore[no-untyped-def]
    built = DetectorHarness(tmp_path)
    yield built
    built.detector.stop()


def test_seed_pass_records_hash_without_announcing(harness: DetectorHarness) -> None:
    harness.add_repo("app", HASH_A)
    harness.start()

    assert harness.detector.known_hash("app") == HASH_A
    harness.detector.poll_once()
    assert harness.changes(harness.drain()) == []


def test_new_commit_is_announced_exactly_once(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()

    write_ref(repo, "master", HASH_B)
    harness.detector.poll_once()
    harness.detector.poll_once()

    changes = harness.changes(harness.drain())
    assert len(changes) == 1
    assert changes[0].project == "app"
    assert changes[0].payload["hash"] == HASH_B
    record = harness.registry.get("app")
    assert record is not None
    assert record.snapshot().last_known_commit_hash == HASH_B
    assert harness.detector.known_hash("app") == HASH_B


def test_watch_and_poll_race_announces_once(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()
    record = harness.registry.get("app")
    assert record is not None

    write_ref(repo, "master", HASH_B)
    barrier = threading.Barrier(6)
    results: list[bool] = []

    def check() -> None:
        barrier.wait()
        results.append(harness.detector.check_project(record))

    threads = [threading.Thread(target=check) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1
    assert len(harness.changes(harness.drain())) == 1


def test_poll_skips_deploying_projects(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()
    record = harness.registry.get("app")
    assert record is not None
    record.update(status=ProjectStatus.DEPLOYING)

    write_ref(repo, "master", HASH_B)
    harness.detector.poll_once()
    assert harness.changes(harness.drain()) == []

    harness.detector.on_ref_event("app")
    assert len(harness.changes(harness.drain())) == 1


def test_packed_refs_change_is_detected(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()

    (repo / "refs" / "heads" / "master").unlink()
    write_packed_refs(repo, {"refs/heads/master": HASH_C})
    harness.detector.poll_once()

    changes = harness.changes(harness.drain())
    assert [event.payload["hash"] for event in changes] == [HASH_C]


def test_unreadable_hash_keeps_known_value(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()

    (repo / "refs" / "heads" / "master").unlink()
    harness.detector.poll_once()

    assert harness.changes(harness.drain()) == []
    assert harness.detector.known_hash("app") == HASH_A


def test_read_failure_is_logged_not_raised(harness: DetectorHarness, monkeypatch) -> None:
    harness.add_repo("app", HASH_A)
    harness.start()
    record = harness.registry.get("app")
    assert record is not None

    def broken(repository_path: Path, branch: str) -> str:
        raise OSError(f"cannot read {repository_path}@{branch}")

    monkeypatch.setattr("deploywatch.core.change_detector.read_commit_hash", broken)

    assert harness.detector.check_project(record) is False
    logs = [e for e in harness.drain() if e.event_type is EventType.LOG_MESSAGE]
    assert any("commit check failed" in str(event.payload["text"]) for event in logs)


def test_watch_handler_routes_ref_writes(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()
    refs_dir = repo / "refs" / "heads"
    (handler,) = harness.observer.handlers_for(refs_dir)
    ref = refs_dir / "master"

    write_ref(repo, "master", HASH_B)
    handler.dispatch(FileModifiedEvent(str(ref)))
    assert len(harness.changes(harness.drain())) == 1

    write_ref(repo, "master", HASH_C)
    handler.dispatch(FileMovedEvent(str(refs_dir / "master.lock"), str(ref)))
    assert [e.payload["hash"] for e in harness.changes(harness.drain())] == [HASH_C]


def test_watch_handler_ignores_unrelated_paths(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()
    refs_dir = repo / "refs" / "heads"
    (handler,) = harness.observer.handlers_for(refs_dir)

    write_ref(repo, "master", HASH_B)
    handler.dispatch(FileModifiedEvent(str(refs_dir / "feature")))
    handler.dispatch(FileCreatedEvent(str(refs_dir / "master.lock")))
    handler.dispatch(DirModifiedEvent(str(refs_dir)))

    assert harness.changes(harness.drain()) == []


def test_watch_handler_reacts_to_packed_refs(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()
    (handler,) = harness.observer.handlers_for(repo)
    assert handler is harness.observer.handlers_for(repo / "refs" / "heads")[0]

    (repo / "refs" / "heads" / "master").unlink()
    write_packed_refs(repo, {"refs/heads/master": HASH_B})
    handler.dispatch(FileModifiedEvent(str(repo / "packed-refs")))

    assert len(harness.changes(harness.drain())) == 1


def test_missing_descriptor_retires_project(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()
    record = harness.registry.get("app")
    assert record is not None

    harness.git.set_tree(repo, {"README.md": "# app"})
    write_ref(repo, "master", HASH_B)
    harness.detector.poll_once()

    events = harness.drain()
    assert harness.changes(events) == []
    assert [e.project for e in events if e.event_type is EventType.PROJECT_REMOVED] == ["app"]
    assert "app" not in harness.registry
    assert record.status is ProjectStatus.NOT_CONFIGURED
    assert harness.detector.known_hash("app") == ""
    assert harness.observer.handlers_for(repo) == []


def test_restored_descriptor_is_rediscovered(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()
    harness.git.set_tree(repo, {"README.md": "# app"})
    write_ref(repo, "master", HASH_B)
    harness.detector.poll_once()
    harness.drain()

    harness.git.set_tree(repo, {"deploy.sh": "make deploy\n"})
    harness.detector.poll_once()

    events = harness.drain()
    assert [e.project for e in events if e.event_type is EventType.PROJECT_FOUND] == ["app"]
    record = harness.registry.get("app")
    assert record is not None
    assert record.status is ProjectStatus.IDLE
    assert harness.detector.known_hash("app") == HASH_B
    assert harness.changes(events) == []


def test_descriptor_change_refreshes_metadata(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()

    harness.git.set_tree(
        repo, {"app/deploy.sh": "DEPLOY_CONTAINER_PREFIX=web\nDEPLOY_TRIGGER_PATHS=src\n"}
    )
    write_ref(repo, "master", HASH_B)
    harness.detector.poll_once()

    record = harness.registry.get("app")
    assert record is not None
    project = record.snapshot()
    assert project.deploy_script_path == "app/deploy.sh"
    assert project.container_name_prefix == "web"
    assert project.deploy_trigger_paths == ["src"]


def test_new_repository_is_discovered_and_watched(harness: DetectorHarness) -> None:
    harness.add_repo("app", HASH_A)
    harness.start()

    api = harness.add_repo("api", HASH_B)
    harness.add_repo("docs", HASH_C, descriptor=False)
    harness.detector.poll_once()

    events = harness.drain()
    assert [e.project for e in events if e.event_type is EventType.PROJECT_FOUND] == ["api"]
    assert harness.changes(events) == []
    assert "docs" not in harness.registry
    assert harness.detector.known_hash("api") == HASH_B
    assert harness.observer.handlers_for(api / "refs" / "heads")

    harness.detector.poll_once()
    assert [e for e in harness.drain() if e.event_type is EventType.PROJECT_FOUND] == []


def test_discovery_continues_past_a_failing_repository(
    harness: DetectorHarness, monkeypatch
) -> None:
    harness.add_repo("app", HASH_A)
    harness.start()
    harness.add_repo("alien", HASH_B)
    harness.add_repo("zeta", HASH_C)
    describe = harness.scanner.describe

    def guarded(name: str, *args: object):  # type: ignore[no-untyped-def]
        if name == "alien":
            raise PermissionError(13, "Permission denied", name)
        return describe(name, *args)

    monkeypatch.setattr(harness.scanner, "describe", guarded)

    found = harness.detector.scan_for_new_projects()

    assert [record.name for record in found] == ["zeta"]
    assert "alien" not in harness.registry
    logs = [e for e in harness.drain() if e.event_type is EventType.LOG_MESSAGE]
    assert any(
        e.project == "alien" and "new project scan failed" in str(e.payload["text"]) for e in logs
    )


def test_start_and_stop_are_idempotent(harness: DetectorHarness) -> None:
    harness.add_repo("app", HASH_A)
    harness.start()
    harness.detector.start([], 3600, harness.root, harness.working_root, "master")
    assert len(harness.observers) == 1
    assert harness.detector.is_running

    harness.detector.stop()
    harness.detector.stop()
    assert not harness.detector.is_running
    assert harness.observer.stopped
    assert harness.observer.watches == []


def test_ref_events_after_stop_are_ignored(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()
    harness.detector.stop()
    harness.drain()

    write_ref(repo, "master", HASH_B)
    harness.detector.on_ref_event("app")

    assert harness.changes(harness.drain()) == []


def test_restart_reseeds_without_announcing(harness: DetectorHarness) -> None:
    repo = harness.add_repo("app", HASH_A)
    harness.start()
    harness.detector.stop()

    write_ref(repo, "master", HASH_B)
    harness.start()

    assert harness.detector.known_hash("app") == HASH_B
    assert harness.changes(harness.drain()) == []
