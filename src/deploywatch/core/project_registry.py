"""Thread-safe ownership of tracked projects."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import UTC, datetime

from deploywatch.core.event_channel import EventChannel
from deploywatch.models.events import EventType
from deploywatch.models.project import ProjectDescriptor, ProjectStatus

SCANNED_FIELDS = {
    "repository_path",
    "working_copy_path",
    "has_deploy_descriptor",
    "deploy_script_path",
    "branch",
    "last_known_commit_hash",
    "container_name_prefix",
    "deploy_trigger_paths",
}


class ProjectRecord:
    """Owns one project descriptor; all mutation goes through ``update``."""

    def __init__(self, descriptor: ProjectDescriptor, channel: EventChannel | None = None) -> None:
        self._descriptor = descriptor.model_copy(deep=True)
        self._lock = threading.Lock()
        self._channel = channel

    @property
    def name(self) -> str:
        return self._descriptor.name

    @property
    def status(self) -> ProjectStatus:
        with self._lock:
            return self._descriptor.status

    def snapshot(self) -> ProjectDescriptor:
        with self._lock:
            return self._descriptor.model_copy(deep=True)

    def update(self, **changes: object) -> ProjectDescriptor:
        """Apply field changes atomically and announce them."""
        if "name" in changes:
            msg = "project name is immutable"
            raise ValueError(msg)
        with self._lock:
            merged = self._descriptor.model_dump()
            merged.update(changes)
            merged["updated_at"] = datetime.now(UTC)
            self._descriptor = ProjectDescriptor.model_validate(merged)
            current = self._descriptor.model_copy(deep=True)
        if self._channel is not None:
            self._channel.emit(
                EventType.PROJECT_UPDATED,
                current.name,
                fields=",".join(sorted(changes)),
                status=current.status.value,
            )
        return current


class ProjectRegistry:
    """The tracked set, keyed by unique project name."""

    def __init__(self) -> None:
        self.events = EventChannel("registry")
        self._records: dict[str, ProjectRecord] = {}
        self._lock = threading.Lock()

    def add(self, descriptor: ProjectDescriptor) -> ProjectRecord:
        with self._lock:
            existing = self._records.get(descriptor.name)
            if existing is not None:
                return existing
            record = ProjectRecord(descriptor, self.events)
            self._records[descriptor.name] = record
            return record

    def get(self, name: str) -> ProjectRecord | None:
        with self._lock:
            return self._records.get(name)

    def remove(self, name: str) -> ProjectRecord | None:
        with self._lock:
            return self._records.pop(name, None)

    def reconcile(self, descriptors: Iterable[ProjectDescriptor]) -> list[ProjectRecord]:
        """Match the tracked set to a fresh scan, keeping records of surviving projects."""
        scanned = {descriptor.name: descriptor for descriptor in descriptors}
        with self._lock:
            kept = [record for name, record in self._records.items() if name in scanned]
            self._records = {
                name: (
                    self._records[name]
                    if name in self._records
                    else ProjectRecord(descriptor, self.events)
                )
                for name, descriptor in sorted(scanned.items())
            }
            current = list(self._records.values())
        for record in kept:
            record.update(**scanned[record.name].model_dump(include=SCANNED_FIELDS))
        return current

    def records(self) -> list[ProjectRecord]:
        with self._lock:
            return list(self._records.values())

    def names(self) -> set[str]:
        with self._lock:
            return set(self._records)

    def snapshots(self) -> list[ProjectDescriptor]:
        return sorted((record.snapshot() for record in self.records()), key=lambda p: p.name)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
