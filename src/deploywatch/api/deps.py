"""Shared API dependency providers."""

from __future__ import annotations

from deploywatch.config import load_settings, settings_path_from_env
from deploywatch.core.coordinator import DeployMonitor

_MONITOR: DeployMonitor | None = None


def get_monitor() -> DeployMonitor:
    global _MONITOR
    if _MONITOR is None:
        settings_path = settings_path_from_env()
        _MONITOR = DeployMonitor(load_settings(settings_path), settings_path=settings_path)
    return _MONITOR


def set_monitor(monitor: DeployMonitor | None) -> None:
    global _MONITOR
    _MONITOR = monitor
