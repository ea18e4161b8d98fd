from pathlib import Path

from fastapi.testclient import TestClient

from deploywatch.api.app import create_app
from deploywatch.api.deps import get_monitor
from deploywatch.config import load_settings
from tests.support.deploy_helpers import build_monitor


def test_settings_read_and_update(tmp_path: Path) -> None:
    harness = build_monitor(tmp_path)
    app = create_app(manage_monitor=False)
    app.dependency_overrides[get_monitor] = lambda: harness.monitor
    client = TestClient(app)

    current = client.get("/api/v1/settings")
    assert current.status_code == 200
    assert current.json()["interval_seconds"] == 3600
    assert current.json()["repository_folder"] == str(tmp_path / "repos")

    updated = client.put("/api/v1/settings", json={"interval_seconds": 15, "auto_start": True})
    assert updated.status_code == 200
    assert updated.json()["interval_seconds"] == 15
    assert updated.json()["auto_start"] is True
    assert updated.json()["default_branch"] == "master"

    persisted = load_settings(harness.settings_path)
    assert persisted.interval_seconds == 15
    assert persisted.auto_start is True


def test_settings_update_validation(tmp_path: Path) -> None:
    harness = build_monitor(tmp_path)
    app = create_app(manage_monitor=False)
    app.dependency_overrides[get_monitor] = lambda: harness.monitor
    client = TestClient(app)

    response = client.put("/api/v1/settings", json={"interval_seconds": 0})
    assert response.status_code == 422
    assert harness.monitor.settings.interval_seconds == 3600
