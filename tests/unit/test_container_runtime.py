from __future__ import annotations

import subprocess

from deploywatch.core.container_runtime import (
    ContainerRuntime,
    ContainerState,
    parse_container_rows,
    summarize_health,
)


def test_parse_container_rows_filters_by_prefix_and_dash() -> None:
    output = (
        "shop-web|Up 2 minutes|running\n"
        "shopping-db|Up 2 minutes|running\n"
        "shop-db|Up 1 minute (unhealthy)|running\n"
        "garbage line\n"
    )
    containers = parse_container_rows(output, "shop")
    assert [container.name for container in containers] == ["shop-web", "shop-db"]
    assert containers[1].health == "unhealthy"


def test_summarize_all_running_is_healthy() -> None:
    report = summarize_health(
        [
            ContainerState(name="shop-web", status="Up 2 minutes", state="running"),
            ContainerState(name="shop-db", status="Up 2 minutes (healthy)", state="running"),
        ]
    )
    assert report.healthy is True
    assert report.summary == "2/2 containers running"
    assert report.failed_container is None


def test_summarize_exited_container_fails() -> None:
    report = summarize_health(
        [
            ContainerState(name="shop-web", status="Up 2 minutes", state="running"),
            ContainerState(name="shop-worker", status="Exited (1) 3 seconds ago", state="exited"),
        ]
    )
    assert report.healthy is False
    assert report.running == 1
    assert report.summary == "1/2 containers running (shop-worker failed)"
    assert report.failed_container == "shop-worker"


def test_summarize_unhealthy_wins_over_stopped() -> None:
    report = summarize_health(
        [
            ContainerState(name="shop-a", status="Created", state="created"),
            ContainerState(name="shop-b", status="Up 5 seconds (unhealthy)", state="running"),
        ]
    )
    assert report.healthy is False
    assert report.failed_container == "shop-b"


def test_summarize_no_containers_is_failure() -> None:
    report = summarize_health([])
    assert report.healthy is False
    assert report.summary == "no containers found"


def test_check_health_queries_docker(monkeypatch) -> None:
    calls: list[list[str]] = []

    def fake_run(command, **kwargs):  # type: ignore[no-untyped-def]
        calls.append(command)
        assert kwargs["timeout"] == 30.0
        return subprocess.CompletedProcess(
            args=command,
            returncode=0,
            stdout="shop-web|Up 2 minutes|running\nshop-db|Up 2 minutes|running\n",
            stderr="",
        )

    monkeypatch.setattr("deploywatch.core.container_runtime.subprocess.run", fake_run)

    report = ContainerRuntime().check_health("shop")

    assert report.healthy is True
    assert calls == [
        [
            "docker",
            "ps",
            "-a",
            "--filter",
            "name=shop-",
            "--format",
            "{{.Names}}|{{.Status}}|{{.State}}",
        ]
    ]


def test_check_health_reports_missing_runtime(monkeypatch) -> None:
    def fake_run(command, **kwargs):  # type: ignore[no-untyped-def]
        del kwargs
        raise FileNotFoundError(2, "No such file or directory", command[0])

    monkeypatch.setattr("deploywatch.core.container_runtime.subprocess.run", fake_run)

    report = ContainerRuntime().check_health("shop")

    assert report.healthy is False
    assert report.summary.startswith("container check failed:")


def test_tail_logs_merges_streams(monkeypatch) -> None:
    def fake_run(command, **kwargs):  # type: ignore[no-untyped-def]
        del kwargs
        assert command == ["docker", "logs", "--tail", "3", "shop-worker"]
        return subprocess.CompletedProcess(
            args=command,
            returncode=0,
            stdout="booting\n\nlistening\n",
            stderr="panic: missing env\n",
        )

    monkeypatch.setattr("deploywatch.core.container_runtime.subprocess.run", fake_run)

    lines = ContainerRuntime().tail_logs("shop-worker", lines=3)

    assert lines == ["booting", "listening", "panic: missing env"]
