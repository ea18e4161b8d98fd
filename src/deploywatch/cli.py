"""Command line entry point."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path

from deploywatch.config import load_settings, settings_path_from_env
from deploywatch.core.coordinator import DeployMonitor
from deploywatch.models.project import ProjectStatus

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deploywatch",
        description="Watch bare repositories and redeploy projects on new commits.",
    )
    parser.add_argument("--settings", type=Path, default=None, help="Settings JSON file")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    subparsers.add_parser("scan", help="Print deployable projects as JSON lines")
    subparsers.add_parser("watch", help="Watch and deploy until interrupted")

    deploy = subparsers.add_parser("deploy", help="Deploy one project now and wait")
    deploy.add_argument("name")
    deploy.add_argument("--timeout", type=float, default=None)
    return parser


def _monitor(settings_path: Path) -> DeployMonitor:
    return DeployMonitor(load_settings(settings_path), settings_path=settings_path)


def _scan(monitor: DeployMonitor) -> int:
    settings = monitor.settings
    for project in monitor.scanner.scan(
        settings.repository_folder, settings.deploy_folder, settings.default_branch
    ):
        print(project.model_dump_json())
    return 0


def _watch(monitor: DeployMonitor) -> int:
    stop = threading.Event()
    monitor.open()
    try:
        monitor.start_watch()
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        monitor.close()
        return 2
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        monitor.close()
    return 0


def _deploy(monitor: DeployMonitor, name: str, timeout: float | None) -> int:
    monitor.rescan()
    try:
        queued = monitor.manual_deploy(name)
    except KeyError:
        print(f"unknown project: {name}", file=sys.stderr)
        return 2
    if not queued:
        print(f"project cannot be deployed now: {name}", file=sys.stderr)
        return 1
    monitor.orchestrator.wait_idle(timeout)
    monitor.dispatch_pending()
    project = monitor.project(name)
    if project is None:
        return 1
    print(project.last_deploy_log, end="")
    print(project.last_message)
    return 0 if project.status is ProjectStatus.SUCCESS else 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)
    settings_path = args.settings or settings_path_from_env()

    if args.command == "serve":
        from deploywatch.api.app import run
        from deploywatch.api.deps import set_monitor

        set_monitor(_monitor(settings_path))
        run(host=args.host, port=args.port)
        return 0

    monitor = _monitor(settings_path)
    if args.command == "scan":
        return _scan(monitor)
    if args.command == "watch":
        return _watch(monitor)
    return _deploy(monitor, args.name, args.timeout)


if __name__ == "__main__":
    raise SystemExit(main())
