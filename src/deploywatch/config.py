"""Watch settings: environment defaults plus a JSON key-value file."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

from deploywatch.core.repo_scanner import DEFAULT_DEPLOY_SCRIPT

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path(".deploywatch/settings.json")


class WatchSettings(BaseSettings):
    """Settings consumed by the monitor. Readable from ``DEPLOYWATCH_*`` variables."""

    model_config = {"env_prefix": "DEPLOYWATCH_"}

    repository_folder: Path = Path("/srv/git")
    deploy_folder: Path = Path("/srv/deploy")
    interval_seconds: int = Field(default=30, ge=1)
    default_branch: str = "master"
    auto_start: bool = False
    deploy_script_name: str = DEFAULT_DEPLOY_SCRIPT


def settings_path_from_env() -> Path:
    return Path(os.environ.get("DEPLOYWATCH_SETTINGS_PATH", str(DEFAULT_SETTINGS_PATH)))


def load_settings(path: Path | None = None) -> WatchSettings:
    """Load settings from ``path``; missing or broken files fall back to defaults."""
    target = path or settings_path_from_env()
    if not target.is_file():
        return WatchSettings()
    try:
        data = json.loads(target.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            msg = "settings file must contain a JSON object"
            raise ValueError(msg)
        return WatchSettings(**data)
    except (OSError, ValueError, ValidationError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", target, exc)
        return WatchSettings()


def save_settings(settings: WatchSettings, path: Path | None = None) -> Path:
    target = path or settings_path_from_env()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(settings.model_dump_json(indent=2) + "\n", encoding="utf-8")
    return target
