"""Bare repository discovery and deployment descriptor extraction."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from deploywatch.core.git_manager import GitManager
from deploywatch.models.project import ProjectDescriptor, ProjectStatus

logger = logging.getLogger(__name__)

REPOSITORY_SUFFIX = ".git"
DEFAULT_DEPLOY_SCRIPT = "deploy.bat" if os.name == "nt" else "deploy.sh"
CONTAINER_PREFIX_KEY = "DEPLOY_CONTAINER_PREFIX"
TRIGGER_PATHS_KEY = "DEPLOY_TRIGGER_PATHS"


def _assignment_pattern(key: str) -> re.Pattern[str]:
    return re.compile(
        rf"""^[ \t]*(?:set[ \t]+|export[ \t]+)?["']?{key}[ \t]*=[ \t]*["']?(?P<value>[^"'\n]*)""",
        re.IGNORECASE | re.MULTILINE,
    )


_CONTAINER_PREFIX_PATTERN = _assignment_pattern(CONTAINER_PREFIX_KEY)
_TRIGGER_PATHS_PATTERN = _assignment_pattern(TRIGGER_PATHS_KEY)


@dataclass(slots=True)
class DescriptorMetadata:
    """Declarative settings found inside a deployment descriptor."""

    container_name_prefix: str = ""
    deploy_trigger_paths: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DeployDescriptor:
    """A deployment descriptor read from a branch tree."""

    path: str
    metadata: DescriptorMetadata


def project_name_for(directory_name: str) -> str:
    """Strip a trailing ``.git`` (any case) from a repository directory name."""
    if directory_name.lower().endswith(REPOSITORY_SUFFIX) and len(directory_name) > len(
        REPOSITORY_SUFFIX
    ):
        return directory_name[: -len(REPOSITORY_SUFFIX)]
    return directory_name


def is_bare_repository(path: Path) -> bool:
    try:
        return path.is_dir() and (path / "HEAD").is_file()
    except OSError as exc:
        logger.warning("Skipping %s: %s", path, exc)
        return False


def iter_bare_repositories(root_folder: Path) -> Iterator[tuple[str, Path]]:
    """Yield ``(project name, path)`` for each bare repository directly under the root."""
    try:
        if not root_folder.is_dir():
            return
        entries = sorted(root_folder.iterdir(), key=lambda item: item.name)
    except OSError as exc:
        logger.warning("Cannot list %s: %s", root_folder, exc)
        return
    for entry in entries:
        if is_bare_repository(entry):
            yield project_name_for(entry.name), entry


def read_commit_hash(repository_path: Path, branch: str) -> str:
    """Return the branch tip from the loose ref, falling back to ``packed-refs``."""
    ref_path = repository_path / "refs" / "heads" / branch
    try:
        value = ref_path.read_text(encoding="utf-8").strip() if ref_path.is_file() else ""
    except OSError:
        value = ""
    if value:
        return value

    packed_refs = repository_path / "packed-refs"
    target = f"refs/heads/{branch}"
    try:
        if not packed_refs.is_file():
            return ""
        with packed_refs.open(encoding="utf-8") as handle:
            for line in handle:
                if line.startswith("#"):
                    continue
                parts = line.strip().split(" ", 1)
                if len(parts) == 2 and parts[1].strip() == target:
                    return parts[0].strip()
    except OSError:
        return ""
    return ""


def normalize_descriptor_text(content: str) -> str:
    """Drop a leading byte-order mark and convert line endings to ``\\n``."""
    return content.removeprefix("\ufeff").replace("\r\n", "\n").replace("\r", "\n")


def parse_descriptor_metadata(content: str) -> DescriptorMetadata:
    """Extract the optional container prefix and trigger paths."""
    metadata = DescriptorMetadata()
    prefix = _CONTAINER_PREFIX_PATTERN.search(content)
    if prefix:
        metadata.container_name_prefix = prefix.group("value").strip()
    paths = _TRIGGER_PATHS_PATTERN.search(content)
    if paths:
        metadata.deploy_trigger_paths = paths.group("value").split()
    return metadata


def select_descriptor_path(entries: list[str], script_name: str, project_name: str) -> str | None:
    """Pick the descriptor: tree root, then ``<project>/<script>``, then first match."""
    wanted = script_name.lower()
    matches = [entry for entry in entries if entry.rsplit("/", 1)[-1].lower() == wanted]
    if not matches:
        return None
    for match in matches:
        if "/" not in match:
            return match
    preferred = f"{project_name}/{script_name}".lower()
    for match in matches:
        if match.lower() == preferred:
            return match
    return matches[0]


class RepoScanner:
    """Stateless scanner producing project descriptors from a repository root."""

    def __init__(
        self,
        git: GitManager | None = None,
        *,
        deploy_script_name: str = DEFAULT_DEPLOY_SCRIPT,
    ) -> None:
        self._git = git or GitManager()
        self.deploy_script_name = deploy_script_name

    def scan(
        self, root_folder: Path, working_root: Path | None, default_branch: str
    ) -> list[ProjectDescriptor]:
        projects: list[ProjectDescriptor] = []
        for name, repository_path in iter_bare_repositories(root_folder):
            try:
                project = self.describe(name, repository_path, working_root, default_branch)
            except OSError as exc:
                logger.warning("[%s] skipped: %s", name, exc)
                continue
            if project is not None:
                projects.append(project)
        logger.info("Scanned %s: %d deployable project(s)", root_folder, len(projects))
        return projects

    def describe(
        self,
        name: str,
        repository_path: Path,
        working_root: Path | None,
        branch: str,
    ) -> ProjectDescriptor | None:
        """Build a descriptor for one repository, or None when it has no deploy script."""
        descriptor = self.find_deploy_descriptor(repository_path, branch, name)
        if descriptor is None:
            return None
        return ProjectDescriptor(
            name=name,
            repository_path=repository_path,
            working_copy_path=working_root / name if working_root is not None else None,
            has_deploy_descriptor=True,
            deploy_script_path=descriptor.path,
            branch=branch,
            last_known_commit_hash=read_commit_hash(repository_path, branch),
            container_name_prefix=descriptor.metadata.container_name_prefix,
            deploy_trigger_paths=descriptor.metadata.deploy_trigger_paths,
            status=ProjectStatus.IDLE,
        )

    def find_deploy_descriptor(
        self, repository_path: Path, branch: str, project_name: str
    ) -> DeployDescriptor | None:
        try:
            entries = self._git.list_tree(repository_path, branch)
            path = select_descriptor_path(entries, self.deploy_script_name, project_name)
            if path is None:
                return None
            content = normalize_descriptor_text(
                self._git.show_file(repository_path, branch, path)
            )
        except (RuntimeError, OSError, subprocess.SubprocessError) as exc:
            logger.debug("[%s] deploy descriptor unavailable: %s", project_name, exc)
            return None
        return DeployDescriptor(path=path, metadata=parse_descriptor_metadata(content))
