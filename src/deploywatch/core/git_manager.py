"""Git operations against bare repositories and working copies."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

PLUMBING_TIMEOUT_SECONDS = 5.0


@dataclass(slots=True)
class GitResult:
    """Result from running a git command."""

    command: str
    output: str


class GitManager:
    """Thin wrapper around git CLI."""

    def __init__(self, *, timeout_seconds: float = PLUMBING_TIMEOUT_SECONDS) -> None:
        self._timeout_seconds = timeout_seconds

    def list_tree(self, repository_path: Path, branch: str) -> list[str]:
        """List every file path in the branch tree, in git's listing order."""
        result = self._run_git(
            repository_path, "ls-tree", "-r", "-z", "--name-only", branch
        )
        return [entry for entry in result.output.split("\0") if entry]

    def show_file(self, repository_path: Path, branch: str, path: str) -> str:
        """Read a file's content from the branch tree."""
        return self._run_git(repository_path, "show", f"{branch}:{path}").output

    @staticmethod
    def clone_command(repository_path: Path, branch: str, destination: Path) -> list[str]:
        return ["git", "clone", "--branch", branch, str(repository_path), str(destination)]

    @staticmethod
    def pull_command() -> list[str]:
        return ["git", "pull"]

    def _run_git(self, repository_path: Path, *args: str) -> GitResult:
        command = ["git", "--git-dir", str(repository_path), *args]
        try:
            completed = subprocess.run(
                command,
                check=False,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self._timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            msg = f"{' '.join(command)} timed out after {self._timeout_seconds}s"
            raise RuntimeError(msg) from exc
        if completed.returncode != 0:
            msg = f"{' '.join(command)} failed: {(completed.stderr or '').strip()}"
            raise RuntimeError(msg)
        return GitResult(command=" ".join(command), output=completed.stdout or "")
