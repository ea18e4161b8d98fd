"""Supervised external process execution."""

from __future__ import annotations

import subprocess
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Literal

import psutil

type StreamName = Literal["stdout", "stderr"]
type LineHandler = Callable[[StreamName, str], None]

_READER_JOIN_SECONDS = 5.0


@dataclass(slots=True)
class ProcessResult:
    """Completed (or killed) process summary."""

    command: str
    returncode: int | None
    timed_out: bool = False
    lines: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.returncode == 0


def kill_process_tree(pid: int) -> None:
    """Forcefully kill a process and all of its descendants."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    try:
        processes = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        processes = []
    processes.append(parent)
    for process in processes:
        try:
            process.kill()
        except psutil.NoSuchProcess:
            continue
    psutil.wait_procs(processes, timeout=5)


class ProcessRunner:
    """Run one process with line capture, a hard timeout and tree kill."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout_seconds: float,
        on_line: LineHandler | None = None,
    ) -> ProcessResult:
        command_text = " ".join(command)
        result = ProcessResult(command=command_text, returncode=None)
        lines_lock = threading.Lock()

        def handle(stream: StreamName, line: str) -> None:
            with lines_lock:
                result.lines.append(line)
            if on_line is not None:
                on_line(stream, line)

        process = subprocess.Popen(
            list(command),
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
        readers = [
            self._start_reader(process.stdout, "stdout", handle),
            self._start_reader(process.stderr, "stderr", handle),
        ]
        try:
            result.returncode = process.wait(timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            result.timed_out = True
            kill_process_tree(process.pid)
            result.returncode = process.wait()
        for reader in readers:
            if reader is not None:
                reader.join(timeout=_READER_JOIN_SECONDS)
        return result

    @staticmethod
    def _start_reader(
        stream: IO[str] | None,
        name: StreamName,
        handle: LineHandler,
    ) -> threading.Thread | None:
        if stream is None:
            return None
        reader = threading.Thread(
            target=ProcessRunner._drain_output,
            args=(stream, name, handle),
            daemon=True,
        )
        reader.start()
        return reader

    @staticmethod
    def _drain_output(stream: IO[str], name: StreamName, handle: LineHandler) -> None:
        try:
            for line in stream:
                text = line.rstrip("\r\n")
                if text:
                    handle(name, text)
        finally:
            stream.close()
