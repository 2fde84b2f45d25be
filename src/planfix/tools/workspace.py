"""Filesystem and process access for plan execution, rooted at one workspace."""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from ..cancellation import CancellationToken, ExecutionCancelledError
from ..errors import WorkspaceError
from .diffing import Edit, apply_edits

__all__ = [
    "CommandResult",
    "FileStat",
    "ProcessRegistry",
    "WorkspaceHost",
]


LOGGER = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1
_TERMINATE_GRACE = 3.0


@dataclass(slots=True)
class FileStat:
    """Existence and size of a workspace path."""

    exists: bool
    size: int = 0
    is_dir: bool = False


@dataclass(slots=True)
class CommandResult:
    """Captured outcome of an external command."""

    command: str
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ProcessRegistry:
    """Handles of spawned commands, drained when a run is torn down."""

    def __init__(self) -> None:
        self._handles: List[subprocess.Popen[str]] = []

    def __len__(self) -> int:
        return len(self._handles)

    def register(self, handle: subprocess.Popen[str]) -> None:
        self._handles.append(handle)

    def unregister(self, handle: subprocess.Popen[str]) -> None:
        if handle in self._handles:
            self._handles.remove(handle)

    def kill_all(self) -> int:
        """Terminate every live handle and return how many were stopped."""
        stopped = 0
        while self._handles:
            handle = self._handles.pop()
            if handle.poll() is not None:
                continue
            handle.terminate()
            try:
                handle.wait(timeout=_TERMINATE_GRACE)
            except subprocess.TimeoutExpired:
                handle.kill()
                handle.wait()
            stopped += 1
        if stopped:
            LOGGER.info("Terminated %d running command(s)", stopped)
        return stopped


class WorkspaceHost:
    """Workspace-relative file and command operations used by the step executor."""

    def __init__(self, root: Path, *, processes: Optional[ProcessRegistry] = None) -> None:
        self._root = Path(root).resolve()
        self.processes = processes or ProcessRegistry()
        self.opened_documents: List[str] = []

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, relative: str) -> Path:
        """Resolve ``relative`` inside the workspace, refusing paths that escape it."""
        candidate = (self._root / relative).resolve()
        try:
            candidate.relative_to(self._root)
        except ValueError as error:
            raise WorkspaceError(
                f"Path escapes the workspace: {relative}", details={"path": relative}
            ) from error
        return candidate

    def relative(self, path: Path) -> str:
        return path.resolve().relative_to(self._root).as_posix()

    def create_directory(self, relative: str) -> Path:
        target = self.resolve(relative)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise WorkspaceError(f"Failed to create directory {relative}: {error}") from error
        return target

    def stat(self, relative: str) -> FileStat:
        target = self.resolve(relative)
        if not target.exists():
            return FileStat(exists=False)
        if target.is_dir():
            return FileStat(exists=True, is_dir=True)
        return FileStat(exists=True, size=target.stat().st_size)

    def read_file(self, relative: str) -> str:
        target = self.resolve(relative)
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise
        except (OSError, UnicodeDecodeError) as error:
            raise WorkspaceError(f"Failed to read {relative}: {error}") from error

    def write_file(self, relative: str, content: str) -> Path:
        """Write ``content`` to ``relative`` in one replace so readers never see partial text."""
        target = self.resolve(relative)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=target.parent,
                prefix=f".{target.name}.",
                suffix=".tmp",
                delete=False,
                newline="",
            ) as handle:
                handle.write(content)
                temp_path = Path(handle.name)
            os.replace(temp_path, target)
        except OSError as error:
            raise WorkspaceError(f"Failed to write {relative}: {error}") from error
        return target

    def show_document(self, relative: str) -> None:
        """Record that ``relative`` was surfaced to the user."""
        self.opened_documents.append(relative)
        LOGGER.debug("Opened %s", relative)

    def apply_edits(self, relative: str, edits: Sequence[Edit]) -> str:
        """Apply ``edits`` to the current text of ``relative`` as one batch."""
        current = self.read_file(relative)
        if not edits:
            return current
        updated = apply_edits(current, edits)
        self.write_file(relative, updated)
        return updated

    def run_command(self, command: str, cancel: Optional[CancellationToken] = None) -> CommandResult:
        """Run ``command`` through the shell in the workspace root, capturing its output."""
        if cancel is not None:
            cancel.raise_if_cancelled()
        LOGGER.info("Running command: %s", command)
        try:
            handle = subprocess.Popen(  # noqa: S602 - commands are approved by the user first
                command,
                shell=True,
                cwd=self._root,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as error:
            raise WorkspaceError(f"Failed to start command '{command}': {error}") from error

        self.processes.register(handle)
        try:
            while True:
                try:
                    stdout, stderr = handle.communicate(timeout=_POLL_INTERVAL)
                    break
                except subprocess.TimeoutExpired:
                    if cancel is not None and cancel.cancelled:
                        handle.kill()
                        handle.communicate()
                        raise ExecutionCancelledError()
        finally:
            self.processes.unregister(handle)

        result = CommandResult(
            command=command,
            exit_code=handle.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
        )
        LOGGER.debug("Command '%s' exited with %d", command, result.exit_code)
        return result
