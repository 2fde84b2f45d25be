"""Diagnostic providers that feed the correction loop with analyzer findings.

The engine never analyses code itself. A provider wraps some external analyzer
and reports :class:`Diagnostic` records per workspace-relative path. The
command provider runs configured linters and parses ``path:line:col: message``
style output, mirroring how static gate commands are described in config.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from operator import attrgetter
from pathlib import Path
from typing import Any, List, Optional

from ..cancellation import CancellationToken

__all__ = [
    "CommandDiagnosticProvider",
    "Diagnostic",
    "DiagnosticCheck",
    "DiagnosticProvider",
    "DiagnosticSeverity",
    "format_diagnostics",
    "parse_diagnostic_output",
]


LOGGER = logging.getLogger(__name__)

DEFAULT_OUTPUT_PATTERN = (
    r"^(?P<path>[^:\n]+):(?P<line>\d+)(?::(?P<column>\d+))?:\s*"
    r"(?:(?P<severity>error|warning|note|info)\s*:?\s*)?"
    r"(?:\[?(?P<code>[A-Z]+\d+)\]?\s+)?(?P<message>.+)$"
)


class DiagnosticSeverity(str, Enum):
    """Severity levels reported by analyzers."""

    ERROR = "error"
    WARNING = "warning"
    INFORMATION = "information"
    HINT = "hint"

    @property
    def label(self) -> str:
        return {"error": "Error", "warning": "Warning", "information": "Info", "hint": "Hint"}[self.value]


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """Single analyzer finding for a workspace-relative path (1-indexed positions)."""

    path: str
    line: int
    message: str
    severity: DiagnosticSeverity = DiagnosticSeverity.ERROR
    column: int = 1
    code: Optional[str] = None
    source: Optional[str] = None


class DiagnosticProvider:
    """Base class for analyzers consulted by the diagnostic correction loop."""

    def get_diagnostics(self, path: str) -> List[Diagnostic]:
        """Return the current findings for ``path``. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement get_diagnostics().")

    def wait_for_stabilize(
        self,
        path: str,
        cancel: Optional[CancellationToken] = None,
        *,
        timeout_ms: int = 5000,
        poll_ms: int = 100,
        required_stable_checks: int = 3,
    ) -> bool:
        """Poll until ``path`` reports the same findings ``required_stable_checks`` times in a row.

        Returns ``False`` after ``timeout_ms`` without stabilising; callers
        proceed with whatever the provider reports at that point.
        """

        deadline = time.monotonic() + timeout_ms / 1000.0
        previous: Optional[tuple[Diagnostic, ...]] = None
        stable = 0
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            snapshot = tuple(self.get_diagnostics(path))
            if snapshot == previous:
                stable += 1
            else:
                stable = 0
                previous = snapshot
            if stable >= required_stable_checks:
                return True
            if time.monotonic() >= deadline:
                LOGGER.warning(
                    "Diagnostics for %s did not stabilise within %d ms; continuing anyway",
                    path,
                    timeout_ms,
                )
                return False
            if cancel is not None:
                cancel.sleep(poll_ms / 1000.0)
            else:
                time.sleep(poll_ms / 1000.0)

    def get_errors(self, path: str) -> List[Diagnostic]:
        return [item for item in self.get_diagnostics(path) if item.severity is DiagnosticSeverity.ERROR]


@dataclass(slots=True)
class DiagnosticCheck:
    """External analyzer command. ``{path}`` in the command is replaced by the file."""

    name: str
    command: Sequence[str]
    pattern: str = DEFAULT_OUTPUT_PATTERN
    default_severity: DiagnosticSeverity = DiagnosticSeverity.ERROR

    @classmethod
    def from_config(cls, entry: str | Mapping[str, Any]) -> Optional["DiagnosticCheck"]:
        """Build a check from a config string (``"ruff check"``) or mapping."""
        if isinstance(entry, str):
            parts = entry.split()
            if not parts:
                return None
            return cls(name=parts[0], command=parts)
        if not isinstance(entry, Mapping):
            return None
        command = entry.get("command") or entry.get("cmd")
        parts = command.split() if isinstance(command, str) else list(command or [])
        if not parts:
            return None
        name = str(entry.get("name") or parts[0])
        pattern = entry.get("pattern")
        severity_value = str(entry.get("severity") or DiagnosticSeverity.ERROR.value).lower()
        try:
            severity = DiagnosticSeverity(severity_value)
        except ValueError:
            severity = DiagnosticSeverity.ERROR
        return cls(
            name=name,
            command=parts,
            pattern=pattern if isinstance(pattern, str) and pattern else DEFAULT_OUTPUT_PATTERN,
            default_severity=severity,
        )

    def render(self, path: str) -> List[str]:
        if any("{path}" in part for part in self.command):
            return [part.replace("{path}", path) for part in self.command]
        return [*self.command, path]


_SEVERITY_ALIASES = {
    "error": DiagnosticSeverity.ERROR,
    "warning": DiagnosticSeverity.WARNING,
    "note": DiagnosticSeverity.INFORMATION,
    "info": DiagnosticSeverity.INFORMATION,
}


def parse_diagnostic_output(
    output: str | Iterable[str],
    *,
    pattern: str = DEFAULT_OUTPUT_PATTERN,
    source: Optional[str] = None,
    default_severity: DiagnosticSeverity = DiagnosticSeverity.ERROR,
) -> List[Diagnostic]:
    """Extract diagnostics from analyzer output lines."""
    lines = output.splitlines() if isinstance(output, str) else list(output)
    regex = re.compile(pattern)
    findings: List[Diagnostic] = []
    seen: set[tuple[str, int, str]] = set()
    for raw_line in lines:
        match = regex.match(raw_line.strip())
        if match is None:
            continue
        data = match.groupdict()
        try:
            line_number = int(data.get("line") or 0)
        except ValueError:
            continue
        message = (data.get("message") or "").strip()
        path = (data.get("path") or "").strip().replace("\\", "/")
        if line_number <= 0 or not message or not path:
            continue
        key = (path, line_number, message)
        if key in seen:
            continue
        seen.add(key)
        column_raw = data.get("column")
        severity_raw = (data.get("severity") or "").lower()
        findings.append(
            Diagnostic(
                path=path,
                line=line_number,
                column=int(column_raw) if column_raw else 1,
                message=message,
                severity=_SEVERITY_ALIASES.get(severity_raw, default_severity),
                code=data.get("code") or None,
                source=source,
            )
        )
    return findings


@dataclass(slots=True)
class CommandDiagnosticProvider(DiagnosticProvider):
    """Provider that runs analyzer commands against one file at a time."""

    repo_root: Path
    checks: List[DiagnosticCheck] = field(default_factory=list)

    def get_diagnostics(self, path: str) -> List[Diagnostic]:
        findings: List[Diagnostic] = []
        for check in self.checks:
            executable = check.command[0]
            if shutil.which(executable) is None:
                LOGGER.debug("Skipping %s: executable not available", check.name)
                continue
            process = subprocess.run(  # noqa: S603 - command is sourced from config
                check.render(path),
                cwd=self.repo_root,
                check=False,
                capture_output=True,
                text=True,
            )
            combined = "\n".join(part for part in (process.stdout, process.stderr) if part)
            for item in parse_diagnostic_output(
                combined,
                pattern=check.pattern,
                source=check.name,
                default_severity=check.default_severity,
            ):
                if _same_path(item.path, path, self.repo_root):
                    findings.append(item)
        return findings


def _same_path(reported: str, expected: str, repo_root: Path) -> bool:
    reported_path = Path(reported)
    if not reported_path.is_absolute():
        reported_path = repo_root / reported_path
    return reported_path.resolve() == (repo_root / expected).resolve()


def format_diagnostics(
    path: str,
    diagnostics: Sequence[Diagnostic],
    *,
    max_per_severity: int = 25,
    max_total_chars: int = 25000,
) -> str:
    """Render diagnostics for a prompt: errors first, then capped warnings and infos."""
    by_line = attrgetter("line")
    errors = sorted((d for d in diagnostics if d.severity is DiagnosticSeverity.ERROR), key=by_line)
    warnings = sorted((d for d in diagnostics if d.severity is DiagnosticSeverity.WARNING), key=by_line)
    infos = sorted((d for d in diagnostics if d.severity is DiagnosticSeverity.INFORMATION), key=by_line)
    selected = [*errors, *warnings[:max_per_severity], *infos[: max_per_severity // 2]]
    if not selected:
        return ""

    output = "--- Relevant Diagnostics ---\n"
    for index, item in enumerate(selected):
        entry = f"- [{item.severity.label}] {path}:{item.line}:{item.column} - {item.message}\n"
        if len(output) + len(entry) > max_total_chars:
            output += f"... ({len(selected) - index} more diagnostics truncated)\n"
            break
        output += entry
    return output + "--- End Relevant Diagnostics ---\n"
