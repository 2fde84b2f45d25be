"""Workspace, diffing and analyzer integrations used by the execution engine."""

from .diagnostics import (
    CommandDiagnosticProvider,
    Diagnostic,
    DiagnosticCheck,
    DiagnosticProvider,
    DiagnosticSeverity,
    format_diagnostics,
    parse_diagnostic_output,
)
from .diffing import (
    ChangeSummary,
    Edit,
    EditConflictError,
    apply_edits,
    clean_code_output,
    diff_to_edits,
    format_unified_diff,
    summarize_changes,
)
from .snippets import Snippet, collect_relevant_files, format_relevant_files
from .workspace import CommandResult, FileStat, ProcessRegistry, WorkspaceHost

__all__ = [
    "ChangeSummary",
    "CommandDiagnosticProvider",
    "CommandResult",
    "Diagnostic",
    "DiagnosticCheck",
    "DiagnosticProvider",
    "DiagnosticSeverity",
    "Edit",
    "EditConflictError",
    "FileStat",
    "ProcessRegistry",
    "Snippet",
    "WorkspaceHost",
    "apply_edits",
    "clean_code_output",
    "collect_relevant_files",
    "diff_to_edits",
    "format_diagnostics",
    "format_relevant_files",
    "format_unified_diff",
    "parse_diagnostic_output",
    "summarize_changes",
]
