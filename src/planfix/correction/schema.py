"""Typed records exchanged between the correction loops and the prompt layer."""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..tools.diagnostics import Diagnostic, DiagnosticSeverity

__all__ = [
    "CodeIssue",
    "CorrectionFeedback",
    "FeedbackType",
    "FileCorrectionAttempt",
    "IssueSeverity",
    "IssueType",
    "are_issues_similar",
    "diagnostic_to_issue",
    "format_feedback_for_prompt",
]


FEEDBACK_PREVIEW_LIMIT = 500


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueType(str, Enum):
    SYNTAX = "syntax"
    UNUSED_IMPORT = "unused_import"
    SECURITY = "security"
    BEST_PRACTICE = "best_practice"
    FORMAT_ERROR = "format_error"
    OTHER = "other"


class FeedbackType(str, Enum):
    """Why the previous correction attempt is being reported back to the model."""

    NO_IMPROVEMENT = "no_improvement"
    NEW_ERRORS_INTRODUCED = "new_errors_introduced"
    PARSING_FAILED = "parsing_failed"
    UNREASONABLE_DIFF = "unreasonable_diff"
    COMMAND_FAILED = "command_failed"
    UNKNOWN = "unknown"


class CodeIssue(RecordModel):
    """Analyzer finding in the shape the correction prompts expect."""

    message: str
    severity: IssueSeverity
    line: int
    type: IssueType
    code: Optional[str] = None
    source: Optional[str] = None

    @property
    def identity(self) -> str:
        """Comparison key: message, line, type, severity and code."""
        return f"{self.message}|{self.line}|{self.type.value}|{self.severity.value}|{self.code or ''}"


class CorrectionFeedback(RecordModel):
    """Context about the previous attempt injected into the next correction prompt."""

    type: FeedbackType
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    issues_remaining: List[CodeIssue] = Field(default_factory=list)
    issues_introduced: Optional[List[CodeIssue]] = None


class FileCorrectionAttempt(RecordModel):
    """One history entry of the per-file correction loop."""

    iteration: int
    issues_remaining: List[CodeIssue] = Field(default_factory=list)
    success: bool
    feedback_used: Optional[CorrectionFeedback] = None
    plan_parse_failed: bool = False


def diagnostic_to_issue(diagnostic: Diagnostic) -> CodeIssue:
    """Map an analyzer diagnostic onto the coarse issue categories."""
    if diagnostic.severity in (DiagnosticSeverity.INFORMATION, DiagnosticSeverity.HINT):
        severity = IssueSeverity.INFO
    else:
        severity = IssueSeverity(diagnostic.severity.value)

    message = diagnostic.message.lower()
    if "unused import" in message:
        issue_type = IssueType.UNUSED_IMPORT
    elif (
        severity in (IssueSeverity.ERROR, IssueSeverity.WARNING)
        or "syntax" in message
        or "compilation" in message
        or "lint" in message
    ):
        issue_type = IssueType.SYNTAX
    elif "security" in message:
        issue_type = IssueType.SECURITY
    elif "best practice" in message:
        issue_type = IssueType.BEST_PRACTICE
    else:
        issue_type = IssueType.OTHER

    return CodeIssue(
        message=diagnostic.message,
        severity=severity,
        line=diagnostic.line,
        type=issue_type,
        code=diagnostic.code,
        source=diagnostic.source,
    )


def are_issues_similar(left: Sequence[CodeIssue], right: Sequence[CodeIssue]) -> bool:
    """Return ``True`` when both lists hold the same issues, ignoring order."""
    if len(left) != len(right):
        return False
    return {issue.identity for issue in left} == {issue.identity for issue in right}


def _preview(value: str) -> str:
    preview = value[:FEEDBACK_PREVIEW_LIMIT]
    if len(value) > FEEDBACK_PREVIEW_LIMIT:
        preview += "\n// ... (truncated)"
    return preview


def format_feedback_for_prompt(feedback: Optional[CorrectionFeedback]) -> str:
    """Render feedback as the retry notice placed at the top of correction prompts."""
    if feedback is None:
        return ""

    message = (
        f"CRITICAL ERROR: Your previous attempt had an issue of type '{feedback.type.value}'. "
        f'Message: "{feedback.message}".'
    )
    details = feedback.details
    if details.get("parsing_error"):
        message += f' Parsing Error: "{details["parsing_error"]}".'
    if details.get("failed_json"):
        message += f" Failed JSON output: ```json\n{_preview(str(details['failed_json']))}\n```."
    if details.get("stdout"):
        message += f" STDOUT: ```\n{_preview(str(details['stdout']))}\n```."
    if details.get("stderr"):
        message += f" STDERR: ```\n{_preview(str(details['stderr']))}\n```."
    previous = details.get("previous_issues")
    current = details.get("current_issues")
    if isinstance(previous, list) and isinstance(current, list):
        message += f" Previous errors count: {len(previous)}. Current errors count: {len(current)}."
    if feedback.issues_remaining:
        remaining = "\n".join(
            f"- line {issue.line}: {issue.message}" for issue in feedback.issues_remaining
        )
        message += f"\nUnresolved issues:\n{remaining}"
    return message
