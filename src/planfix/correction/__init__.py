"""Correction records shared by the command and diagnostic correction loops.

The loops themselves live in :mod:`planfix.correction.commands` and
:mod:`planfix.correction.diagnostics`; they depend on the execution package,
which in turn renders prompts from these records, so they are not re-exported
here.
"""

from .schema import (
    CodeIssue,
    CorrectionFeedback,
    FeedbackType,
    FileCorrectionAttempt,
    IssueSeverity,
    IssueType,
    are_issues_similar,
    diagnostic_to_issue,
    format_feedback_for_prompt,
)

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
