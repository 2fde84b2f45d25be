"""Per-file correction loop driven by analyzer diagnostics after a plan ran."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace
from typing import Dict, List, Optional, Set

from ..cancellation import ExecutionCancelledError
from ..execution.runner import PlanRunner
from ..planning.parser import parse_and_validate
from ..prompts import PromptContext, render_file_correction_request
from ..tools.diagnostics import DiagnosticProvider, format_diagnostics
from ..tools.snippets import collect_relevant_files, format_relevant_files
from .commands import PlanParser
from .schema import (
    CodeIssue,
    CorrectionFeedback,
    FeedbackType,
    FileCorrectionAttempt,
    are_issues_similar,
    diagnostic_to_issue,
)

__all__ = ["DiagnosticCorrectionLoop"]


LOGGER = logging.getLogger(__name__)


class DiagnosticCorrectionLoop:
    """Iteratively ask for corrective plans until affected files report no errors.

    History of attempts is kept per file on the instance. A file's history is
    dropped once it is clean, and the whole history is cleared when the loop
    ends with every file resolved. Files still failing after the cap keep
    their history and are exposed through ``unresolved_files``.
    """

    def __init__(
        self,
        runner: PlanRunner,
        provider: DiagnosticProvider,
        *,
        parser: PlanParser = parse_and_validate,
    ) -> None:
        self._runner = runner
        self._provider = provider
        self._parser = parser
        self.history: Dict[str, List[FileCorrectionAttempt]] = {}
        self.unresolved_files: List[str] = []
        self.affected_files: Set[str] = set()

    def run(self, affected_files: Iterable[str]) -> bool:
        """Return ``True`` when every file ends with zero errors within the attempt cap."""
        context = self._runner.executor.context
        settings = context.settings
        working: List[str] = sorted(set(affected_files))
        self.unresolved_files = []
        if not working:
            self.history.clear()
            return True

        try:
            for attempt in range(1, settings.max_correction_attempts + 1):
                context.cancel.raise_if_cancelled()
                if not working:
                    break
                LOGGER.info(
                    "Diagnostic correction attempt %d/%d for %d file(s).",
                    attempt,
                    settings.max_correction_attempts,
                    len(working),
                )
                requeue: List[str] = []
                for path in working:
                    if not self._correct_file(path, attempt):
                        requeue.append(path)
                working = requeue
        except ExecutionCancelledError:
            self.history.clear()
            raise

        if working:
            self.unresolved_files = list(working)
            LOGGER.error(
                "Diagnostic correction failed after %d attempts for: %s",
                settings.max_correction_attempts,
                ", ".join(working),
            )
            return False

        self.history.clear()
        LOGGER.info("All affected files are free of errors.")
        return True

    def _stabilize(self, path: str) -> None:
        context = self._runner.executor.context
        settings = context.settings
        self._provider.wait_for_stabilize(
            path,
            context.cancel,
            timeout_ms=settings.stabilize_timeout_ms,
            poll_ms=settings.stabilize_poll_ms,
            required_stable_checks=settings.stabilize_required_checks,
        )

    def _prompt_context_for(self, path: str) -> PromptContext:
        """Run context with the relevant-file section narrowed to ``path``."""
        context = self._runner.executor.context
        snippets = collect_relevant_files(context.host.root, [path], cancel=context.cancel)
        return replace(context.current_prompt_context(), relevant_snippets=format_relevant_files(snippets))

    def _feedback_for(self, path: str) -> Optional[CorrectionFeedback]:
        entries = self.history.get(path) or []
        if not entries:
            return None
        last = entries[-1]
        if last.plan_parse_failed and last.feedback_used is not None:
            return last.feedback_used
        if len(entries) >= 2:
            previous = entries[-2]
            if (
                not last.success
                and not previous.success
                and are_issues_similar(previous.issues_remaining, last.issues_remaining)
            ):
                return CorrectionFeedback(
                    type=FeedbackType.NO_IMPROVEMENT,
                    message=(
                        f"AI is oscillating, previous attempts ({previous.iteration}, {last.iteration}) "
                        f"for '{path}' resulted in similar unresolved issues."
                    ),
                    details={
                        "previous_issues": [issue.model_dump(mode="json") for issue in previous.issues_remaining],
                        "current_issues": [issue.model_dump(mode="json") for issue in last.issues_remaining],
                    },
                    issues_remaining=list(last.issues_remaining),
                )
        return None

    def _record(
        self,
        path: str,
        attempt: int,
        issues: List[CodeIssue],
        success: bool,
        feedback: Optional[CorrectionFeedback],
        *,
        plan_parse_failed: bool = False,
    ) -> None:
        self.history.setdefault(path, []).append(
            FileCorrectionAttempt(
                iteration=attempt,
                issues_remaining=issues,
                success=success,
                feedback_used=feedback,
                plan_parse_failed=plan_parse_failed,
            )
        )

    def _correct_file(self, path: str, attempt: int) -> bool:
        """Run one correction attempt for ``path``; ``True`` drops it from the working set."""
        context = self._runner.executor.context
        feedback = self._feedback_for(path)

        self._stabilize(path)
        errors = self._provider.get_errors(path)
        if not errors:
            self.history.pop(path, None)
            return True

        LOGGER.info("Correcting %d error(s) in `%s` (attempt %d).", len(errors), path, attempt)
        try:
            content = context.host.read_file(path)
            prompt = render_file_correction_request(
                path,
                content,
                format_diagnostics(path, errors),
                feedback,
                self._prompt_context_for(path),
            )
            raw_plan = context.generate(
                prompt,
                response_format="json",
                purpose=f"diagnostic correction plan for {path} (attempt {attempt})",
            ).strip()
            parsed = self._parser(raw_plan, context.host.root)
            context.cancel.raise_if_cancelled()

            if not parsed.ok or parsed.plan is None:
                error_text = parsed.error or "Failed to parse correction plan."
                LOGGER.error("Invalid correction plan for `%s` (attempt %d): %s", path, attempt, error_text)
                parse_feedback = CorrectionFeedback(
                    type=FeedbackType.PARSING_FAILED,
                    message=error_text,
                    details={"parsing_error": error_text, "failed_json": raw_plan},
                    issues_remaining=[diagnostic_to_issue(item) for item in errors],
                )
                # Parse failures record the errors the attempt started from.
                self._record(
                    path,
                    attempt,
                    list(parse_feedback.issues_remaining),
                    False,
                    parse_feedback,
                    plan_parse_failed=True,
                )
                return False

            LOGGER.info("Applying correction plan for `%s`: %s", path, parsed.plan.description)
            self.affected_files.update(self._runner.run(parsed.plan.steps))
        except ExecutionCancelledError:
            raise
        except Exception as error:
            LOGGER.error("Correction attempt %d for `%s` failed: %s", attempt, path, error)
            return False

        self._stabilize(path)
        remaining = [diagnostic_to_issue(item) for item in self._provider.get_errors(path)]
        success = not remaining
        self._record(path, attempt, remaining, success, feedback)
        if success:
            LOGGER.info("`%s` is free of errors after attempt %d.", path, attempt)
            self.history.pop(path, None)
            return True
        LOGGER.warning("`%s` still has %d error(s) after attempt %d.", path, len(remaining), attempt)
        return False
