"""Correction loop for a single failed external command."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Set

from ..cancellation import ExecutionCancelledError
from ..execution.runner import PlanRunner
from ..planning.parser import ParsedPlanResult, parse_and_validate
from ..prompts import render_command_correction_request
from ..tools.workspace import CommandResult
from .schema import CorrectionFeedback, FeedbackType

__all__ = ["CommandCorrectionLoop"]


LOGGER = logging.getLogger(__name__)

PlanParser = Callable[[str, Path], ParsedPlanResult]


class CommandCorrectionLoop:
    """Ask for corrective plans until one parses, then execute it.

    The first sub-plan that parses is trusted: it runs through the plan runner
    and the loop reports success without re-running the failed command.
    Paths touched by corrective sub-plans accumulate in ``affected_files``.
    """

    def __init__(self, runner: PlanRunner, *, parser: PlanParser = parse_and_validate) -> None:
        self._runner = runner
        self._parser = parser
        self._depth = 0
        self.affected_files: Set[str] = set()
        self.attempts_made = 0

    def __call__(self, command: str, result: CommandResult) -> bool:
        return self.correct(command, result.stdout, result.stderr)

    def correct(self, failed_command: str, stdout: str, stderr: str) -> bool:
        """Return ``True`` once a corrective plan parsed and ran, ``False`` after the cap."""
        if self._depth > 0:
            LOGGER.error("Command `%s` failed inside a correction plan; not correcting recursively.", failed_command)
            return False

        context = self._runner.executor.context
        max_attempts = context.settings.max_correction_attempts
        feedback: Optional[CorrectionFeedback] = None
        self.attempts_made = 0

        self._depth += 1
        try:
            for attempt in range(1, max_attempts + 1):
                context.cancel.raise_if_cancelled()
                self.attempts_made = attempt
                if attempt == 1:
                    feedback = CorrectionFeedback(
                        type=FeedbackType.COMMAND_FAILED,
                        message=f"Command execution failed: {failed_command}",
                        details={"stdout": stdout, "stderr": stderr},
                    )
                LOGGER.warning(
                    "Attempting correction for failed command (attempt %d/%d): %s",
                    attempt,
                    max_attempts,
                    failed_command,
                )

                raw_plan = ""
                try:
                    prompt = render_command_correction_request(
                        failed_command,
                        feedback,
                        context.current_prompt_context(),
                    )
                    raw_plan = context.generate(
                        prompt,
                        response_format="json",
                        purpose=f"command correction plan (attempt {attempt})",
                    ).strip()
                    parsed = self._parser(raw_plan, context.host.root)
                    context.cancel.raise_if_cancelled()

                    if parsed.ok and parsed.plan is not None:
                        LOGGER.info("Applying command correction plan: %s", parsed.plan.description)
                        feedback = None
                        self.affected_files.update(self._runner.run(parsed.plan.steps))
                        LOGGER.info("Command correction plan applied.")
                        return True

                    error_text = parsed.error or "Failed to parse command correction plan."
                    LOGGER.error("Invalid command correction plan (attempt %d): %s", attempt, error_text)
                    feedback = CorrectionFeedback(
                        type=FeedbackType.PARSING_FAILED,
                        message=error_text,
                        details={"parsing_error": error_text, "failed_json": raw_plan},
                    )
                except ExecutionCancelledError:
                    raise
                except Exception as error:
                    LOGGER.error("Command correction attempt %d failed: %s", attempt, error)
                    feedback = CorrectionFeedback(
                        type=FeedbackType.UNKNOWN,
                        message=f"An unexpected error occurred during command correction: {error}",
                    )
        finally:
            self._depth -= 1

        LOGGER.error(
            "Command correction failed after %d attempts. Manual intervention required.",
            max_attempts,
        )
        return False
