"""Step executor: runs one plan step with retry and user-intervention semantics.

Each step moves through an explicit state machine::

    PENDING -> RUNNING -> SUCCEEDED
                       -> SKIPPED
                       -> RETRYING (transient failure under the cap) -> RUNNING
                       -> AWAITING_USER_DECISION -> RETRYING | SKIPPED | CANCELLED

Transient failures (rate limits, timeouts, network trouble) are retried
automatically with a linearly growing delay. Anything else, or a transient
failure past the cap, asks the user whether to retry, skip or cancel. A
cancellation raised anywhere unwinds the whole run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from ..cancellation import ExecutionCancelledError
from ..decisions import CommandChoice, StepFailureChoice
from ..errors import CommandExecutionError, StepExecutionError, is_transient_error
from ..planning.schema import (
    CreateDirectoryStep,
    CreateFileStep,
    ModifyFileStep,
    RunCommandStep,
    Step,
    describe_step,
)
from ..prompts import render_create_file_request, render_modify_file_request
from ..tools.diffing import clean_code_output, diff_to_edits, summarize_changes
from ..tools.workspace import CommandResult
from .changes import ChangeType, FileChangeEntry
from .context import ExecutionContext

__all__ = ["CommandCorrector", "StepExecutor", "StepOutcome", "StepState"]


LOGGER = logging.getLogger(__name__)

CommandCorrector = Callable[[str, CommandResult], bool]


class StepState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    AWAITING_USER_DECISION = "awaiting_user_decision"
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class StepOutcome:
    """Terminal result of one step."""

    step: Step
    state: StepState
    attempts: int = 0
    affected_paths: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(slots=True)
class _ActionResult:
    affected_paths: List[str] = field(default_factory=list)
    skipped: bool = False


class StepExecutor:
    """Execute plan steps against the workspace of an :class:`ExecutionContext`."""

    def __init__(self, context: ExecutionContext, *, command_corrector: Optional[CommandCorrector] = None) -> None:
        self._context = context
        self.command_corrector = command_corrector

    @property
    def context(self) -> ExecutionContext:
        return self._context

    def execute(self, step: Step, index: int = 0, total: int = 1) -> StepOutcome:
        """Drive ``step`` to a terminal state. Raises :class:`ExecutionCancelledError` on cancel."""
        settings = self._context.settings
        cancel = self._context.cancel
        state = StepState.PENDING
        transient_attempt = 0
        attempts = 0
        label = ""
        last_error: Optional[BaseException] = None
        result = _ActionResult()

        while True:
            if state in (StepState.PENDING, StepState.RETRYING):
                cancel.raise_if_cancelled()
                state = StepState.RUNNING
                attempts += 1
                label = self._label(step, index, total, transient_attempt)
                LOGGER.info("%s", label)
                try:
                    result = self._dispatch(step, index, total)
                except ExecutionCancelledError:
                    raise
                except Exception as error:
                    last_error = error
                    if is_transient_error(error) and transient_attempt < settings.max_transient_step_retries:
                        transient_attempt += 1
                        LOGGER.warning(
                            "Step %d/%d failed (transient, auto-retrying %d/%d): %s",
                            index + 1,
                            total,
                            transient_attempt,
                            settings.max_transient_step_retries,
                            error,
                        )
                        cancel.sleep(settings.transient_retry_delay(transient_attempt))
                        state = StepState.RETRYING
                    else:
                        LOGGER.error("Step %d/%d failed: %s. Requires user intervention.", index + 1, total, error)
                        state = StepState.AWAITING_USER_DECISION
                else:
                    state = StepState.SKIPPED if result.skipped else StepState.SUCCEEDED

            elif state is StepState.AWAITING_USER_DECISION:
                choice = self._context.decisions.resolve_step_failure(label, str(last_error))
                cancel.raise_if_cancelled()
                if choice is StepFailureChoice.RETRY:
                    transient_attempt = 0
                    cancel.sleep(settings.transient_retry_delay(transient_attempt))
                    state = StepState.RETRYING
                elif choice is StepFailureChoice.SKIP:
                    LOGGER.info("Step %d/%d skipped by user.", index + 1, total)
                    result = _ActionResult(skipped=True)
                    state = StepState.SKIPPED
                else:
                    state = StepState.CANCELLED
                    raise ExecutionCancelledError(f"Plan cancelled by user at step {index + 1}.")

            else:
                return StepOutcome(
                    step=step,
                    state=state,
                    attempts=attempts,
                    affected_paths=list(result.affected_paths),
                    error=str(last_error) if last_error is not None else None,
                )

    def _label(self, step: Step, index: int, total: int, transient_attempt: int) -> str:
        suffix = ""
        if transient_attempt > 0:
            suffix = f" (Auto-retry {transient_attempt}/{self._context.settings.max_transient_step_retries})"
        return f"Step {index + 1}/{total}: {describe_step(step)}{suffix}"

    def _dispatch(self, step: Step, index: int, total: int) -> _ActionResult:
        match step:
            case CreateDirectoryStep():
                return self._create_directory(step)
            case CreateFileStep():
                return self._create_file(step)
            case ModifyFileStep():
                return self._modify_file(step)
            case RunCommandStep():
                return self._run_command(step)
        raise StepExecutionError(f"Unsupported step type: {type(step).__name__}")

    def _create_directory(self, step: CreateDirectoryStep) -> _ActionResult:
        self._context.host.create_directory(step.path)
        self._context.changes.log_directory(step.path)
        return _ActionResult()

    def _create_file(self, step: CreateFileStep) -> _ActionResult:
        host = self._context.host
        if step.generate_prompt is not None:
            prompt = render_create_file_request(
                step.path,
                step.generate_prompt,
                self._context.current_prompt_context(),
            )
            desired = clean_code_output(self._context.generate(prompt, purpose=f"create_file:{step.path}"))
        else:
            desired = clean_code_output(step.content or "")

        stat = host.stat(step.path)
        if stat.is_dir:
            raise StepExecutionError(f"Cannot create file {step.path}: a directory exists at that path.")
        if not stat.exists:
            host.write_file(step.path, desired)
            host.show_document(step.path)
            change = summarize_changes("", desired, step.path)
            self._context.changes.log_change(
                FileChangeEntry(
                    file_path=step.path,
                    change_type=ChangeType.CREATED,
                    summary=change.summary,
                    diff_content=change.formatted_diff,
                    new_content=desired,
                )
            )
            LOGGER.info("Created file `%s`", step.path)
            return _ActionResult(affected_paths=[step.path])

        existing = host.read_file(step.path)
        if existing == desired:
            LOGGER.info("File `%s` already has the desired content.", step.path)
            return _ActionResult()
        return self._apply_desired_content(step.path, existing, desired)

    def _modify_file(self, step: ModifyFileStep) -> _ActionResult:
        host = self._context.host
        try:
            existing = host.read_file(step.path)
        except FileNotFoundError as error:
            raise StepExecutionError(f"File not found for modification: {step.path}") from error

        prompt = render_modify_file_request(
            step.path,
            step.modification_prompt,
            existing,
            self._context.current_prompt_context(),
        )
        desired = clean_code_output(self._context.generate(prompt, purpose=f"modify_file:{step.path}"))
        if existing == desired:
            LOGGER.info("File `%s` content is already as desired, no modifications needed.", step.path)
            return _ActionResult()
        return self._apply_desired_content(step.path, existing, desired)

    def _apply_desired_content(self, path: str, existing: str, desired: str) -> _ActionResult:
        host = self._context.host
        host.show_document(path)
        updated = host.apply_edits(path, diff_to_edits(existing, desired))
        change = summarize_changes(existing, updated, path)
        if not change.has_changes:
            LOGGER.info("File `%s` needed no substantial modifications.", path)
            return _ActionResult()
        self._context.changes.log_change(
            FileChangeEntry(
                file_path=path,
                change_type=ChangeType.MODIFIED,
                summary=change.summary,
                diff_content=change.formatted_diff,
                original_content=existing,
                new_content=updated,
            )
        )
        LOGGER.info("Modified file `%s`: %s", path, change.summary)
        return _ActionResult(affected_paths=[path])

    def _run_command(self, step: RunCommandStep) -> _ActionResult:
        context = self._context
        choice = context.decisions.confirm_command(step.command)
        context.cancel.raise_if_cancelled()
        if choice is not CommandChoice.ALLOW:
            reason = "prompt dismissed" if choice is CommandChoice.DISMISSED else "user choice"
            LOGGER.info("Command skipped (%s): %s", reason, step.command)
            return _ActionResult(skipped=True)

        result = context.host.run_command(step.command, context.cancel)
        if result.ok:
            LOGGER.info("Command `%s` executed successfully.", step.command)
            return _ActionResult()

        LOGGER.error("Command `%s` failed with exit code %d.", step.command, result.exit_code)
        corrected = False
        if self.command_corrector is not None:
            corrected = self.command_corrector(step.command, result)
        if not corrected:
            raise CommandExecutionError(
                f"Command execution failed for '{step.command}'.",
                command=step.command,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return _ActionResult()
