"""Top-level plan execution: run steps, correct diagnostics, classify the outcome."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from .cancellation import CancellationToken, ExecutionCancelledError
from .correction.commands import CommandCorrectionLoop
from .correction.diagnostics import DiagnosticCorrectionLoop
from .decisions import DecisionPrompt
from .errors import PlanfixError, PlanParseError
from .execution.changes import ChangeLog, FileChangeEntry
from .execution.context import ExecutionContext
from .execution.runner import PlanRunner
from .execution.steps import StepExecutor
from .models.llm_client import LLMClient
from .planning.parser import ParsedPlanResult, parse_and_validate
from .planning.schema import Plan
from .prompts import PromptContext, render_plan_request
from .settings import EngineSettings
from .tools.diagnostics import CommandDiagnosticProvider, DiagnosticProvider
from .tools.snippets import collect_relevant_files, format_relevant_files
from .tools.workspace import WorkspaceHost

__all__ = [
    "ExecutionOutcome",
    "ExecutionReport",
    "LAST_PLAN_FILENAME",
    "PlanExecutionEngine",
    "PlanGenerationResult",
]


LOGGER = logging.getLogger(__name__)

LAST_PLAN_FILENAME = "last_plan.json"


class ExecutionOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class ExecutionReport:
    """Terminal classification of one plan execution plus the reason on failure."""

    outcome: ExecutionOutcome = ExecutionOutcome.FAILED
    plan_description: str = ""
    affected_files: List[str] = field(default_factory=list)
    changes: List[FileChangeEntry] = field(default_factory=list)
    reason: Optional[str] = None
    parse_error: Optional[str] = None
    raw_text: Optional[str] = None
    unresolved_files: List[str] = field(default_factory=list)
    saved_plan_path: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return self.outcome is ExecutionOutcome.SUCCESS


@dataclass(slots=True)
class PlanGenerationResult:
    """Plan produced for an instruction, or the last parser error and raw text."""

    plan: Optional[Plan] = None
    error: Optional[str] = None
    raw_text: str = ""
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.plan is not None


class PlanExecutionEngine:
    """Coordinates plan generation, step execution and the correction loops.

    One engine may execute several plans in sequence. Each execution gets a
    fresh change log, runner and correction loops, so per-file correction
    history never outlives the run that produced it. Spawned commands are
    killed when the run ends, whatever the outcome.
    """

    def __init__(
        self,
        *,
        host: WorkspaceHost,
        client: LLMClient,
        decisions: DecisionPrompt,
        provider: DiagnosticProvider | None = None,
        settings: EngineSettings | None = None,
        cancel: CancellationToken | None = None,
        project_context: str = "",
    ) -> None:
        self._host = host
        self._client = client
        self._decisions = decisions
        self._settings = settings or EngineSettings()
        self._provider = provider
        self._cancel = cancel or CancellationToken()
        self._project_context = project_context

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        repo_root: Path,
        client: LLMClient,
        decisions: DecisionPrompt,
        provider: DiagnosticProvider | None = None,
    ) -> "PlanExecutionEngine":
        """Convenience constructor used by the CLI."""
        settings = EngineSettings.from_config(config)
        if provider is None and settings.diagnostic_checks:
            provider = CommandDiagnosticProvider(repo_root=repo_root, checks=settings.diagnostic_checks)
        project_section = config.get("project")
        project_context = ""
        if isinstance(project_section, Mapping) and isinstance(project_section.get("name"), str):
            project_context = f"Project: {project_section['name']}"
        return cls(
            host=WorkspaceHost(repo_root),
            client=client,
            decisions=decisions,
            provider=provider,
            settings=settings,
            project_context=project_context,
        )

    @property
    def host(self) -> WorkspaceHost:
        return self._host

    @property
    def client(self) -> LLMClient:
        return self._client

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def cancellation(self) -> CancellationToken:
        return self._cancel

    def cancel(self, reason: str = "Operation cancelled by user.") -> None:
        self._cancel.cancel(reason)

    def _prompt_context(
        self,
        instruction: str,
        plan_description: str = "",
        relevant_files: Sequence[str] = (),
    ) -> PromptContext:
        snippets = ""
        if relevant_files:
            snippets = format_relevant_files(
                collect_relevant_files(self._host.root, relevant_files, cancel=self._cancel)
            )
        return PromptContext(
            instruction=instruction,
            plan_description=plan_description,
            project_context=self._project_context,
            relevant_snippets=snippets,
        )

    def generate_plan(self, instruction: str, *, relevant_files: Sequence[str] = ()) -> PlanGenerationResult:
        """Request a plan for ``instruction``, feeding parser errors back on each retry.

        Raises :class:`ExecutionCancelledError` on cancellation. Generation
        errors other than cancellation end the attempts early with the error
        message recorded in the result.
        """

        context = ExecutionContext(
            host=self._host,
            client=self._client,
            decisions=self._decisions,
            settings=self._settings,
            cancel=self._cancel,
            prompt_context=self._prompt_context(instruction, relevant_files=relevant_files),
        )
        result = PlanGenerationResult()
        parse_error: Optional[str] = None
        for attempt in range(1, self._settings.max_plan_parse_retries + 1):
            result.attempts = attempt
            LOGGER.info(
                "Generating plan (attempt %d/%d)",
                attempt,
                self._settings.max_plan_parse_retries,
            )
            try:
                raw_text = context.generate(
                    render_plan_request(context.prompt_context, parse_error),
                    response_format="json",
                    purpose="plan",
                )
            except PlanfixError as error:
                LOGGER.error("Plan generation failed: %s", error)
                result.error = str(error)
                return result

            parsed: ParsedPlanResult = parse_and_validate(raw_text, self._host.root)
            result.raw_text = raw_text
            if parsed.ok:
                result.plan = parsed.plan
                result.error = None
                return result
            parse_error = parsed.error or "Failed to parse plan."
            result.error = parse_error
            LOGGER.warning("Generated plan failed validation (attempt %d): %s", attempt, parse_error)
        return result

    def run_instruction(self, instruction: str, *, relevant_files: Sequence[str] = ()) -> ExecutionReport:
        """Generate a plan for ``instruction`` and execute it."""
        try:
            generated = self.generate_plan(instruction, relevant_files=relevant_files)
        except ExecutionCancelledError as error:
            return ExecutionReport(outcome=ExecutionOutcome.CANCELLED, reason=str(error))
        if generated.plan is None:
            return ExecutionReport(
                outcome=ExecutionOutcome.FAILED,
                reason=f"Plan could not be generated: {generated.error}",
                parse_error=generated.error,
                raw_text=generated.raw_text,
            )
        return self.execute(generated.plan, instruction=instruction, relevant_files=relevant_files)

    def execute(
        self,
        plan: Plan,
        *,
        instruction: str = "",
        relevant_files: Sequence[str] = (),
    ) -> ExecutionReport:
        """Run ``plan`` to a terminal outcome. Never raises for plan-level failures."""
        report = ExecutionReport(plan_description=plan.description)
        changes = ChangeLog()
        context = ExecutionContext(
            host=self._host,
            client=self._client,
            decisions=self._decisions,
            settings=self._settings,
            cancel=self._cancel,
            changes=changes,
        )
        executor = StepExecutor(context)
        runner = PlanRunner(executor)
        command_loop = CommandCorrectionLoop(runner)
        executor.command_corrector = command_loop
        affected: set[str] = set()

        LOGGER.info("Executing plan: %s (%d step(s))", plan.description, len(plan.steps))
        try:
            context.prompt_context = self._prompt_context(instruction, plan.description, relevant_files)
            affected.update(runner.run(plan.steps))
            affected.update(command_loop.affected_files)

            if self._provider is None or not affected:
                report.outcome = ExecutionOutcome.SUCCESS
            else:
                diagnostic_loop = DiagnosticCorrectionLoop(runner, self._provider)
                resolved = diagnostic_loop.run(affected)
                affected.update(diagnostic_loop.affected_files)
                affected.update(command_loop.affected_files)
                if resolved:
                    report.outcome = ExecutionOutcome.SUCCESS
                else:
                    report.outcome = ExecutionOutcome.FAILED
                    report.unresolved_files = list(diagnostic_loop.unresolved_files)
                    report.reason = (
                        "Files still have errors after automatic correction: "
                        + ", ".join(report.unresolved_files)
                    )
        except ExecutionCancelledError as error:
            report.outcome = ExecutionOutcome.CANCELLED
            report.reason = str(error)
            LOGGER.warning("Plan execution cancelled: %s", error)
        except PlanParseError as error:
            report.outcome = ExecutionOutcome.FAILED
            report.reason = str(error)
            report.parse_error = str(error)
            report.raw_text = error.raw_text
            LOGGER.error("Plan execution failed: %s", error)
        except PlanfixError as error:
            report.outcome = ExecutionOutcome.FAILED
            report.reason = str(error)
            LOGGER.error("Plan execution failed: %s", error)
        finally:
            self._host.processes.kill_all()
            report.affected_files = sorted(affected)
            report.changes = changes.entries
            report.saved_plan_path = self._save_last_plan(changes, plan.description, report.outcome)

        LOGGER.info("Plan execution finished with outcome: %s", report.outcome.value)
        return report

    def _save_last_plan(self, changes: ChangeLog, description: str, outcome: ExecutionOutcome) -> Optional[Path]:
        destination = self._host.root / self._settings.data_dir / LAST_PLAN_FILENAME
        try:
            return changes.save_completed_plan(destination, description, outcome.value)
        except OSError as error:
            LOGGER.warning("Failed to save last plan to %s: %s", destination, error)
            return None
