"""User decision prompts raised while a plan executes."""

from __future__ import annotations

import logging
from enum import Enum

import typer

__all__ = [
    "AutoDecisionPrompt",
    "CommandChoice",
    "ConsoleDecisionPrompt",
    "DecisionPrompt",
    "StepFailureChoice",
]


LOGGER = logging.getLogger(__name__)


class CommandChoice(str, Enum):
    """Answer to the Allow/Skip prompt shown before running a command."""

    ALLOW = "allow"
    SKIP = "skip"
    DISMISSED = "dismissed"


class StepFailureChoice(str, Enum):
    """Answer to the Retry/Skip/Cancel prompt shown after a step fails."""

    RETRY = "retry"
    SKIP = "skip"
    CANCEL = "cancel"
    DISMISSED = "dismissed"


class DecisionPrompt:
    """Base class for the interactive decisions the step executor may need."""

    def confirm_command(self, command: str) -> CommandChoice:
        raise NotImplementedError("Subclasses must implement confirm_command().")

    def resolve_step_failure(self, step_label: str, error_message: str) -> StepFailureChoice:
        raise NotImplementedError("Subclasses must implement resolve_step_failure().")


class ConsoleDecisionPrompt(DecisionPrompt):
    """Terminal prompts backed by typer.

    With ``auto_allow_commands`` every command is approved without asking;
    failed steps still ask whether to retry, skip or cancel.
    """

    def __init__(self, *, auto_allow_commands: bool = False) -> None:
        self.auto_allow_commands = auto_allow_commands

    def confirm_command(self, command: str) -> CommandChoice:
        if self.auto_allow_commands:
            LOGGER.info("Auto-allow command: %s", command)
            return CommandChoice.ALLOW
        typer.echo(f"Command:\n[ `{command}` ]")
        typer.echo("Please review it carefully. The plan wants to run the command above.")
        answer = self._ask("Allow or skip?", {"a": "allow", "allow": "allow", "s": "skip", "skip": "skip"}, "skip")
        if answer is None:
            return CommandChoice.DISMISSED
        return CommandChoice(answer)

    def resolve_step_failure(self, step_label: str, error_message: str) -> StepFailureChoice:
        typer.echo(f"{step_label} failed: {error_message}")
        answer = self._ask(
            "Retry step, skip step or cancel plan?",
            {
                "r": "retry",
                "retry": "retry",
                "s": "skip",
                "skip": "skip",
                "c": "cancel",
                "cancel": "cancel",
            },
            "cancel",
        )
        if answer is None:
            return StepFailureChoice.DISMISSED
        return StepFailureChoice(answer)

    @staticmethod
    def _ask(question: str, options: dict[str, str], default: str) -> str | None:
        while True:
            try:
                raw = typer.prompt(question, default=default)
            except (typer.Abort, EOFError):
                return None
            answer = options.get(str(raw).strip().lower())
            if answer is not None:
                return answer
            typer.echo(f"Please answer one of: {', '.join(sorted(set(options.values())))}.")


class AutoDecisionPrompt(DecisionPrompt):
    """Non-interactive answers for unattended runs."""

    def __init__(
        self,
        *,
        allow_commands: bool = False,
        on_step_failure: StepFailureChoice = StepFailureChoice.CANCEL,
    ) -> None:
        self._allow_commands = allow_commands
        self._on_step_failure = on_step_failure

    def confirm_command(self, command: str) -> CommandChoice:
        choice = CommandChoice.ALLOW if self._allow_commands else CommandChoice.SKIP
        LOGGER.info("Auto-%s command: %s", choice.value, command)
        return choice

    def resolve_step_failure(self, step_label: str, error_message: str) -> StepFailureChoice:
        LOGGER.info("Auto-%s after failure of %s: %s", self._on_step_failure.value, step_label, error_message)
        return self._on_step_failure
