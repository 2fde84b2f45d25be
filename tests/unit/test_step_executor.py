from __future__ import annotations

from typing import Callable, List

import pytest

from planfix.cancellation import ExecutionCancelledError
from planfix.decisions import CommandChoice, StepFailureChoice
from planfix.execution.changes import ChangeType
from planfix.execution.context import ExecutionContext
from planfix.execution.steps import StepExecutor, StepState
from planfix.models.llm_client import LLMTransportError
from planfix.planning.schema import (
    CreateDirectoryStep,
    CreateFileStep,
    ModifyFileStep,
    RunCommandStep,
)
from planfix.tools.workspace import CommandResult

ContextFactory = Callable[..., ExecutionContext]


def test_create_directory_logs_entry(make_context: ContextFactory) -> None:
    context = make_context()
    outcome = StepExecutor(context).execute(CreateDirectoryStep(step=1, path="src/pkg"))

    assert outcome.state is StepState.SUCCEEDED
    assert (context.host.root / "src" / "pkg").is_dir()
    assert outcome.affected_paths == []
    assert [entry.summary for entry in context.changes.entries] == ["Created directory: 'src/pkg'"]


def test_create_file_with_literal_content(make_context: ContextFactory) -> None:
    context = make_context()
    step = CreateFileStep(step=1, path="src/app.py", content="```python\nprint('hi')\n```")

    outcome = StepExecutor(context).execute(step)

    assert outcome.state is StepState.SUCCEEDED
    assert outcome.affected_paths == ["src/app.py"]
    assert (context.host.root / "src" / "app.py").read_text(encoding="utf-8") == "print('hi')"
    assert context.host.opened_documents == ["src/app.py"]
    entry = context.changes.entries[0]
    assert entry.change_type is ChangeType.CREATED
    assert entry.diff_content.startswith("--- /dev/null")


def test_create_file_with_generated_content(make_context: ContextFactory) -> None:
    context = make_context(["def main():\n    return 0\n"])
    step = CreateFileStep(step=1, path="main.py", generate_prompt="Write an entry point.")

    outcome = StepExecutor(context).execute(step)

    assert outcome.state is StepState.SUCCEEDED
    assert (context.host.root / "main.py").read_text(encoding="utf-8") == "def main():\n    return 0\n"
    assert "Write an entry point." in context.client.prompts[0]


def test_create_file_with_identical_content_is_a_noop(make_context: ContextFactory) -> None:
    context = make_context()
    (context.host.root / "same.txt").write_text("unchanged\n", encoding="utf-8")

    outcome = StepExecutor(context).execute(CreateFileStep(step=1, path="same.txt", content="unchanged\n"))

    assert outcome.state is StepState.SUCCEEDED
    assert outcome.affected_paths == []
    assert len(context.changes) == 0


def test_create_file_over_existing_content_modifies_it(make_context: ContextFactory) -> None:
    context = make_context()
    target = context.host.root / "config.txt"
    target.write_text("alpha\nbeta\n", encoding="utf-8")

    outcome = StepExecutor(context).execute(CreateFileStep(step=1, path="config.txt", content="alpha\ngamma\n"))

    assert outcome.affected_paths == ["config.txt"]
    assert target.read_text(encoding="utf-8") == "alpha\ngamma\n"
    entry = context.changes.entries[0]
    assert entry.change_type is ChangeType.MODIFIED
    assert entry.original_content == "alpha\nbeta\n"


def test_modify_file_applies_minimal_edits(make_context: ContextFactory) -> None:
    context = make_context(["```\nline1\nline2x\n```"])
    target = context.host.root / "notes.txt"
    target.write_text("line1\nline2\n", encoding="utf-8")

    outcome = StepExecutor(context).execute(
        ModifyFileStep(step=1, path="notes.txt", modification_prompt="Append x to line 2.")
    )

    assert outcome.state is StepState.SUCCEEDED
    assert outcome.affected_paths == ["notes.txt"]
    assert target.read_text(encoding="utf-8") == "line1\nline2x"
    assert "Modified notes.txt" in context.changes.entries[0].summary


def test_modify_file_with_identical_output_is_a_noop(make_context: ContextFactory) -> None:
    context = make_context(["keep me\n"])
    (context.host.root / "keep.txt").write_text("keep me\n", encoding="utf-8")

    outcome = StepExecutor(context).execute(
        ModifyFileStep(step=1, path="keep.txt", modification_prompt="Leave it alone.")
    )

    assert outcome.state is StepState.SUCCEEDED
    assert outcome.affected_paths == []
    assert len(context.changes) == 0


def test_transient_failure_is_retried_automatically(make_context: ContextFactory) -> None:
    context = make_context([LLMTransportError("rate limit exceeded"), "generated\n"])

    outcome = StepExecutor(context).execute(
        CreateFileStep(step=1, path="retry.txt", generate_prompt="Anything.")
    )

    assert outcome.state is StepState.SUCCEEDED
    assert outcome.attempts == 2
    assert context.decisions.failure_requests == []


def test_transient_failures_past_the_cap_ask_the_user(make_context: ContextFactory) -> None:
    failures: List[object] = [LLMTransportError("service unavailable") for _ in range(4)]
    context = make_context(failures, failures=[StepFailureChoice.SKIP])

    outcome = StepExecutor(context).execute(
        CreateFileStep(step=1, path="never.txt", generate_prompt="Anything."),
        index=1,
        total=3,
    )

    assert outcome.state is StepState.SKIPPED
    assert outcome.attempts == 4
    assert len(context.decisions.failure_requests) == 1
    label, message = context.decisions.failure_requests[0]
    assert label == "Step 2/3: Creating file: `never.txt` (Auto-retry 3/3)"
    assert "service unavailable" in message
    assert not (context.host.root / "never.txt").exists()


def test_fatal_failure_retry_resets_and_succeeds(make_context: ContextFactory) -> None:
    context = make_context(
        ["Error: content policy violation", "second try\n"],
        failures=[StepFailureChoice.RETRY],
    )

    outcome = StepExecutor(context).execute(
        CreateFileStep(step=1, path="retry.txt", generate_prompt="Anything.")
    )

    assert outcome.state is StepState.SUCCEEDED
    assert outcome.attempts == 2
    assert (context.host.root / "retry.txt").read_text(encoding="utf-8") == "second try\n"


@pytest.mark.parametrize("choice", [StepFailureChoice.CANCEL, StepFailureChoice.DISMISSED])
def test_cancel_or_dismiss_unwinds_the_run(make_context: ContextFactory, choice: StepFailureChoice) -> None:
    context = make_context(failures=[choice])

    with pytest.raises(ExecutionCancelledError):
        StepExecutor(context).execute(
            ModifyFileStep(step=1, path="missing.txt", modification_prompt="Change it.")
        )

    assert "File not found for modification: missing.txt" in context.decisions.failure_requests[0][1]


def test_existing_directory_blocks_file_creation(make_context: ContextFactory) -> None:
    context = make_context(failures=[StepFailureChoice.SKIP])
    (context.host.root / "taken").mkdir()

    outcome = StepExecutor(context).execute(CreateFileStep(step=1, path="taken", content="x"))

    assert outcome.state is StepState.SKIPPED
    assert "a directory exists" in (outcome.error or "")


def test_cancellation_before_step_raises(make_context: ContextFactory) -> None:
    context = make_context()
    context.cancel.cancel("stop")

    with pytest.raises(ExecutionCancelledError, match="stop"):
        StepExecutor(context).execute(CreateDirectoryStep(step=1, path="never"))

    assert not (context.host.root / "never").exists()


def test_run_command_allowed(make_context: ContextFactory) -> None:
    context = make_context(commands=[CommandChoice.ALLOW])

    outcome = StepExecutor(context).execute(RunCommandStep(step=1, command="echo hello > out.txt"))

    assert outcome.state is StepState.SUCCEEDED
    assert (context.host.root / "out.txt").read_text(encoding="utf-8").strip() == "hello"
    assert context.decisions.command_requests == ["echo hello > out.txt"]


@pytest.mark.parametrize("choice", [CommandChoice.SKIP, CommandChoice.DISMISSED])
def test_run_command_skipped(make_context: ContextFactory, choice: CommandChoice) -> None:
    context = make_context(commands=[choice])

    outcome = StepExecutor(context).execute(RunCommandStep(step=1, command="echo hello > out.txt"))

    assert outcome.state is StepState.SKIPPED
    assert not (context.host.root / "out.txt").exists()


def test_failed_command_is_handed_to_the_corrector(make_context: ContextFactory) -> None:
    context = make_context(commands=[CommandChoice.ALLOW])
    seen: List[CommandResult] = []

    def corrector(command: str, result: CommandResult) -> bool:
        seen.append(result)
        return True

    outcome = StepExecutor(context, command_corrector=corrector).execute(
        RunCommandStep(step=1, command="echo broken >&2; exit 3")
    )

    assert outcome.state is StepState.SUCCEEDED
    assert seen[0].exit_code == 3
    assert "broken" in seen[0].stderr


def test_uncorrected_command_failure_needs_a_decision(make_context: ContextFactory) -> None:
    context = make_context(commands=[CommandChoice.ALLOW], failures=[StepFailureChoice.SKIP])

    outcome = StepExecutor(context, command_corrector=lambda command, result: False).execute(
        RunCommandStep(step=1, command="exit 1")
    )

    assert outcome.state is StepState.SKIPPED
    assert context.decisions.failure_requests[0][1] == "Command execution failed for 'exit 1'."
