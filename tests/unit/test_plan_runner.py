from __future__ import annotations

from typing import Callable

import pytest

from planfix.cancellation import ExecutionCancelledError
from planfix.decisions import CommandChoice
from planfix.errors import PlanParseError
from planfix.execution.context import ExecutionContext
from planfix.execution.runner import PlanRunner
from planfix.execution.steps import StepExecutor, StepState
from planfix.planning.schema import CreateDirectoryStep, CreateFileStep, ModifyFileStep, RunCommandStep

ContextFactory = Callable[..., ExecutionContext]


def test_runner_collects_created_and_modified_files(make_context: ContextFactory) -> None:
    context = make_context(["changed\n"], commands=[CommandChoice.SKIP])
    (context.host.root / "existing.txt").write_text("original\n", encoding="utf-8")
    runner = PlanRunner(StepExecutor(context))

    affected = runner.run(
        [
            CreateDirectoryStep(step=1, path="pkg"),
            CreateFileStep(step=2, path="pkg/new.txt", content="new\n"),
            ModifyFileStep(step=3, path="existing.txt", modification_prompt="Change it."),
            RunCommandStep(step=4, command="echo skipped"),
        ]
    )

    assert affected == {"pkg/new.txt", "existing.txt"}
    assert [outcome.state for outcome in runner.outcomes] == [
        StepState.SUCCEEDED,
        StepState.SUCCEEDED,
        StepState.SUCCEEDED,
        StepState.SKIPPED,
    ]


def test_runner_keeps_array_order(make_context: ContextFactory) -> None:
    context = make_context()
    runner = PlanRunner(StepExecutor(context))

    runner.run(
        [
            CreateFileStep(step=1, path="b.txt", content="b"),
            CreateFileStep(step=2, path="a.txt", content="a"),
        ]
    )

    assert [entry.file_path for entry in context.changes.entries] == ["b.txt", "a.txt"]


def test_runner_rejects_empty_plans(make_context: ContextFactory) -> None:
    runner = PlanRunner(StepExecutor(make_context()))

    with pytest.raises(PlanParseError, match="no steps"):
        runner.run([])


def test_runner_stops_on_cancellation(make_context: ContextFactory) -> None:
    context = make_context()
    runner = PlanRunner(StepExecutor(context))
    context.cancel.cancel()

    with pytest.raises(ExecutionCancelledError):
        runner.run([CreateFileStep(step=1, path="never.txt", content="x")])

    assert runner.outcomes == []
    assert not (context.host.root / "never.txt").exists()
