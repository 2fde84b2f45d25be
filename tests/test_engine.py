from __future__ import annotations

import json
from typing import Callable

from planfix.decisions import CommandChoice
from planfix.engine import LAST_PLAN_FILENAME, ExecutionOutcome, PlanExecutionEngine
from planfix.planning.parser import parse_and_validate
from planfix.planning.schema import Plan

EngineFactory = Callable[..., PlanExecutionEngine]


def _plan(engine: PlanExecutionEngine, raw: str) -> Plan:
    parsed = parse_and_validate(raw, engine.host.root)
    assert parsed.plan is not None, parsed.error
    return parsed.plan


def _saved(engine: PlanExecutionEngine) -> dict:
    path = engine.host.root / engine.settings.data_dir / LAST_PLAN_FILENAME
    return json.loads(path.read_text(encoding="utf-8"))


def test_clean_plan_succeeds_and_is_saved(
    make_engine: EngineFactory, plan_json: Callable[..., str], marker_provider
) -> None:
    engine = make_engine(provider=marker_provider)
    plan = _plan(
        engine,
        plan_json({"action": "create_file", "path": "app.py", "content": "ok\n"}, description="Add app"),
    )

    report = engine.execute(plan)

    assert report.ok
    assert report.affected_files == ["app.py"]
    assert [entry.file_path for entry in report.changes] == ["app.py"]
    assert report.saved_plan_path == engine.host.root / "data" / LAST_PLAN_FILENAME
    saved = _saved(engine)
    assert saved["plan_description"] == "Add app"
    assert saved["outcome"] == "success"
    assert saved["changes"][0]["change_type"] == "created"


def test_unresolved_diagnostics_fail_the_run(
    make_engine: EngineFactory, plan_json: Callable[..., str], marker_provider
) -> None:
    engine = make_engine(["no plan", "still none", "nothing"], provider=marker_provider)
    plan = _plan(
        engine,
        plan_json({"action": "create_file", "path": "app.py", "content": "BROKEN X\n"}, description="Add app"),
    )

    report = engine.execute(plan)

    assert report.outcome is ExecutionOutcome.FAILED
    assert report.unresolved_files == ["app.py"]
    assert "app.py" in (report.reason or "")
    assert _saved(engine)["plan_description"] == "Add app (Failed)"


def test_dismissed_failure_cancels_the_run(make_engine: EngineFactory, plan_json: Callable[..., str]) -> None:
    engine = make_engine()
    plan = _plan(
        engine,
        plan_json(
            {"action": "create_directory", "path": "docs"},
            {"action": "modify_file", "path": "missing.txt", "modification_prompt": "Edit it."},
            {"action": "create_file", "path": "never.txt", "content": "x"},
            description="Edit docs",
        ),
    )

    report = engine.execute(plan)

    assert report.outcome is ExecutionOutcome.CANCELLED
    assert not (engine.host.root / "never.txt").exists()
    assert _saved(engine)["plan_description"] == "Edit docs (Cancelled)"


def test_files_fixed_by_command_correction_are_reported(
    make_engine: EngineFactory, plan_json: Callable[..., str]
) -> None:
    engine = make_engine(
        [plan_json({"action": "create_file", "path": "setup.cfg", "content": "[metadata]\n"})],
        commands=[CommandChoice.ALLOW],
    )
    plan = _plan(engine, plan_json({"action": "run_command", "command": "test -f setup.cfg"}))

    report = engine.execute(plan)

    assert report.ok
    assert report.affected_files == ["setup.cfg"]


def test_generate_plan_feeds_parse_errors_back(make_engine: EngineFactory, plan_json: Callable[..., str]) -> None:
    engine = make_engine(
        [
            '{"planDescription": "x", "steps": []}',
            plan_json({"action": "create_directory", "path": "src"}),
        ]
    )

    result = engine.generate_plan("Create a source folder.")

    assert result.ok
    assert result.attempts == 2
    retry_prompt = engine.client.prompts[1]
    assert "Your previous plan could not be parsed." in retry_prompt
    assert "## User Request\nCreate a source folder." in retry_prompt
    assert engine.client.purposes == ["plan", "plan"]


def test_run_instruction_reports_unparseable_plans(make_engine: EngineFactory) -> None:
    engine = make_engine(["nope", "nope again", "still nope"])

    report = engine.run_instruction("Do something.")

    assert report.outcome is ExecutionOutcome.FAILED
    assert report.raw_text == "still nope"
    assert report.parse_error
    assert len(engine.client.payloads) == engine.settings.max_plan_parse_retries


def test_generation_error_stops_plan_attempts(make_engine: EngineFactory) -> None:
    engine = make_engine(["Error: model unavailable"])

    result = engine.generate_plan("Anything.")

    assert not result.ok
    assert result.attempts == 1
    assert "model unavailable" in (result.error or "")


def test_run_instruction_executes_generated_plan(
    make_engine: EngineFactory, plan_json: Callable[..., str]
) -> None:
    engine = make_engine(
        [
            plan_json({"action": "create_file", "path": "notes.md", "generate_prompt": "Write notes."}),
            "# Notes\n",
        ]
    )
    (engine.host.root / "context.txt").write_text("background\n", encoding="utf-8")

    report = engine.run_instruction("Write notes.", relevant_files=["context.txt"])

    assert report.ok
    assert (engine.host.root / "notes.md").read_text(encoding="utf-8") == "# Notes\n"
    assert "--- Relevant File: context.txt ---" in engine.client.prompts[0]


def test_cancelled_engine_reports_cancellation(make_engine: EngineFactory) -> None:
    engine = make_engine()
    engine.cancel("stop now")

    report = engine.run_instruction("Anything.")

    assert report.outcome is ExecutionOutcome.CANCELLED
    assert report.reason == "stop now"


def test_diagnostic_correction_prompt_only_shows_the_corrected_file(
    make_engine: EngineFactory, plan_json: Callable[..., str], marker_provider
) -> None:
    engine = make_engine(
        [
            plan_json({"action": "modify_file", "path": "app.py", "modification_prompt": "Fix the errors."}),
            "ok\n",
        ],
        provider=marker_provider,
    )
    (engine.host.root / "other.py").write_text("SECRET_OTHER_FILE = 1\n", encoding="utf-8")
    plan = _plan(engine, plan_json({"action": "create_file", "path": "app.py", "content": "BROKEN X\n"}))

    report = engine.execute(plan, instruction="Add app.", relevant_files=["other.py"])

    assert report.ok
    purposes = engine.client.purposes
    correction_prompt = engine.client.prompts[purposes.index("diagnostic correction plan for app.py (attempt 1)")]
    assert "SECRET_OTHER_FILE" not in correction_prompt
    assert "--- Relevant File: app.py ---" in correction_prompt
    assert "## User Request\nAdd app." in correction_prompt
    modify_prompt = engine.client.prompts[purposes.index("modify_file:app.py")]
    assert "SECRET_OTHER_FILE" in modify_prompt
