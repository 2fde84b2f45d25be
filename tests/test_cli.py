from __future__ import annotations

import json
import textwrap
from pathlib import Path

import yaml
from typer.testing import CliRunner

from planfix.cli import _build_decisions, app
from planfix.decisions import AutoDecisionPrompt, CommandChoice, ConsoleDecisionPrompt


def _write_config(repo_root: Path) -> Path:
    config_path = repo_root / "config.yaml"
    config_path.write_text(
        textwrap.dedent(
            """
            project:
              name: Sample Project
              repo_root: .
            models:
              default: gpt-5-offline
            execution:
              transient_retry_base_delay: 0
              transient_retry_step_delay: 0
            diagnostics:
              checks: []
            paths:
              data: data
            """
        ).strip()
        + "\n",
        encoding="utf-8",
    )
    return config_path


def test_init_writes_defaults_and_refuses_to_overwrite(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    runner = CliRunner()

    result = runner.invoke(
        app,
        ["init", "--config", str(config_path), "--name", "Demo", "--model", "gpt-5-offline"],
        catch_exceptions=False,
    )
    assert result.exit_code == 0, result.output
    config_data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert config_data["project"]["name"] == "Demo"
    assert config_data["models"]["default"] == "gpt-5-offline"
    assert config_data["execution"]["max_correction_attempts"] == 3

    again = runner.invoke(app, ["init", "--config", str(config_path)], catch_exceptions=False)
    assert again.exit_code == 1
    assert "already exists" in again.output


def test_run_goal_with_offline_client(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    runner = CliRunner()

    result = runner.invoke(
        app,
        [
            "run",
            "--goal",
            "Document the API",
            "--config",
            str(config_path),
            "--no-use-remote",
            "--non-interactive",
        ],
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    assert "Using offline stub client." in result.output
    assert "Outcome: success" in result.output
    notes = (tmp_path / "planfix_notes.md").read_text(encoding="utf-8")
    assert "Document the API" in notes
    saved = json.loads((tmp_path / "data" / "last_plan.json").read_text(encoding="utf-8"))
    assert saved["outcome"] == "success"


def test_run_plan_file(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    plan_path = tmp_path / "plan.json"
    plan_path.write_text(
        json.dumps(
            {
                "planDescription": "Scaffold package",
                "steps": [
                    {"step": 1, "action": "create_directory", "description": "Package dir", "path": "pkg"},
                    {
                        "step": 2,
                        "action": "create_file",
                        "description": "Init module",
                        "path": "pkg/__init__.py",
                        "content": "VERSION = 1\n",
                    },
                ],
            }
        ),
        encoding="utf-8",
    )
    runner = CliRunner()

    result = runner.invoke(
        app,
        ["run", str(plan_path), "--config", str(config_path), "--no-use-remote", "--non-interactive"],
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    assert "Plan: Scaffold package" in result.output
    assert "Affected files: pkg/__init__.py" in result.output
    assert (tmp_path / "pkg" / "__init__.py").read_text(encoding="utf-8") == "VERSION = 1\n"


def test_run_rejects_invalid_plan_file(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    plan_path = tmp_path / "plan.json"
    plan_path.write_text('{"planDescription": "Broken", "steps": []}', encoding="utf-8")

    result = CliRunner().invoke(
        app,
        ["run", str(plan_path), "--config", str(config_path), "--no-use-remote", "--non-interactive"],
        catch_exceptions=False,
    )

    assert result.exit_code == 1
    assert "Invalid plan:" in result.output


def test_run_refused_command_fails_the_run(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    plan_path = tmp_path / "plan.json"
    plan_path.write_text(
        json.dumps(
            {
                "planDescription": "Build",
                "steps": [{"step": 1, "action": "run_command", "description": "Build", "command": "exit 1"}],
            }
        ),
        encoding="utf-8",
    )

    result = CliRunner().invoke(
        app,
        ["run", str(plan_path), "--config", str(config_path), "--no-use-remote", "--non-interactive", "--yes"],
        catch_exceptions=False,
    )

    assert result.exit_code == 130
    assert "Outcome: cancelled" in result.output


def test_yes_preapproves_commands_but_still_asks_on_failure(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    plan_path = tmp_path / "plan.json"
    plan_path.write_text(
        json.dumps(
            {
                "planDescription": "Build",
                "steps": [{"step": 1, "action": "run_command", "description": "Build", "command": "exit 1"}],
            }
        ),
        encoding="utf-8",
    )

    result = CliRunner().invoke(
        app,
        ["run", str(plan_path), "--config", str(config_path), "--no-use-remote", "--yes"],
        input="s\n",
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    assert "Allow or skip?" not in result.output
    assert "Retry step, skip step or cancel plan?" in result.output
    assert "Outcome: success" in result.output


def test_decision_prompt_selection() -> None:
    interactive = _build_decisions({}, assume_yes=True, interactive=True)
    configured = _build_decisions({"execution": {"auto_approve_commands": True}}, assume_yes=False, interactive=True)
    unattended = _build_decisions({}, assume_yes=False, interactive=False)

    assert isinstance(interactive, ConsoleDecisionPrompt)
    assert interactive.confirm_command("make") is CommandChoice.ALLOW
    assert isinstance(configured, ConsoleDecisionPrompt) and configured.auto_allow_commands
    assert isinstance(unattended, AutoDecisionPrompt)
    assert unattended.confirm_command("make") is CommandChoice.SKIP


def test_run_requires_plan_or_goal(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)

    result = CliRunner().invoke(app, ["run", "--config", str(config_path), "--no-use-remote"])

    assert result.exit_code == 2


def test_diff_prints_summary_and_edits(tmp_path: Path) -> None:
    old = tmp_path / "old.py"
    new = tmp_path / "new.py"
    old.write_text("def a():\n    return 1\n", encoding="utf-8")
    new.write_text("def a():\n    return 2\n", encoding="utf-8")

    result = CliRunner().invoke(app, ["diff", str(old), str(new), "--edits"], catch_exceptions=False)

    assert result.exit_code == 0, result.output
    assert "+++ " in result.output
    assert "-> '2'" in result.output
