"""CLI commands for configuring planfix and executing plans."""

from __future__ import annotations

import copy
import json
import logging
import re
import signal
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from .decisions import AutoDecisionPrompt, ConsoleDecisionPrompt, DecisionPrompt, StepFailureChoice
from .engine import ExecutionOutcome, ExecutionReport, PlanExecutionEngine
from .models import GPT5Client, LLMClient, LLMClientError
from .planning.parser import parse_and_validate
from .tools.diffing import diff_to_edits, format_unified_diff, summarize_changes

APP_HELP = "Execute generated change plans and drive the results to an error-free state."
DEFAULT_CONFIG_NAME = "config.yaml"
EXIT_CANCELLED = 130

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "name": "",
        "repo_root": ".",
    },
    "models": {
        "default": "gpt-5-mini",
        "timeout": 250,
        "max_attempts": 5,
        "retry_delay": 0.5,
    },
    "execution": {
        "max_plan_parse_retries": 3,
        "max_transient_step_retries": 3,
        "max_correction_attempts": 3,
        "transient_retry_base_delay": 10.0,
        "transient_retry_step_delay": 5.0,
        "stabilize_timeout_ms": 5000,
        "stabilize_poll_ms": 100,
        "stabilize_required_checks": 3,
        "auto_approve_commands": False,
    },
    "diagnostics": {
        "checks": [
            {"name": "pyflakes", "command": "python -m pyflakes {path}"},
        ],
    },
    "paths": {
        "data": "data",
    },
}


LOGGER = logging.getLogger(__name__)


def _copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


app = typer.Typer(help=APP_HELP)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk and return it as a dictionary."""
    if not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse config: {error}")
        raise typer.Exit(code=1) from error

    if not isinstance(data, dict):
        typer.echo("Configuration must be a mapping at the top level.")
        raise typer.Exit(code=1)

    return data


def _resolve_repo_root(config: Dict[str, Any], config_path: Path) -> Path:
    """Resolve the repository root from configuration."""

    project_cfg = config.get("project") or {}
    repo_root_value = project_cfg.get("repo_root", ".")
    repo_root_path = Path(repo_root_value)
    if not repo_root_path.is_absolute():
        repo_root_path = (config_path.parent / repo_root_path).resolve()
    return repo_root_path


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_client(config: Dict[str, Any], *, use_remote: bool) -> LLMClient:
    """Select either the real GPT-5 client or the offline stub."""
    models_cfg = config.get("models") or {}
    model_name = str(models_cfg.get("default", "gpt-5-mini"))
    model_name_key = model_name.lower()
    offline_model = model_name_key in {"offline", "gpt-5-offline"} or model_name_key.endswith(
        "-offline"
    )

    if use_remote and not offline_model:
        typer.echo(f"Using GPT-5 client ({model_name}).")
        client_kwargs: Dict[str, Any] = {}
        timeout_value = models_cfg.get("timeout")
        if isinstance(timeout_value, (int, float)) and timeout_value > 0:
            client_kwargs["timeout"] = float(timeout_value)
        max_attempts_value = models_cfg.get("max_attempts")
        if isinstance(max_attempts_value, int) and max_attempts_value > 0:
            client_kwargs["max_attempts"] = max_attempts_value
        retry_delay_value = models_cfg.get("retry_delay")
        if isinstance(retry_delay_value, (int, float)) and retry_delay_value >= 0:
            client_kwargs["retry_delay"] = float(retry_delay_value)
        base_url_value = models_cfg.get("base_url")
        if isinstance(base_url_value, str) and base_url_value.strip():
            client_kwargs["base_url"] = base_url_value.strip()
        api_key_value = models_cfg.get("api_key")
        if isinstance(api_key_value, str) and api_key_value.strip():
            client_kwargs["api_key"] = api_key_value.strip()
        try:
            return GPT5Client(model=model_name, **client_kwargs)
        except ValueError as error:
            if "api key" in str(error).lower():
                typer.echo(
                    "No API key given. Set OPENAI_API_KEY or GPT5_API_KEY, "
                    "or re-run with --no-use-remote to use the offline stub."
                )
            else:
                typer.echo(f"Failed to initialise GPT-5 client: {error}")
            raise typer.Exit(code=1)
        except LLMClientError as error:
            typer.echo(f"Failed to initialise GPT-5 client: {error}")
            raise typer.Exit(code=1)

    if use_remote and offline_model:
        typer.echo(f"Model '{model_name}' is offline-only; using offline stub client.")
    else:
        typer.echo("Using offline stub client.")
    return _OfflineLLMClient()


class _OfflineLLMClient(LLMClient):
    """Local stub that synthesizes deterministic responses for demos/tests.

    Plans consist of a single file creation that records the request. The stub
    cannot repair anything, so correction requests receive an error marker.
    """

    _REQUEST_RE = re.compile(r"## User Request\n(?P<text>.+?)(?:\n\n|\Z)", re.DOTALL)
    NOTES_PATH = "planfix_notes.md"

    def __init__(self) -> None:
        super().__init__("offline", max_attempts=1)

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        metadata = payload.get("metadata") or {}
        purpose = str(metadata.get("purpose") or "")
        prompt = ""
        for message in payload.get("input") or []:
            for item in message.get("content") or []:
                prompt = str(item.get("text") or prompt)
        match = self._REQUEST_RE.search(prompt)
        instruction = match.group("text").strip() if match else "No request recorded."

        if purpose == "plan":
            return json.dumps(
                {
                    "planDescription": f"Record the request: {instruction.splitlines()[0]}",
                    "steps": [
                        {
                            "step": 1,
                            "action": "create_file",
                            "description": "Write the request notes.",
                            "path": self.NOTES_PATH,
                            "generate_prompt": "Summarise the request as markdown notes.",
                        }
                    ],
                }
            )
        if purpose.startswith("create_file:") or purpose.startswith("modify_file:"):
            return f"# Notes\n\n{instruction}\n"
        return "Error: The offline client cannot produce correction plans."


def _build_decisions(config: Dict[str, Any], *, assume_yes: bool, interactive: bool) -> DecisionPrompt:
    execution_cfg = config.get("execution") or {}
    allow_commands = assume_yes or bool(execution_cfg.get("auto_approve_commands", False))
    if interactive:
        return ConsoleDecisionPrompt(auto_allow_commands=allow_commands)
    return AutoDecisionPrompt(allow_commands=allow_commands, on_step_failure=StepFailureChoice.CANCEL)


def _render_report(report: ExecutionReport) -> None:
    typer.echo(f"Plan: {report.plan_description or '(none)'}")
    typer.echo(f"Outcome: {report.outcome.value}")
    if report.changes:
        typer.echo("Changes:")
        for entry in report.changes:
            typer.echo(f"- [{entry.change_type.value}] {entry.summary}")
    if report.affected_files:
        typer.echo(f"Affected files: {', '.join(report.affected_files)}")
    if report.reason:
        typer.echo(f"Reason: {report.reason}")
    if report.parse_error and report.raw_text:
        typer.echo("Raw plan output:")
        typer.echo(report.raw_text)
    if report.unresolved_files:
        typer.echo("Unresolved files:")
        for path in report.unresolved_files:
            typer.echo(f"- {path}")
    if report.saved_plan_path is not None:
        typer.echo(f"Saved run summary to {report.saved_plan_path}")


@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file to create.",
    ),
    name: Optional[str] = typer.Option(
        None,
        "--name",
        "-n",
        help="Project name recorded in the configuration.",
    ),
    model: Optional[str] = typer.Option(
        None,
        "--model",
        "-m",
        help="Default model id (use a '-offline' id for the offline stub).",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite an existing configuration file.",
    ),
) -> None:
    """Write a configuration file populated with defaults."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)

    config_data = _copy_config_template()
    project_cfg = config_data["project"]
    project_cfg["name"] = (name or "").strip() or config_path.resolve().parent.name
    if model and model.strip():
        config_data["models"]["default"] = model.strip()

    _write_config(config_path, config_data)
    typer.echo(f"Wrote configuration to {config_path}")


@app.command()
def run(
    plan_file: Optional[Path] = typer.Argument(
        None,
        help="JSON plan to execute. Omit it and pass --goal to generate one.",
    ),
    goal: Optional[str] = typer.Option(
        None,
        "--goal",
        "-g",
        help="Instruction to generate a plan for.",
    ),
    relevant: List[str] = typer.Option(
        None,
        "--relevant",
        "-r",
        help="Workspace-relative file to include as context (repeatable).",
    ),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
    use_remote: bool = typer.Option(
        True,
        "--use-remote/--no-use-remote",
        help="Call the GPT-5 API instead of the offline stub (requires API key).",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Approve every command without prompting.",
    ),
    interactive: bool = typer.Option(
        True,
        "--interactive/--non-interactive",
        help="Prompt for command approval and failed-step decisions.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Execute a plan and correct the result until analyzers report no errors."""
    _configure_logging(verbose)
    if plan_file is None and not (goal and goal.strip()):
        raise typer.BadParameter("Provide a PLAN_FILE or --goal.", param_hint="PLAN_FILE")
    if plan_file is not None and goal:
        raise typer.BadParameter("Use either PLAN_FILE or --goal, not both.", param_hint="--goal")

    config_path = Path(config)
    config_data = load_config(config_path)
    repo_root = _resolve_repo_root(config_data, config_path)
    client = _build_client(config_data, use_remote=use_remote)
    decisions = _build_decisions(config_data, assume_yes=yes, interactive=interactive)
    engine = PlanExecutionEngine.from_config(
        config_data,
        repo_root=repo_root,
        client=client,
        decisions=decisions,
    )
    relevant_files = [item for item in relevant or [] if item.strip()]

    def _handle_interrupt(signum: int, frame: Any) -> None:
        typer.echo("Cancellation requested; stopping after the current operation.")
        engine.cancel("Operation cancelled by user.")

    previous_handler = signal.signal(signal.SIGINT, _handle_interrupt)
    try:
        if plan_file is not None:
            try:
                raw_text = plan_file.read_text(encoding="utf-8")
            except OSError as error:
                typer.echo(f"Failed to read plan file {plan_file}: {error}")
                raise typer.Exit(code=1) from error
            parsed = parse_and_validate(raw_text, repo_root)
            if parsed.plan is None:
                typer.echo(f"Invalid plan: {parsed.error}")
                raise typer.Exit(code=1)
            report = engine.execute(parsed.plan, relevant_files=relevant_files)
        else:
            report = engine.run_instruction(str(goal).strip(), relevant_files=relevant_files)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    _render_report(report)
    if report.outcome is ExecutionOutcome.CANCELLED:
        raise typer.Exit(code=EXIT_CANCELLED)
    if report.outcome is not ExecutionOutcome.SUCCESS:
        raise typer.Exit(code=1)


@app.command()
def diff(
    old: Path = typer.Argument(..., help="Original file."),
    new: Path = typer.Argument(..., help="Updated file."),
    show_edits: bool = typer.Option(
        False,
        "--edits/--no-edits",
        help="List the minimal edits that turn OLD into NEW.",
    ),
) -> None:
    """Summarise the change between two files and print a unified diff."""
    try:
        original = old.read_text(encoding="utf-8")
        updated = new.read_text(encoding="utf-8")
    except OSError as error:
        typer.echo(f"Failed to read input: {error}")
        raise typer.Exit(code=1) from error

    summary = summarize_changes(original, updated, new.name)
    typer.echo(summary.summary)
    if summary.has_changes:
        typer.echo(format_unified_diff(new.name, original, updated))
    if show_edits:
        for edit in diff_to_edits(original, updated):
            start, end = edit.range
            typer.echo(f"[{start}, {end}) -> {edit.new_text!r}")


if __name__ == "__main__":
    app()
