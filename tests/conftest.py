from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from planfix.decisions import CommandChoice, DecisionPrompt, StepFailureChoice  # noqa: E402
from planfix.engine import PlanExecutionEngine  # noqa: E402
from planfix.execution.context import ExecutionContext  # noqa: E402
from planfix.models.llm_client import LLMClient  # noqa: E402
from planfix.settings import EngineSettings  # noqa: E402
from planfix.tools.diagnostics import Diagnostic, DiagnosticProvider  # noqa: E402
from planfix.tools.workspace import WorkspaceHost  # noqa: E402

ScriptedResponse = Union[str, Exception]


class ScriptedClient(LLMClient):
    """Generation client that replays canned responses in order."""

    def __init__(self, responses: Iterable[ScriptedResponse] = ()) -> None:
        super().__init__("scripted", max_attempts=1, retry_delay=0.0)
        self.responses: List[ScriptedResponse] = list(responses)
        self.payloads: List[Dict[str, Any]] = []

    @property
    def prompts(self) -> List[str]:
        return [payload["input"][-1]["content"][0]["text"] for payload in self.payloads]

    @property
    def purposes(self) -> List[str]:
        return [str((payload.get("metadata") or {}).get("purpose", "")) for payload in self.payloads]

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        self.payloads.append(payload)
        if not self.responses:
            raise AssertionError("ScriptedClient ran out of responses.")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class ScriptedDecisions(DecisionPrompt):
    """Decision prompt answering from queues and recording every question."""

    def __init__(
        self,
        commands: Sequence[CommandChoice] = (),
        failures: Sequence[StepFailureChoice] = (),
    ) -> None:
        self.commands = list(commands)
        self.failures = list(failures)
        self.command_requests: List[str] = []
        self.failure_requests: List[tuple[str, str]] = []

    def confirm_command(self, command: str) -> CommandChoice:
        self.command_requests.append(command)
        return self.commands.pop(0) if self.commands else CommandChoice.DISMISSED

    def resolve_step_failure(self, step_label: str, error_message: str) -> StepFailureChoice:
        self.failure_requests.append((step_label, error_message))
        return self.failures.pop(0) if self.failures else StepFailureChoice.DISMISSED


class MarkerDiagnosticProvider(DiagnosticProvider):
    """Reports one error per line containing ``BROKEN <message>``."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.calls: List[str] = []

    def get_diagnostics(self, path: str) -> List[Diagnostic]:
        self.calls.append(path)
        target = self.root / path
        if not target.is_file():
            return []
        diagnostics: List[Diagnostic] = []
        for number, line in enumerate(target.read_text(encoding="utf-8").splitlines(), start=1):
            marker = line.find("BROKEN ")
            if marker >= 0:
                diagnostics.append(
                    Diagnostic(path=path, line=number, message=line[marker + len("BROKEN ") :].strip())
                )
        return diagnostics


def plan_json(*steps: Dict[str, Any], description: str = "Test plan") -> str:
    """Serialise ``steps`` as plan JSON, numbering them from 1."""
    numbered = [
        {"step": index, "description": step.get("description", f"Step {index}"), **step}
        for index, step in enumerate(steps, start=1)
    ]
    return json.dumps({"planDescription": description, "steps": numbered})


@pytest.fixture()
def fast_settings() -> EngineSettings:
    return EngineSettings(
        transient_retry_base_delay=0.0,
        transient_retry_step_delay=0.0,
        stabilize_timeout_ms=500,
        stabilize_poll_ms=1,
        stabilize_required_checks=1,
    )


@pytest.fixture()
def workspace(tmp_path: Path) -> WorkspaceHost:
    root = tmp_path / "workspace"
    root.mkdir()
    return WorkspaceHost(root)


@pytest.fixture()
def make_context(
    workspace: WorkspaceHost,
    fast_settings: EngineSettings,
) -> Callable[..., ExecutionContext]:
    """Factory building an :class:`ExecutionContext` around scripted collaborators."""

    def _make(
        responses: Iterable[ScriptedResponse] = (),
        *,
        commands: Sequence[CommandChoice] = (),
        failures: Sequence[StepFailureChoice] = (),
        settings: Optional[EngineSettings] = None,
    ) -> ExecutionContext:
        return ExecutionContext(
            host=workspace,
            client=ScriptedClient(responses),
            decisions=ScriptedDecisions(commands, failures),
            settings=settings or fast_settings,
        )

    return _make


@pytest.fixture(name="plan_json")
def plan_json_fixture() -> Callable[..., str]:
    return plan_json


@pytest.fixture()
def marker_provider(workspace: WorkspaceHost) -> MarkerDiagnosticProvider:
    return MarkerDiagnosticProvider(workspace.root)


@pytest.fixture()
def make_engine(
    workspace: WorkspaceHost,
    fast_settings: EngineSettings,
) -> Callable[..., PlanExecutionEngine]:
    """Factory building a :class:`PlanExecutionEngine` with scripted collaborators."""

    def _make(
        responses: Iterable[ScriptedResponse] = (),
        *,
        commands: Sequence[CommandChoice] = (),
        failures: Sequence[StepFailureChoice] = (),
        provider: Optional[DiagnosticProvider] = None,
        settings: Optional[EngineSettings] = None,
    ) -> PlanExecutionEngine:
        return PlanExecutionEngine(
            host=workspace,
            client=ScriptedClient(responses),
            decisions=ScriptedDecisions(commands, failures),
            provider=provider,
            settings=settings or fast_settings,
        )

    return _make
