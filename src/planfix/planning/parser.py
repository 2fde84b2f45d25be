"""Parse and validate plan JSON produced by the generation service."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from .schema import ModifyFileStep, Plan, Step, StepAction

__all__ = ["ParsedPlanResult", "parse_and_validate"]


LOGGER = logging.getLogger(__name__)

_UNWANTED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"<execute_bash>", re.IGNORECASE),
    re.compile(r"\bthought\b", re.IGNORECASE),
    re.compile(r"^\s*(true|false|null)\b", re.IGNORECASE),
)
_FENCE_PATTERN = re.compile(r"```(?:json|typescript)?")
_STRING_LITERAL = re.compile(r'"((?:\\.|[^"\\])*)"', re.DOTALL)
_SHORT_ESCAPES = {
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}
_PATH_ACTIONS = {
    StepAction.CREATE_DIRECTORY.value,
    StepAction.CREATE_FILE.value,
    StepAction.MODIFY_FILE.value,
}
_ACTION_ERRORS = {
    StepAction.CREATE_DIRECTORY.value: "Invalid 'create_directory' step.",
    StepAction.CREATE_FILE.value: (
        "Invalid 'create_file' step. Must have 'path' and either 'content' or 'generate_prompt'."
    ),
    StepAction.MODIFY_FILE.value: "Invalid 'modify_file' step. Must have 'path' and 'modification_prompt'.",
    StepAction.RUN_COMMAND.value: "Invalid 'run_command' step. Must have a 'command'.",
}
_STEP_ADAPTER: TypeAdapter[Step] = TypeAdapter(Step)


@dataclass(slots=True)
class ParsedPlanResult:
    """Outcome of :func:`parse_and_validate`: either a plan or an error message."""

    plan: Optional[Plan] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.plan is not None and bool(self.plan.steps)


def _escape_control_characters(payload: str) -> str:
    """Escape raw control characters that models leave inside JSON strings."""

    def _replace(match: re.Match[str]) -> str:
        processed: list[str] = []
        for char in match.group(1):
            if char in _SHORT_ESCAPES:
                processed.append(_SHORT_ESCAPES[char])
            elif ord(char) <= 0x1F:
                processed.append(f"\\u{ord(char):04x}")
            else:
                processed.append(char)
        return f'"{"".join(processed)}"'

    return _STRING_LITERAL.sub(_replace, payload)


def _strip_trailing_commas(payload: str) -> str:
    """Remove trailing commas before closing braces/brackets."""
    return re.sub(r",(\s*[}\]])", r"\1", payload)


def _extract_object(raw_text: str) -> Optional[str]:
    cleaned = _FENCE_PATTERN.sub("", raw_text).replace("```", "").strip()
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first == -1 or last == -1 or last < first:
        return None
    return cleaned[first : last + 1]


def _decode(payload: str) -> Any:
    sanitized = _escape_control_characters(payload)
    try:
        return json.loads(sanitized)
    except json.JSONDecodeError:
        repaired = _strip_trailing_commas(sanitized)
        if repaired == sanitized:
            raise
        return json.loads(repaired)


def _path_error(step_number: int, action: str, value: Any, repo_root: Path | None) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return f"Plan validation failed: Step {step_number} ({action}) requires a non-empty 'path'."
    normalised = value.strip().replace("\\", "/")
    if (
        PurePosixPath(normalised).is_absolute()
        or PureWindowsPath(value.strip()).is_absolute()
        or ".." in normalised
    ):
        return f"Plan validation failed: Path for step {step_number} must be relative and cannot contain '..'."
    if repo_root is not None:
        root = repo_root.resolve()
        try:
            (root / normalised).resolve().relative_to(root)
        except ValueError:
            return f"Plan validation failed: Path for step {step_number} resolves outside the workspace."
    return None


def parse_and_validate(raw_text: str, repo_root: Path | None = None) -> ParsedPlanResult:
    """Parse ``raw_text`` into a :class:`Plan`, returning an error message instead of raising.

    Multiple ``modify_file`` steps that target the same path are folded into
    the first occurrence with their prompts joined, and steps are renumbered
    afterwards so the result stays 1-indexed and sequential.
    """

    for pattern in _UNWANTED_PATTERNS:
        if pattern.search(raw_text):
            LOGGER.error("Generated plan contained non-plan content (pattern %s)", pattern.pattern)
            return ParsedPlanResult(
                error=(
                    "AI response contained unexpected conversational or instructional content. "
                    f"Please try again or rephrase your request. (Detected pattern: {pattern.pattern})"
                )
            )

    extracted = _extract_object(raw_text)
    if extracted is None:
        return ParsedPlanResult(
            error="Error parsing plan JSON: Could not find a valid JSON object within the response."
        )

    try:
        candidate = _decode(extracted)
    except json.JSONDecodeError as error:
        return ParsedPlanResult(
            error=f"Error parsing plan JSON: {error}. Please ensure the AI provides valid JSON."
        )

    if (
        not isinstance(candidate, dict)
        or not isinstance(candidate.get("planDescription"), str)
        or not isinstance(candidate.get("steps"), list)
    ):
        return ParsedPlanResult(
            error="Plan validation failed: The JSON must have a 'planDescription' (string) and 'steps' (array)."
        )

    raw_steps: List[Any] = candidate["steps"]
    if not raw_steps:
        return ParsedPlanResult(
            error=(
                "Plan validation failed: The generated plan contains an empty steps array. "
                "It must contain at least one step."
            )
        )

    consolidated: Dict[str, ModifyFileStep] = {}
    steps: List[Step] = []
    for index, raw_step in enumerate(raw_steps, start=1):
        if (
            not isinstance(raw_step, dict)
            or isinstance(raw_step.get("step"), bool)
            or raw_step.get("step") != index
            or raw_step.get("action") not in {action.value for action in StepAction}
            or not isinstance(raw_step.get("description", ""), str)
        ):
            return ParsedPlanResult(
                error=f"Plan validation failed: Step {index} has an invalid structure or step number."
            )

        action = raw_step["action"]
        if action in _PATH_ACTIONS:
            path_error = _path_error(index, action, raw_step.get("path"), repo_root)
            if path_error:
                return ParsedPlanResult(error=path_error)

        try:
            step = _STEP_ADAPTER.validate_python(raw_step)
        except ValidationError as error:
            LOGGER.debug("Step %d failed validation: %s", index, error)
            return ParsedPlanResult(
                error=f"Plan validation failed at step {index}: {_ACTION_ERRORS[action]}"
            )

        if isinstance(step, ModifyFileStep):
            existing = consolidated.get(step.path)
            if existing is not None:
                existing.modification_prompt += f"\n\n---\n\n{step.modification_prompt}"
                continue
            consolidated[step.path] = step
        steps.append(step)

    for number, step in enumerate(steps, start=1):
        step.step = number

    plan = Plan(description=candidate["planDescription"], steps=steps)
    LOGGER.info("Plan validation successful. %d step(s) after consolidation.", len(plan.steps))
    return ParsedPlanResult(plan=plan)
