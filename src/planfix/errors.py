"""Exception hierarchy shared by the plan execution engine."""

from __future__ import annotations

from typing import Any, Mapping

from .models.llm_client import LLMTransportError

__all__ = [
    "CommandExecutionError",
    "GenerationError",
    "PlanParseError",
    "PlanfixError",
    "StepExecutionError",
    "TRANSIENT_ERROR_MARKERS",
    "WorkspaceError",
    "is_transient_error",
]


TRANSIENT_ERROR_MARKERS: tuple[str, ...] = (
    "quota exceeded",
    "rate limit",
    "network",
    "unavailable",
    "timeout",
    "timed out",
    "parsing failed",
    "overloaded",
)


class PlanfixError(RuntimeError):
    """Base error carrying structured details for reporting."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class GenerationError(PlanfixError):
    """Raised when the generation service answers with an error-prefixed string."""


class PlanParseError(PlanfixError):
    """Raised when a generated plan cannot be parsed or validated."""

    def __init__(self, message: str, *, raw_text: str = "", details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message, details=details)
        self.raw_text = raw_text


class StepExecutionError(PlanfixError):
    """Raised when a single plan step cannot complete."""


class CommandExecutionError(PlanfixError):
    """Raised when an external command fails and could not be corrected."""

    def __init__(
        self,
        message: str,
        *,
        command: str,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(
            message,
            details={"command": command, "exit_code": exit_code, "stdout": stdout, "stderr": stderr},
        )
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class WorkspaceError(PlanfixError):
    """Raised for filesystem failures inside the workspace host."""


def is_transient_error(error: BaseException) -> bool:
    """Return ``True`` when ``error`` is expected to clear up on a plain retry."""
    if isinstance(error, LLMTransportError):
        return True
    if isinstance(error, CommandExecutionError):
        return False
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_ERROR_MARKERS)
