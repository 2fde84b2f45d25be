"""Step execution, plan running and change tracking."""

from .changes import ChangeLog, ChangeType, FileChangeEntry
from .context import ExecutionContext
from .runner import PlanRunner
from .steps import CommandCorrector, StepExecutor, StepOutcome, StepState

__all__ = [
    "ChangeLog",
    "ChangeType",
    "CommandCorrector",
    "ExecutionContext",
    "FileChangeEntry",
    "PlanRunner",
    "StepExecutor",
    "StepOutcome",
    "StepState",
]
