"""Plan records and the parser that produces them."""

from .parser import ParsedPlanResult, parse_and_validate
from .schema import (
    CreateDirectoryStep,
    CreateFileStep,
    ModifyFileStep,
    Plan,
    RunCommandStep,
    Step,
    StepAction,
    describe_step,
)

__all__ = [
    "CreateDirectoryStep",
    "CreateFileStep",
    "ModifyFileStep",
    "ParsedPlanResult",
    "Plan",
    "RunCommandStep",
    "Step",
    "StepAction",
    "describe_step",
    "parse_and_validate",
]
