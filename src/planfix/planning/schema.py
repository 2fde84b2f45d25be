"""Typed plan and step records produced by the plan parser."""

from __future__ import annotations

from enum import Enum
from pathlib import PurePosixPath, PureWindowsPath
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

__all__ = [
    "CreateDirectoryStep",
    "CreateFileStep",
    "ModifyFileStep",
    "Plan",
    "RunCommandStep",
    "Step",
    "StepAction",
    "describe_step",
]


class StepAction(str, Enum):
    """Actions a plan step may request."""

    CREATE_DIRECTORY = "create_directory"
    CREATE_FILE = "create_file"
    MODIFY_FILE = "modify_file"
    RUN_COMMAND = "run_command"


class _StepModel(BaseModel):
    """Fields shared by every step variant."""

    model_config = ConfigDict(extra="ignore", frozen=False)

    step: int = Field(ge=1)
    description: str = ""


class _PathStep(_StepModel):
    path: str

    @field_validator("path")
    @classmethod
    def _validate_path(cls, value: str) -> str:
        candidate = value.strip().replace("\\", "/")
        if not candidate:
            raise ValueError("path must be a non-empty string")
        if PurePosixPath(candidate).is_absolute() or PureWindowsPath(value.strip()).is_absolute():
            raise ValueError("path must be relative to the workspace root")
        if ".." in PurePosixPath(candidate).parts:
            raise ValueError("path cannot contain '..' segments")
        return candidate


class CreateDirectoryStep(_PathStep):
    action: Literal["create_directory"] = "create_directory"


class CreateFileStep(_PathStep):
    action: Literal["create_file"] = "create_file"
    content: Optional[str] = None
    generate_prompt: Optional[str] = None

    @model_validator(mode="after")
    def _single_content_source(self) -> "CreateFileStep":
        if self.content is not None and self.generate_prompt is not None:
            raise ValueError("create_file accepts either 'content' or 'generate_prompt', not both")
        return self


class ModifyFileStep(_PathStep):
    action: Literal["modify_file"] = "modify_file"
    modification_prompt: str

    @field_validator("modification_prompt")
    @classmethod
    def _require_prompt(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("modification_prompt must be a non-empty string")
        return value


class RunCommandStep(_StepModel):
    action: Literal["run_command"] = "run_command"
    command: str

    @field_validator("command")
    @classmethod
    def _require_command(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("command must be a non-empty string")
        return stripped


Step = Annotated[
    Union[CreateDirectoryStep, CreateFileStep, ModifyFileStep, RunCommandStep],
    Field(discriminator="action"),
]


class Plan(BaseModel):
    """Ordered list of steps with a human readable description."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    description: str = Field(alias="planDescription")
    steps: List[Step] = Field(min_length=1)

    def to_payload(self) -> dict:
        """Return the JSON-compatible wire representation."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def describe_step(step: Step) -> str:
    """Return the step description, or a generated one when it is blank."""
    if step.description.strip():
        return step.description.strip()
    match step:
        case CreateDirectoryStep(path=path):
            return f"Creating directory: `{path}`"
        case CreateFileStep(path=path, content=content) if content is not None:
            return f"Creating file: `{path}` (with predefined content)"
        case CreateFileStep(path=path):
            return f"Creating file: `{path}`"
        case ModifyFileStep(path=path):
            return f"Modifying file: `{path}`"
        case RunCommandStep(command=command):
            return f"Running command: `{command}`"
    raise TypeError(f"Unsupported step type: {type(step).__name__}")
