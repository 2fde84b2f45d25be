"""Prompt templates shared by plan generation, file generation and correction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .correction.schema import CorrectionFeedback, format_feedback_for_prompt

PLAN_JSON_INSTRUCTION = (
    "Return only JSON. Emit a single JSON object of the form "
    '{"planDescription": string, "steps": [...]} where every step has a 1-based "step" number, '
    'an "action" of create_directory, create_file, modify_file or run_command, and a "description". '
    'File and directory steps carry a workspace-relative "path" without ".." segments; create_file '
    'adds either "content" or "generate_prompt"; modify_file adds "modification_prompt"; run_command '
    'adds "command". Do not include markdown fences, explanations, or trailing text.'
)

FILE_CONTENT_INSTRUCTION = (
    "Return only the complete file content. Do not wrap it in markdown fences and do not add commentary."
)


@dataclass(slots=True)
class PromptContext:
    """Project context threaded through every prompt of one plan execution."""

    instruction: str = ""
    plan_description: str = ""
    project_context: str = ""
    relevant_snippets: str = ""
    recent_changes: str = ""

    def render(self) -> str:
        sections = []
        if self.instruction:
            sections.append(f"## User Request\n{self.instruction}")
        if self.plan_description:
            sections.append(f"## Plan\n{self.plan_description}")
        if self.project_context:
            sections.append(f"## Project Context\n{self.project_context}")
        if self.relevant_snippets:
            sections.append(f"## Relevant Files\n{self.relevant_snippets}")
        if self.recent_changes:
            sections.append(self.recent_changes)
        return "\n\n".join(sections)


def render_plan_request(context: PromptContext, parse_error: Optional[str] = None) -> str:
    """Prompt asking for an execution plan that fulfils the user request."""
    parts = [
        "You are planning concrete file and command operations for a software project.",
        context.render(),
    ]
    if parse_error:
        parts.append(
            "Your previous plan could not be parsed. Fix the following problem and return a valid plan:\n"
            f"{parse_error}"
        )
    parts.append(PLAN_JSON_INSTRUCTION)
    return "\n\n".join(part for part in parts if part)


def render_create_file_request(path: str, generate_prompt: str, context: PromptContext) -> str:
    return "\n\n".join(
        part
        for part in (
            f"Create the file `{path}`.",
            f"## Instructions\n{generate_prompt}",
            context.render(),
            FILE_CONTENT_INSTRUCTION,
        )
        if part
    )


def render_modify_file_request(
    path: str,
    modification_prompt: str,
    current_content: str,
    context: PromptContext,
) -> str:
    return "\n\n".join(
        part
        for part in (
            f"Modify the file `{path}`.",
            f"## Instructions\n{modification_prompt}",
            f"## Current Content\n```\n{current_content}\n```",
            context.render(),
            FILE_CONTENT_INSTRUCTION,
        )
        if part
    )


def render_command_correction_request(
    command: str,
    feedback: Optional[CorrectionFeedback],
    context: PromptContext,
) -> str:
    """Prompt asking for a plan that repairs whatever made ``command`` fail."""
    return "\n\n".join(
        part
        for part in (
            f"The command `{command}` failed while executing the plan. "
            "Produce a corrective plan that fixes the cause of the failure.",
            format_feedback_for_prompt(feedback),
            context.render(),
            PLAN_JSON_INSTRUCTION,
        )
        if part
    )


def render_file_correction_request(
    path: str,
    current_content: str,
    diagnostics: str,
    feedback: Optional[CorrectionFeedback],
    context: PromptContext,
) -> str:
    """Prompt asking for a plan that clears the reported errors of a single file."""
    return "\n\n".join(
        part
        for part in (
            f"The file `{path}` still has errors after the plan ran. "
            f"Produce a corrective plan that only touches `{path}`.",
            format_feedback_for_prompt(feedback),
            diagnostics,
            f"## Current Content\n```\n{current_content}\n```",
            context.render(),
            PLAN_JSON_INSTRUCTION,
        )
        if part
    )


__all__ = [
    "FILE_CONTENT_INSTRUCTION",
    "PLAN_JSON_INSTRUCTION",
    "PromptContext",
    "render_command_correction_request",
    "render_create_file_request",
    "render_file_correction_request",
    "render_modify_file_request",
    "render_plan_request",
]
