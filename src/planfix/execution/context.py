"""Collaborators shared by every component of one plan execution."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..cancellation import CancellationToken
from ..decisions import DecisionPrompt
from ..errors import GenerationError
from ..models.llm_client import GenerationRequest, LLMClient, ResponseFormat, is_error_response
from ..prompts import PromptContext
from ..settings import EngineSettings
from ..tools.workspace import WorkspaceHost
from .changes import ChangeLog

__all__ = ["ExecutionContext"]


LOGGER = logging.getLogger(__name__)

RECENT_CHANGES_LIMIT = 10


@dataclass(slots=True)
class ExecutionContext:
    """Workspace, generation client, prompts and cancellation for one run."""

    host: WorkspaceHost
    client: LLMClient
    decisions: DecisionPrompt
    settings: EngineSettings = field(default_factory=EngineSettings)
    cancel: CancellationToken = field(default_factory=CancellationToken)
    changes: ChangeLog = field(default_factory=ChangeLog)
    prompt_context: PromptContext = field(default_factory=PromptContext)

    def generate(self, prompt: str, *, response_format: ResponseFormat = "text", purpose: str = "") -> str:
        """Request text from the generation service, translating error markers into exceptions."""
        self.cancel.raise_if_cancelled()
        request = GenerationRequest(
            prompt=prompt,
            model=self.settings.model,
            response_format=response_format,
            metadata={"purpose": purpose} if purpose else {},
        )
        text = self.client.generate(request, is_cancelled=lambda: self.cancel.cancelled)
        self.cancel.raise_if_cancelled()
        if is_error_response(text):
            LOGGER.warning("Generation for %s returned an error: %s", purpose or "request", text.strip()[:200])
            raise GenerationError(text.strip(), details={"purpose": purpose})
        return text

    def current_prompt_context(self) -> PromptContext:
        """Prompt context with the change log of this run folded in."""
        self.prompt_context.recent_changes = self.changes.format_recent(limit=RECENT_CHANGES_LIMIT)
        return self.prompt_context
