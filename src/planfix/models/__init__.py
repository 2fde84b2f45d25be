"""Convenience exports for planfix generation client implementations."""

from .gpt5 import GPT5Client
from .llm_client import (
    GenerationCallbacks,
    GenerationRequest,
    LLMClient,
    LLMClientError,
    LLMResponseFormatError,
    LLMTransportError,
    is_error_response,
)

__all__ = [
    "GPT5Client",
    "GenerationCallbacks",
    "GenerationRequest",
    "LLMClient",
    "LLMClientError",
    "LLMResponseFormatError",
    "LLMTransportError",
    "is_error_response",
]
