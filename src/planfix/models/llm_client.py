"""Text generation client base class shared by all language-model integrations."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Literal, Optional

__all__ = [
    "ERROR_QUOTA_EXCEEDED",
    "ERROR_RESPONSE_PREFIX",
    "GenerationCallbacks",
    "GenerationRequest",
    "LLMClient",
    "LLMClientError",
    "LLMResponseFormatError",
    "LLMTransportError",
    "is_error_response",
]


ERROR_RESPONSE_PREFIX = "error:"
ERROR_QUOTA_EXCEEDED = "ERROR_QUOTA_EXCEEDED"

ResponseFormat = Literal["text", "json"]
AttemptLogger = Callable[[Dict[str, Any], Optional[str], Optional[Exception], int], None]


class LLMClientError(RuntimeError):
    """Base error raised for generation client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model returns a payload without usable text."""


@dataclass(slots=True)
class GenerationCallbacks:
    """Optional hooks notified while a response is produced."""

    on_start: Optional[Callable[[], None]] = None
    on_chunk: Optional[Callable[[str], None]] = None
    on_complete: Optional[Callable[[str], None]] = None


@dataclass(slots=True)
class GenerationRequest:
    """Request payload sent to a text generation model."""

    prompt: str
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    response_format: ResponseFormat = "text"
    metadata: Dict[str, Any] = field(default_factory=dict)
    temperature: float = 0.0
    max_attempts: Optional[int] = None

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready payload for the Responses API."""
        def _message(role: str, text: str) -> Dict[str, Any]:
            return {
                "role": role,
                "content": [
                    {
                        "type": "input_text",
                        "text": text,
                    }
                ],
            }

        messages: list[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append(_message("system", self.system_prompt))
        messages.append(_message("user", self.prompt))

        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "input": messages,
        }
        if self.response_format == "json":
            payload["text"] = {"format": {"type": "json_object"}}
        if self.temperature not in (None, 0.0):
            payload["temperature"] = self.temperature
        if self.metadata:
            max_metadata_len = 512
            serialised_metadata: Dict[str, Any] = {}
            for key, value in self.metadata.items():
                formatted: str
                if isinstance(value, str):
                    formatted = value
                else:
                    formatted = json.dumps(value, separators=(",", ":"), sort_keys=True)
                if len(formatted) > max_metadata_len:
                    formatted = f"{formatted[: max_metadata_len - 3]}..."
                serialised_metadata[key] = formatted
            payload["metadata"] = serialised_metadata
        return payload


def is_error_response(text: str) -> bool:
    """Return ``True`` when a generation result is an error marker instead of content."""
    stripped = text.lstrip()
    return stripped.lower().startswith(ERROR_RESPONSE_PREFIX) or stripped.startswith(ERROR_QUOTA_EXCEEDED)


class LLMClient:
    """High-level helper that retries transport failures and returns raw text.

    Transport failures are retried up to ``max_attempts`` times. Once retries
    are exhausted the client does not raise; it answers with an
    ``"Error: ..."`` string, which callers detect via :func:`is_error_response`.
    Cancellation hooks are plain callables so the client stays independent of
    the engine's cancellation token.
    """

    def __init__(self, model: str, *, max_attempts: int = 5, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def generate(
        self,
        request: GenerationRequest,
        *,
        callbacks: Optional[GenerationCallbacks] = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
        logger: Optional[AttemptLogger] = None,
    ) -> str:
        """Invoke the model and return its text output or an error-prefixed string."""
        attempts = request.max_attempts or self._max_attempts
        last_error: Optional[Exception] = None

        if callbacks and callbacks.on_start:
            callbacks.on_start()

        for attempt in range(1, attempts + 1):
            if is_cancelled is not None and is_cancelled():
                return "Error: Operation cancelled."
            payload = request.to_payload(self._model)
            raw: Optional[str] = None
            try:
                raw = self._raw_invoke(payload)
                if not raw or not raw.strip():
                    raise LLMResponseFormatError("Model returned an empty response.")
            except (LLMTransportError, LLMResponseFormatError) as error:
                last_error = error
                if logger:
                    logger(payload, raw, error, attempt)
                if attempt >= attempts:
                    break
                time.sleep(self._retry_delay)
                continue

            if logger:
                logger(payload, raw, None, attempt)
            if callbacks and callbacks.on_chunk:
                callbacks.on_chunk(raw)
            if callbacks and callbacks.on_complete:
                callbacks.on_complete(raw)
            return raw

        error_message = (
            f"Failed to produce a response after {attempts} attempt(s) for model "
            f"{request.model or self._model}"
        )
        if last_error is not None:
            error_message = f"{error_message}: {last_error}"
        return f"Error: {error_message}"

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
