"""Production GPT-5 client that speaks the Responses API."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Dict, Optional

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["GPT5Client"]


LOGGER = logging.getLogger(__name__)

Transport = Callable[[Dict[str, Any]], str]

_STATUS_HINTS = {
    429: "rate limit exceeded",
    500: "service unavailable",
    502: "service unavailable",
    503: "service unavailable",
    504: "gateway timeout",
}


class GPT5Client(LLMClient):
    """Thin adapter around the GPT-5 Responses API returning plain text."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1/responses",
        model: str = "gpt-5",
        transport: Optional[Transport] = None,
        timeout: float = 60.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._api_key = api_key or os.getenv("GPT5_API_KEY") or os.getenv("OPENAI_API_KEY")
        self._base_url = base_url
        timeout_override = os.getenv("GPT5_TIMEOUT")
        if timeout_override:
            try:
                parsed = float(timeout_override)
                if parsed > 0:
                    timeout = parsed
            except ValueError:
                pass
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Send the request over the configured transport."""
        try:
            raw_response = self._transport(payload)
        except LLMTransportError:
            raise
        except Exception as error:  # pragma: no cover - defensive path
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        text = self._extract_output_text(raw_response)
        if text is None:
            raise LLMResponseFormatError("GPT-5 response did not contain output text.")
        return text

    def _http_transport(self, payload: Dict[str, Any]) -> str:
        """Default HTTP transport that targets the OpenAI Responses API."""
        import urllib.error
        import urllib.request

        LOGGER.debug("GPT-5 request for model %s", payload.get("model"))
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._base_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
                "X-OpenAI-Client": "planfix/0.1",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("GPT-5 request timeout.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            hint = _STATUS_HINTS.get(error.code, "request rejected")
            raise LLMTransportError(f"HTTP {error.code} ({hint}): {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"network issue reaching GPT-5 endpoint: {error.reason}") from error

        if status >= 400:
            raise LLMTransportError(f"Unexpected HTTP status {status}")

        return raw.decode("utf-8")

    def _extract_output_text(self, raw_response: str) -> Optional[str]:
        """Return the assistant text carried by a Responses API payload."""
        if not raw_response:
            return None

        try:
            data = json.loads(raw_response)
        except json.JSONDecodeError:
            return raw_response

        if not isinstance(data, dict):
            return raw_response

        shortcut = data.get("output_text")
        if isinstance(shortcut, str) and shortcut.strip():
            return shortcut

        error_payload = data.get("error")
        if isinstance(error_payload, dict) and error_payload.get("message"):
            return f"Error: {error_payload['message']}"

        output_events = data.get("output") or data.get("outputs")
        if isinstance(output_events, list):
            chunks: list[str] = []
            for item in output_events:
                if not isinstance(item, dict) or item.get("type") not in (None, "message"):
                    continue
                for content_item in item.get("content") or []:
                    if not isinstance(content_item, dict):
                        continue
                    text = content_item.get("text")
                    if isinstance(text, str):
                        chunks.append(text)
            if chunks:
                return "".join(chunks)

        if "output" in data or "status" in data:
            return None
        return raw_response
