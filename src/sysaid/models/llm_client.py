"""Client base class shared by planning-service integrations."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

__all__ = [
    "ChatMessage",
    "LLMClient",
    "LLMClientError",
    "LLMProtocolError",
    "LLMRequest",
    "LLMRetryError",
    "LLMTransportError",
    "excerpt",
]

LOGGER = logging.getLogger(__name__)

Role = Literal["user", "assistant"]
Purpose = Literal["plan", "synthesis"]


class LLMClientError(RuntimeError):
    """Base error raised for planning-service client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the service could not be reached (connection, timeout)."""


class LLMProtocolError(LLMClientError):
    """Raised when the service answered with an error status or no text."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries due to repeated transport failures."""


def excerpt(text: str, *, lines: int = 3, limit: int = 500) -> str:
    """Return a short diagnostic preview of a raw response body."""
    preview = "\n".join(text.strip().splitlines()[:lines])
    if len(preview) > limit:
        preview = preview[:limit] + "..."
    return preview


@dataclass(slots=True)
class ChatMessage:
    role: Role
    text: str


@dataclass(slots=True)
class LLMRequest:
    """Request payload sent to the planning service."""

    messages: List[ChatMessage]
    system_prompt: Optional[str] = None
    purpose: Purpose = "plan"
    model: Optional[str] = None
    max_tokens: int = 1024
    temperature: float = 0.0
    max_attempts: Optional[int] = None

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready payload for the messages API."""
        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": message.role, "content": message.text} for message in self.messages],
        }
        if self.system_prompt:
            payload["system"] = self.system_prompt
        return payload


class LLMClient:
    """Sends requests with bounded exponential backoff on transport failures.

    Only :class:`LLMTransportError` is retried.  :class:`LLMProtocolError`
    propagates on the first occurrence since repeating a rejected request will
    not change the answer.
    """

    def __init__(self, model: str, *, max_attempts: int = 3, retry_delay: float = 1.0) -> None:
        self._model = model
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def complete(self, request: LLMRequest) -> str:
        """Send ``request`` and return the text of the reply."""
        attempts = request.max_attempts or self._max_attempts
        payload = request.to_payload(self._model)
        delay = self._retry_delay
        last_error: Optional[LLMTransportError] = None

        for attempt in range(1, attempts + 1):
            try:
                return self._raw_invoke(payload, purpose=request.purpose)
            except LLMTransportError as error:
                last_error = error
                LOGGER.warning(
                    "Planning request attempt %d/%d failed: %s", attempt, attempts, error
                )
                if attempt >= attempts:
                    break
                time.sleep(delay)
                delay *= 2

        raise LLMRetryError(
            f"planning service unreachable after {attempts} attempt(s): {last_error}"
        ) from last_error

    def _raw_invoke(self, payload: Dict[str, Any], *, purpose: Purpose) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
