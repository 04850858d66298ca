"""Production client that speaks the Anthropic messages API."""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Optional

from .llm_client import LLMClient, LLMProtocolError, LLMTransportError, Purpose, excerpt

__all__ = ["AnthropicClient", "DEFAULT_API_URL", "DEFAULT_MODEL"]

LOGGER = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-sonnet-4-5"
API_VERSION = "2023-06-01"

Transport = Callable[[Dict[str, Any]], str]


class AnthropicClient(LLMClient):
    """Thin adapter around the messages endpoint.

    ``transport`` receives the JSON payload and returns the raw response body.
    It must raise :class:`LLMTransportError` for connection-class failures and
    :class:`LLMProtocolError` for non-success statuses.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_API_URL,
        model: str = DEFAULT_MODEL,
        transport: Optional[Transport] = None,
        timeout: float = 60.0,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    def _raw_invoke(self, payload: Dict[str, Any], *, purpose: Purpose) -> str:
        """Send the request over the configured transport."""
        LOGGER.debug("Sending %s request with %d message(s)", purpose, len(payload.get("messages", [])))
        raw_response = self._transport(payload)
        return self._extract_text(raw_response)

    def _http_transport(self, payload: Dict[str, Any]) -> str:
        """Default HTTP transport built on urllib."""
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._base_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "x-api-key": str(self._api_key),
                "anthropic-version": API_VERSION,
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            body = error.read().decode("utf-8", errors="ignore")
            raise LLMProtocolError(f"planning service returned HTTP {error.code}: {excerpt(body)}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"failed to reach planning service: {error.reason}") from error
        except (TimeoutError, ConnectionError) as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"planning service connection failed: {error}") from error

        return raw.decode("utf-8", errors="replace")

    @staticmethod
    def _extract_text(raw_response: str) -> str:
        """Join the text blocks of a messages API response."""
        try:
            data = json.loads(raw_response)
        except json.JSONDecodeError as error:
            raise LLMProtocolError(
                f"planning service returned non-JSON body: {excerpt(raw_response)}"
            ) from error

        blocks = data.get("content") if isinstance(data, dict) else None
        parts = []
        if isinstance(blocks, list):
            for block in blocks:
                if isinstance(block, dict) and block.get("type") == "text":
                    text = block.get("text")
                    if isinstance(text, str):
                        parts.append(text)
        text = "".join(parts)
        if not text.strip():
            raise LLMProtocolError(
                f"planning service response contained no text content: {excerpt(raw_response)}"
            )
        return text
