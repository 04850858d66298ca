"""Convenience exports for planning-service client implementations."""

from .anthropic import AnthropicClient
from .llm_client import (
    ChatMessage,
    LLMClient,
    LLMClientError,
    LLMProtocolError,
    LLMRequest,
    LLMRetryError,
    LLMTransportError,
)
from .offline import OfflineClient

__all__ = [
    "AnthropicClient",
    "ChatMessage",
    "LLMClient",
    "LLMClientError",
    "LLMProtocolError",
    "LLMRequest",
    "LLMRetryError",
    "LLMTransportError",
    "OfflineClient",
]
