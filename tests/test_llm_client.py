from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest

from sysaid.models import llm_client
from sysaid.models.anthropic import AnthropicClient
from sysaid.models.llm_client import (
    ChatMessage,
    LLMProtocolError,
    LLMRequest,
    LLMRetryError,
    LLMTransportError,
)
from sysaid.models.offline import OfflineClient


def _messages_response(text: str) -> str:
    return json.dumps(
        {
            "id": "msg_mock",
            "type": "message",
            "role": "assistant",
            "content": [{"type": "text", "text": text}],
        }
    )


def _request() -> LLMRequest:
    return LLMRequest(messages=[ChatMessage(role="user", text="disk full?")], system_prompt="be brief")


@pytest.fixture()
def sleeps(monkeypatch) -> List[float]:
    recorded: List[float] = []
    monkeypatch.setattr(llm_client.time, "sleep", recorded.append)
    return recorded


def test_payload_uses_messages_shape() -> None:
    payload = _request().to_payload("claude-test")

    assert payload["model"] == "claude-test"
    assert payload["system"] == "be brief"
    assert payload["messages"] == [{"role": "user", "content": "disk full?"}]
    assert payload["max_tokens"] == 1024
    assert payload["temperature"] == 0.0


def test_client_extracts_text_blocks(sleeps: List[float]) -> None:
    seen: List[Dict[str, Any]] = []

    def transport(payload: Dict[str, Any]) -> str:
        seen.append(payload)
        return _messages_response('{"summary": "ok", "plan": []}')

    client = AnthropicClient(model="claude-test", transport=transport)

    assert client.complete(_request()) == '{"summary": "ok", "plan": []}'
    assert seen[0]["model"] == "claude-test"
    assert sleeps == []


def test_transport_errors_retry_with_doubling_backoff(sleeps: List[float]) -> None:
    calls = {"count": 0}

    def transport(_: Dict[str, Any]) -> str:
        calls["count"] += 1
        if calls["count"] < 3:
            raise LLMTransportError("connection reset")
        return _messages_response("fine")

    client = AnthropicClient(transport=transport, max_attempts=3, retry_delay=1.0)

    assert client.complete(_request()) == "fine"
    assert calls["count"] == 3
    assert sleeps == [1.0, 2.0]


def test_retry_budget_exhaustion_raises_retry_error(sleeps: List[float]) -> None:
    def transport(_: Dict[str, Any]) -> str:
        raise LLMTransportError("timed out")

    client = AnthropicClient(transport=transport, max_attempts=3, retry_delay=1.0)

    with pytest.raises(LLMRetryError) as excinfo:
        client.complete(_request())

    assert isinstance(excinfo.value.__cause__, LLMTransportError)
    assert sleeps == [1.0, 2.0]


def test_protocol_errors_are_not_retried(sleeps: List[float]) -> None:
    calls = {"count": 0}

    def transport(_: Dict[str, Any]) -> str:
        calls["count"] += 1
        raise LLMProtocolError("planning service returned HTTP 400: bad request")

    client = AnthropicClient(transport=transport)

    with pytest.raises(LLMProtocolError):
        client.complete(_request())
    assert calls["count"] == 1
    assert sleeps == []


def test_missing_text_content_is_a_protocol_error(sleeps: List[float]) -> None:
    body = json.dumps({"content": [{"type": "tool_use", "id": "x"}]})
    client = AnthropicClient(transport=lambda _: body)

    with pytest.raises(LLMProtocolError, match="no text content"):
        client.complete(_request())


def test_non_json_body_is_a_protocol_error() -> None:
    client = AnthropicClient(transport=lambda _: "<html>bad gateway</html>")

    with pytest.raises(LLMProtocolError, match="bad gateway"):
        client.complete(_request())


def test_default_transport_requires_api_key(monkeypatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    with pytest.raises(ValueError):
        AnthropicClient()


def test_offline_client_returns_mock_plan_and_analysis() -> None:
    client = OfflineClient()

    plan = json.loads(client.complete(_request()))
    analysis = client.complete(
        LLMRequest(messages=[ChatMessage(role="user", text="exit code: 0")], purpose="synthesis")
    )

    assert [item["kind"] for item in plan["plan"]] == ["command", "note"]
    assert plan["plan"][0]["command"] == "sudo tail -n 100 /var/log/auth.log"
    assert "1 command result" in analysis
