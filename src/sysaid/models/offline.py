"""Deterministic client used when no planning service is reachable."""

from __future__ import annotations

import json
from typing import Any, Dict

from .llm_client import LLMClient, Purpose

__all__ = ["OfflineClient"]


class OfflineClient(LLMClient):
    """Local stub that returns a canned plan and a canned analysis."""

    def __init__(self) -> None:
        super().__init__("offline", max_attempts=1, retry_delay=0.0)

    def _raw_invoke(self, payload: Dict[str, Any], *, purpose: Purpose) -> str:
        if purpose == "synthesis":
            return self._synthesis(payload)
        return json.dumps(self._mock_plan(payload))

    @staticmethod
    def _last_user_text(payload: Dict[str, Any]) -> str:
        for message in reversed(payload.get("messages") or []):
            if message.get("role") == "user":
                return str(message.get("content") or "")
        return ""

    def _mock_plan(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        prompt = self._last_user_text(payload).strip().splitlines()
        topic = prompt[-1] if prompt else "the reported issue"
        return {
            "summary": f"Offline mock plan for: {topic}",
            "plan": [
                {
                    "kind": "command",
                    "description": "Inspect recent authentication failures",
                    "command": "sudo tail -n 100 /var/log/auth.log",
                    "requires_root": True,
                },
                {
                    "kind": "note",
                    "description": "Offline mode",
                    "details": "Offline mode is enabled; connect a planning service API key for real plans.",
                },
            ],
        }

    def _synthesis(self, payload: Dict[str, Any]) -> str:
        results = self._last_user_text(payload)
        count = results.count("exit code:")
        return (
            f"Offline analysis: {count} command result(s) were captured. "
            "Review the output above; no automated diagnosis is available without a planning service."
        )
