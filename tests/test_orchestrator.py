from __future__ import annotations

import threading
from typing import Any, Dict

import pytest

from sysaid.memory.conversation import ConversationLog
from sysaid.memory.schema import CommandEntry, PlanEntry, PromptEntry, TaskStatus
from sysaid.memory.session import SessionStore
from sysaid.models.llm_client import LLMClient, Purpose
from sysaid.models.offline import OfflineClient
from sysaid.orchestrator import ANALYSIS_SUMMARY, Orchestrator
from sysaid.planning.fetch import FetchResult
from sysaid.policy.allowlist import Allowlist
from sysaid.tools.executor import Executor


class ScriptedClient(LLMClient):
    """Returns queued responses; optionally waits on a gate before answering."""

    def __init__(self, *responses: str, gate: threading.Event | None = None) -> None:
        super().__init__("scripted", max_attempts=1, retry_delay=0.0)
        self._responses = list(responses)
        self._gate = gate
        self.payloads: list[Dict[str, Any]] = []

    def _raw_invoke(self, payload: Dict[str, Any], *, purpose: Purpose) -> str:
        self.payloads.append(payload)
        if self._gate is not None:
            self._gate.wait(5)
        return self._responses.pop(0)


def _orchestrator(client: LLMClient, session: SessionStore, conversation: ConversationLog, executor=None) -> Orchestrator:
    return Orchestrator(
        client=client,
        allowlist=Allowlist(),
        executor=executor or Executor(dry_run=True),
        conversation=conversation,
        session=session,
    )


@pytest.fixture()
def offline(session: SessionStore, conversation: ConversationLog):
    orchestrator = _orchestrator(OfflineClient(), session, conversation)
    yield orchestrator
    orchestrator.close()


def test_offline_plan_blocks_privileged_command(offline: Orchestrator, conversation: ConversationLog) -> None:
    assert offline.submit_prompt("Why are SSH logins failing?")
    offline.run_until_idle(interval=0.01)

    assert len(offline.tasks) == 1
    task = offline.tasks[0]
    assert task.status is TaskStatus.BLOCKED
    assert offline.pending_approval_message() == (
        "Allow blocked task 'Inspect recent authentication failures'?\n"
        "Reason: command 'sudo tail -n 100 /var/log/auth.log' is not allowlisted"
    )
    entries = conversation.load()
    assert isinstance(entries[0], PromptEntry)
    assert any(isinstance(entry, PlanEntry) and entry.task_count == 2 for entry in entries)
    assert any(line.startswith("Note: Offline mode") for line in offline.logs)


def test_approval_triggers_single_analysis(offline: Orchestrator, conversation: ConversationLog) -> None:
    offline.submit_prompt("Why are SSH logins failing?")
    offline.run_until_idle(interval=0.01)

    offline.approve()
    offline.run_until_idle(interval=0.01)

    assert offline.tasks[0].status is TaskStatus.COMPLETE
    assert offline.analysis is not None
    assert offline.analysis.startswith("Offline analysis: 1 command result(s)")
    entries = conversation.load()
    command = next(entry for entry in entries if isinstance(entry, CommandEntry))
    assert command.stdout.startswith("(dry-run) command would execute: sudo tail")
    analyses = [entry for entry in entries if isinstance(entry, PlanEntry) and entry.summary == ANALYSIS_SUMMARY]
    assert len(analyses) == 1
    assert offline.status_message() == "all tasks complete"


def test_second_prompt_rejected_while_request_in_flight(
    session: SessionStore, conversation: ConversationLog
) -> None:
    gate = threading.Event()
    plan = '{"summary": "s", "plan": [{"kind": "command", "description": "d", "command": "pwd"}]}'
    orchestrator = _orchestrator(ScriptedClient(plan, gate=gate), session, conversation)
    try:
        assert orchestrator.submit_prompt("first")
        assert not orchestrator.submit_prompt("second")
        assert orchestrator.logs[-1] == "A plan request is already running; wait for it to finish."

        gate.set()
        orchestrator.run_until_idle(interval=0.01)
    finally:
        gate.set()
        orchestrator.close()

    prompts = [entry.prompt for entry in conversation.load() if isinstance(entry, PromptEntry)]
    assert prompts == ["first"]


def test_parse_failure_keeps_existing_plan(session: SessionStore, conversation: ConversationLog) -> None:
    good = '{"summary": "reboot", "plan": [{"kind": "command", "description": "Reboot", "command": "reboot"}]}'
    client = ScriptedClient(good, '{"summary": "cut off", "plan": [{"kind": "command",')
    orchestrator = _orchestrator(client, session, conversation)
    try:
        orchestrator.submit_prompt("first")
        orchestrator.run_until_idle(interval=0.01)
        before = list(orchestrator.tasks)

        orchestrator.submit_prompt("second")
        orchestrator.run_until_idle(interval=0.01)
    finally:
        orchestrator.close()

    assert orchestrator.tasks == before
    assert orchestrator.tasks[0].status is TaskStatus.BLOCKED
    assert any(line.startswith("Failed to parse plan:") for line in orchestrator.logs)
    assert any("looks truncated" in line for line in orchestrator.logs)


def test_empty_prompt_is_ignored(offline: Orchestrator, conversation: ConversationLog) -> None:
    assert not offline.submit_prompt("   ")
    assert conversation.load() == []


def test_history_is_sent_with_the_next_request(session: SessionStore, conversation: ConversationLog) -> None:
    plan = '{"summary": "look", "plan": [{"kind": "note", "description": "n", "details": "d"}]}'
    client = ScriptedClient(plan, plan)
    orchestrator = _orchestrator(client, session, conversation)
    try:
        orchestrator.submit_prompt("first question")
        orchestrator.run_until_idle(interval=0.01)
        orchestrator.submit_prompt("follow up")
        orchestrator.run_until_idle(interval=0.01)
    finally:
        orchestrator.close()

    messages = client.payloads[1]["messages"]
    assert messages[0] == {"role": "user", "content": "first question"}
    assert messages[1]["role"] == "assistant"
    assert messages[-1]["role"] == "user"
    assert messages[-1]["content"].endswith("follow up")


def test_operator_log_is_bounded(session: SessionStore, conversation: ConversationLog) -> None:
    orchestrator = Orchestrator(
        client=OfflineClient(),
        allowlist=Allowlist(),
        executor=Executor(dry_run=True),
        conversation=conversation,
        session=session,
        history_limit=3,
    )
    try:
        for index in range(5):
            orchestrator.log(f"line {index}")
    finally:
        orchestrator.close()

    assert list(orchestrator.logs) == ["line 2", "line 3", "line 4"]
    assert orchestrator.log_count == 5
    assert "line 0" in session.log_path.read_text(encoding="utf-8")


def test_deferred_analysis_is_dropped_when_a_new_plan_arrives(
    session: SessionStore, conversation: ConversationLog
) -> None:
    first = '{"summary": "first", "plan": [{"kind": "command", "description": "Reboot", "command": "reboot"}]}'
    second = '{"summary": "second", "plan": [{"kind": "command", "description": "Halt", "command": "halt"}]}'
    gate = threading.Event()
    gate.set()
    client = ScriptedClient(first, second, "analysis of first", gate=gate)
    orchestrator = _orchestrator(client, session, conversation)
    try:
        orchestrator.submit_prompt("one")
        orchestrator.run_until_idle(interval=0.01)

        gate.clear()
        assert orchestrator.submit_prompt("two")
        orchestrator.approve()
        gate.set()
        orchestrator.run_until_idle(interval=0.01)
    finally:
        gate.set()
        orchestrator.close()

    assert orchestrator.controller.summary == "second"
    assert orchestrator.analysis is None
    assert len(client.payloads) == 2
    analyses = [
        entry for entry in conversation.load() if isinstance(entry, PlanEntry) and entry.summary == ANALYSIS_SUMMARY
    ]
    assert analyses == []


class _OneShotFetcher:
    def __init__(self, result: FetchResult) -> None:
        self._result: FetchResult | None = result

    @property
    def busy(self) -> bool:
        return self._result is not None

    def poll(self) -> FetchResult | None:
        result, self._result = self._result, None
        return result

    def shutdown(self) -> None:
        pass


@pytest.mark.parametrize("purpose", ["plan", "synthesis"])
def test_result_without_text_is_reported_as_failure(
    purpose, session: SessionStore, conversation: ConversationLog
) -> None:
    orchestrator = Orchestrator(
        client=OfflineClient(),
        allowlist=Allowlist(),
        executor=Executor(dry_run=True),
        conversation=conversation,
        session=session,
        fetcher=_OneShotFetcher(FetchResult(purpose=purpose)),
    )

    orchestrator.tick()

    assert orchestrator.tasks == []
    assert orchestrator.analysis is None
    assert orchestrator.logs[-1].startswith(("Failed requesting plan:", "Analysis request failed:"))
    assert conversation.load() == []
