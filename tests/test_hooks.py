from __future__ import annotations

import pytest

from sysaid.tools.hooks import HookConfigError, HookEvent, HookManager


def test_json_output_can_block() -> None:
    manager = HookManager.from_config(
        [{"event": "pre_command", "command": "echo '{\"block\": true, \"system_message\": \"no\"}'"}]
    )

    results = manager.run(HookEvent.PRE_COMMAND, {"command": "ls"})

    assert len(results) == 1
    assert results[0].block is True
    assert results[0].system_message == "no"


def test_plain_text_becomes_system_message() -> None:
    manager = HookManager.from_config([{"event": "stop", "command": "echo done"}])

    results = manager.run(HookEvent.STOP, {})

    assert results[0].system_message == "done"
    assert results[0].block is False


def test_hook_receives_payload_on_stdin() -> None:
    manager = HookManager.from_config([{"event": "prompt_submit", "command": "cat"}])

    results = manager.run(HookEvent.PROMPT_SUBMIT, {"prompt": "why"})

    assert results[0].system_message is None
    assert results[0].block is False


def test_failing_hook_is_skipped() -> None:
    manager = HookManager.from_config(
        [
            {"event": "post_command", "command": "exit 2"},
            {"event": "post_command", "command": "echo ok"},
        ]
    )

    results = manager.run(HookEvent.POST_COMMAND, {})

    assert [result.system_message for result in results] == ["ok"]


def test_hooks_only_fire_for_their_event() -> None:
    manager = HookManager.from_config([{"event": "stop", "command": "echo done"}])

    assert manager.run(HookEvent.PRE_COMMAND, {}) == []
    assert manager.has_hooks(HookEvent.STOP)
    assert not manager.has_hooks(HookEvent.PRE_COMMAND)


def test_timed_out_hook_is_skipped() -> None:
    manager = HookManager.from_config([{"event": "stop", "command": "sleep 5", "timeout": 0.2}])

    assert manager.run(HookEvent.STOP, {}) == []


@pytest.mark.parametrize(
    "entry",
    [
        {"event": "whenever", "command": "true"},
        {"event": "stop"},
        {"event": "stop", "command": "true", "timeout": 0},
        "stop",
    ],
)
def test_invalid_hook_config_is_rejected(entry) -> None:
    with pytest.raises(HookConfigError):
        HookManager.from_config([entry])
