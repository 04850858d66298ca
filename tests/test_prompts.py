from __future__ import annotations

import sysaid.planning as planning
from sysaid.memory.schema import CommandEntry, FileEditEntry, NoteEntry, PlanEntry, PromptEntry
from sysaid.prompts import build_messages, render_synthesis_prompt


def _command(stdout: str = "ok\n") -> CommandEntry:
    return CommandEntry(
        task_id="t1",
        description="Disk usage",
        command="df -h",
        shell="/bin/bash",
        exit_code=0,
        stdout=stdout,
    )


def test_messages_alternate_and_end_with_prompt() -> None:
    history = [
        PromptEntry(prompt="disk full?"),
        PlanEntry(summary="check", task_count=1, response='{"plan": []}'),
        _command(),
        NoteEntry(task_id="t2", description="Hint", details="look at /var"),
    ]

    messages = build_messages(history, "and now?")

    assert [message.role for message in messages] == ["user", "assistant", "user"]
    assert messages[1].text == '{"plan": []}'
    assert "exit code: 0" in messages[2].text
    assert "Note: Hint" in messages[2].text
    assert messages[2].text.endswith("and now?")


def test_leading_assistant_turn_is_dropped() -> None:
    history = [PlanEntry(summary="old", task_count=0)]

    messages = build_messages(history, "hello")

    assert [(message.role, message.text) for message in messages] == [("user", "hello")]


def test_synthesis_prompt_lists_results_and_clips_output() -> None:
    edit = FileEditEntry(task_id="t3", description="Tune", path="/etc/motd", backup_path="/etc/motd.sysaid.bak")

    text = render_synthesis_prompt("check disks", [_command("x" * 5000), edit])

    assert text.startswith("Plan summary: check disks")
    assert "## 1. Disk usage" in text
    assert "exit code: 0" in text
    assert "(1000 more characters)" in text
    assert "## 2. Edited file /etc/motd: Tune (backup at /etc/motd.sysaid.bak)" in text


def test_planning_package_exports_lazily() -> None:
    assert planning.parse_plan.__name__ == "parse_plan"
    assert planning.ExecutionController.__name__ == "ExecutionController"
