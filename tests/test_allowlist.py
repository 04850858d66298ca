from __future__ import annotations

import random
import re

import pytest

from sysaid.memory.schema import CommandDetail, FileEditDetail, NoteDetail, Task, TaskStatus
from sysaid.policy.allowlist import (
    Allowlist,
    AllowlistConfig,
    AllowlistConfigError,
    CommandDenied,
    EditTooLarge,
    FileDenied,
)


def _command(command: str) -> Task:
    return Task(description="cmd", detail=CommandDetail(shell="/bin/bash", command=command))


def _edit(path: str | None, size_bytes: int) -> Task:
    return Task(description="edit", detail=FileEditDetail(path=path, new_text="a" * size_bytes))


def test_default_allowlist_permits_read_only_diagnostics() -> None:
    allowlist = Allowlist()

    assert allowlist.evaluate(_command("systemctl status nginx")) is TaskStatus.READY
    assert allowlist.evaluate(_command("sudo journalctl -u ssh")) is TaskStatus.READY
    assert allowlist.evaluate(_command("tail -n 50 /var/log/syslog")) is TaskStatus.READY
    assert allowlist.evaluate(_command("pwd")) is TaskStatus.READY


def test_default_allowlist_denies_destructive_command() -> None:
    decision = Allowlist().evaluate(_command("rm -rf /"))

    assert isinstance(decision, CommandDenied)
    assert decision.message == "command 'rm -rf /' is not allowlisted"


def test_evaluate_does_not_mutate_task() -> None:
    task = _command("rm -rf /")

    Allowlist().evaluate(task)

    assert task.status is TaskStatus.PROPOSED
    assert task.block_reason is None


def test_apply_blocks_with_reason() -> None:
    task = _command("rm -rf /")

    Allowlist().apply(task)

    assert task.status is TaskStatus.BLOCKED
    assert task.block_reason == "command 'rm -rf /' is not allowlisted"


def test_random_patterns_match_iff_any_pattern_matches() -> None:
    rng = random.Random(1234)
    words = ["ls", "cat", "echo", "rm", "grep", "df", "kill", "mv"]
    for _ in range(200):
        patterns = [rf"^{word}\s" for word in rng.sample(words, rng.randint(0, 4))]
        command = f"{rng.choice(words)} {rng.choice(['-la', '/etc/hosts', 'x'])}"
        allowlist = Allowlist(AllowlistConfig(command_patterns=patterns, file_patterns=[]))

        decision = allowlist.evaluate(_command(command))

        expected = any(re.search(pattern, command) for pattern in patterns)
        if expected:
            assert decision is TaskStatus.READY
        else:
            assert isinstance(decision, CommandDenied)


def test_file_edit_outside_patterns_is_denied() -> None:
    decision = Allowlist().evaluate(_edit("/home/user/.bashrc", 10))

    assert isinstance(decision, FileDenied)
    assert decision.message == "file '/home/user/.bashrc' is not allowlisted"


@pytest.mark.parametrize("path", ["/etc/ssh/sshd_config", "/home/user/notes.txt", None])
def test_size_ceiling_is_independent_of_path(path: str | None) -> None:
    allowlist = Allowlist(AllowlistConfig(max_edit_size_kb=2))

    at_limit = allowlist.evaluate(_edit(path, 2 * 1024 + 1023))
    over_limit = allowlist.evaluate(_edit(path, 3 * 1024))

    assert not isinstance(at_limit, EditTooLarge)
    assert isinstance(over_limit, EditTooLarge)
    assert over_limit.size_kb == 3
    assert over_limit.limit_kb == 2


def test_edit_without_path_reports_buffer_label() -> None:
    decision = Allowlist(AllowlistConfig(max_edit_size_kb=0)).evaluate(_edit(None, 4096))

    assert isinstance(decision, EditTooLarge)
    assert decision.message == "edit for '<buffer>' exceeds 0 KiB limit"


def test_edit_without_path_within_limit_is_ready() -> None:
    assert Allowlist().evaluate(_edit(None, 100)) is TaskStatus.READY


def test_notes_are_always_ready() -> None:
    allowlist = Allowlist(AllowlistConfig(command_patterns=[], file_patterns=[], max_edit_size_kb=0))
    task = Task(description="n", detail=NoteDetail(details="remember"))

    assert allowlist.evaluate(task) is TaskStatus.READY


def test_invalid_pattern_fails_at_construction() -> None:
    with pytest.raises(AllowlistConfigError, match="invalid command regex"):
        Allowlist(AllowlistConfig(command_patterns=["(unclosed"]))


def test_config_from_mapping_overrides_defaults() -> None:
    config = AllowlistConfig.from_mapping(
        {"command_patterns": [r"^echo\s+"], "max_edit_size_kb": 8}
    )

    assert config.command_patterns == [r"^echo\s+"]
    assert config.max_edit_size_kb == 8
    assert config.file_patterns


def test_config_from_mapping_rejects_bad_types() -> None:
    with pytest.raises(AllowlistConfigError):
        AllowlistConfig.from_mapping({"command_patterns": "^ls"})
    with pytest.raises(AllowlistConfigError):
        AllowlistConfig.from_mapping({"max_edit_size_kb": -1})
