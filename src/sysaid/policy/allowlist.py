"""Allowlist policy that decides which tasks may run without operator approval.

The engine is a pure classifier.  Given a :class:`~sysaid.memory.schema.Task`
it returns either :data:`TaskStatus.READY` or one of the typed denials below;
it never touches the task itself.  The controller is responsible for turning a
denial into a ``Blocked`` status.

Rules
    ``command``
        Permitted iff the command string matches at least one configured
        command pattern (``re.search``; anchoring is a convention of the
        patterns, not something the engine enforces).
    ``file_edit``
        The replacement size in KiB must not exceed ``max_edit_size_kb``.
        When a path is present it must also match a configured file pattern.
    ``note``
        Always permitted.

Patterns are compiled once when the :class:`Allowlist` is built; a pattern that
fails to compile raises :class:`AllowlistConfigError` so a bad configuration is
caught at startup instead of in the middle of a plan.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, List, Union

from ..memory.schema import CommandDetail, FileEditDetail, NoteDetail, Task, TaskStatus

DEFAULT_COMMAND_PATTERNS: tuple[str, ...] = (
    r"^(sudo\s+)?systemctl\s+",
    r"^(sudo\s+)?service\s+",
    r"^(sudo\s+)?journalctl(\s|$)",
    r"^tail\s+-f\s+",
    r"^tail\s+-n\s+\d+\s+",
    r"^head\s+-n\s+\d+\s+",
    r"^cat\s+",
    r"^less\s+",
    r"^grep\s+",
    r"^rg\s+",
    r"^(sudo\s+)?apt(-get)?\s+",
    r"^(sudo\s+)?dpkg\s+",
    r"^ls(\s|$)",
    r"^pwd$",
    r"^whoami$",
    r"^id$",
    r"^df\s+",
    r"^du\s+",
    r"^mount(\s|$)",
    r"^umount(\s|$)",
    r"^ip\s+",
    r"^ifconfig",
    r"^netstat",
    r"^ss\s+",
    r"^(sudo\s+)?ufw\s+",
    r"^(sudo\s+)?iptables\s+",
    r"^curl\s+",
    r"^wget\s+",
    r"^dig\s+",
    r"^host\s+",
    r"^ping\s+",
    r"^traceroute\s+",
    r"^top$",
    r"^htop$",
    r"^ps\s+",
    r"^(sudo\s+)?kill",
    r"^(sudo\s+)?systemd-analyze",
)

DEFAULT_FILE_PATTERNS: tuple[str, ...] = (
    r"^/etc/.*",
    r"^/var/log/.*",
    r"^/usr/lib/systemd/system/.*",
    r"^/lib/systemd/system/.*",
    r"^/etc/ssh/.*",
    r"^/etc/network/.*",
    r"^/etc/sysctl\.conf$",
)

DEFAULT_MAX_EDIT_SIZE_KB = 64

_NO_PATH_LABEL = "<buffer>"


class AllowlistConfigError(RuntimeError):
    """Raised when the allowlist configuration cannot be compiled."""


@dataclass(slots=True)
class CommandDenied:
    """Command string matched none of the command patterns."""

    command: str

    @property
    def message(self) -> str:
        return f"command '{self.command}' is not allowlisted"


@dataclass(slots=True)
class FileDenied:
    """Edit target matched none of the file patterns."""

    path: str

    @property
    def message(self) -> str:
        return f"file '{self.path}' is not allowlisted"


@dataclass(slots=True)
class EditTooLarge:
    """Replacement text exceeds the configured size ceiling."""

    path: str | None
    size_kb: int
    limit_kb: int

    @property
    def message(self) -> str:
        return f"edit for '{self.path or _NO_PATH_LABEL}' exceeds {self.limit_kb} KiB limit"


PolicyDenial = Union[CommandDenied, FileDenied, EditTooLarge]
PolicyDecision = Union[TaskStatus, PolicyDenial]


@dataclass(slots=True)
class AllowlistConfig:
    """Raw pattern lists and size ceiling, before compilation."""

    command_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_COMMAND_PATTERNS))
    file_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_FILE_PATTERNS))
    max_edit_size_kb: int = DEFAULT_MAX_EDIT_SIZE_KB

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "AllowlistConfig":
        """Build a config from the ``allowlist`` section of the YAML file."""
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise AllowlistConfigError("allowlist section must be a mapping")
        config = cls()
        commands = data.get("command_patterns")
        if commands is not None:
            config.command_patterns = _string_list(commands, "command_patterns")
        files = data.get("file_patterns")
        if files is not None:
            config.file_patterns = _string_list(files, "file_patterns")
        limit = data.get("max_edit_size_kb")
        if limit is not None:
            if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
                raise AllowlistConfigError("max_edit_size_kb must be a non-negative integer")
            config.max_edit_size_kb = limit
        return config


def _string_list(value: Any, key: str) -> List[str]:
    if isinstance(value, str) or not isinstance(value, Iterable):
        raise AllowlistConfigError(f"{key} must be a list of regular expressions")
    items = list(value)
    if not all(isinstance(item, str) for item in items):
        raise AllowlistConfigError(f"{key} must only contain strings")
    return items


def _compile_all(patterns: Iterable[str], label: str) -> List[re.Pattern[str]]:
    compiled: List[re.Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as error:
            raise AllowlistConfigError(f"invalid {label} regex '{pattern}': {error}") from error
    return compiled


def edit_size_kb(new_text: str) -> int:
    """Return the size of ``new_text`` in whole KiB (UTF-8, rounded down)."""
    return len(new_text.encode("utf-8")) // 1024


class Allowlist:
    """Compiled policy engine."""

    def __init__(self, config: AllowlistConfig | None = None) -> None:
        self.config = config or AllowlistConfig()
        self._commands = _compile_all(self.config.command_patterns, "command")
        self._files = _compile_all(self.config.file_patterns, "file")

    @classmethod
    def from_config(cls, config: AllowlistConfig | None = None) -> "Allowlist":
        return cls(config)

    @property
    def max_edit_size_kb(self) -> int:
        return self.config.max_edit_size_kb

    def command_allowed(self, command: str) -> bool:
        return any(pattern.search(command) for pattern in self._commands)

    def path_allowed(self, path: str) -> bool:
        return any(pattern.search(path) for pattern in self._files)

    def evaluate(self, task: Task) -> PolicyDecision:
        """Classify ``task`` without mutating it."""
        detail = task.detail
        if isinstance(detail, CommandDetail):
            if self.command_allowed(detail.command):
                return TaskStatus.READY
            return CommandDenied(command=detail.command)
        if isinstance(detail, FileEditDetail):
            size_kb = edit_size_kb(detail.new_text)
            if size_kb > self.max_edit_size_kb:
                return EditTooLarge(path=detail.path, size_kb=size_kb, limit_kb=self.max_edit_size_kb)
            if detail.path is not None and not self.path_allowed(detail.path):
                return FileDenied(path=detail.path)
            return TaskStatus.READY
        if isinstance(detail, NoteDetail):
            return TaskStatus.READY
        raise TypeError(f"unhandled task detail {type(detail).__name__}")

    def apply(self, task: Task) -> PolicyDecision:
        """Evaluate ``task`` and move it out of ``Proposed`` accordingly."""
        decision = self.evaluate(task)
        if decision is TaskStatus.READY:
            task.mark_ready()
        else:
            task.block(decision.message)
        return decision


def is_denial(decision: PolicyDecision) -> bool:
    return not isinstance(decision, TaskStatus)


__all__ = [
    "Allowlist",
    "AllowlistConfig",
    "AllowlistConfigError",
    "CommandDenied",
    "DEFAULT_COMMAND_PATTERNS",
    "DEFAULT_FILE_PATTERNS",
    "DEFAULT_MAX_EDIT_SIZE_KB",
    "EditTooLarge",
    "FileDenied",
    "PolicyDecision",
    "PolicyDenial",
    "edit_size_kb",
    "is_denial",
]
