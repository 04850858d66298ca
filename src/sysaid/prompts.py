"""System instructions and message builders for planning requests."""

from __future__ import annotations

from typing import List, Optional, Sequence, Union

from .memory.schema import (
    CommandEntry,
    ConversationEntry,
    FileEditEntry,
    NoteEntry,
    PlanEntry,
    PromptEntry,
)
from .models.llm_client import ChatMessage

PLANNING_SYSTEM_PROMPT = """\
You assist system administrators who are debugging live servers. Turn the
operator's request into a short, ordered worklist of shell commands, whole-file
configuration edits, and investigative notes.

Respond with a single JSON object and nothing else:
{
  "summary": "one line summary",
  "plan": [
    {
      "kind": "command" | "file_edit" | "note",
      "description": "short human description",
      "command": "shell command (kind=command)",
      "shell": "/bin/bash",
      "requires_root": true | false,
      "cwd": "/etc",
      "path": "/etc/ssh/sshd_config",
      "new_text": "full replacement text (kind=file_edit)",
      "details": "free text (kind=note)"
    }
  ]
}
Do not wrap the JSON in markdown fences or add commentary around it.
Prefer read-only, investigative commands first and keep commands POSIX compatible.
"""

SYNTHESIS_SYSTEM_PROMPT = """\
You assist system administrators who are debugging live servers. The operator
ran the commands below. Read their exit codes and output, explain what they
show, name the most likely cause of the problem, and suggest the next concrete
step. Answer in plain prose; do not return JSON.
"""

SYNTHESIS_OUTPUT_LIMIT = 4000


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... ({len(text) - limit} more characters)"


def render_entry(entry: ConversationEntry) -> str:
    """Render one history entry as the text of a chat turn."""
    if isinstance(entry, PromptEntry):
        return entry.prompt
    if isinstance(entry, PlanEntry):
        if entry.response:
            return entry.response
        return f"Plan: {entry.summary or 'no summary'} ({entry.task_count} task(s))"
    if isinstance(entry, CommandEntry):
        parts = [
            f"Executed: {entry.description}",
            f"$ {entry.command}",
            f"exit code: {entry.exit_code}",
        ]
        if entry.stdout.strip():
            parts.append(f"stdout:\n{entry.stdout.rstrip()}")
        if entry.stderr.strip():
            parts.append(f"stderr:\n{entry.stderr.rstrip()}")
        return "\n".join(parts)
    if isinstance(entry, FileEditEntry):
        backup = f" (backup at {entry.backup_path})" if entry.backup_path else ""
        return f"Edited file {entry.path}: {entry.description}{backup}"
    if isinstance(entry, NoteEntry):
        return f"Note: {entry.description}\n{entry.details}"
    raise TypeError(f"unhandled conversation entry {type(entry).__name__}")


def build_messages(history: Sequence[ConversationEntry], prompt: str) -> List[ChatMessage]:
    """Map history plus the current prompt onto alternating user/assistant turns.

    Plan entries become assistant turns and everything else a user turn.
    Consecutive turns with the same role are merged, and a leading assistant
    turn is dropped so the sequence always opens with the user.
    """
    messages: List[ChatMessage] = []

    def push(role: str, text: str) -> None:
        if not messages and role == "assistant":
            return
        if messages and messages[-1].role == role:
            messages[-1].text = f"{messages[-1].text}\n\n{text}"
            return
        messages.append(ChatMessage(role=role, text=text))  # type: ignore[arg-type]

    for entry in history:
        role = "assistant" if isinstance(entry, PlanEntry) else "user"
        push(role, render_entry(entry))
    push("user", prompt)
    return messages


def render_synthesis_prompt(
    summary: Optional[str], results: Sequence[Union[CommandEntry, FileEditEntry]]
) -> str:
    """Describe every captured execution result for the synthesis request."""
    lines = [f"Plan summary: {summary or 'n/a'}", ""]
    for index, entry in enumerate(results, start=1):
        if isinstance(entry, FileEditEntry):
            lines.append(f"## {index}. {render_entry(entry)}")
            lines.append("")
            continue
        lines.append(f"## {index}. {entry.description}")
        lines.append(f"$ {entry.command}")
        lines.append(f"exit code: {entry.exit_code}")
        lines.append("stdout:")
        lines.append(_clip(entry.stdout.rstrip(), SYNTHESIS_OUTPUT_LIMIT) or "(empty)")
        lines.append("stderr:")
        lines.append(_clip(entry.stderr.rstrip(), SYNTHESIS_OUTPUT_LIMIT) or "(empty)")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


__all__ = [
    "PLANNING_SYSTEM_PROMPT",
    "SYNTHESIS_SYSTEM_PROMPT",
    "build_messages",
    "render_entry",
    "render_synthesis_prompt",
]
