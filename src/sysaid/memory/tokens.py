"""Token approximations used to keep planning requests within budget."""

from __future__ import annotations

from typing import List, Sequence

from .schema import (
    CommandEntry,
    ConversationEntry,
    FileEditEntry,
    NoteEntry,
    PlanEntry,
    PromptEntry,
)

_CHARS_PER_TOKEN = 4
SAFETY_MARGIN_TOKENS = 100

# Structural overhead added per entry kind on top of its text.
_PLAN_OVERHEAD = 50
_COMMAND_OVERHEAD = 20
_FILE_EDIT_OVERHEAD = 10
_NOTE_OVERHEAD = 10


def approximate_tokens(text: str) -> int:
    """Rough token count: four characters per token, never zero."""
    return len(text) // _CHARS_PER_TOKEN + 1


def entry_tokens(entry: ConversationEntry) -> int:
    """Estimate the tokens ``entry`` costs once rendered into a request."""
    if isinstance(entry, PromptEntry):
        return approximate_tokens(entry.prompt)
    if isinstance(entry, PlanEntry):
        if entry.response:
            return approximate_tokens(entry.response)
        if entry.summary:
            return approximate_tokens(entry.summary) + _PLAN_OVERHEAD
        return _PLAN_OVERHEAD
    if isinstance(entry, CommandEntry):
        text = entry.description + entry.command + entry.stdout + entry.stderr
        return approximate_tokens(text) + _COMMAND_OVERHEAD
    if isinstance(entry, FileEditEntry):
        return approximate_tokens(entry.description + entry.path) + _FILE_EDIT_OVERHEAD
    if isinstance(entry, NoteEntry):
        return approximate_tokens(entry.description + entry.details) + _NOTE_OVERHEAD
    raise TypeError(f"unhandled conversation entry {type(entry).__name__}")


def truncate_history(
    history: Sequence[ConversationEntry],
    max_tokens: int,
    system_tokens: int,
    current_prompt_tokens: int,
) -> List[ConversationEntry]:
    """Keep the most recent entries that fit the remaining budget.

    Entries are considered newest first; the walk stops at the first entry that
    would overflow, so the result is always a contiguous suffix of ``history``
    returned in its original order.
    """
    available = max(0, max_tokens - system_tokens - current_prompt_tokens - SAFETY_MARGIN_TOKENS)
    kept: List[ConversationEntry] = []
    used = 0
    for entry in reversed(history):
        cost = entry_tokens(entry)
        if used + cost > available:
            break
        used += cost
        kept.append(entry)
    kept.reverse()
    return kept


__all__ = ["SAFETY_MARGIN_TOKENS", "approximate_tokens", "entry_tokens", "truncate_history"]
