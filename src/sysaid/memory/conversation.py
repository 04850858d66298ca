"""Append-only JSONL log of prompts, plans, and execution results."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import List

from pydantic import ValidationError

from .schema import CONVERSATION_ENTRY_ADAPTER, ConversationEntry

LOGGER = logging.getLogger(__name__)


class ConversationLog:
    """Durable conversation memory, one JSON object per line.

    Appends are serialised through a lock and flushed immediately so a crash
    loses at most the line being written.  Entries are never rewritten.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, entry: ConversationEntry) -> None:
        line = entry.model_dump_json(exclude_none=True)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
                handle.flush()

    def load(self) -> List[ConversationEntry]:
        """Read every entry in write order, skipping corrupt lines."""
        if not self.path.exists():
            return []
        entries: List[ConversationEntry] = []
        with self.path.open("r", encoding="utf-8", errors="replace") as handle:
            for line_number, line in enumerate(handle, start=1):
                text = line.strip()
                if not text:
                    continue
                try:
                    entries.append(CONVERSATION_ENTRY_ADAPTER.validate_json(text))
                except (ValidationError, json.JSONDecodeError) as error:
                    LOGGER.warning(
                        "Skipping corrupt conversation entry at %s:%d: %s",
                        self.path,
                        line_number,
                        error,
                    )
        return entries


__all__ = ["ConversationLog"]
