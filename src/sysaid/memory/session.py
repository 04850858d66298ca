"""On-disk session artifacts: session log, plan snapshots, command history."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from .schema import Task, utc_now

LOGGER = logging.getLogger(__name__)

CONVERSATION_FILE = "conversation.jsonl"
HISTORY_FILE = "history.sh"
LOG_FILE = "sysaid.log"


class SessionError(RuntimeError):
    """Raised when the session directory cannot be prepared."""


def shell_quote(value: str) -> str:
    """Single-quote ``value`` for a POSIX shell."""
    return "'" + value.replace("'", "'\"'\"'") + "'"


@dataclass(slots=True)
class SessionStore:
    """Owns every file written for one interactive session.

    ``conversation.jsonl`` and ``history.sh`` are shared by all sessions under
    the same root; the session log and plan snapshots are per session.
    """

    root: Path
    session_id: str = field(default_factory=lambda: utc_now().strftime("%Y%m%d-%H%M%S"))
    _plan_counter: int = 0
    _plan_path: Optional[Path] = None
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self.root = Path(self.root).expanduser()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise SessionError(f"cannot create session directory {self.root}: {error}") from error

    @property
    def log_path(self) -> Path:
        return self.root / f"session-{self.session_id}.log"

    @property
    def conversation_path(self) -> Path:
        return self.root / CONVERSATION_FILE

    @property
    def history_path(self) -> Path:
        return self.root / HISTORY_FILE

    @property
    def diagnostics_path(self) -> Path:
        return self.root / LOG_FILE

    @property
    def plan_path(self) -> Optional[Path]:
        return self._plan_path

    def append_log(self, line: str) -> None:
        """Append a timestamped line to the human-readable session log."""
        stamp = utc_now().isoformat(timespec="seconds")
        with self._lock:
            with self.log_path.open("a", encoding="utf-8") as handle:
                for part in line.splitlines() or [""]:
                    handle.write(f"[{stamp}] {part}\n")
                handle.flush()

    def begin_plan(self) -> Path:
        """Allocate the snapshot file for a freshly installed plan."""
        self._plan_counter += 1
        self._plan_path = self.root / f"plan-{self.session_id}-{self._plan_counter:02d}.json"
        return self._plan_path

    def write_plan(self, summary: Optional[str], tasks: Sequence[Task]) -> Optional[Path]:
        """Rewrite the current plan snapshot with the latest task states."""
        path = self._plan_path or self.begin_plan()
        snapshot = {
            "summary": summary,
            "generated_at": utc_now().isoformat(),
            "tasks": [task.model_dump(mode="json") for task in tasks],
        }
        try:
            with self._lock:
                path.write_text(json.dumps(snapshot, indent=2) + "\n", encoding="utf-8")
        except OSError as error:
            LOGGER.warning("Failed to write plan snapshot %s: %s", path, error)
            return None
        return path

    def record_command(
        self,
        command: str,
        *,
        cwd: Optional[str] = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Append an executed command and its output to the history script."""
        lines = []
        if cwd:
            lines.append(f"cd {shell_quote(cwd)}")
        lines.append(command)
        lines.extend(f"#> {line}" for line in stdout.splitlines())
        lines.extend(f"#err: {line}" for line in stderr.splitlines())
        lines.append("")
        with self._lock:
            with self.history_path.open("a", encoding="utf-8") as handle:
                handle.write("\n".join(lines) + "\n")
                handle.flush()


__all__ = ["CONVERSATION_FILE", "HISTORY_FILE", "SessionError", "SessionStore", "shell_quote"]
