from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from sysaid.memory.conversation import ConversationLog  # noqa: E402
from sysaid.memory.session import SessionStore  # noqa: E402
from sysaid.tools.executor import CommandResult, ExecutionError, FileWriteResult  # noqa: E402


@dataclass
class RecordingExecutor:
    """Executor double that records calls instead of touching the system."""

    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    fail_with: Optional[str] = None
    on_call: Optional[Callable[[], None]] = None
    commands: List[str] = field(default_factory=list)
    writes: List[tuple] = field(default_factory=list)

    def run_command(self, shell: str, command: str, cwd: Optional[str] = None) -> CommandResult:
        if self.on_call is not None:
            self.on_call()
        self.commands.append(command)
        if self.fail_with:
            raise ExecutionError(self.fail_with)
        return CommandResult(self.exit_code, self.stdout, self.stderr)

    def write_file(self, path: Optional[str], new_text: str) -> FileWriteResult:
        if self.on_call is not None:
            self.on_call()
        if not path:
            raise ExecutionError("file edit missing path")
        self.writes.append((path, new_text))
        if self.fail_with:
            raise ExecutionError(self.fail_with)
        return FileWriteResult(path=Path(path))


@pytest.fixture()
def session(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "session")


@pytest.fixture()
def conversation(session: SessionStore) -> ConversationLog:
    return ConversationLog(session.conversation_path)


@pytest.fixture()
def recording_executor() -> RecordingExecutor:
    return RecordingExecutor()
