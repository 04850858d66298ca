"""Typed records for tasks, plans, and the conversation log."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _new_task_id() -> str:
    return uuid4().hex


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class TaskStateError(RuntimeError):
    """Raised when a task is asked to make a transition its status forbids."""


class TaskStatus(str, Enum):
    """Lifecycle states for a task."""

    PROPOSED = "PROPOSED"
    READY = "READY"
    BLOCKED = "BLOCKED"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"


_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PROPOSED: frozenset(
        {TaskStatus.READY, TaskStatus.BLOCKED, TaskStatus.RUNNING, TaskStatus.COMPLETE}
    ),
    TaskStatus.READY: frozenset({TaskStatus.RUNNING, TaskStatus.BLOCKED, TaskStatus.COMPLETE}),
    TaskStatus.BLOCKED: frozenset({TaskStatus.READY}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETE, TaskStatus.BLOCKED}),
    TaskStatus.COMPLETE: frozenset(),
}


class CommandDetail(RecordModel):
    """Shell command to run through the configured interpreter."""

    kind: Literal["command"] = "command"
    shell: str
    command: str
    cwd: Optional[str] = None
    requires_root: bool = False


class FileEditDetail(RecordModel):
    """Full-content replacement of a file."""

    kind: Literal["file_edit"] = "file_edit"
    path: Optional[str] = None
    new_text: str
    description: Optional[str] = None


class NoteDetail(RecordModel):
    """Advisory text with no side effects."""

    kind: Literal["note"] = "note"
    details: str


TaskDetail = Annotated[
    Union[CommandDetail, FileEditDetail, NoteDetail],
    Field(discriminator="kind"),
]

EXECUTABLE_KINDS = frozenset({"command", "file_edit"})


class Task(RecordModel):
    """Single unit of work in a linear plan.

    ``created_at`` is the ordering key for progression and never changes, the
    same goes for ``id`` and ``detail``.  Status moves only through the
    transition helpers below so an illegal jump surfaces as
    :class:`TaskStateError` instead of silently corrupting the worklist.
    """

    id: str = Field(default_factory=_new_task_id, frozen=True)
    description: str
    detail: TaskDetail = Field(frozen=True)
    status: TaskStatus = TaskStatus.PROPOSED
    block_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now, frozen=True)
    annotations: List[str] = Field(default_factory=list)
    approved: bool = False

    @property
    def kind(self) -> str:
        return self.detail.kind

    @property
    def is_executable(self) -> bool:
        return self.detail.kind in EXECUTABLE_KINDS

    def _move(self, target: TaskStatus) -> None:
        allowed = _TRANSITIONS[self.status]
        if target not in allowed:
            raise TaskStateError(
                f"task {self.id} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def mark_ready(self) -> None:
        self._move(TaskStatus.READY)
        self.block_reason = None

    def block(self, reason: str) -> None:
        self._move(TaskStatus.BLOCKED)
        self.block_reason = reason

    def mark_running(self) -> None:
        self._move(TaskStatus.RUNNING)

    def complete(self) -> None:
        self._move(TaskStatus.COMPLETE)

    def status_label(self) -> str:
        """Return the status as shown to operators, including any block reason."""
        if self.status is TaskStatus.BLOCKED and self.block_reason:
            return f"{self.status.value} ({self.block_reason})"
        return self.status.value


class Plan(RecordModel):
    """Summary plus ordered task list from one planning response."""

    summary: Optional[str] = None
    tasks: List[Task] = Field(default_factory=list)


class PromptEntry(RecordModel):
    type: Literal["prompt"] = "prompt"
    timestamp: datetime = Field(default_factory=utc_now)
    prompt: str


class PlanEntry(RecordModel):
    type: Literal["plan"] = "plan"
    timestamp: datetime = Field(default_factory=utc_now)
    summary: Optional[str] = None
    task_count: int
    response: Optional[str] = None


class CommandEntry(RecordModel):
    type: Literal["command"] = "command"
    timestamp: datetime = Field(default_factory=utc_now)
    task_id: str
    description: str
    command: str
    shell: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class FileEditEntry(RecordModel):
    type: Literal["file_edit"] = "file_edit"
    timestamp: datetime = Field(default_factory=utc_now)
    task_id: str
    description: str
    path: str
    backup_path: Optional[str] = None


class NoteEntry(RecordModel):
    type: Literal["note"] = "note"
    timestamp: datetime = Field(default_factory=utc_now)
    task_id: str
    description: str
    details: str


ConversationEntry = Annotated[
    Union[PromptEntry, PlanEntry, CommandEntry, FileEditEntry, NoteEntry],
    Field(discriminator="type"),
]

CONVERSATION_ENTRY_ADAPTER: TypeAdapter = TypeAdapter(ConversationEntry)


__all__ = [
    "CONVERSATION_ENTRY_ADAPTER",
    "CommandDetail",
    "CommandEntry",
    "ConversationEntry",
    "EXECUTABLE_KINDS",
    "FileEditDetail",
    "FileEditEntry",
    "NoteDetail",
    "NoteEntry",
    "Plan",
    "PlanEntry",
    "PromptEntry",
    "RecordModel",
    "Task",
    "TaskDetail",
    "TaskStateError",
    "TaskStatus",
    "utc_now",
]
