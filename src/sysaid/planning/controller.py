"""Sequential execution of an installed plan.

The controller owns the current task list and is the only code that moves a
task past its initial policy status.  Progression is strictly linear: the
first task that is not ``Complete`` decides what happens next.

* ``Ready``/``Proposed``: dispatched to the executor right away.
* ``Blocked``: progression halts until the operator answers the approval
  queue.  A declined task stays blocked for good and the plan stops there.
* ``Running``: nothing to do until it resolves.

Once every task is ``Complete`` and at least one execution result was
captured, a single synthesis request is prepared for the orchestrator to
pick up with :meth:`ExecutionController.take_synthesis_request`.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Set, Union

from ..memory.conversation import ConversationLog
from ..memory.schema import (
    CommandDetail,
    CommandEntry,
    FileEditDetail,
    FileEditEntry,
    NoteDetail,
    NoteEntry,
    Plan,
    Task,
    TaskStatus,
)
from ..memory.session import SessionStore
from ..policy.allowlist import Allowlist
from ..tools.executor import ExecutionError, Executor
from ..tools.hooks import HookEvent, HookManager

LOGGER = logging.getLogger(__name__)

OUTPUT_PREVIEW_LIMIT = 200

ExecutionRecord = Union[CommandEntry, FileEditEntry]


def _preview(text: str) -> str:
    text = text.strip()
    if len(text) <= OUTPUT_PREVIEW_LIMIT:
        return text
    return text[:OUTPUT_PREVIEW_LIMIT] + "…"


@dataclass(slots=True)
class SynthesisRequest:
    """Everything the synthesis call needs about a finished plan."""

    summary: Optional[str]
    results: List[ExecutionRecord] = field(default_factory=list)
    generation: int = 0


class ExecutionController:
    def __init__(
        self,
        *,
        allowlist: Allowlist,
        executor: Executor,
        conversation: ConversationLog,
        session: Optional[SessionStore] = None,
        hooks: Optional[HookManager] = None,
        log: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._allowlist = allowlist
        self._executor = executor
        self._conversation = conversation
        self._session = session
        self._hooks = hooks or HookManager()
        self._log = log or LOGGER.info
        self.summary: Optional[str] = None
        self.tasks: List[Task] = []
        self.approval_queue: Deque[int] = deque()
        self.results: List[ExecutionRecord] = []
        self._declined: Set[str] = set()
        self._installed = False
        self.generation = 0
        self._synthesis_issued = False
        self._pending_synthesis: Optional[SynthesisRequest] = None

    # ------------------------------------------------------------------
    # Plan installation
    # ------------------------------------------------------------------
    def install(self, plan: Plan) -> None:
        """Replace the current plan wholesale and start progressing it."""
        self.summary = plan.summary
        self.tasks = []
        self.approval_queue.clear()
        self.results = []
        self._declined = set()
        self._installed = True
        self.generation += 1
        self._synthesis_issued = False
        self._pending_synthesis = None
        if self._session is not None:
            self._session.begin_plan()

        for task in plan.tasks:
            decision = self._allowlist.apply(task)
            if isinstance(task.detail, NoteDetail):
                self._finish_note(task, task.detail)
                continue
            if task.status is TaskStatus.BLOCKED:
                LOGGER.info("Task '%s' blocked by policy: %s", task.description, decision.message)
            self.tasks.append(task)

        LOGGER.info(
            "Installed plan with %d actionable task(s): %s", len(self.tasks), self.summary or "(no summary)"
        )
        self._rebuild_queue()
        self._persist()
        self.advance()

    def _finish_note(self, task: Task, detail: NoteDetail) -> None:
        task.complete()
        self._conversation.append(
            NoteEntry(task_id=task.id, description=task.description, details=detail.details)
        )
        self._log(f"Note: {task.description}\n{detail.details}")

    # ------------------------------------------------------------------
    # Progression
    # ------------------------------------------------------------------
    def first_pending_index(self) -> Optional[int]:
        for index, task in enumerate(self.tasks):
            if task.status is not TaskStatus.COMPLETE:
                return index
        return None

    def advance(self) -> None:
        """Run tasks in order until one blocks, one is running, or none remain."""
        while True:
            index = self.first_pending_index()
            if index is None:
                self._check_synthesis()
                return
            task = self.tasks[index]
            if task.status in (TaskStatus.READY, TaskStatus.PROPOSED):
                self._log(f"Auto-executing '{task.description}'")
                self._run(index)
                continue
            if task.status is TaskStatus.BLOCKED:
                if task.id not in self._declined and index not in self.approval_queue:
                    self._rebuild_queue()
                return
            return

    def _run(self, index: int) -> None:
        task = self.tasks[index]
        detail = task.detail
        if isinstance(detail, CommandDetail):
            if self._pre_command_blocked(task, detail):
                return
            task.mark_running()
            self._persist()
            self._run_command(task, detail)
        elif isinstance(detail, FileEditDetail):
            task.mark_running()
            self._persist()
            self._run_file_edit(task, detail)
        elif isinstance(detail, NoteDetail):
            self._finish_note(task, detail)
        else:
            raise TypeError(f"unhandled task detail {type(detail).__name__}")
        self._rebuild_queue()
        self._persist()

    def _pre_command_blocked(self, task: Task, detail: CommandDetail) -> bool:
        if task.approved or not self._hooks.has_hooks(HookEvent.PRE_COMMAND):
            return False
        payload = {"task_id": task.id, "description": task.description, "command": detail.command}
        for result in self._hooks.run(HookEvent.PRE_COMMAND, payload):
            if result.system_message:
                self._log(f"[hook] {result.system_message}")
            if result.block:
                task.block(f"blocked by hook: {result.system_message or result.hook.command}")
                self._log(f"Task '{task.description}' blocked by hook")
                self._rebuild_queue()
                self._persist()
                return True
        return False

    def _run_command(self, task: Task, detail: CommandDetail) -> None:
        try:
            outcome = self._executor.run_command(detail.shell, detail.command, detail.cwd)
        except ExecutionError as error:
            task.block(f"execution failed: {error}")
            self._log(f"Command '{task.description}' failed: {error}")
            return

        task.annotations.append(f"exit {outcome.exit_code}")
        if outcome.stdout:
            task.annotations.append(f"stdout: {outcome.stdout}")
        if outcome.stderr:
            task.annotations.append(f"stderr: {outcome.stderr}")
        entry = CommandEntry(
            task_id=task.id,
            description=task.description,
            command=detail.command,
            shell=detail.shell,
            exit_code=outcome.exit_code,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
        )
        self._conversation.append(entry)
        self.results.append(entry)
        if self._session is not None:
            self._session.record_command(
                detail.command, cwd=detail.cwd, stdout=outcome.stdout, stderr=outcome.stderr
            )
        task.complete()

        message = f"Command '{task.description}' exited with {outcome.exit_code}"
        if outcome.stdout.strip():
            message += f"\nstdout: {_preview(outcome.stdout)}"
        if outcome.stderr.strip():
            message += f"\nstderr: {_preview(outcome.stderr)}"
        self._log(message)

        if self._hooks.has_hooks(HookEvent.POST_COMMAND):
            payload = {
                "task_id": task.id,
                "command": detail.command,
                "exit_code": outcome.exit_code,
                "stdout": outcome.stdout,
                "stderr": outcome.stderr,
            }
            for result in self._hooks.run(HookEvent.POST_COMMAND, payload):
                if result.system_message:
                    self._log(f"[hook] {result.system_message}")

    def _run_file_edit(self, task: Task, detail: FileEditDetail) -> None:
        try:
            outcome = self._executor.write_file(detail.path, detail.new_text)
        except ExecutionError as error:
            task.block(f"execution failed: {error}")
            self._log(f"File edit '{task.description}' failed: {error}")
            return

        task.annotations.append(f"written {outcome.path}")
        if outcome.backup_path is not None:
            task.annotations.append(f"backup {outcome.backup_path}")
        entry = FileEditEntry(
            task_id=task.id,
            description=task.description,
            path=str(outcome.path),
            backup_path=str(outcome.backup_path) if outcome.backup_path is not None else None,
        )
        self._conversation.append(entry)
        self.results.append(entry)
        task.complete()
        self._log(f"Wrote {outcome.path}")

    # ------------------------------------------------------------------
    # Approval queue
    # ------------------------------------------------------------------
    def _rebuild_queue(self) -> None:
        # Only the head of the list may be offered; approving anything later
        # would run it ahead of an unresolved earlier task.
        self.approval_queue = deque()
        index = self.first_pending_index()
        if index is None:
            return
        task = self.tasks[index]
        if task.status is TaskStatus.BLOCKED and task.id not in self._declined:
            self.approval_queue.append(index)

    @property
    def pending_approval(self) -> Optional[Task]:
        if not self.approval_queue:
            return None
        return self.tasks[self.approval_queue[0]]

    def pending_approval_message(self) -> Optional[str]:
        task = self.pending_approval
        if task is None:
            return None
        return f"Allow blocked task '{task.description}'?\nReason: {task.block_reason}"

    def approve(self) -> Optional[Task]:
        """Approve the front of the queue and run it immediately."""
        if not self.approval_queue:
            return None
        index = self.approval_queue.popleft()
        task = self.tasks[index]
        task.approved = True
        task.mark_ready()
        self._log(f"Approved blocked task '{task.description}'; running now.")
        self._persist()
        self._run(index)
        self.advance()
        return task

    def reject(self) -> Optional[Task]:
        """Decline the front of the queue; the task stays blocked for good."""
        if not self.approval_queue:
            return None
        index = self.approval_queue.popleft()
        task = self.tasks[index]
        self._declined.add(task.id)
        self._log(f"Skipped blocked task '{task.description}'; leaving blocked.")
        self._persist()
        self.advance()
        return task

    def is_declined(self, task: Task) -> bool:
        return task.id in self._declined

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------
    @property
    def all_complete(self) -> bool:
        return self._installed and self.first_pending_index() is None

    def status_message(self) -> str:
        if not self._installed:
            return "no plan installed"
        index = self.first_pending_index()
        if index is None:
            return "all tasks complete"
        task = self.tasks[index]
        remaining = len(self.tasks) - index
        if task.status is TaskStatus.BLOCKED and task.id in self._declined:
            return f"plan halted at declined task '{task.description}'; {remaining} task(s) not completed"
        if task.status is TaskStatus.BLOCKED:
            return f"waiting for approval of '{task.description}'; {remaining} task(s) pending"
        if task.status is TaskStatus.RUNNING:
            return f"running '{task.description}'"
        return f"{remaining} task(s) pending"

    def _check_synthesis(self) -> None:
        if self._synthesis_issued or not self.tasks or not self.results:
            return
        if not all(task.status is TaskStatus.COMPLETE for task in self.tasks if task.is_executable):
            return
        self._synthesis_issued = True
        self._pending_synthesis = SynthesisRequest(
            summary=self.summary, results=list(self.results), generation=self.generation
        )
        self._log("All tasks complete; requesting analysis of the results.")

    def take_synthesis_request(self) -> Optional[SynthesisRequest]:
        """Hand over the synthesis request at most once per plan."""
        request = self._pending_synthesis
        self._pending_synthesis = None
        return request

    def _persist(self) -> None:
        if self._session is not None:
            self._session.write_plan(self.summary, self.tasks)


__all__ = ["ExecutionController", "ExecutionRecord", "SynthesisRequest"]
