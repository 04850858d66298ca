"""Foreground coordinator for prompts, plans, approvals, and analysis."""

from __future__ import annotations

import logging
import time
from collections import deque
from functools import partial
from typing import Callable, Deque, List, Optional, Sequence

from .config import AppConfig
from .memory.conversation import ConversationLog
from .memory.schema import ConversationEntry, PlanEntry, PromptEntry, Task
from .memory.session import SessionStore
from .memory.tokens import approximate_tokens, truncate_history
from .models.llm_client import ChatMessage, LLMClient, LLMRequest
from .planning.controller import ExecutionController, SynthesisRequest
from .planning.fetch import FetchResult, PlanFetcher
from .planning.parser import PlanParseError, parse_plan
from .policy.allowlist import Allowlist
from .prompts import (
    PLANNING_SYSTEM_PROMPT,
    SYNTHESIS_SYSTEM_PROMPT,
    build_messages,
    render_synthesis_prompt,
)
from .tools.executor import Executor
from .tools.hooks import HookEvent, HookManager

LOGGER = logging.getLogger(__name__)

TICK_INTERVAL = 0.2
ANALYSIS_SUMMARY = "Post-execution analysis"


class Orchestrator:
    """Owns the control loop state; every task-list mutation happens here.

    Network calls run on the :class:`PlanFetcher` worker.  The caller drives
    progress by calling :meth:`tick` at a short fixed interval and answering
    approvals through :meth:`approve` and :meth:`reject`.
    """

    def __init__(
        self,
        *,
        client: LLMClient,
        allowlist: Allowlist,
        executor: Executor,
        conversation: ConversationLog,
        session: Optional[SessionStore] = None,
        hooks: Optional[HookManager] = None,
        fetcher: Optional[PlanFetcher] = None,
        default_shell: str = "/bin/bash",
        token_budget: int = 8000,
        max_tokens: int = 1024,
        history_limit: int = 50,
    ) -> None:
        self._client = client
        self._conversation = conversation
        self._session = session
        self._hooks = hooks or HookManager()
        self._fetcher = fetcher or PlanFetcher()
        self._default_shell = default_shell
        self._token_budget = token_budget
        self._max_tokens = max_tokens
        self._deferred_synthesis: Optional[SynthesisRequest] = None
        self._synthesis_generation = 0
        self.logs: Deque[str] = deque(maxlen=history_limit)
        self.log_count = 0
        self.analysis: Optional[str] = None
        self.controller = ExecutionController(
            allowlist=allowlist,
            executor=executor,
            conversation=conversation,
            session=session,
            hooks=self._hooks,
            log=self.log,
        )

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        client: LLMClient,
        session: Optional[SessionStore] = None,
    ) -> "Orchestrator":
        """Wire every collaborator from resolved configuration."""
        session = session or SessionStore(config.session_root)
        return cls(
            client=client,
            allowlist=Allowlist.from_config(config.allowlist),
            executor=Executor(dry_run=config.dry_run),
            conversation=ConversationLog(session.conversation_path),
            session=session,
            hooks=HookManager.from_config(config.hooks),
            default_shell=config.default_shell,
            token_budget=config.token_budget,
            max_tokens=config.max_tokens,
            history_limit=config.history_limit,
        )

    # ------------------------------------------------------------------
    # Operator log
    # ------------------------------------------------------------------
    def log(self, line: str) -> None:
        self.logs.append(line)
        self.log_count += 1
        LOGGER.info("%s", line)
        if self._session is not None:
            self._session.append_log(line)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    @property
    def busy(self) -> bool:
        return self._fetcher.busy or self._deferred_synthesis is not None

    @property
    def tasks(self) -> List[Task]:
        return self.controller.tasks

    def build_plan_request(self, prompt: str, history: Sequence[ConversationEntry]) -> LLMRequest:
        """Build the planning request with history trimmed to the token budget."""
        kept = truncate_history(
            history,
            self._token_budget,
            approximate_tokens(PLANNING_SYSTEM_PROMPT),
            approximate_tokens(prompt),
        )
        if len(kept) < len(history):
            LOGGER.debug("Dropped %d old conversation entries to fit the budget", len(history) - len(kept))
        return LLMRequest(
            messages=build_messages(kept, prompt),
            system_prompt=PLANNING_SYSTEM_PROMPT,
            purpose="plan",
            max_tokens=self._max_tokens,
        )

    def submit_prompt(self, prompt: str) -> bool:
        """Start a planning request; returns False if it was not dispatched."""
        prompt = prompt.strip()
        if not prompt:
            return False
        if self._fetcher.busy:
            self.log("A plan request is already running; wait for it to finish.")
            return False

        history = self._conversation.load()
        request = self.build_plan_request(prompt, history)
        for result in self._hooks.run(HookEvent.PROMPT_SUBMIT, {"prompt": prompt}):
            if result.system_message:
                self.log(f"[hook] {result.system_message}")
        self._conversation.append(PromptEntry(prompt=prompt))
        self.log(f"> {prompt}")
        self._fetcher.submit("plan", partial(self._client.complete, request))
        return True

    def _request_synthesis(self, synthesis: SynthesisRequest) -> None:
        if self._fetcher.busy:
            self._deferred_synthesis = synthesis
            return
        request = LLMRequest(
            messages=[ChatMessage(role="user", text=render_synthesis_prompt(synthesis.summary, synthesis.results))],
            system_prompt=SYNTHESIS_SYSTEM_PROMPT,
            purpose="synthesis",
            max_tokens=self._max_tokens,
        )
        self._deferred_synthesis = None
        self._synthesis_generation = synthesis.generation
        self._fetcher.submit("synthesis", partial(self._client.complete, request))

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------
    def tick(self) -> Optional[FetchResult]:
        """Consume a finished request, if any, and act on it."""
        result = self._fetcher.poll()
        if result is not None:
            if result.purpose == "synthesis":
                self._handle_synthesis(result)
            else:
                self._handle_plan(result)
        if self._deferred_synthesis is not None and not self._fetcher.busy:
            self._request_synthesis(self._deferred_synthesis)
        return result

    def run_until_idle(
        self,
        *,
        interval: float = TICK_INTERVAL,
        on_tick: Optional[Callable[[], None]] = None,
    ) -> None:
        """Tick until no request is outstanding."""
        while True:
            self.tick()
            if not self.busy:
                return
            if on_tick is not None:
                on_tick()
            time.sleep(interval)

    def _handle_plan(self, result: FetchResult) -> None:
        if not result.ok or result.text is None:
            self.log(f"Failed requesting plan: {result.error}")
            return
        try:
            plan = parse_plan(result.text, self._default_shell)
        except PlanParseError as error:
            self.log(f"Failed to parse plan: {error}")
            return

        self._conversation.append(
            PlanEntry(summary=plan.summary, task_count=len(plan.tasks), response=result.text)
        )
        # A deferred analysis belongs to the plan being replaced.
        self._deferred_synthesis = None
        self.analysis = None
        self.log(f"Plan received: {plan.summary or '(no summary)'} ({len(plan.tasks)} task(s))")
        self.controller.install(plan)
        self._after_progress()

    def _handle_synthesis(self, result: FetchResult) -> None:
        if not result.ok or result.text is None:
            self.log(f"Analysis request failed: {result.error}")
            return
        if self._synthesis_generation != self.controller.generation:
            self.log("Discarding analysis for a plan that has since been replaced.")
            return
        self.analysis = result.text.strip()
        self._conversation.append(PlanEntry(summary=ANALYSIS_SUMMARY, task_count=0, response=self.analysis))
        self.log(f"Analysis:\n{self.analysis}")
        for hook_result in self._hooks.run(HookEvent.STOP, {"analysis": self.analysis}):
            if hook_result.system_message:
                self.log(f"[hook] {hook_result.system_message}")

    def _after_progress(self) -> None:
        message = self.controller.pending_approval_message()
        if message:
            self.log(message)
        elif self.controller.all_complete:
            self.log("All tasks complete.")
        else:
            self.log(self.controller.status_message())
        synthesis = self.controller.take_synthesis_request()
        if synthesis is not None:
            self._request_synthesis(synthesis)

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------
    def pending_approval_message(self) -> Optional[str]:
        return self.controller.pending_approval_message()

    def approve(self) -> Optional[Task]:
        task = self.controller.approve()
        if task is not None:
            self._after_progress()
        return task

    def reject(self) -> Optional[Task]:
        task = self.controller.reject()
        if task is not None:
            self._after_progress()
        return task

    def status_message(self) -> str:
        return self.controller.status_message()

    def close(self) -> None:
        self._fetcher.shutdown()


__all__ = ["ANALYSIS_SUMMARY", "Orchestrator", "TICK_INTERVAL"]
