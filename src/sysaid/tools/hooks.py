"""Operator-configured hook commands fired on lifecycle events."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_HOOK_TIMEOUT = 30.0


class HookEvent(str, Enum):
    """Points in the plan lifecycle where hooks may run."""

    PRE_COMMAND = "pre_command"
    POST_COMMAND = "post_command"
    PROMPT_SUBMIT = "prompt_submit"
    STOP = "stop"


class HookConfigError(RuntimeError):
    """Raised when the ``hooks`` config section is malformed."""


@dataclass(slots=True)
class Hook:
    event: HookEvent
    command: str
    timeout: float = DEFAULT_HOOK_TIMEOUT


@dataclass(slots=True)
class HookResult:
    """What a hook reported back; ``block`` only matters for ``pre_command``."""

    hook: Hook
    system_message: Optional[str] = None
    block: bool = False


def _parse_output(hook: Hook, stdout: str) -> HookResult:
    text = stdout.strip()
    if not text:
        return HookResult(hook=hook)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return HookResult(hook=hook, system_message=text)
    if not isinstance(data, dict):
        return HookResult(hook=hook, system_message=text)
    message = data.get("system_message")
    return HookResult(
        hook=hook,
        system_message=str(message) if message else None,
        block=bool(data.get("block", False)),
    )


@dataclass(slots=True)
class HookManager:
    hooks: List[Hook] = field(default_factory=list)
    shell: str = "/bin/sh"

    @classmethod
    def from_config(cls, entries: Iterable[Mapping[str, Any]] | None) -> "HookManager":
        hooks: List[Hook] = []
        for index, entry in enumerate(entries or []):
            if not isinstance(entry, Mapping):
                raise HookConfigError(f"hooks[{index}] must be a mapping")
            try:
                event = HookEvent(str(entry.get("event", "")))
            except ValueError as error:
                valid = ", ".join(item.value for item in HookEvent)
                raise HookConfigError(f"hooks[{index}]: unknown event (expected one of {valid})") from error
            command = str(entry.get("command") or "").strip()
            if not command:
                raise HookConfigError(f"hooks[{index}]: command is required")
            timeout = entry.get("timeout", DEFAULT_HOOK_TIMEOUT)
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
                raise HookConfigError(f"hooks[{index}]: timeout must be a positive number")
            hooks.append(Hook(event=event, command=command, timeout=float(timeout)))
        return cls(hooks=hooks)

    def has_hooks(self, event: HookEvent) -> bool:
        return any(hook.event is event for hook in self.hooks)

    def run(self, event: HookEvent, payload: Dict[str, Any]) -> List[HookResult]:
        """Run every hook registered for ``event``; failing hooks are skipped."""
        results: List[HookResult] = []
        body = json.dumps({"event": event.value, **payload})
        for hook in self.hooks:
            if hook.event is not event:
                continue
            env = os.environ.copy()
            env["HOOK_INPUT"] = body
            try:
                process = subprocess.run(  # noqa: S603  # hook commands come from operator config
                    [self.shell, "-c", hook.command],
                    input=body,
                    env=env,
                    capture_output=True,
                    text=True,
                    timeout=hook.timeout,
                    check=False,
                )
            except subprocess.TimeoutExpired:
                LOGGER.warning("Hook '%s' timed out after %.0fs", hook.command, hook.timeout)
                continue
            except OSError as error:
                LOGGER.warning("Hook '%s' could not be started: %s", hook.command, error)
                continue
            if process.returncode != 0:
                LOGGER.warning(
                    "Hook '%s' exited with %d: %s",
                    hook.command,
                    process.returncode,
                    process.stderr.strip(),
                )
                continue
            results.append(_parse_output(hook, process.stdout))
        return results


__all__ = ["Hook", "HookConfigError", "HookEvent", "HookManager", "HookResult"]
