"""Side-effecting collaborators used by the execution controller."""

from .executor import CommandResult, ExecutionError, Executor, FileWriteResult
from .hooks import Hook, HookConfigError, HookEvent, HookManager, HookResult

__all__ = [
    "CommandResult",
    "ExecutionError",
    "Executor",
    "FileWriteResult",
    "Hook",
    "HookConfigError",
    "HookEvent",
    "HookManager",
    "HookResult",
]
