"""
Plan parsing, background plan requests, and sequential task execution.
"""

from importlib import import_module
from typing import Any

_EXPORTS = {
    "ExecutionController": "sysaid.planning.controller",
    "SynthesisRequest": "sysaid.planning.controller",
    "FetchInProgressError": "sysaid.planning.fetch",
    "FetchResult": "sysaid.planning.fetch",
    "PlanFetcher": "sysaid.planning.fetch",
    "PlanParseError": "sysaid.planning.parser",
    "parse_plan": "sysaid.planning.parser",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import planning helpers so the parser loads without the executor stack."""
    if name in _EXPORTS:
        module = import_module(_EXPORTS[name])
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
