"""Turn free-form planning responses into a :class:`Plan`."""

from __future__ import annotations

import json
import re
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from ..memory.schema import (
    CommandDetail,
    FileEditDetail,
    NoteDetail,
    Plan,
    Task,
    TaskDetail,
    utc_now,
)

NOTE_TITLE_LIMIT = 60
_SNIPPET_LINES = 6
_SNIPPET_CHARS = 500
_FENCE_HEADER_RE = re.compile(r"^```[ \t]*(?:json)?[ \t]*(?:\r?\n|$)", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*[}\]]")


class PlanParseError(RuntimeError):
    """Raised when a planning response cannot be turned into tasks."""

    def __init__(self, message: str, *, truncated: bool = False) -> None:
        super().__init__(message)
        self.truncated = truncated


class RawPlanItem(BaseModel):
    """Loose view of one plan item as emitted by the planning service."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    kind: Optional[str] = None
    description: Optional[str] = None
    command: Optional[str] = None
    shell: Optional[str] = None
    requires_root: Optional[bool] = None
    cwd: Optional[str] = None
    path: Optional[str] = None
    new_text: Optional[str] = None
    details: Optional[str] = None


class RawPlan(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: Optional[str] = None
    plan: List[RawPlanItem]


def strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown fence; a missing closing fence is tolerated."""
    stripped = text.strip()
    header = _FENCE_HEADER_RE.match(stripped)
    if not header:
        return stripped
    body = stripped[header.end() :]
    if body.rstrip().endswith("```"):
        body = body.rstrip()[:-3]
    return body.strip()


def _mask_strings(text: str) -> tuple[str, bool]:
    """Blank out the contents of JSON strings, keeping every offset intact.

    Returns the masked text and whether a string was left unterminated.
    """
    masked: List[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
                masked.append(char)
                continue
            masked.append(" " if char != "\n" else char)
            continue
        if char == '"':
            in_string = True
        masked.append(char)
    return "".join(masked), in_string


def extract_json_object(text: str) -> Optional[str]:
    """Return the outermost balanced ``{...}`` region of ``text``.

    Braces inside JSON strings are ignored.  When no balanced region exists the
    slice from the first ``{`` to the end is returned if it ends with ``}``.
    """
    masked, _ = _mask_strings(text)
    start = masked.find("{")
    if start == -1:
        return None
    depth = 0
    for index in range(start, len(masked)):
        char = masked[index]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    tail = text[start:].rstrip()
    if tail.endswith("}"):
        return tail
    return None


def _snippet(text: str) -> str:
    lines = text.splitlines()[:_SNIPPET_LINES]
    preview = "\n".join(lines)
    if len(preview) > _SNIPPET_CHARS:
        preview = preview[:_SNIPPET_CHARS] + "..."
    return preview


def _looks_truncated(segment: str, error: json.JSONDecodeError) -> bool:
    """Return True when a decode failure suggests the response was cut short."""
    body = segment.rstrip()
    if error.pos >= len(body) - 1:
        return True
    message = error.msg.lower()
    if "unterminated string" in message or "trailing comma" in message:
        return True
    structure, open_string = _mask_strings(body)
    if open_string or _TRAILING_COMMA_RE.search(structure):
        return True
    return structure.count("{") != structure.count("}") or structure.count("[") != structure.count("]")


def _decode(raw: str) -> RawPlan:
    cleaned = strip_code_fence(raw)
    segment = extract_json_object(cleaned) or cleaned
    try:
        data = json.loads(segment)
    except json.JSONDecodeError as error:
        truncated = _looks_truncated(segment, error)
        message = f"failed to parse plan JSON: {error}"
        if truncated:
            message += (
                " (the response looks truncated, probably cut off by the token limit;"
                " try a narrower request)"
            )
        message += f"\n--- response preview ---\n{_snippet(raw)}"
        raise PlanParseError(message, truncated=truncated) from error

    if not isinstance(data, dict):
        raise PlanParseError(
            f"plan JSON must be an object, got {type(data).__name__}\n"
            f"--- response preview ---\n{_snippet(raw)}"
        )
    try:
        return RawPlan.model_validate(data)
    except ValidationError as error:
        raise PlanParseError(
            f"plan JSON did not match the expected shape: {error}\n"
            f"--- response preview ---\n{_snippet(raw)}"
        ) from error


def _note_title(body: str) -> str:
    first_line = next((line.strip() for line in body.splitlines() if line.strip()), "")
    if not first_line:
        return "Note"
    if len(first_line) > NOTE_TITLE_LIMIT:
        return first_line[:NOTE_TITLE_LIMIT].rstrip() + "…"
    return first_line


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _to_detail(item: RawPlanItem, default_shell: str) -> tuple[str, TaskDetail]:
    kind = (item.kind or "").strip().lower()
    description = _clean(item.description)
    if kind == "command":
        command = (item.command or "").strip()
        if not command:
            raise PlanParseError("command task missing 'command' field")
        detail: TaskDetail = CommandDetail(
            shell=_clean(item.shell) or default_shell,
            command=command,
            cwd=_clean(item.cwd),
            requires_root=bool(item.requires_root),
        )
        return description or "Command task", detail
    if kind == "file_edit":
        if item.new_text is None:
            raise PlanParseError("file_edit task missing 'new_text' field")
        detail = FileEditDetail(
            path=_clean(item.path),
            new_text=item.new_text,
            description=_clean(item.details),
        )
        return description or "File edit", detail
    # Unknown or missing kinds degrade to notes.
    body = _clean(item.details) or description or "Note"
    return description or _note_title(body), NoteDetail(details=body)


def parse_plan(raw: str, default_shell: str) -> Plan:
    """Parse ``raw`` into a plan whose tasks are all ``Proposed``.

    Every task receives a strictly increasing ``created_at`` so creation order
    is a total order matching the order of items in the response.
    """
    decoded = _decode(raw)
    tasks: List[Task] = []
    previous: Optional[datetime] = None
    for item in decoded.plan:
        description, detail = _to_detail(item, default_shell)
        created_at = utc_now()
        if previous is not None and created_at <= previous:
            created_at = previous + timedelta(microseconds=1)
        previous = created_at
        tasks.append(Task(description=description, detail=detail, created_at=created_at))

    if not tasks:
        raise PlanParseError("response did not include any plan items")
    return Plan(summary=_clean(decoded.summary), tasks=tasks)


__all__ = ["PlanParseError", "RawPlan", "RawPlanItem", "extract_json_object", "parse_plan", "strip_code_fence"]
