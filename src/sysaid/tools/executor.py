"""Execution collaborator: shell commands and whole-file writes."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

LOGGER = logging.getLogger(__name__)

BACKUP_SUFFIX = ".sysaid.bak"


class ExecutionError(RuntimeError):
    """Raised when a command or file write could not be carried out at all."""


@dataclass(slots=True)
class CommandResult:
    """Outcome of a command that ran (whatever its exit status)."""

    exit_code: int
    stdout: str
    stderr: str


@dataclass(slots=True)
class FileWriteResult:
    """Outcome of a file write; ``backup_path`` is set only when one was made."""

    path: Path
    backup_path: Optional[Path] = None


def backup_path_for(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


class Executor:
    """Runs commands through a shell and replaces file contents.

    In dry mode nothing touches the system: commands report a synthetic zero
    exit status and writes report the target path with no backup.
    """

    def __init__(self, *, dry_run: bool = False) -> None:
        self.dry_run = dry_run

    def run_command(self, shell: str, command: str, cwd: Optional[str] = None) -> CommandResult:
        if self.dry_run:
            return CommandResult(0, f"(dry-run) command would execute: {command}", "")

        LOGGER.info("Running command via %s: %s", shell, command)
        try:
            process = subprocess.run(  # noqa: S603  # operator-approved or allowlisted command
                [shell, "-c", command],
                cwd=cwd or None,
                check=False,
                capture_output=True,
            )
        except (OSError, ValueError) as error:
            raise ExecutionError(f"failed to run '{command}' with {shell}: {error}") from error

        return CommandResult(
            exit_code=process.returncode,
            stdout=process.stdout.decode("utf-8", errors="replace"),
            stderr=process.stderr.decode("utf-8", errors="replace"),
        )

    def write_file(self, path: Optional[str], new_text: str) -> FileWriteResult:
        if not path:
            raise ExecutionError("file edit missing path")
        target = Path(path).expanduser()
        if self.dry_run:
            return FileWriteResult(path=target)

        backup: Optional[Path] = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if target.exists():
                backup = backup_path_for(target)
                shutil.copy2(target, backup)
            target.write_text(new_text, encoding="utf-8")
        except OSError as error:
            raise ExecutionError(f"failed to write {target}: {error}") from error

        LOGGER.info("Wrote %s (backup: %s)", target, backup)
        return FileWriteResult(path=target, backup_path=backup)


__all__ = ["BACKUP_SUFFIX", "CommandResult", "ExecutionError", "Executor", "FileWriteResult", "backup_path_for"]
