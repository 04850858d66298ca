"""CLI commands for planning and running vetted sysadmin worklists."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

from .config import (
    AppConfig,
    ConfigError,
    copy_config_template,
    default_config_path,
    load_config,
    write_config,
)
from .memory.conversation import ConversationLog
from .memory.schema import TaskStateError
from .memory.session import CONVERSATION_FILE, SessionError, SessionStore
from .models import AnthropicClient, LLMClient, OfflineClient
from .orchestrator import Orchestrator
from .policy.allowlist import AllowlistConfigError
from .prompts import render_entry
from .tools.hooks import HookConfigError

APP_HELP = "Plan, vet, and run sysadmin worklists with explicit approvals."
QUIT_WORDS = {"quit", "exit", ":q"}

app = typer.Typer(help=APP_HELP)

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to the sysaid configuration file.")


def _configure_logging(log_path: Path) -> None:
    """Send diagnostics to the session log file; only warnings reach stderr."""
    root = logging.getLogger()
    if any(getattr(handler, "_sysaid", False) for handler in root.handlers):
        return
    root.setLevel(logging.DEBUG)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    file_handler._sysaid = True  # type: ignore[attr-defined]
    stderr_handler = logging.StreamHandler()
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    stderr_handler._sysaid = True  # type: ignore[attr-defined]
    root.addHandler(file_handler)
    root.addHandler(stderr_handler)


def _load(
    config: Optional[Path],
    *,
    offline: Optional[bool] = None,
    dry_run: Optional[bool] = None,
    model: Optional[str] = None,
    require_key: bool = True,
) -> AppConfig:
    try:
        return load_config(config, offline=offline, dry_run=dry_run, model=model, require_key=require_key)
    except (ConfigError, AllowlistConfigError) as error:
        typer.echo(f"Configuration error: {error}")
        raise typer.Exit(code=1) from error


def _build_client(config: AppConfig) -> LLMClient:
    """Select either the real planning client or the offline stub."""
    if config.offline_mode:
        typer.echo("Using offline stub client.")
        return OfflineClient()
    try:
        return AnthropicClient(
            api_key=config.require_api_key(),
            base_url=config.api_url,
            model=config.model,
            timeout=config.timeout,
            max_attempts=config.max_attempts,
            retry_delay=config.retry_delay,
        )
    except (ConfigError, ValueError) as error:
        typer.echo(f"Failed to initialise planning client: {error}")
        raise typer.Exit(code=1) from error


def _build_orchestrator(config: AppConfig) -> Orchestrator:
    try:
        session = SessionStore(config.session_root)
    except SessionError as error:
        typer.echo(f"Fatal: {error}")
        raise typer.Exit(code=1) from error
    _configure_logging(session.diagnostics_path)
    client = _build_client(config)
    try:
        return Orchestrator.from_config(config, client=client, session=session)
    except (AllowlistConfigError, HookConfigError) as error:
        typer.echo(f"Configuration error: {error}")
        raise typer.Exit(code=1) from error


class _LogTail:
    """Tracks which operator log lines were already printed."""

    def __init__(self, orchestrator: Orchestrator) -> None:
        self._orchestrator = orchestrator
        self._printed = 0

    def flush(self) -> None:
        # The deque keeps only the newest lines, so count against the running total.
        total = self._orchestrator.log_count
        lines = list(self._orchestrator.logs)
        fresh = min(total - self._printed, len(lines))
        for line in lines[len(lines) - fresh :]:
            typer.echo(line)
        self._printed = total


def _run_cycle(
    orchestrator: Orchestrator,
    prompt: str,
    tail: _LogTail,
    *,
    approve_all: bool = False,
    reject_all: bool = False,
) -> None:
    """Submit one prompt and drive it until nothing is left to decide."""
    if not orchestrator.submit_prompt(prompt):
        tail.flush()
        return
    try:
        while True:
            orchestrator.run_until_idle(on_tick=tail.flush)
            tail.flush()
            if orchestrator.pending_approval_message() is None:
                if not orchestrator.busy:
                    break
                continue
            if approve_all:
                answer = True
            elif reject_all:
                answer = False
            else:
                answer = typer.confirm("Run this task?", default=False)
            if answer:
                orchestrator.approve()
            else:
                orchestrator.reject()
            tail.flush()
    except TaskStateError as error:
        typer.echo(f"Internal error: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(f"Status: {orchestrator.status_message()}")


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="What is wrong, or what you want done."),
    config: Optional[Path] = CONFIG_OPTION,
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Override the planning model."),
    offline: Optional[bool] = typer.Option(None, "--offline/--online", help="Use the offline stub client."),
    dry_run: Optional[bool] = typer.Option(None, "--dry-run/--no-dry-run", help="Do not touch the system."),
    approve_all: bool = typer.Option(False, "--approve-all", help="Approve every blocked task."),
    reject_all: bool = typer.Option(False, "--reject-all", help="Decline every blocked task."),
) -> None:
    """Plan and run a single request."""
    if approve_all and reject_all:
        raise typer.BadParameter("--approve-all and --reject-all are mutually exclusive.")
    app_config = _load(config, offline=offline, dry_run=dry_run, model=model)
    orchestrator = _build_orchestrator(app_config)
    try:
        _run_cycle(
            orchestrator,
            prompt,
            _LogTail(orchestrator),
            approve_all=approve_all,
            reject_all=reject_all,
        )
    finally:
        orchestrator.close()


@app.command()
def run(
    config: Optional[Path] = CONFIG_OPTION,
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Override the planning model."),
    offline: Optional[bool] = typer.Option(None, "--offline/--online", help="Use the offline stub client."),
    dry_run: Optional[bool] = typer.Option(None, "--dry-run/--no-dry-run", help="Do not touch the system."),
) -> None:
    """Interactive loop: prompt, review, approve, repeat."""
    app_config = _load(config, offline=offline, dry_run=dry_run, model=model)
    orchestrator = _build_orchestrator(app_config)
    tail = _LogTail(orchestrator)
    mode = " (dry-run)" if app_config.dry_run else ""
    typer.echo(f"sysaid ready{mode}. Type a request, or 'quit' to leave.")
    try:
        while True:
            try:
                prompt = typer.prompt("sysaid", prompt_suffix="> ")
            except (EOFError, typer.Abort):
                break
            if prompt.strip().lower() in QUIT_WORDS:
                break
            _run_cycle(orchestrator, prompt, tail)
    finally:
        orchestrator.close()


@app.command()
def history(
    config: Optional[Path] = CONFIG_OPTION,
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Number of most recent entries."),
    raw: bool = typer.Option(False, "--json", help="Print raw JSON lines."),
) -> None:
    """Show the conversation log."""
    app_config = _load(config, require_key=False)
    log = ConversationLog(app_config.session_root / CONVERSATION_FILE)
    entries = log.load()[-limit:]
    if not entries:
        typer.echo("No conversation history yet.")
        return
    for entry in entries:
        if raw:
            typer.echo(entry.model_dump_json(exclude_none=True))
            continue
        stamp = entry.timestamp.isoformat(timespec="seconds")
        typer.echo(f"[{stamp}] {entry.type}")
        for line in render_entry(entry).splitlines():
            typer.echo(f"    {line}")


@app.command()
def init(
    config: Optional[Path] = CONFIG_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    """Write the default configuration file."""
    config_path = config or default_config_path()
    if config_path.exists() and not force:
        typer.echo(f"Config already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    write_config(config_path, copy_config_template())
    typer.echo(f"Wrote default configuration to {config_path}")


@app.command()
def status(config: Optional[Path] = CONFIG_OPTION) -> None:
    """Show the resolved configuration with the API key redacted."""
    app_config = _load(config, require_key=False)
    typer.echo(json.dumps(app_config.redacted(), indent=2))


def main() -> None:  # pragma: no cover - thin wrapper
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
