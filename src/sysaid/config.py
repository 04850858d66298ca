"""Runtime configuration: YAML file, environment overrides, API key lookup."""

from __future__ import annotations

import copy
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .models.anthropic import DEFAULT_API_URL, DEFAULT_MODEL
from .policy.allowlist import (
    DEFAULT_COMMAND_PATTERNS,
    DEFAULT_FILE_PATTERNS,
    DEFAULT_MAX_EDIT_SIZE_KB,
    AllowlistConfig,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "config.yaml"
API_KEY_ENV_VARS = ("SYSAID_API_KEY", "ANTHROPIC_API_KEY", "CLAUDE_API_KEY")
DRY_RUN_ENV_VAR = "SYSAID_DRYRUN"
SESSION_DIR_ENV_VAR = "SYSAID_SESSION_DIR"
LEGACY_KEY_FILE = ".sysaid"
LEGACY_KEY_NAMES = ("ANTHROPIC_API_KEY", "SYSAID_API_KEY", "CLAUDE_API_KEY", "api_key")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "api": {
        "key": "",
        "url": DEFAULT_API_URL,
        "model": DEFAULT_MODEL,
        "max_tokens": 1024,
        "timeout": 60,
        "max_attempts": 3,
        "retry_delay": 1.0,
    },
    "shell": {
        "default": "/bin/bash",
    },
    "allowlist": {
        "command_patterns": list(DEFAULT_COMMAND_PATTERNS),
        "file_patterns": list(DEFAULT_FILE_PATTERNS),
        "max_edit_size_kb": DEFAULT_MAX_EDIT_SIZE_KB,
    },
    "history": {
        "limit": 50,
        "token_budget": 8000,
    },
    "session": {
        "dir": "",
    },
    "offline_mode": False,
    "dry_run": False,
    "hooks": [],
}


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or is incomplete."""


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


def default_config_path() -> Path:
    base = os.getenv("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "sysaid" / DEFAULT_CONFIG_NAME


def default_session_root() -> Path:
    base = os.getenv("XDG_DATA_HOME")
    root = Path(base) if base else Path.home() / ".local" / "share"
    return root / "sysaid"


def load_config_file(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration; a missing file yields an empty mapping."""
    if not config_path.exists():
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error
    except OSError as error:
        raise ConfigError(f"Failed to read config {config_path}: {error}") from error
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")
    return data


def parse_bool(value: Any, *, key: str) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"{key} must be a boolean, got {value!r}")


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{name}' section must be a mapping")
    return value


def _positive_number(value: Any, *, key: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{key} must be a positive number")
    return float(value)


def _positive_int(value: Any, *, key: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{key} must be a positive integer")
    return value


def read_legacy_key(path: Optional[Path] = None) -> Optional[str]:
    """Read an API key from a ``KEY=value`` dotfile in the home directory."""
    key_file = path or Path.home() / LEGACY_KEY_FILE
    if not key_file.is_file():
        return None
    try:
        lines = key_file.read_text(encoding="utf-8").splitlines()
    except OSError as error:
        LOGGER.warning("Failed to read %s: %s", key_file, error)
        return None
    for line in lines:
        name, sep, value = line.partition("=")
        if not sep or name.strip() not in LEGACY_KEY_NAMES:
            continue
        value = value.strip().strip("'\"")
        if value:
            return value
    return None


@dataclass(slots=True)
class AppConfig:
    """Resolved settings for one run."""

    config_path: Path
    api_key: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    model: str = DEFAULT_MODEL
    max_tokens: int = 1024
    timeout: float = 60.0
    max_attempts: int = 3
    retry_delay: float = 1.0
    default_shell: str = "/bin/bash"
    allowlist: AllowlistConfig = field(default_factory=AllowlistConfig)
    history_limit: int = 50
    token_budget: int = 8000
    session_root: Path = field(default_factory=default_session_root)
    offline_mode: bool = False
    dry_run: bool = False
    hooks: List[Dict[str, Any]] = field(default_factory=list)

    def require_api_key(self) -> str:
        if self.api_key:
            return self.api_key
        names = ", ".join(API_KEY_ENV_VARS)
        raise ConfigError(
            f"No API key configured. Set one of {names}, add api.key to {self.config_path}, "
            "or enable offline_mode."
        )

    def redacted(self) -> Dict[str, Any]:
        """Return a printable view with the API key masked."""
        key = self.api_key or ""
        masked = f"{key[:4]}...{key[-4:]}" if len(key) > 12 else ("set" if key else "missing")
        return {
            "config_path": str(self.config_path),
            "api_key": masked,
            "api_url": self.api_url,
            "model": self.model,
            "default_shell": self.default_shell,
            "session_root": str(self.session_root),
            "offline_mode": self.offline_mode,
            "dry_run": self.dry_run,
            "history_limit": self.history_limit,
            "token_budget": self.token_budget,
            "command_patterns": len(self.allowlist.command_patterns),
            "file_patterns": len(self.allowlist.file_patterns),
            "max_edit_size_kb": self.allowlist.max_edit_size_kb,
            "hooks": len(self.hooks),
        }


def load_config(
    config_path: Optional[Path] = None,
    *,
    offline: Optional[bool] = None,
    dry_run: Optional[bool] = None,
    model: Optional[str] = None,
    require_key: bool = True,
    legacy_key_file: Optional[Path] = None,
) -> AppConfig:
    """Resolve configuration from the YAML file, the environment, and CLI flags.

    Precedence, lowest first: built-in defaults, the YAML file, environment
    variables, explicit keyword overrides.
    """
    path = Path(config_path).expanduser() if config_path else default_config_path()
    data = load_config_file(path)

    api = _section(data, "api")
    shell = _section(data, "shell")
    history = _section(data, "history")
    session = _section(data, "session")

    config = AppConfig(config_path=path)
    config.api_url = str(api.get("url") or DEFAULT_API_URL)
    config.model = str(api.get("model") or DEFAULT_MODEL)
    config.max_tokens = _positive_int(api.get("max_tokens"), key="api.max_tokens", default=1024)
    config.timeout = _positive_number(api.get("timeout"), key="api.timeout", default=60.0)
    config.max_attempts = _positive_int(api.get("max_attempts"), key="api.max_attempts", default=3)
    retry_delay = api.get("retry_delay")
    if retry_delay is not None:
        if isinstance(retry_delay, bool) or not isinstance(retry_delay, (int, float)) or retry_delay < 0:
            raise ConfigError("api.retry_delay must be a non-negative number")
        config.retry_delay = float(retry_delay)
    config.default_shell = str(shell.get("default") or "/bin/bash")
    config.allowlist = AllowlistConfig.from_mapping(data.get("allowlist"))
    config.history_limit = _positive_int(history.get("limit"), key="history.limit", default=50)
    config.token_budget = _positive_int(history.get("token_budget"), key="history.token_budget", default=8000)
    config.offline_mode = parse_bool(data.get("offline_mode", False), key="offline_mode")
    config.dry_run = parse_bool(data.get("dry_run", False), key="dry_run")

    hooks = data.get("hooks") or []
    if not isinstance(hooks, list):
        raise ConfigError("'hooks' must be a list")
    config.hooks = hooks

    session_dir = os.getenv(SESSION_DIR_ENV_VAR) or session.get("dir")
    if session_dir:
        config.session_root = Path(str(session_dir)).expanduser()

    dry_run_override = os.getenv(DRY_RUN_ENV_VAR)
    if dry_run_override is not None and dry_run_override.strip():
        config.dry_run = parse_bool(dry_run_override, key=DRY_RUN_ENV_VAR)

    if offline is not None:
        config.offline_mode = offline
    if dry_run is not None:
        config.dry_run = dry_run
    if model:
        config.model = model

    config.api_key = _resolve_api_key(api.get("key"), legacy_key_file)
    if require_key and not config.offline_mode:
        config.require_api_key()
    return config


def _resolve_api_key(file_value: Any, legacy_key_file: Optional[Path]) -> Optional[str]:
    for name in API_KEY_ENV_VARS:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    if isinstance(file_value, str) and file_value.strip():
        return file_value.strip()
    return read_legacy_key(legacy_key_file)


__all__ = [
    "API_KEY_ENV_VARS",
    "AppConfig",
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "copy_config_template",
    "default_config_path",
    "default_session_root",
    "load_config",
    "load_config_file",
    "parse_bool",
    "read_legacy_key",
    "write_config",
]
