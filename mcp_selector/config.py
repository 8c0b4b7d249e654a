"""Runtime settings for MCP Selector, loaded from the environment and .env files."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from .platform import get_enterprise_dir

logger = logging.getLogger(__name__)

# Lock discipline for config writes
DEFAULT_LOCK_RETRIES = 5
DEFAULT_LOCK_MIN_TIMEOUT = 0.1  # seconds
DEFAULT_LOCK_MAX_TIMEOUT = 1.0
DEFAULT_LOCK_STALE = 10.0

# `claude mcp list` probe
DEFAULT_PROBE_COMMAND = ("claude", "mcp", "list")
DEFAULT_PROBE_TIMEOUT = 5.0

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    Path.home() / ".claude" / ".env",
]


@dataclass
class Settings:
    """Where config files live and how they are written.

    ``home`` is the directory holding ``.claude.json`` and ``.claude/``. Tests
    point it at a temporary directory.
    """

    home: Path = field(default_factory=Path.home)
    enterprise_dir: Path | None = field(default_factory=get_enterprise_dir)
    backup_dir: Path | None = None  # Defaults to <home>/.claude/backups
    backup: bool = True
    lock_retries: int = DEFAULT_LOCK_RETRIES
    lock_min_timeout: float = DEFAULT_LOCK_MIN_TIMEOUT
    lock_max_timeout: float = DEFAULT_LOCK_MAX_TIMEOUT
    lock_stale: float = DEFAULT_LOCK_STALE
    probe_command: tuple[str, ...] = DEFAULT_PROBE_COMMAND
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    env_path: Path | None = None

    @property
    def claude_dir(self) -> Path:
        return self.home / ".claude"

    @property
    def claude_json_path(self) -> Path:
        return self.home / ".claude.json"

    @property
    def plugins_dir(self) -> Path:
        return self.claude_dir / "plugins"

    @property
    def marketplaces_dir(self) -> Path:
        return self.plugins_dir / "marketplaces"

    @property
    def installed_plugins_path(self) -> Path:
        return self.plugins_dir / "installed_plugins.json"

    @property
    def backups_path(self) -> Path:
        return self.backup_dir if self.backup_dir is not None else self.claude_dir / "backups"

    @property
    def enterprise_mcp_path(self) -> Path | None:
        return self.enterprise_dir / "managed-mcp.json" if self.enterprise_dir else None

    @property
    def enterprise_settings_path(self) -> Path | None:
        return self.enterprise_dir / "managed-settings.json" if self.enterprise_dir else None


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking project then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def load_settings(env_path: Path | None = None) -> Settings:
    """Load settings from the environment.

    A .env file (explicit, then ./.env, then ~/.claude/.env) is loaded first;
    variables already set in the process environment take precedence over it.

    Recognised variables:
        MCPS_HOME, MCPS_ENTERPRISE_DIR, MCPS_BACKUP_DIR, MCPS_NO_BACKUP,
        MCPS_LOCK_RETRIES, MCPS_LOCK_STALE, MCPS_PROBE_TIMEOUT,
        MCPS_PROBE_COMMAND

    Raises:
        ValueError: If a numeric variable cannot be parsed
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)
        logger.debug(f"Loaded environment from {env_file}")

    settings = Settings(env_path=env_file)

    home = os.environ.get("MCPS_HOME")
    if home:
        settings.home = Path(home).expanduser()

    enterprise_dir = os.environ.get("MCPS_ENTERPRISE_DIR")
    if enterprise_dir:
        settings.enterprise_dir = Path(enterprise_dir).expanduser()

    backup_dir = os.environ.get("MCPS_BACKUP_DIR")
    if backup_dir:
        settings.backup_dir = Path(backup_dir).expanduser()

    settings.backup = not _env_flag("MCPS_NO_BACKUP")
    settings.lock_retries = _env_int("MCPS_LOCK_RETRIES", DEFAULT_LOCK_RETRIES)
    settings.lock_stale = _env_float("MCPS_LOCK_STALE", DEFAULT_LOCK_STALE)
    settings.probe_timeout = _env_float("MCPS_PROBE_TIMEOUT", DEFAULT_PROBE_TIMEOUT)

    probe_command = os.environ.get("MCPS_PROBE_COMMAND")
    if probe_command:
        settings.probe_command = tuple(probe_command.split())

    return settings
