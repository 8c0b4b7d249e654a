"""Cross-platform path and session utilities."""

import os
import platform as _platform
import sys
from pathlib import Path

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Machine-wide managed configuration directories
ENTERPRISE_DIRS = {
    "linux": Path("/etc/claude-code"),
    "macos": Path("/Library/Application Support/ClaudeCode"),
    "wsl": Path("/mnt/c/ProgramData/ClaudeCode"),
    "windows": Path("C:\\ProgramData\\ClaudeCode"),
}

# Environment variables set inside a running Claude Code session
SESSION_ENV_VARS = ("CLAUDE_SESSION_ID", "CLAUDE_CODE", "MCP_SERVER_NAME")


def detect_platform() -> str:
    """Return one of ``linux``, ``macos``, ``windows`` or ``wsl``."""
    if sys.platform == "darwin":
        return "macos"
    if IS_WINDOWS:
        return "windows"
    release = _platform.release().lower()
    if "microsoft" in release or "wsl" in release:
        return "wsl"
    return "linux"


def get_enterprise_dir(plat: str | None = None) -> Path | None:
    """Directory holding managed-mcp.json and managed-settings.json."""
    return ENTERPRISE_DIRS.get(plat or detect_platform())


def get_project_settings_path(cwd: Path, local: bool = False) -> Path:
    name = "settings.local.json" if local else "settings.json"
    return cwd / ".claude" / name


def get_project_mcp_json_path(cwd: Path) -> Path:
    return cwd / ".mcp.json"


def normalise_project_path(cwd: Path | str) -> str:
    """Key used for the current project in ``~/.claude.json`` ``projects``.

    Absolute, symlinks resolved, no trailing separator. Windows separators are
    converted to forward slashes to match how the key is written there.
    """
    resolved = Path(cwd).expanduser().resolve()
    key = str(resolved)
    if IS_WINDOWS:
        key = key.replace("\\", "/")
    if len(key) > 1:
        key = key.rstrip("/")
    return key


def is_in_claude_session() -> bool:
    """Check if we are running inside a Claude Code session."""
    return any(os.environ.get(var) for var in SESSION_ENV_VARS)


def get_session_warning() -> str | None:
    """Warning shown when edits cannot take effect until Claude Code restarts."""
    if not is_in_claude_session():
        return None
    if os.environ.get("MCP_SERVER_NAME"):
        return "Running as MCP server. Changes will apply immediately."
    return (
        "Running inside an active Claude session. "
        "Changes take effect on the next session."
    )
