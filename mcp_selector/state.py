"""Persisting resolved server state back to the config files.

Two files are written per save:

- ``<cwd>/.claude/settings.local.json``: ``enabledMcpjsonServers``,
  ``disabledMcpjsonServers`` and ``enabledPlugins``
- ``~/.claude.json``: ``projects[<cwd>].disabledMcpServers``; entries for the
  written mcpjson servers are removed from that section's mcpjson arrays

``enabledPlugins`` is only ever set to true. A disabled plugin is left out of
the map and switched off through ``disabledMcpServers`` instead, because an
explicit false hides the plugin from Claude Code entirely.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import Settings
from .identity import get_plugin_key, matches_disable_token, to_disable_token
from .locking import locked_files
from .models import DisplayState, Server, SourceType
from .parser import ConfigParseError, read_json_file
from .platform import get_project_settings_path, normalise_project_path
from .writer import atomic_write_json, create_backup

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    """How many servers were written, and what went wrong per file."""

    saved: int = 0
    errors: list[str] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)
    backups: list[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "saved": self.saved,
            "errors": list(self.errors),
            "written": [str(p) for p in self.written],
            "backups": [str(p) for p in self.backups],
        }


def _set_or_remove(target: dict[str, Any], key: str, value: list[str] | dict[str, bool]) -> None:
    if value:
        target[key] = value
    else:
        target.pop(key, None)


def build_settings_update(existing: dict[str, Any], servers: list[Server]) -> dict[str, Any]:
    """Return ``existing`` settings with the server control keys recomputed.

    Unrelated keys are kept. Array entries and ``enabledPlugins`` keys that do
    not belong to any of ``servers`` are kept as well.
    """
    settings = dict(existing)
    known = {s.name for s in servers}

    mcpjson = [s for s in servers if s.source_type == SourceType.MCPJSON and not s.flags.enterprise]
    enabled = [s.name for s in mcpjson if s.display_state != DisplayState.RED]
    disabled = [s.name for s in mcpjson if s.display_state == DisplayState.RED]

    for key, names in (("enabledMcpjsonServers", enabled), ("disabledMcpjsonServers", disabled)):
        previous = existing.get(key)
        kept = [n for n in previous if isinstance(n, str) and n not in known] if isinstance(previous, list) else []
        _set_or_remove(settings, key, names + [n for n in kept if n not in names])

    plugin_servers = [s for s in servers if s.source_type == SourceType.PLUGIN]
    managed_keys = {k for k in (get_plugin_key(s.name) for s in plugin_servers) if k is not None}

    previous_plugins = existing.get("enabledPlugins")
    plugins: dict[str, bool] = {}
    if isinstance(previous_plugins, dict):
        plugins = {k: v for k, v in previous_plugins.items() if k not in managed_keys}

    # First server of a plugin decides for the whole plugin
    decided: set[str] = set()
    for server in plugin_servers:
        key = get_plugin_key(server.name)
        if key is None or key in decided:
            continue
        decided.add(key)
        if server.display_state != DisplayState.RED:
            plugins[key] = True

    _set_or_remove(settings, "enabledPlugins", plugins)
    return settings


def build_disabled_mcp_servers(servers: list[Server]) -> list[str]:
    """The per-project ``disabledMcpServers`` list.

    Contains paused servers of every kind, plus fully disabled direct and
    plugin servers. Plugin servers use the ``plugin:name:key`` token form.
    """
    tokens: list[str] = []
    for server in servers:
        display = server.display_state
        is_plugin = server.source_type == SourceType.PLUGIN
        if display == DisplayState.ORANGE or (
            display == DisplayState.RED and (is_plugin or server.source_type.is_direct)
        ):
            token = to_disable_token(server.name) if is_plugin else server.name
            if token not in tokens:
                tokens.append(token)
    return tokens


def _backup(path: Path, settings: Settings, result: SaveResult) -> None:
    if not settings.backup:
        return
    try:
        backup = create_backup(path, settings.backups_path)
    except OSError as e:
        logger.warning(f"Could not back up {path}: {e}")
        return
    if backup is not None:
        result.backups.append(backup)


def _write_settings(path: Path, servers: list[Server], settings: Settings, result: SaveResult) -> None:
    try:
        existing = read_json_file(path) or {}
    except ConfigParseError as e:
        result.errors.append(f"Refusing to overwrite malformed {path}: {e.message}")
        return

    updated = build_settings_update(existing, servers)
    _backup(path, settings, result)
    try:
        atomic_write_json(path, updated)
    except OSError as e:
        result.errors.append(f"Failed to write {path}: {e}")
        return

    result.written.append(path)
    result.saved += sum(1 for s in servers if s.source_type in (SourceType.MCPJSON, SourceType.PLUGIN))


def _write_claude_json(path: Path, cwd: Path, servers: list[Server], settings: Settings, result: SaveResult) -> None:
    try:
        data = read_json_file(path) or {}
    except ConfigParseError as e:
        result.errors.append(f"Refusing to overwrite malformed {path}: {e.message}")
        return

    projects = data.get("projects")
    if not isinstance(projects, dict):
        projects = {}
    project_key = normalise_project_path(cwd)
    project = projects.get(project_key)
    project = dict(project) if isinstance(project, dict) else {}

    tokens = build_disabled_mcp_servers(servers)
    previous = project.get("disabledMcpServers")
    if isinstance(previous, list):
        # Tokens for servers that are no longer loaded are left alone
        tokens += [
            t for t in previous
            if isinstance(t, str) and t not in tokens
            and not any(matches_disable_token(s.name, t) for s in servers)
        ]
    _set_or_remove(project, "disabledMcpServers", tokens)
    # settings.local.json now holds these; an entry here would tie with it and win
    written = {s.name for s in servers if s.source_type == SourceType.MCPJSON and not s.flags.enterprise}
    for key in ("enabledMcpjsonServers", "disabledMcpjsonServers"):
        entries = project.get(key)
        if isinstance(entries, list):
            _set_or_remove(project, key, [n for n in entries if n not in written])
    projects[project_key] = project
    data["projects"] = projects

    _backup(path, settings, result)
    try:
        atomic_write_json(path, data)
    except OSError as e:
        result.errors.append(f"Failed to update {path}: {e}")
        return

    result.written.append(path)
    result.saved += sum(1 for s in servers if s.source_type.is_direct)


def save_server_states(servers: list[Server], cwd: Path, settings: Settings) -> SaveResult:
    """Write the state of ``servers`` for the project at ``cwd``.

    Both target files are locked before either is written. If locking fails
    the write goes ahead unlocked. A failure on one file is recorded in the
    result and does not stop the other from being written.
    """
    settings_path = get_project_settings_path(cwd, local=True)
    claude_json_path = settings.claude_json_path
    result = SaveResult()

    with locked_files([settings_path, claude_json_path], settings):
        _write_settings(settings_path, servers, settings, result)
        _write_claude_json(claude_json_path, cwd, servers, settings, result)

    for error in result.errors:
        logger.warning(error)
    return result


@dataclass
class ChangeSummary:
    enabled: list[str] = field(default_factory=list)
    disabled: list[str] = field(default_factory=list)
    paused: list[str] = field(default_factory=list)
    unchanged: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.enabled or self.disabled or self.paused)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "disabled": self.disabled,
            "paused": self.paused,
            "unchanged": self.unchanged,
        }


def get_change_summary(original: list[Server], modified: list[Server]) -> ChangeSummary:
    """Compare display states of two snapshots of the same servers."""
    before = {s.name: s.display_state for s in original}
    summary = ChangeSummary()
    for server in modified:
        previous = before.get(server.name)
        if previous is None:
            continue
        current = server.display_state
        if previous == current:
            summary.unchanged += 1
        elif current == DisplayState.GREEN:
            summary.enabled.append(server.name)
        elif current == DisplayState.RED:
            summary.disabled.append(server.name)
        else:
            summary.paused.append(server.name)
    return summary


def format_change_summary(summary: ChangeSummary) -> list[str]:
    lines = []
    if summary.enabled:
        lines.append(f"Enabled ({len(summary.enabled)}): {', '.join(summary.enabled)}")
    if summary.disabled:
        lines.append(f"Disabled ({len(summary.disabled)}): {', '.join(summary.disabled)}")
    if summary.paused:
        lines.append(f"Paused ({len(summary.paused)}): {', '.join(summary.paused)}")
    return lines
