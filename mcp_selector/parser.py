"""Parsing of the JSON configuration files into typed objects.

Absent arrays and maps become empty collections here, so nothing downstream
has to check for missing keys. Wrong-typed values are dropped the same way.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


class ConfigParseError(ValueError):
    """A configuration file is not valid JSON or not a JSON object."""

    def __init__(self, path: Path, message: str, line: int | None = None, column: int | None = None):
        self.path = path
        self.message = message
        self.line = line
        self.column = column
        location = f":{line}:{column}" if line is not None else ""
        super().__init__(f"{path}{location}: {message}")


def read_json_file(path: Path) -> dict[str, Any] | None:
    """Read a JSON object from disk.

    Returns:
        The parsed object, or None if the file is missing or blank

    Raises:
        ConfigParseError: If the file is not valid JSON or not an object
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ConfigParseError(path, f"cannot read file: {e}") from e

    if not content.strip():
        return None

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigParseError(path, e.msg, e.lineno, e.colno) from e

    if not isinstance(data, dict):
        raise ConfigParseError(path, f"expected a JSON object, got {type(data).__name__}")
    return data


@dataclass
class JsonValidation:
    """Result of a syntax check on a single file."""

    path: Path
    valid: bool
    error: str | None = None
    line: int | None = None
    column: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": str(self.path), "valid": self.valid}
        if self.error:
            data["error"] = self.error
        if self.line is not None:
            data["line"] = self.line
            data["column"] = self.column
        return data


def validate_json_syntax(path: Path) -> JsonValidation:
    """Check that a file exists and holds valid JSON, with the error position if not."""
    if not path.exists():
        return JsonValidation(path=path, valid=False, error="File not found")
    try:
        json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        return JsonValidation(path=path, valid=False, error=e.msg, line=e.lineno, column=e.colno)
    except (OSError, UnicodeDecodeError) as e:
        return JsonValidation(path=path, valid=False, error=str(e))
    return JsonValidation(path=path, valid=True)


# ============================================================================
# Coercion helpers
# ============================================================================


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _object(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _server_map(value: Any) -> dict[str, dict[str, Any]]:
    return {name: body for name, body in _object(value).items() if isinstance(body, dict)}


# ============================================================================
# File schemas
# ============================================================================


@dataclass
class McpJson:
    """``.mcp.json`` and enterprise ``managed-mcp.json``."""

    mcp_servers: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "McpJson":
        return cls(mcp_servers=_server_map(data.get("mcpServers")))


@dataclass
class SettingsFile:
    """``settings.json`` / ``settings.local.json``."""

    enabled_mcpjson_servers: list[str] = field(default_factory=list)
    disabled_mcpjson_servers: list[str] = field(default_factory=list)
    enable_all_project_mcp_servers: bool = False
    enabled_plugins: dict[str, bool] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SettingsFile":
        plugins = {
            key: value
            for key, value in _object(data.get("enabledPlugins")).items()
            if isinstance(value, bool)
        }
        return cls(
            enabled_mcpjson_servers=_str_list(data.get("enabledMcpjsonServers")),
            disabled_mcpjson_servers=_str_list(data.get("disabledMcpjsonServers")),
            enable_all_project_mcp_servers=data.get("enableAllProjectMcpServers") is True,
            enabled_plugins=plugins,
        )


@dataclass
class ProjectEntry:
    """One ``projects[<path>]`` section of ``~/.claude.json``."""

    mcp_servers: dict[str, dict[str, Any]] = field(default_factory=dict)
    disabled_mcp_servers: list[str] = field(default_factory=list)
    enabled_mcpjson_servers: list[str] = field(default_factory=list)
    disabled_mcpjson_servers: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectEntry":
        return cls(
            mcp_servers=_server_map(data.get("mcpServers")),
            disabled_mcp_servers=_str_list(data.get("disabledMcpServers")),
            enabled_mcpjson_servers=_str_list(data.get("enabledMcpjsonServers")),
            disabled_mcpjson_servers=_str_list(data.get("disabledMcpjsonServers")),
        )


@dataclass
class ClaudeJson:
    """The root ``~/.claude.json`` file."""

    mcp_servers: dict[str, dict[str, Any]] = field(default_factory=dict)
    disabled_mcp_servers: list[str] = field(default_factory=list)
    projects: dict[str, ProjectEntry] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClaudeJson":
        projects = {
            key: ProjectEntry.from_dict(entry)
            for key, entry in _object(data.get("projects")).items()
            if isinstance(entry, dict)
        }
        return cls(
            mcp_servers=_server_map(data.get("mcpServers")),
            disabled_mcp_servers=_str_list(data.get("disabledMcpServers")),
            projects=projects,
        )


@dataclass
class InstalledPlugin:
    """One install record from ``installed_plugins.json``."""

    key: str
    install_path: Path | None = None
    version: str | None = None


@dataclass
class InstalledPlugins:
    """``~/.claude/plugins/installed_plugins.json``.

    Each plugin key maps to a list of install records; a single record object
    is accepted as well.
    """

    plugins: dict[str, list[InstalledPlugin]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InstalledPlugins":
        plugins: dict[str, list[InstalledPlugin]] = {}
        for key, records in _object(data.get("plugins")).items():
            if isinstance(records, dict):
                records = [records]
            if not isinstance(records, list):
                continue
            entries = []
            for record in records:
                if not isinstance(record, dict):
                    continue
                install_path = record.get("installPath")
                version = record.get("version")
                entries.append(InstalledPlugin(
                    key=key,
                    install_path=Path(install_path).expanduser() if isinstance(install_path, str) and install_path else None,
                    version=str(version) if version is not None else None,
                ))
            plugins[key] = entries
        return cls(plugins=plugins)


@dataclass
class MarketplacePlugin:
    """A plugin entry in a marketplace manifest.

    ``mcp_servers`` is either an inline server map or a path (relative to the
    plugin's source directory) of a file holding one.
    """

    name: str
    source: str | None = None
    description: str | None = None
    mcp_servers: dict[str, dict[str, Any]] | str | None = None


@dataclass
class Marketplace:
    """``marketplaces/<name>/.claude-plugin/marketplace.json``."""

    name: str | None = None
    plugins: list[MarketplacePlugin] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Marketplace":
        plugins = []
        raw_plugins = data.get("plugins")
        for entry in raw_plugins if isinstance(raw_plugins, list) else []:
            if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
                continue
            source = entry.get("source")
            description = entry.get("description")
            servers = entry.get("mcpServers")
            if isinstance(servers, dict):
                servers = _server_map(servers)
            elif not isinstance(servers, str):
                servers = None
            plugins.append(MarketplacePlugin(
                name=entry["name"],
                source=source if isinstance(source, str) else None,
                description=description if isinstance(description, str) else None,
                mcp_servers=servers,
            ))
        name = data.get("name")
        return cls(name=name if isinstance(name, str) else None, plugins=plugins)


def parse_server_map(data: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Servers of a plugin ``.mcp.json``: ``{"mcpServers": {...}}`` or a bare map."""
    if "mcpServers" in data:
        return _server_map(data["mcpServers"])
    return _server_map(data)
