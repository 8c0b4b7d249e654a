"""Core data model: scopes, config sources, facts and resolved servers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Union


class Scope(str, Enum):
    """Authority tier of a configuration source."""

    ENTERPRISE = "enterprise"
    LOCAL = "local"
    PROJECT = "project"
    USER = "user"

    @property
    def priority(self) -> int:
        return SCOPE_PRIORITY[self]


# Higher wins. Every precedence decision goes through this table.
SCOPE_PRIORITY: dict[Scope, int] = {
    Scope.ENTERPRISE: 4,
    Scope.LOCAL: 3,
    Scope.PROJECT: 2,
    Scope.USER: 1,
}


class SourceKind(str, Enum):
    """File-kind of a configuration source, which decides how it is parsed."""

    SETTINGS = "settings"
    MCP = "mcp"
    CLAUDE = "claude"
    ENTERPRISE = "enterprise"
    PLUGIN = "plugin"
    INSTALLED_PLUGINS = "installed-plugins"


class SourceType(str, Enum):
    """Where a server definition came from, which decides how its state is written."""

    MCPJSON = "mcpjson"
    DIRECT_GLOBAL = "direct-global"
    DIRECT_LOCAL = "direct-local"
    PLUGIN = "plugin"

    @property
    def is_direct(self) -> bool:
        return self in (SourceType.DIRECT_GLOBAL, SourceType.DIRECT_LOCAL)


class ServerState(str, Enum):
    ON = "on"
    OFF = "off"


class RuntimeStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


class DisplayState(str, Enum):
    """Derived classification combining configured state and runtime status."""

    RED = "red"  # off
    GREEN = "green"  # on
    ORANGE = "orange"  # on, but paused via disabledMcpServers


@dataclass(frozen=True)
class ConfigSource:
    """A candidate configuration file location."""

    path: Path
    scope: Scope
    exists: bool
    kind: SourceKind

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "path": str(self.path),
            "scope": self.scope.value,
            "exists": self.exists,
            "kind": self.kind.value,
        }


@dataclass
class ServerDefinition:
    """Launch/connection configuration of a single MCP server."""

    command: str | None = None
    args: list[str] = field(default_factory=list)
    type: str | None = None
    url: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def command_line(self) -> list[str]:
        """Full command array ([command, *args]), empty for remote servers."""
        if not self.command:
            return []
        return [self.command, *self.args]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the on-disk mcpServers entry shape, omitting empty fields."""
        data: dict[str, Any] = {}
        if self.type:
            data["type"] = self.type
        if self.command:
            data["command"] = self.command
        if self.args:
            data["args"] = list(self.args)
        if self.url:
            data["url"] = self.url
        if self.env:
            data["env"] = dict(self.env)
        if self.headers:
            data["headers"] = dict(self.headers)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerDefinition":
        """Create from an mcpServers entry. Malformed fields fall back to empty values."""
        args = data.get("args")
        env = data.get("env")
        headers = data.get("headers")
        command = data.get("command")
        url = data.get("url")
        server_type = data.get("type")
        return cls(
            command=command if isinstance(command, str) else None,
            args=[str(a) for a in args] if isinstance(args, list) else [],
            type=server_type if isinstance(server_type, str) else None,
            url=url if isinstance(url, str) else None,
            env={str(k): str(v) for k, v in env.items()} if isinstance(env, dict) else {},
            headers={str(k): str(v) for k, v in headers.items()} if isinstance(headers, dict) else {},
        )


# ============================================================================
# Facts
# ============================================================================


@dataclass(frozen=True)
class Definition:
    """A server definition found in a source file."""

    kind: ClassVar[str] = "def"

    server_name: str
    scope: Scope
    source_file: Path
    source_type: SourceType
    definition: ServerDefinition


@dataclass(frozen=True)
class Enable:
    """An explicit enable. source_type is PLUGIN for enabledPlugins entries."""

    kind: ClassVar[str] = "enable"

    server_name: str
    scope: Scope
    source_file: Path
    source_type: SourceType | None = None


@dataclass(frozen=True)
class Disable:
    kind: ClassVar[str] = "disable"

    server_name: str
    scope: Scope
    source_file: Path


@dataclass(frozen=True)
class DisablePlugin:
    """An enabledPlugins entry set to false. server_name is the plugin key."""

    kind: ClassVar[str] = "disable-plugin"

    server_name: str
    scope: Scope
    source_file: Path


@dataclass(frozen=True)
class RuntimeDisable:
    """A disabledMcpServers token, stored exactly as written."""

    kind: ClassVar[str] = "runtime-disable"

    server_name: str
    scope: Scope
    source_file: Path


@dataclass(frozen=True)
class EnableAllProject:
    """enableAllProjectMcpServers was set in a settings file."""

    kind: ClassVar[str] = "enable-all-project"

    scope: Scope
    source_file: Path


Fact = Union[Definition, Enable, Disable, DisablePlugin, RuntimeDisable, EnableAllProject]


def fact_to_dict(fact: Fact) -> dict[str, Any]:
    """Convert a fact to a dictionary for JSON output."""
    data: dict[str, Any] = {
        "type": fact.kind,
        "scope": fact.scope.value,
        "file": str(fact.source_file),
    }
    if not isinstance(fact, EnableAllProject):
        data["server"] = fact.server_name
    if isinstance(fact, (Definition, Enable)) and fact.source_type is not None:
        data["sourceType"] = fact.source_type.value
    return data


# ============================================================================
# Resolved servers
# ============================================================================


@dataclass
class ServerFlags:
    """Access-control flags attached to a resolved server."""

    enterprise: bool = False
    blocked: bool = False
    restricted: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {
            "enterprise": self.enterprise,
            "blocked": self.blocked,
            "restricted": self.restricted,
        }


@dataclass
class Server:
    """One resolved MCP server. Exactly one exists per distinct name."""

    name: str
    state: ServerState
    scope: Scope
    definition_file: Path
    source_type: SourceType
    flags: ServerFlags = field(default_factory=ServerFlags)
    runtime: RuntimeStatus = RuntimeStatus.UNKNOWN
    definition: ServerDefinition | None = None

    @property
    def display_state(self) -> DisplayState:
        if self.state == ServerState.OFF:
            return DisplayState.RED
        if self.runtime == RuntimeStatus.STOPPED:
            return DisplayState.ORANGE
        return DisplayState.GREEN

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "name": self.name,
            "state": self.state.value,
            "runtime": self.runtime.value,
            "display": self.display_state.value,
            "scope": self.scope.value,
            "sourceType": self.source_type.value,
            "definitionFile": str(self.definition_file),
            "flags": self.flags.to_dict(),
        }
        if self.definition is not None:
            data["definition"] = self.definition.to_dict()
        return data


@dataclass
class ToggleResult:
    """Outcome of a guarded state change. Failures carry a reason and never raise.

    On success, ``server`` is the updated copy; the input server is never mutated.
    """

    success: bool
    new_state: DisplayState | None = None
    reason: str | None = None
    server: Server | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.new_state is not None:
            data["newState"] = self.new_state.value
        if self.reason:
            data["reason"] = self.reason
        return data


# ============================================================================
# Enterprise policy
# ============================================================================


@dataclass(frozen=True)
class ServerRestriction:
    """One allowlist/denylist entry. Exactly one of the fields is expected."""

    server_name: str | None = None
    server_command: tuple[str, ...] | None = None
    server_url: str | None = None

    @classmethod
    def from_value(cls, value: Any) -> "ServerRestriction | None":
        """Parse a managed-settings entry. A bare string is a server name."""
        if isinstance(value, str):
            return cls(server_name=value) if value else None
        if not isinstance(value, dict):
            return None
        name = value.get("serverName")
        command = value.get("serverCommand")
        url = value.get("serverUrl")
        restriction = cls(
            server_name=name if isinstance(name, str) else None,
            server_command=tuple(str(c) for c in command) if isinstance(command, list) else None,
            server_url=url if isinstance(url, str) else None,
        )
        if restriction.server_name is None and restriction.server_command is None and restriction.server_url is None:
            return None
        return restriction

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.server_name is not None:
            data["serverName"] = self.server_name
        if self.server_command is not None:
            data["serverCommand"] = list(self.server_command)
        if self.server_url is not None:
            data["serverUrl"] = self.server_url
        return data


@dataclass
class EnterprisePolicy:
    """Enterprise allow/deny rules.

    ``allowed is None`` means no allowlist is configured. An empty list is a
    present allowlist that admits nothing (lockdown).
    """

    denied: list[ServerRestriction] = field(default_factory=list)
    allowed: list[ServerRestriction] | None = None

    @property
    def denied_servers(self) -> set[str]:
        return {r.server_name for r in self.denied if r.server_name is not None}

    @property
    def allowed_servers(self) -> set[str] | None:
        if self.allowed is None:
            return None
        return {r.server_name for r in self.allowed if r.server_name is not None}

    @classmethod
    def from_names(cls, denied: list[str] | None = None, allowed: list[str] | None = None) -> "EnterprisePolicy":
        """Build a name-only policy."""
        return cls(
            denied=[ServerRestriction(server_name=n) for n in denied or []],
            allowed=None if allowed is None else [ServerRestriction(server_name=n) for n in allowed],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "denied": [r.to_dict() for r in self.denied],
            "allowed": None if self.allowed is None else [r.to_dict() for r in self.allowed],
        }
