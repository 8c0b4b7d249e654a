"""Shared fixtures and utilities for MCP Selector tests."""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from mcp_selector.config import Settings
from mcp_selector.models import (
    RuntimeStatus,
    Scope,
    Server,
    ServerDefinition,
    ServerFlags,
    ServerState,
    SourceType,
)
from mcp_selector.platform import normalise_project_path


# ============================================================================
# Environment Isolation
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Remove variables that change settings or session detection."""
    for var in (
        "MCPS_HOME",
        "MCPS_ENTERPRISE_DIR",
        "MCPS_BACKUP_DIR",
        "MCPS_NO_BACKUP",
        "MCPS_LOCK_RETRIES",
        "MCPS_LOCK_STALE",
        "MCPS_PROBE_TIMEOUT",
        "MCPS_PROBE_COMMAND",
        "CLAUDE_SESSION_ID",
        "CLAUDE_CODE",
        "MCP_SERVER_NAME",
    ):
        monkeypatch.delenv(var, raising=False)


# ============================================================================
# Temporary File Fixtures
# ============================================================================


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Fake home directory holding .claude.json and .claude/."""
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Project directory used as cwd."""
    path = tmp_path / "project"
    path.mkdir()
    return path.resolve()


@pytest.fixture
def enterprise_dir(tmp_path: Path) -> Path:
    """Stand-in for the machine-wide managed config directory."""
    return tmp_path / "enterprise"


@pytest.fixture
def settings(home: Path, enterprise_dir: Path) -> Settings:
    """Settings pointing entirely into tmp_path, with fast lock retries."""
    return Settings(
        home=home,
        enterprise_dir=enterprise_dir,
        lock_retries=2,
        lock_min_timeout=0.01,
        lock_max_timeout=0.02,
    )


@pytest.fixture
def write_json() -> Callable[[Path, Any], Path]:
    """Write JSON to a path, creating parent directories."""

    def _write(path: Path, data: Any) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))
        return path

    return _write


@pytest.fixture
def read_json() -> Callable[[Path], Any]:
    def _read(path: Path) -> Any:
        return json.loads(path.read_text())

    return _read


@pytest.fixture
def project_key(project: Path) -> str:
    """Key of the project in ~/.claude.json projects."""
    return normalise_project_path(project)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def make_server() -> Callable[..., Server]:
    """Factory for resolved servers with sensible defaults."""

    def _make(
        name: str = "fetch",
        state: ServerState = ServerState.ON,
        scope: Scope = Scope.PROJECT,
        source_type: SourceType = SourceType.MCPJSON,
        runtime: RuntimeStatus = RuntimeStatus.UNKNOWN,
        enterprise: bool = False,
        blocked: bool = False,
        restricted: bool = False,
        definition: ServerDefinition | None = None,
    ) -> Server:
        return Server(
            name=name,
            state=state,
            scope=scope,
            definition_file=Path("/config/.mcp.json"),
            source_type=source_type,
            flags=ServerFlags(enterprise=enterprise, blocked=blocked, restricted=restricted),
            runtime=runtime,
            definition=definition or ServerDefinition(command="uvx", args=[f"mcp-server-{name}"]),
        )

    return _make


@pytest.fixture
def plugin_install(home: Path, write_json) -> Callable[..., Path]:
    """Install a plugin with the given servers into the fake home.

    Writes ``installed_plugins.json`` and the plugin's ``.mcp.json`` under its
    install path. Returns the install path.
    """

    def _install(plugin: str, marketplace: str, servers: dict[str, Any]) -> Path:
        install_path = home / ".claude" / "plugins" / "cache" / marketplace / plugin
        write_json(install_path / ".mcp.json", {"mcpServers": servers})

        installed_path = home / ".claude" / "plugins" / "installed_plugins.json"
        data = json.loads(installed_path.read_text()) if installed_path.exists() else {"version": 2, "plugins": {}}
        data["plugins"][f"{plugin}@{marketplace}"] = [{"installPath": str(install_path), "version": "1.0.0"}]
        write_json(installed_path, data)
        return install_path

    return _install
