"""Raw fact extraction.

Each existing source is parsed and turned into facts (definitions, enables,
disables, plugin hard-disables and runtime-disable tokens). Nothing is
resolved here; the resolver decides what wins.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any

from .catalog import discover_sources, marketplace_manifest_path
from .config import Settings
from .identity import is_plugin_key, make_plugin_server_name
from .models import (
    ConfigSource,
    Definition,
    Disable,
    DisablePlugin,
    Enable,
    EnableAllProject,
    Fact,
    RuntimeDisable,
    Scope,
    ServerDefinition,
    SourceKind,
    SourceType,
)
from .parser import (
    ClaudeJson,
    ConfigParseError,
    InstalledPlugins,
    Marketplace,
    MarketplacePlugin,
    McpJson,
    SettingsFile,
    parse_server_map,
    read_json_file,
)
from .platform import normalise_project_path

logger = logging.getLogger(__name__)


@dataclass
class SourceError:
    """A source that could not be parsed and was skipped."""

    path: Path
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"path": str(self.path), "message": self.message}


@dataclass
class Extraction:
    """Everything one load pass found on disk."""

    sources: list[ConfigSource] = field(default_factory=list)
    facts: list[Fact] = field(default_factory=list)
    errors: list[SourceError] = field(default_factory=list)


def is_valid_plugin_path(source: str) -> bool:
    """Reject marketplace-declared paths that could escape the marketplace directory."""
    if not source or ".." in source or "\\" in source:
        return False
    if PurePosixPath(source).is_absolute() or PureWindowsPath(source).is_absolute():
        return False
    return True


class _Extractor:
    """Carries per-pass state (cwd, settings, error list, manifest cache)."""

    def __init__(self, cwd: Path, settings: Settings):
        self.cwd = cwd
        self.settings = settings
        self.errors: list[SourceError] = []
        self._marketplaces: dict[str, Marketplace | None] = {}

    def _read(self, path: Path) -> dict[str, Any] | None:
        """Read a JSON file, recording and logging parse failures as absent."""
        try:
            return read_json_file(path)
        except ConfigParseError as e:
            logger.warning(f"Skipping malformed config file: {e}")
            self.errors.append(SourceError(path=path, message=str(e)))
            return None

    def extract(self, source: ConfigSource) -> list[Fact]:
        if source.kind == SourceKind.PLUGIN:
            # Marketplace manifests only feed plugin lookup and the uninstalled listing
            self._marketplace(source.path.parent.parent.name)
            return []

        data = self._read(source.path)
        if data is None:
            return []

        if source.kind in (SourceKind.ENTERPRISE, SourceKind.MCP):
            facts = list(self._from_mcp_json(source, McpJson.from_dict(data)))
        elif source.kind == SourceKind.SETTINGS:
            facts = list(self._from_settings(source, SettingsFile.from_dict(data)))
        elif source.kind == SourceKind.CLAUDE:
            facts = list(self._from_claude_json(source, ClaudeJson.from_dict(data)))
        else:
            facts = list(self._from_installed_plugins(source, InstalledPlugins.from_dict(data)))

        logger.debug(f"{source.path}: {len(facts)} facts")
        return facts

    def _from_mcp_json(self, source: ConfigSource, data: McpJson) -> Iterator[Fact]:
        for name, body in data.mcp_servers.items():
            yield Definition(
                server_name=name,
                scope=source.scope,
                source_file=source.path,
                source_type=SourceType.MCPJSON,
                definition=ServerDefinition.from_dict(body),
            )

    def _from_settings(self, source: ConfigSource, data: SettingsFile) -> Iterator[Fact]:
        for name in data.enabled_mcpjson_servers:
            yield Enable(name, source.scope, source.path)
        for name in data.disabled_mcpjson_servers:
            yield Disable(name, source.scope, source.path)
        for key, enabled in data.enabled_plugins.items():
            if enabled:
                yield Enable(key, source.scope, source.path, source_type=SourceType.PLUGIN)
            else:
                yield DisablePlugin(key, source.scope, source.path)
        if data.enable_all_project_mcp_servers:
            yield EnableAllProject(source.scope, source.path)

    def _from_claude_json(self, source: ConfigSource, data: ClaudeJson) -> Iterator[Fact]:
        for name, body in data.mcp_servers.items():
            yield Definition(
                server_name=name,
                scope=Scope.USER,
                source_file=source.path,
                source_type=SourceType.DIRECT_GLOBAL,
                definition=ServerDefinition.from_dict(body),
            )
        for token in data.disabled_mcp_servers:
            yield RuntimeDisable(token, Scope.USER, source.path)

        project = data.projects.get(normalise_project_path(self.cwd))
        if project is None:
            return

        for name, body in project.mcp_servers.items():
            yield Definition(
                server_name=name,
                scope=Scope.LOCAL,
                source_file=source.path,
                source_type=SourceType.DIRECT_LOCAL,
                definition=ServerDefinition.from_dict(body),
            )
        for token in project.disabled_mcp_servers:
            yield RuntimeDisable(token, Scope.LOCAL, source.path)
        for name in project.enabled_mcpjson_servers:
            yield Enable(name, Scope.LOCAL, source.path)
        for name in project.disabled_mcpjson_servers:
            yield Disable(name, Scope.LOCAL, source.path)

    def _from_installed_plugins(self, source: ConfigSource, data: InstalledPlugins) -> Iterator[Fact]:
        seen: set[str] = set()
        for key, records in data.plugins.items():
            if not is_plugin_key(key):
                logger.debug(f"Ignoring installed plugin with malformed key {key!r}")
                continue
            plugin_name, _, marketplace = key.partition("@")
            found = self._find_plugin_servers(plugin_name, marketplace, [r.install_path for r in records])
            if found is None:
                continue
            servers, server_file = found
            for server_key, body in servers.items():
                full_name = make_plugin_server_name(server_key, plugin_name, marketplace)
                if full_name in seen:
                    continue
                seen.add(full_name)
                yield Definition(
                    server_name=full_name,
                    scope=Scope.USER,
                    source_file=server_file,
                    source_type=SourceType.PLUGIN,
                    definition=ServerDefinition.from_dict(body),
                )

    # ------------------------------------------------------------------
    # Plugin server lookup
    # ------------------------------------------------------------------

    def _marketplace(self, marketplace: str) -> Marketplace | None:
        if marketplace not in self._marketplaces:
            path = marketplace_manifest_path(self.settings.marketplaces_dir / marketplace)
            data = self._read(path)
            self._marketplaces[marketplace] = Marketplace.from_dict(data) if data is not None else None
        return self._marketplaces[marketplace]

    def _server_file(self, path: Path) -> dict[str, dict[str, Any]] | None:
        if not path.is_file():
            return None
        data = self._read(path)
        if data is None:
            return None
        return parse_server_map(data)

    def _find_plugin_servers(
        self,
        plugin_name: str,
        marketplace: str,
        install_paths: list[Path | None],
    ) -> tuple[dict[str, dict[str, Any]], Path] | None:
        """Locate a plugin's server map. First hit wins:

        1. ``<installPath>/.mcp.json`` of any install record
        2. ``<marketplace>/<source>/.mcp.json`` for the manifest's declared source
        3. the manifest entry's inline ``mcpServers`` (a string is a file path
           relative to the plugin's source directory)
        4. ``<marketplace>/<pluginName>/.mcp.json``
        """
        for install_path in install_paths:
            if install_path is None:
                continue
            candidate = install_path / ".mcp.json"
            servers = self._server_file(candidate)
            if servers is not None:
                return servers, candidate

        marketplace_dir = self.settings.marketplaces_dir / marketplace
        entry = self._manifest_entry(marketplace, plugin_name)

        plugin_dir: Path | None = None
        if entry is not None and entry.source is not None:
            if is_valid_plugin_path(entry.source):
                plugin_dir = marketplace_dir / entry.source
                candidate = plugin_dir / ".mcp.json"
                servers = self._server_file(candidate)
                if servers is not None:
                    return servers, candidate
            else:
                logger.warning(f"Ignoring unsafe source path {entry.source!r} for plugin {plugin_name}@{marketplace}")

        if entry is not None and entry.mcp_servers is not None:
            manifest_path = marketplace_manifest_path(marketplace_dir)
            if isinstance(entry.mcp_servers, dict):
                return entry.mcp_servers, manifest_path
            if is_valid_plugin_path(entry.mcp_servers):
                candidate = (plugin_dir or marketplace_dir) / entry.mcp_servers
                servers = self._server_file(candidate)
                if servers is not None:
                    return servers, candidate
            else:
                logger.warning(f"Ignoring unsafe mcpServers path {entry.mcp_servers!r} for plugin {plugin_name}@{marketplace}")

        candidate = marketplace_dir / plugin_name / ".mcp.json"
        servers = self._server_file(candidate)
        if servers is not None:
            return servers, candidate

        logger.debug(f"No MCP servers found for plugin {plugin_name}@{marketplace}")
        return None

    def _manifest_entry(self, marketplace: str, plugin_name: str) -> MarketplacePlugin | None:
        manifest = self._marketplace(marketplace)
        if manifest is None:
            return None
        return next((p for p in manifest.plugins if p.name == plugin_name), None)


def extract_facts(cwd: Path, settings: Settings) -> Extraction:
    """Discover every source and extract its facts in catalog order.

    Malformed files are logged, recorded in ``errors`` and treated as absent;
    a bad file never aborts the load.
    """
    sources = discover_sources(cwd, settings)
    extractor = _Extractor(cwd, settings)
    facts: list[Fact] = []
    for source in sources:
        if not source.exists:
            continue
        facts.extend(extractor.extract(source))
    return Extraction(sources=sources, facts=facts, errors=extractor.errors)
