"""Enumeration of every configuration file that can define or control MCP servers."""

from pathlib import Path

from .config import Settings
from .models import ConfigSource, Scope, SourceKind
from .platform import get_project_mcp_json_path, get_project_settings_path


def _source(path: Path, scope: Scope, kind: SourceKind) -> ConfigSource:
    return ConfigSource(path=path, scope=scope, exists=path.is_file(), kind=kind)


def marketplace_manifest_path(marketplace_dir: Path) -> Path:
    return marketplace_dir / ".claude-plugin" / "marketplace.json"


def list_marketplace_dirs(settings: Settings) -> list[Path]:
    """Marketplace directories under ~/.claude/plugins/marketplaces, sorted by name."""
    root = settings.marketplaces_dir
    if not root.is_dir():
        return []
    return sorted((p for p in root.iterdir() if p.is_dir()), key=lambda p: p.name)


def discover_sources(cwd: Path, settings: Settings) -> list[ConfigSource]:
    """Return all candidate sources in extraction order.

    The order is fixed; equal-priority definitions are decided by it (the
    later source wins), so it must not change between runs.
    """
    sources: list[ConfigSource] = []

    if settings.enterprise_mcp_path is not None:
        sources.append(_source(settings.enterprise_mcp_path, Scope.ENTERPRISE, SourceKind.ENTERPRISE))
    if settings.enterprise_settings_path is not None:
        sources.append(_source(settings.enterprise_settings_path, Scope.ENTERPRISE, SourceKind.SETTINGS))

    sources.extend([
        _source(get_project_settings_path(cwd, local=True), Scope.LOCAL, SourceKind.SETTINGS),
        _source(get_project_settings_path(cwd), Scope.PROJECT, SourceKind.SETTINGS),
        _source(get_project_mcp_json_path(cwd), Scope.PROJECT, SourceKind.MCP),
        _source(settings.claude_dir / "settings.json", Scope.USER, SourceKind.SETTINGS),
        _source(settings.claude_dir / "settings.local.json", Scope.USER, SourceKind.SETTINGS),
        _source(settings.home / ".mcp.json", Scope.USER, SourceKind.MCP),
        _source(settings.claude_json_path, Scope.USER, SourceKind.CLAUDE),
        _source(settings.installed_plugins_path, Scope.USER, SourceKind.INSTALLED_PLUGINS),
    ])

    for marketplace_dir in list_marketplace_dirs(settings):
        sources.append(_source(marketplace_manifest_path(marketplace_dir), Scope.USER, SourceKind.PLUGIN))

    return sources
