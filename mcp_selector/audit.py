"""Configuration health checks and repair helpers."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .catalog import discover_sources, list_marketplace_dirs, marketplace_manifest_path
from .config import Settings
from .extract import extract_facts, is_valid_plugin_path
from .identity import make_plugin_key
from .locking import file_lock
from .models import ConfigSource, Definition, Scope, SourceKind, SourceType
from .parser import (
    ConfigParseError,
    InstalledPlugins,
    JsonValidation,
    Marketplace,
    read_json_file,
    validate_json_syntax,
)
from .writer import atomic_write_json, create_backup

logger = logging.getLogger(__name__)

# Keys that only take effect in settings files
SETTINGS_ONLY_KEYS = (
    "enabledMcpjsonServers",
    "disabledMcpjsonServers",
    "enableAllProjectMcpServers",
    "enabledPlugins",
)
MCPJSON_ARRAYS = ("enabledMcpjsonServers", "disabledMcpjsonServers")

FIX_REMOVE_KEY = "remove-key"
FIX_REMOVE_PLUGIN_FALSE = "remove-plugin-false"
FIX_REMOVE_ENTRY = "remove-entry"


@dataclass
class AuditIssue:
    severity: str  # "error" or "warning"
    path: Path
    message: str
    suggestion: str | None = None
    # Automatic repair, if any: one of the FIX_* kinds with its key and value
    fix: str | None = None
    key: str | None = None
    value: str | None = None

    @property
    def fixable(self) -> bool:
        return self.fix is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "severity": self.severity,
            "file": str(self.path),
            "message": self.message,
            "fixable": self.fixable,
        }
        if self.suggestion:
            data["suggestion"] = self.suggestion
        return data


@dataclass
class AuditReport:
    checked: int = 0
    issues: list[AuditIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(i.severity == "error" for i in self.issues)

    @property
    def fixable(self) -> list[AuditIssue]:
        return [i for i in self.issues if i.fixable]

    def to_dict(self) -> dict[str, Any]:
        return {"checked": self.checked, "issues": [i.to_dict() for i in self.issues]}


def validate_sources(sources: list[ConfigSource]) -> list[JsonValidation]:
    """Syntax-check every existing source."""
    return [validate_json_syntax(s.path) for s in sources if s.exists]


def _check_placement(source: ConfigSource, data: dict[str, Any]) -> list[AuditIssue]:
    issues: list[AuditIssue] = []
    # Files managed by an administrator are reported but never rewritten
    writable = source.scope != Scope.ENTERPRISE

    if source.kind == SourceKind.SETTINGS:
        plugins = data.get("enabledPlugins")
        if isinstance(plugins, dict):
            for key, value in plugins.items():
                if value is False:
                    issues.append(AuditIssue(
                        severity="warning",
                        path=source.path,
                        message=f'enabledPlugins["{key}"] is false, which hides the plugin from Claude Code',
                        suggestion=f"Run 'mcps restore-plugin {key}' to remove the entry",
                        fix=FIX_REMOVE_PLUGIN_FALSE if writable else None,
                        value=key,
                    ))
        if "disabledMcpServers" in data:
            issues.append(AuditIssue(
                severity="warning",
                path=source.path,
                message="disabledMcpServers has no effect in a settings file",
                suggestion="It belongs in ~/.claude.json under projects.<path>",
                fix=FIX_REMOVE_KEY if writable else None,
                key="disabledMcpServers",
            ))
        return issues

    if source.kind in (SourceKind.MCP, SourceKind.ENTERPRISE):
        for key in SETTINGS_ONLY_KEYS:
            if key in data:
                issues.append(AuditIssue(
                    severity="warning",
                    path=source.path,
                    message=f"{key} has no effect in {source.path.name}",
                    suggestion="Move it to .claude/settings.local.json",
                    fix=FIX_REMOVE_KEY if writable else None,
                    key=key,
                ))
    return issues


def _check_orphans(source: ConfigSource, data: dict[str, Any], defined: set[str]) -> list[AuditIssue]:
    """Entries in the mcpjson control arrays that name no .mcp.json server."""
    issues: list[AuditIssue] = []
    if source.kind != SourceKind.SETTINGS or source.scope == Scope.ENTERPRISE:
        return issues
    for key in MCPJSON_ARRAYS:
        entries = data.get(key)
        if not isinstance(entries, list):
            continue
        for name in entries:
            if isinstance(name, str) and name not in defined:
                issues.append(AuditIssue(
                    severity="warning",
                    path=source.path,
                    message=f'{key} lists "{name}", which no .mcp.json defines',
                    suggestion="Remove the entry, or add the server to .mcp.json",
                    fix=FIX_REMOVE_ENTRY,
                    key=key,
                    value=name,
                ))
    return issues


def _mcpjson_names(cwd: Path, settings: Settings) -> set[str] | None:
    """Names defined in .mcp.json files, or None if any source failed to parse."""
    extraction = extract_facts(cwd, settings)
    if extraction.errors:
        return None
    return {
        f.server_name for f in extraction.facts
        if isinstance(f, Definition) and f.source_type == SourceType.MCPJSON
    }


def audit(cwd: Path, settings: Settings) -> AuditReport:
    """Check every source for invalid JSON, misplaced control keys and orphaned entries."""
    report = AuditReport()
    defined = _mcpjson_names(cwd, settings)
    for source in discover_sources(cwd, settings):
        if not source.exists:
            continue
        report.checked += 1

        validation = validate_json_syntax(source.path)
        if not validation.valid:
            report.issues.append(AuditIssue(
                severity="error",
                path=source.path,
                message=f"Invalid JSON: {validation.error}",
                suggestion=f"Check line {validation.line}, column {validation.column}" if validation.line else None,
            ))
            continue

        try:
            data = read_json_file(source.path)
        except ConfigParseError as e:
            report.issues.append(AuditIssue(severity="error", path=source.path, message=e.message))
            continue
        if data is None:
            continue
        report.issues.extend(_check_placement(source, data))
        if defined is not None:
            report.issues.extend(_check_orphans(source, data, defined))

    return report


@dataclass
class FileRewrite:
    """Outcome of a locked read-modify-write of one config file."""

    path: Path
    changed: bool
    backup: Path | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"file": str(self.path), "changed": self.changed}
        if self.backup:
            data["backup"] = str(self.backup)
        if self.error:
            data["error"] = self.error
        return data


def rewrite_json_file(
    path: Path,
    settings: Settings,
    change: Callable[[dict[str, Any]], bool],
) -> FileRewrite | None:
    """Apply ``change`` to the JSON object in ``path`` under the file lock.

    ``change`` edits the data in place and returns whether it changed
    anything. Returns None when the file is missing, malformed, or left as is.
    """
    with file_lock(path, settings):
        try:
            data = read_json_file(path)
        except ConfigParseError as e:
            logger.warning(f"Skipping malformed file: {e}")
            return None
        if data is None or not change(data):
            return None

        result = FileRewrite(path=path, changed=False)
        try:
            if settings.backup:
                result.backup = create_backup(path, settings.backups_path)
            atomic_write_json(path, data)
            result.changed = True
        except OSError as e:
            result.error = str(e)
        return result


def _remove_plugin_false(data: dict[str, Any], plugin_key: str) -> bool:
    plugins = data.get("enabledPlugins")
    if not isinstance(plugins, dict) or plugins.get(plugin_key) is not False:
        return False
    del plugins[plugin_key]
    if not plugins:
        del data["enabledPlugins"]
    return True


def _apply_fix(issue: AuditIssue, data: dict[str, Any]) -> bool:
    if issue.fix == FIX_REMOVE_KEY and issue.key in data:
        del data[issue.key]
        return True
    if issue.fix == FIX_REMOVE_PLUGIN_FALSE and issue.value is not None:
        return _remove_plugin_false(data, issue.value)
    if issue.fix == FIX_REMOVE_ENTRY and issue.key is not None:
        entries = data.get(issue.key)
        if not isinstance(entries, list) or issue.value not in entries:
            return False
        remaining = [e for e in entries if e != issue.value]
        if remaining:
            data[issue.key] = remaining
        else:
            del data[issue.key]
        return True
    return False


def restore_plugin(plugin_key: str, cwd: Path, settings: Settings) -> list[FileRewrite]:
    """Remove ``enabledPlugins[plugin_key] = false`` from every settings file.

    Returns one result per settings file that held the entry. Files without
    it are not touched.
    """
    results = []
    for source in discover_sources(cwd, settings):
        if not source.exists or source.kind != SourceKind.SETTINGS:
            continue
        result = rewrite_json_file(source.path, settings, lambda data: _remove_plugin_false(data, plugin_key))
        if result is not None:
            results.append(result)
    return results


@dataclass
class FixReport:
    """Issues found by the audit and, when applied, the files rewritten."""

    findings: AuditReport
    applied: bool = False
    files: list[FileRewrite] = field(default_factory=list)

    @property
    def manual(self) -> list[AuditIssue]:
        return [i for i in self.findings.issues if not i.fixable]

    @property
    def failed(self) -> list[FileRewrite]:
        return [f for f in self.files if not f.changed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": self.applied,
            "fixable": [i.to_dict() for i in self.findings.fixable],
            "manual": [i.to_dict() for i in self.manual],
            "files": [f.to_dict() for f in self.files],
        }


def fix_config(cwd: Path, settings: Settings, apply: bool = False) -> FixReport:
    """Audit, then repair every fixable issue if ``apply`` is set.

    Without ``apply`` nothing is written. Fixes for the same file are applied
    in a single locked rewrite.
    """
    report = FixReport(findings=audit(cwd, settings), applied=apply)
    if not apply:
        return report

    by_file: dict[Path, list[AuditIssue]] = {}
    for issue in report.findings.fixable:
        by_file.setdefault(issue.path, []).append(issue)

    for path, issues in by_file.items():
        # Every fix must run, so no short-circuiting any()
        result = rewrite_json_file(path, settings, lambda data: any([_apply_fix(i, data) for i in issues]))
        if result is not None:
            report.files.append(result)
    return report


@dataclass
class AvailablePlugin:
    name: str
    marketplace: str
    description: str | None = None
    has_servers: bool = False

    @property
    def key(self) -> str:
        return make_plugin_key(self.name, self.marketplace)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "marketplace": self.marketplace,
            "key": self.key,
            "description": self.description,
            "hasServers": self.has_servers,
        }


def _installed_keys(settings: Settings) -> set[str]:
    try:
        data = read_json_file(settings.installed_plugins_path)
    except ConfigParseError as e:
        logger.warning(f"Cannot read installed plugins: {e}")
        return set()
    return set(InstalledPlugins.from_dict(data).plugins) if data else set()


def list_available_plugins(settings: Settings, mcp_only: bool = False) -> list[AvailablePlugin]:
    """Marketplace plugins that are not installed. Read-only."""
    installed = _installed_keys(settings)
    available = []
    for marketplace_dir in list_marketplace_dirs(settings):
        try:
            data = read_json_file(marketplace_manifest_path(marketplace_dir))
        except ConfigParseError as e:
            logger.warning(f"Skipping marketplace {marketplace_dir.name}: {e}")
            continue
        if data is None:
            continue
        for plugin in Marketplace.from_dict(data).plugins:
            if make_plugin_key(plugin.name, marketplace_dir.name) in installed:
                continue
            has_servers = plugin.mcp_servers is not None
            if not has_servers and plugin.source and is_valid_plugin_path(plugin.source):
                has_servers = (marketplace_dir / plugin.source / ".mcp.json").is_file()
            if mcp_only and not has_servers:
                continue
            available.append(AvailablePlugin(
                name=plugin.name,
                marketplace=marketplace_dir.name,
                description=plugin.description,
                has_servers=has_servers,
            ))
    return available
