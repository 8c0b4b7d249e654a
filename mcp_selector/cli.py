"""CLI entry point for MCP Selector."""

from __future__ import annotations

import csv
import io
import logging
from functools import partial
from pathlib import Path
from typing import NoReturn

import click

from . import __version__
from .audit import audit as run_audit
from .audit import fix_config, list_available_plugins, restore_plugin, validate_sources
from .catalog import discover_sources
from .config import Settings, load_settings
from .identity import is_plugin_key
from .models import DisplayState, Server, SourceType, ToggleResult
from .output import OutputHandler, state_badge
from .platform import detect_platform, get_session_warning, normalise_project_path
from .runtime import compare_with_runtime, probe_runtime_status
from .state import format_change_summary
from .writer import list_backups, restore_from_backup
from .workspace import Workspace

# Logger for CLI
logger = logging.getLogger("mcps")

LIST_FILTERS = ["all", "mcpjson", "direct", "plugin", "enterprise", "blocked", "orange"]


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option(
    "--cwd",
    "cwd",
    type=click.Path(exists=True, file_okay=False),
    help="Project directory (defaults to the current directory)",
)
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, cwd: str | None, env_path: str | None, verbose: bool) -> None:
    """MCP Selector - Enable, disable and pause Claude Code MCP servers."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["cwd"] = Path(cwd).resolve() if cwd else Path.cwd()
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["output"] = OutputHandler(json_mode)

    # Configure logging based on verbosity
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_settings(ctx: click.Context) -> Settings | NoReturn:
    """Get settings from context, handling errors."""
    if "settings" in ctx.obj:
        return ctx.obj["settings"]
    output: OutputHandler = ctx.obj["output"]
    try:
        settings = load_settings(ctx.obj["env_path"])
    except ValueError as e:
        output.error(e, error_type="SettingsError", help_text="Check the MCPS_* environment variables.")
        raise SystemExit(1)  # Never reached due to sys.exit in output.error
    ctx.obj["settings"] = settings
    return settings


def get_workspace(ctx: click.Context) -> Workspace:
    """Load and resolve servers for the project directory."""
    output: OutputHandler = ctx.obj["output"]
    workspace = Workspace.load(ctx.obj["cwd"], get_settings(ctx))
    for error in workspace.extraction.errors:
        output.warning(f"Skipped malformed file {error.path}: {error.message}")
    return workspace


def _echo_result(name: str, result: ToggleResult) -> None:
    if result.success and result.new_state is not None:
        click.secho(f"  [{name}] ", fg="cyan", nl=False)
        click.echo(f"-> {result.new_state.value}")
    else:
        click.secho(f"  [{name}] ", fg="cyan", nl=False)
        click.secho(f"rejected: {result.reason}", fg="red")


def _commit(ctx: click.Context, workspace: Workspace, results: dict[str, ToggleResult], strict: bool) -> None:
    """Save the workspace if anything changed and report per-server outcomes.

    Exits with status 1 when the save fails, or when ``strict`` and any
    server was rejected.
    """
    output: OutputHandler = ctx.obj["output"]
    summary = workspace.changes()
    save_result = workspace.save() if summary.has_changes else None
    failed = [name for name, r in results.items() if not r.success]

    if ctx.obj["json_mode"]:
        output.success({
            "results": {name: r.to_dict() for name, r in results.items()},
            "changes": summary.to_dict(),
            "save": save_result.to_dict() if save_result else None,
        })
    else:
        for name, result in results.items():
            _echo_result(name, result)
        click.echo()
        lines = format_change_summary(summary)
        if not lines:
            click.echo("No changes to save.")
        for line in lines:
            click.echo(line)
        if save_result is not None:
            for error in save_result.errors:
                click.secho(f"Error: {error}", fg="red", err=True)
            if save_result.ok:
                click.secho(f"Saved {save_result.saved} servers.", fg="green")
                warning = get_session_warning()
                if warning:
                    output.warning(warning)

    if (save_result is not None and not save_result.ok) or (strict and failed):
        ctx.exit(1)


def _run_named(ctx: click.Context, names: tuple[str, ...], operation: str) -> None:
    workspace = get_workspace(ctx)
    results = {name: getattr(workspace, operation)(name) for name in names}
    _commit(ctx, workspace, results, strict=True)


@main.command("list")
@click.option("--filter", "-f", "filter_name", type=click.Choice(LIST_FILTERS), default="all", help="Show a subset of servers")
@click.option("--probe", is_flag=True, help="Ask `claude mcp list` for live status (display only)")
@click.pass_context
def list_cmd(ctx: click.Context, filter_name: str, probe: bool) -> None:
    """List resolved MCP servers and their state."""
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)
    workspace = get_workspace(ctx)

    if probe:
        result = workspace.apply_probe(partial(probe_runtime_status, settings.probe_command, settings.probe_timeout))
        if result.error:
            output.warning(f"Runtime status unavailable: {result.error}")

    output.servers(filter_servers(workspace.display_servers, filter_name))


def filter_servers(servers: list[Server], filter_name: str) -> list[Server]:
    if filter_name == "mcpjson":
        return [s for s in servers if s.source_type == SourceType.MCPJSON]
    if filter_name == "direct":
        return [s for s in servers if s.source_type.is_direct]
    if filter_name == "plugin":
        return [s for s in servers if s.source_type == SourceType.PLUGIN]
    if filter_name == "enterprise":
        return [s for s in servers if s.flags.enterprise]
    if filter_name == "blocked":
        return [s for s in servers if s.flags.blocked or s.flags.restricted]
    if filter_name == "orange":
        return [s for s in servers if s.display_state == DisplayState.ORANGE]
    return servers


@main.command()
@click.argument("names", nargs=-1)
@click.option("--all", "all_servers", is_flag=True, help="Enable every server the policy allows")
@click.pass_context
def enable(ctx: click.Context, names: tuple[str, ...], all_servers: bool) -> None:
    """Enable servers (GREEN)."""
    if all_servers:
        workspace = get_workspace(ctx)
        _commit(ctx, workspace, workspace.enable_all().results, strict=False)
    elif names:
        _run_named(ctx, names, "enable")
    else:
        raise click.UsageError("Give at least one server name, or --all")


@main.command()
@click.argument("names", nargs=-1)
@click.option("--all", "all_servers", is_flag=True, help="Disable every non-enterprise server")
@click.pass_context
def disable(ctx: click.Context, names: tuple[str, ...], all_servers: bool) -> None:
    """Disable servers (RED)."""
    if all_servers:
        workspace = get_workspace(ctx)
        _commit(ctx, workspace, workspace.disable_all().results, strict=False)
    elif names:
        _run_named(ctx, names, "disable")
    else:
        raise click.UsageError("Give at least one server name, or --all")


@main.command()
@click.argument("names", nargs=-1, required=True)
@click.pass_context
def pause(ctx: click.Context, names: tuple[str, ...]) -> None:
    """Pause servers (ORANGE): enabled in config, stopped at runtime."""
    _run_named(ctx, names, "pause")


@main.command()
@click.argument("name")
@click.pass_context
def toggle(ctx: click.Context, name: str) -> None:
    """Advance a server one step: red -> green -> orange -> red."""
    _run_named(ctx, (name,), "toggle")


@main.command("strict-disable")
@click.pass_context
def strict_disable(ctx: click.Context) -> None:
    """Turn every paused (ORANGE) server fully off."""
    workspace = get_workspace(ctx)
    _commit(ctx, workspace, workspace.strict_disable().results, strict=False)


@main.command("debug-precedence")
@click.argument("name")
@click.pass_context
def debug_precedence(ctx: click.Context, name: str) -> None:
    """Show every source that contributes to a server, and which one wins."""
    output: OutputHandler = ctx.obj["output"]
    workspace = get_workspace(ctx)
    trace = workspace.trace(name)

    if not trace.definition_facts and not trace.state_facts and not trace.runtime_facts:
        output.error(ValueError(f"Server '{name}' not found in any config file"))
        return

    if ctx.obj["json_mode"]:
        output.success(trace.to_dict())
        return

    click.secho(f"Precedence trace for {name}\n", bold=True)
    click.secho("Definition sources:", bold=True)
    for fact in trace.definition_facts:
        marker = click.style("* ", fg="green") if fact is trace.definition_winner else "  "
        click.echo(f"  {marker}[{fact.scope.value}:{fact.scope.priority}] {fact.source_file}")
    if not trace.definition_facts:
        click.echo("    (none: state facts without a definition are ignored)")

    click.secho("\nState sources:", bold=True)
    winners = (trace.state_winner, trace.plugin_winner)
    for fact in trace.state_facts:
        marker = click.style("* ", fg="green") if any(fact is w for w in winners) else "  "
        click.echo(f"  {marker}{fact.kind:<15} [{fact.scope.value}:{fact.scope.priority}] {fact.source_file}")
    for fact in trace.runtime_facts:
        click.echo(f"    {fact.kind:<15} [{fact.scope.value}] {fact.server_name} ({fact.source_file})")
    if not trace.state_facts and not trace.runtime_facts:
        click.echo("    (none: defaults to on)")

    if trace.resolved is not None:
        click.echo()
        click.echo(f"Resolved: {state_badge(trace.resolved)} (defined in {trace.resolved.scope.value} scope)")


@main.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Check every config file for JSON syntax errors."""
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)
    results = validate_sources(discover_sources(ctx.obj["cwd"], settings))
    invalid = [r for r in results if not r.valid]

    if ctx.obj["json_mode"]:
        output.success({"files": [r.to_dict() for r in results], "valid": not invalid})
    else:
        for r in results:
            if r.valid:
                click.secho("  ok   ", fg="green", nl=False)
                click.echo(str(r.path))
            else:
                location = f" (line {r.line}, column {r.column})" if r.line is not None else ""
                click.secho("  FAIL ", fg="red", nl=False)
                click.echo(f"{r.path}: {r.error}{location}")
        click.echo(f"\nChecked {len(results)} files, {len(invalid)} invalid.")

    if invalid:
        ctx.exit(1)


@main.command()
@click.pass_context
def audit(ctx: click.Context) -> None:
    """Check config health: syntax and misplaced control keys."""
    output: OutputHandler = ctx.obj["output"]
    report = run_audit(ctx.obj["cwd"], get_settings(ctx))

    if ctx.obj["json_mode"]:
        output.success(report.to_dict())
    elif not report.issues:
        click.secho("All configuration files look healthy.", fg="green")
    else:
        click.secho(f"Found {len(report.issues)} issue(s):\n", fg="red" if report.has_errors else "yellow")
        for issue in report.issues:
            color = "red" if issue.severity == "error" else "yellow"
            click.secho(f"  {issue.severity.upper():<8}", fg=color, nl=False)
            click.echo(str(issue.path))
            click.echo(f"           {issue.message}")
            if issue.suggestion:
                click.secho(f"           {issue.suggestion}", dim=True)
    if not ctx.obj["json_mode"]:
        click.echo(f"\nChecked {report.checked} configuration files")

    if report.has_errors:
        ctx.exit(1)


@main.command("restore-plugin")
@click.argument("plugin_key")
@click.pass_context
def restore_plugin_cmd(ctx: click.Context, plugin_key: str) -> None:
    """Remove a hard-disable (enabledPlugins[KEY] = false) so the plugin reappears."""
    output: OutputHandler = ctx.obj["output"]
    if not is_plugin_key(plugin_key):
        output.error(
            ValueError(f"Invalid plugin key: {plugin_key}"),
            help_text="Plugin keys look like pluginName@marketplace",
        )
        return

    results = restore_plugin(plugin_key, ctx.obj["cwd"], get_settings(ctx))
    failed = [r for r in results if not r.changed]

    if ctx.obj["json_mode"]:
        output.success({"plugin": plugin_key, "files": [r.to_dict() for r in results]})
    elif not results:
        click.echo(f"{plugin_key} is not hard-disabled in any settings file.")
    else:
        for r in results:
            if r.changed:
                click.secho(f"  Restored in {r.path}", fg="green")
                if r.backup:
                    click.secho(f"    backup: {r.backup}", dim=True)
            else:
                click.secho(f"  Failed for {r.path}: {r.error}", fg="red")

    if failed:
        ctx.exit(1)


@main.command("fix-config")
@click.option("--apply", "apply_fixes", is_flag=True, help="Write the fixes (default is a dry run)")
@click.pass_context
def fix_config_cmd(ctx: click.Context, apply_fixes: bool) -> None:
    """Repair misplaced control keys, false plugin entries and orphaned names."""
    output: OutputHandler = ctx.obj["output"]
    report = fix_config(ctx.obj["cwd"], get_settings(ctx), apply=apply_fixes)

    if ctx.obj["json_mode"]:
        output.success(report.to_dict())
    elif not report.findings.issues:
        click.secho("Nothing to fix.", fg="green")
    else:
        for issue in report.manual:
            click.secho("  MANUAL  ", fg="red", nl=False)
            click.echo(f"{issue.path}: {issue.message}")
        for issue in report.findings.fixable:
            click.secho("  FIX     ", fg="yellow", nl=False)
            click.echo(f"{issue.path}: {issue.message}")
        click.echo()
        if not apply_fixes and report.findings.fixable:
            click.echo("Dry run: re-run with --apply to write these fixes.")
        for r in report.files:
            if r.changed:
                click.secho(f"Fixed {r.path}", fg="green")
                if r.backup:
                    click.secho(f"  backup: {r.backup}", dim=True)
            else:
                click.secho(f"Failed for {r.path}: {r.error}", fg="red")

    if report.manual or report.failed:
        ctx.exit(1)


@main.command()
@click.pass_context
def compare(ctx: click.Context) -> None:
    """Compare resolved servers with what `claude mcp list` reports."""
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)
    workspace = get_workspace(ctx)

    result = probe_runtime_status(settings.probe_command, settings.probe_timeout)
    if result.error:
        output.error(
            RuntimeError(result.error),
            error_type="RuntimeProbeError",
            help_text="Is the claude CLI installed and on PATH?",
        )
        return

    comparison = compare_with_runtime(workspace.servers, result.listed)
    if ctx.obj["json_mode"]:
        output.success(comparison.to_dict())
        return

    sections = (
        ("Matching", comparison.matching, "green"),
        ("Only in Claude Code", comparison.only_in_claude, "yellow"),
        ("Only in config (expected but not listed)", comparison.only_in_config, "yellow"),
    )
    for title, names, color in sections:
        click.secho(f"{title} ({len(names)}):", bold=True)
        for name in names:
            click.secho(f"  {name}", fg=color)
    if comparison.in_sync:
        click.secho("\nConfig and Claude Code agree.", fg="green")


@main.command()
@click.option("--file", "file_path", type=click.Path(dir_okay=False), help="File to restore (defaults to ~/.claude.json)")
@click.option("--list", "list_only", is_flag=True, help="List available backups instead of restoring")
@click.pass_context
def rollback(ctx: click.Context, file_path: str | None, list_only: bool) -> None:
    """Restore a config file from its most recent backup."""
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)
    target = Path(file_path).expanduser() if file_path else settings.claude_json_path

    if list_only:
        backups = list_backups(target, settings.backups_path)
        if ctx.obj["json_mode"]:
            output.success({"file": str(target), "backups": [str(b) for b in backups]})
        elif not backups:
            click.echo(f"No backups found for {target}")
        else:
            for backup in backups:
                click.echo(str(backup))
        return

    try:
        restored = restore_from_backup(target, settings.backups_path)
    except FileNotFoundError as e:
        output.error(e, help_text="Backups are created automatically whenever mcps saves a file.")
        return
    except ValueError as e:
        output.error(e, error_type="ConfigParseError", help_text="The backup file is not valid JSON.")
        return

    output.success(
        {"file": str(target), "restoredFrom": str(restored)},
        human_message=f"Restored {target} from {restored}",
    )


@main.command("export-disabled")
@click.option("--csv", "as_csv", is_flag=True, help="Output CSV")
@click.pass_context
def export_disabled(ctx: click.Context, as_csv: bool) -> None:
    """List disabled (red) and paused (orange) servers."""
    output: OutputHandler = ctx.obj["output"]
    workspace = get_workspace(ctx)
    servers = [s for s in workspace.servers if s.display_state != DisplayState.GREEN]

    if as_csv:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["name", "state", "scope", "sourceType", "file"])
        for s in servers:
            writer.writerow([s.name, s.display_state.value, s.scope.value, s.source_type.value, s.definition_file])
        click.echo(buffer.getvalue(), nl=False)
        return

    output.servers(servers)


@main.command("context-report")
@click.pass_context
def context_report(ctx: click.Context) -> None:
    """Show where configuration is read from and what it resolves to."""
    output: OutputHandler = ctx.obj["output"]
    workspace = get_workspace(ctx)
    counts = {state.value: 0 for state in DisplayState}
    for s in workspace.servers:
        counts[s.display_state.value] += 1
    enable_all = [f for f in workspace.extraction.facts if f.kind == "enable-all-project"]

    report = {
        "platform": detect_platform(),
        "cwd": str(workspace.cwd),
        "projectKey": normalise_project_path(workspace.cwd),
        "sessionWarning": get_session_warning(),
        "sources": [s.to_dict() for s in workspace.extraction.sources],
        "errors": [e.to_dict() for e in workspace.extraction.errors],
        "policy": workspace.policy.to_dict() if workspace.policy else None,
        "enableAllProjectMcpServers": [str(f.source_file) for f in enable_all],
        "servers": len(workspace.servers),
        "states": counts,
    }

    if ctx.obj["json_mode"]:
        output.success(report)
        return

    click.secho("Context", bold=True)
    click.echo(f"  Platform:    {report['platform']}")
    click.echo(f"  Directory:   {report['cwd']}")
    if report["sessionWarning"]:
        click.secho(f"  Session:     {report['sessionWarning']}", fg="yellow")
    click.secho("\nSources", bold=True)
    for source in workspace.extraction.sources:
        mark = click.style("found  ", fg="green") if source.exists else click.style("missing", dim=True)
        click.echo(f"  {mark} {source.scope.value:<10} {source.kind.value:<17} {source.path}")
    if workspace.policy is not None:
        allowed = "none" if workspace.policy.allowed is None else str(len(workspace.policy.allowed))
        click.secho("\nEnterprise policy", bold=True)
        click.echo(f"  Denied entries:  {len(workspace.policy.denied)}")
        click.echo(f"  Allowed entries: {allowed}")
    click.secho("\nServers", bold=True)
    click.echo(
        f"  {report['servers']} total: {counts['green']} green, "
        f"{counts['orange']} orange, {counts['red']} red"
    )


@main.command("list-available")
@click.option("--mcp-only", is_flag=True, help="Only plugins that provide MCP servers")
@click.pass_context
def list_available(ctx: click.Context, mcp_only: bool) -> None:
    """List marketplace plugins that are not installed."""
    output: OutputHandler = ctx.obj["output"]
    plugins = list_available_plugins(get_settings(ctx), mcp_only=mcp_only)

    if ctx.obj["json_mode"]:
        output.success([p.to_dict() for p in plugins])
        return

    if not plugins:
        click.secho("All marketplace plugins are already installed.", fg="green")
        return

    click.secho("Available plugins not installed:\n", bold=True)
    current = None
    for plugin in plugins:
        if plugin.marketplace != current:
            current = plugin.marketplace
            click.secho(f"  {current}:", fg="cyan")
        badge = click.style(" [MCP]", fg="green") if plugin.has_servers else ""
        click.echo(f"    - {plugin.name}{badge}")


if __name__ == "__main__":
    main()
