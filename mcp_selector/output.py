"""Output formatting for human-readable and JSON modes."""

import json
import sys
import traceback
from typing import Any

import click

from .models import DisplayState, Server

STATE_COLORS = {
    DisplayState.RED: "red",
    DisplayState.GREEN: "green",
    DisplayState.ORANGE: "yellow",
}

STATE_SYMBOLS = {
    DisplayState.RED: "●",
    DisplayState.GREEN: "●",
    DisplayState.ORANGE: "◐",
}


def format_json(data: Any, success: bool = True) -> str:
    """Wrap data in the success envelope (error dicts are passed through)."""
    output = {"success": True, "data": data} if success else data
    return json.dumps(output, indent=2, default=str)


def format_error_json(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
) -> str:
    return json.dumps(
        {
            "success": False,
            "error": {
                "type": error_type or type(error).__name__,
                "message": str(error),
                "traceback": traceback.format_exc(),
                "help": help_text or "",
            },
        },
        indent=2,
    )


def state_badge(server: Server) -> str:
    """Coloured symbol plus state name, e.g. a green dot and ``green``."""
    display = server.display_state
    return click.style(f"{STATE_SYMBOLS[display]} {display.value}", fg=STATE_COLORS[display])


def flag_labels(server: Server) -> str:
    labels = [
        name
        for name, on in (
            ("enterprise", server.flags.enterprise),
            ("blocked", server.flags.blocked),
            ("restricted", server.flags.restricted),
        )
        if on
    ]
    return ",".join(labels)


class OutputHandler:
    """Handles output formatting based on mode (JSON or human)."""

    def __init__(self, json_mode: bool = False):
        self.json_mode = json_mode

    def success(self, data: Any, human_message: str | None = None) -> None:
        if self.json_mode:
            click.echo(format_json(data))
        elif human_message is not None:
            click.echo(human_message)
        else:
            click.echo(json.dumps(data, indent=2, default=str))

    def error(
        self,
        error: Exception,
        error_type: str | None = None,
        help_text: str | None = None,
        data: Any = None,
    ) -> None:
        """Report an error and exit with status 1."""
        if self.json_mode:
            if data is not None:
                click.echo(json.dumps({"success": False, "error": str(error), "data": data}, indent=2, default=str))
            else:
                click.echo(format_error_json(error, error_type, help_text))
        else:
            click.secho(f"Error: {error}", fg="red", err=True)
            if help_text:
                click.echo(f"\n{help_text}", err=True)
        sys.exit(1)

    def warning(self, message: str) -> None:
        """Human-mode warning on stderr; JSON output stays clean."""
        if not self.json_mode:
            click.secho(f"Warning: {message}", fg="yellow", err=True)

    def table(self, headers: list[str], rows: list[list[str]]) -> None:
        """Output a table (human mode only, JSON mode outputs raw data)."""
        if self.json_mode:
            click.echo(format_json([dict(zip(headers, row)) for row in rows]))
            return

        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(click.unstyle(str(cell))))

        header_line = "  ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
        click.secho(header_line, bold=True)
        click.echo("-" * len(header_line))
        for row in rows:
            cells = []
            for i, cell in enumerate(row):
                text = str(cell)
                cells.append(text + " " * (widths[i] - len(click.unstyle(text))))
            click.echo("  ".join(cells).rstrip())

    def servers(self, servers: list[Server]) -> None:
        """Resolved servers: a table in human mode, full records in JSON mode."""
        if self.json_mode:
            click.echo(format_json([s.to_dict() for s in servers]))
            return
        if not servers:
            click.echo("No MCP servers found")
            return
        rows = [
            [state_badge(s), s.name, s.scope.value, s.source_type.value, flag_labels(s)]
            for s in servers
        ]
        self.table(["STATE", "NAME", "SCOPE", "SOURCE", "FLAGS"], rows)
