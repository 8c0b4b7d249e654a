"""Live status probe via the Claude CLI (`claude mcp list`)."""

import logging
import re
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from .identity import to_disable_token
from .models import DisplayState, RuntimeStatus, Server, ServerState

logger = logging.getLogger(__name__)

_STATUS_WORDS = "connected|disconnected|error|running|stopped"
_COLON_LINE = re.compile(rf"^([A-Za-z0-9_-]+):\s*({_STATUS_WORDS})", re.IGNORECASE)
_PAREN_LINE = re.compile(rf"^([A-Za-z0-9_-]+)\s*\(({_STATUS_WORDS})\)", re.IGNORECASE)
# `claude mcp list` lines: "name: command - status", plugins as plugin:name:key
_LISTED_LINE = re.compile(r"^((?:plugin:[^:\s]+:[^:\s]+)|[A-Za-z0-9_.-]+):\s")

_STATUS_MAP = {
    "connected": RuntimeStatus.RUNNING,
    "running": RuntimeStatus.RUNNING,
    "disconnected": RuntimeStatus.STOPPED,
    "stopped": RuntimeStatus.STOPPED,
    "error": RuntimeStatus.STOPPED,
}


@dataclass
class ProbeResult:
    """Name -> status map, or an empty map with the reason it could not be built."""

    statuses: dict[str, RuntimeStatus] = field(default_factory=dict)
    listed: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# Injected into the loader so tests never spawn processes
Probe = Callable[[], ProbeResult]


def parse_status_output(output: str) -> dict[str, RuntimeStatus]:
    """Parse ``name: status`` and ``name (status)`` lines; other lines are ignored."""
    statuses: dict[str, RuntimeStatus] = {}
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        match = _COLON_LINE.match(line) or _PAREN_LINE.match(line)
        if match:
            statuses[match.group(1)] = _STATUS_MAP[match.group(2).lower()]
    return statuses


def parse_listed_servers(output: str) -> list[str]:
    """Names of every server line in `claude mcp list` output, in order."""
    listed: list[str] = []
    for line in output.splitlines():
        match = _LISTED_LINE.match(line.strip())
        if match and match.group(1) not in listed:
            listed.append(match.group(1))
    return listed


def probe_runtime_status(command: Sequence[str], timeout: float) -> ProbeResult:
    """Run the status command and parse its output. Never raises."""
    try:
        completed = subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError:
        return ProbeResult(error=f"{command[0]} not found")
    except subprocess.TimeoutExpired:
        return ProbeResult(error=f"status probe timed out after {timeout}s")
    except OSError as e:
        return ProbeResult(error=f"status probe failed: {e}")

    if completed.returncode != 0:
        message = completed.stderr.strip() or f"exit status {completed.returncode}"
        return ProbeResult(error=message)

    statuses = parse_status_output(completed.stdout)
    logger.debug(f"Runtime probe reported {len(statuses)} servers")
    return ProbeResult(statuses=statuses, listed=parse_listed_servers(completed.stdout))


def apply_runtime_status(servers: list[Server], statuses: dict[str, RuntimeStatus]) -> list[Server]:
    """Overlay probed runtime status onto enabled servers.

    Servers that are off, or that the probe did not report, keep their status.
    """
    result = []
    for server in servers:
        status = statuses.get(server.name)
        if status is not None and server.state == ServerState.ON:
            server = replace(server, runtime=status)
        result.append(server)
    return result


def runtime_name(server: Server) -> str:
    """The name Claude Code lists a server under."""
    return to_disable_token(server.name)


@dataclass
class RuntimeComparison:
    """Resolved servers that should be running versus what Claude Code lists."""

    matching: list[str] = field(default_factory=list)
    only_in_claude: list[str] = field(default_factory=list)
    only_in_config: list[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not self.only_in_claude and not self.only_in_config

    def to_dict(self) -> dict[str, Any]:
        return {
            "matching": self.matching,
            "onlyInClaude": self.only_in_claude,
            "onlyInConfig": self.only_in_config,
            "inSync": self.in_sync,
        }


def compare_with_runtime(servers: list[Server], listed: list[str]) -> RuntimeComparison:
    """Diff GREEN servers against the names Claude Code reports.

    Paused and disabled servers are expected to be absent from the listing.
    """
    expected = [runtime_name(s) for s in servers if s.display_state == DisplayState.GREEN]
    comparison = RuntimeComparison()
    for name in listed:
        if name in expected:
            comparison.matching.append(name)
        else:
            comparison.only_in_claude.append(name)
    comparison.only_in_config = [name for name in expected if name not in listed]
    return comparison
