"""Three-state toggle machine.

RED (off) -> GREEN (on) -> ORANGE (on, paused) -> RED

Guards, per operation:

    operation   enterprise  blocked  restricted
    toggle      deny        deny     deny while off
    enable      deny        deny     deny
    disable     deny        allow    allow
    pause       deny        deny     deny while off

A blocked or restricted server can always be switched off but never switched
(back) on. Nothing here mutates its input or raises on a guard failure.
"""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from .models import DisplayState, RuntimeStatus, Server, ServerState, ToggleResult

REASON_ENTERPRISE = "Cannot modify enterprise-managed server"
REASON_BLOCKED = "Server is blocked by enterprise policy"
REASON_RESTRICTED = "Server is not in enterprise allowlist"

_CYCLE = {
    DisplayState.RED: DisplayState.GREEN,
    DisplayState.GREEN: DisplayState.ORANGE,
    DisplayState.ORANGE: DisplayState.RED,
}

_TARGETS = {
    DisplayState.RED: (ServerState.OFF, RuntimeStatus.UNKNOWN),
    DisplayState.GREEN: (ServerState.ON, RuntimeStatus.UNKNOWN),
    DisplayState.ORANGE: (ServerState.ON, RuntimeStatus.STOPPED),
}


def get_display_state(server: Server) -> DisplayState:
    return server.display_state


def get_next_display_state(current: DisplayState) -> DisplayState:
    return _CYCLE[current]


def apply_toggle(server: Server, new_state: DisplayState) -> Server:
    """Return a copy of ``server`` in ``new_state``. No guards are checked."""
    state, runtime = _TARGETS[new_state]
    return replace(server, state=state, runtime=runtime)


def _succeed(server: Server, new_state: DisplayState) -> ToggleResult:
    return ToggleResult(success=True, new_state=new_state, server=apply_toggle(server, new_state))


def _fail(reason: str) -> ToggleResult:
    return ToggleResult(success=False, reason=reason)


def enable_server(server: Server) -> ToggleResult:
    """Switch a server to GREEN."""
    if server.flags.enterprise:
        return _fail(REASON_ENTERPRISE)
    if server.flags.blocked:
        return _fail(REASON_BLOCKED)
    if server.flags.restricted:
        return _fail(REASON_RESTRICTED)
    return _succeed(server, DisplayState.GREEN)


def disable_server(server: Server) -> ToggleResult:
    """Switch a server to RED. Allowed for blocked and restricted servers."""
    if server.flags.enterprise:
        return _fail(REASON_ENTERPRISE)
    return _succeed(server, DisplayState.RED)


def pause_server(server: Server) -> ToggleResult:
    """Switch a server to ORANGE: enabled in config, stopped at runtime."""
    if server.flags.enterprise:
        return _fail(REASON_ENTERPRISE)
    if server.flags.blocked:
        return _fail(REASON_BLOCKED)
    if server.flags.restricted and server.state == ServerState.OFF:
        return _fail(REASON_RESTRICTED)
    return _succeed(server, DisplayState.ORANGE)


# Each cycle step is validated as the equivalent targeted operation
_STEP_OPERATIONS: dict[DisplayState, Callable[[Server], ToggleResult]] = {
    DisplayState.GREEN: enable_server,
    DisplayState.ORANGE: pause_server,
    DisplayState.RED: disable_server,
}


def toggle_server(server: Server) -> ToggleResult:
    """Advance a server one step through the cycle."""
    if server.flags.enterprise:
        return _fail(REASON_ENTERPRISE)
    if server.flags.blocked:
        return _fail(REASON_BLOCKED)
    if server.flags.restricted and server.state == ServerState.OFF:
        return _fail(REASON_RESTRICTED)

    next_state = get_next_display_state(get_display_state(server))
    return _STEP_OPERATIONS[next_state](server)


@dataclass
class BulkResult:
    """Servers after a bulk operation plus the per-server outcome."""

    servers: list[Server]
    results: dict[str, ToggleResult] = field(default_factory=dict)

    @property
    def changed(self) -> list[str]:
        return [name for name, r in self.results.items() if r.success]

    @property
    def rejected(self) -> dict[str, str]:
        return {name: r.reason or "" for name, r in self.results.items() if not r.success}

    def to_dict(self) -> dict[str, Any]:
        return {name: r.to_dict() for name, r in self.results.items()}


def _apply_all(servers: list[Server], operation: Callable[[Server], ToggleResult]) -> BulkResult:
    bulk = BulkResult(servers=[])
    for server in servers:
        result = operation(server)
        bulk.results[server.name] = result
        bulk.servers.append(result.server if result.success and result.server else server)
    return bulk


def enable_all_servers(servers: list[Server]) -> BulkResult:
    """Enable every server whose guard allows it; the rest are left unchanged."""
    return _apply_all(servers, enable_server)


def disable_all_servers(servers: list[Server]) -> BulkResult:
    """Disable every server whose guard allows it; the rest are left unchanged."""
    return _apply_all(servers, disable_server)


def apply_strict_disable(servers: list[Server]) -> BulkResult:
    """Turn every paused (ORANGE) server fully off.

    Each paused server goes through the disable guard, so enterprise servers
    are rejected and stay paused. Only paused servers appear in the results.
    """
    bulk = BulkResult(servers=[])
    for server in servers:
        if get_display_state(server) != DisplayState.ORANGE:
            bulk.servers.append(server)
            continue
        result = disable_server(server)
        bulk.results[server.name] = result
        bulk.servers.append(result.server if result.success and result.server else server)
    return bulk
