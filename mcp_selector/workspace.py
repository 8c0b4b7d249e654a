"""Caller-owned state for one load/toggle/save cycle."""

import logging
from collections.abc import Callable
from pathlib import Path

from .access import load_enterprise_policy
from .config import Settings
from .extract import Extraction, extract_facts
from .models import EnterprisePolicy, RuntimeStatus, Server, ToggleResult
from .parser import ConfigParseError
from .resolver import PrecedenceTrace, resolve_servers, trace_precedence
from .runtime import Probe, ProbeResult, apply_runtime_status
from .state import ChangeSummary, SaveResult, get_change_summary, save_server_states
from .toggle import (
    BulkResult,
    apply_strict_disable,
    disable_all_servers,
    disable_server,
    enable_all_servers,
    enable_server,
    pause_server,
    toggle_server,
)

logger = logging.getLogger(__name__)


class Workspace:
    """Servers resolved for one project directory, plus a pristine copy.

    Toggle methods change ``servers`` in memory only; nothing reaches disk
    until ``save``. A workspace is never shared between invocations.
    """

    def __init__(self, cwd: Path, settings: Settings):
        self.cwd = cwd
        self.settings = settings
        self.extraction = Extraction()
        self.policy: EnterprisePolicy | None = None
        self.servers: list[Server] = []
        self.original: list[Server] = []
        self.live_status: dict[str, RuntimeStatus] = {}

    @classmethod
    def load(cls, cwd: Path, settings: Settings) -> "Workspace":
        workspace = cls(cwd, settings)
        workspace.reload()
        return workspace

    def reload(self) -> None:
        """Re-read every source and resolve from scratch."""
        self.extraction = extract_facts(self.cwd, self.settings)
        try:
            self.policy = load_enterprise_policy(self.settings.enterprise_settings_path)
        except ConfigParseError as e:
            # Already reported as a malformed source by the extractor
            logger.debug(f"Ignoring enterprise policy: {e}")
            self.policy = None
        self.servers = resolve_servers(self.extraction.facts, self.policy)
        self.original = list(self.servers)
        self.live_status = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, name: str) -> Server | None:
        return next((s for s in self.servers if s.name == name), None)

    def trace(self, name: str) -> PrecedenceTrace:
        return trace_precedence(name, self.extraction.facts, self.policy)

    @property
    def dirty(self) -> bool:
        return self.changes().has_changes

    def changes(self) -> ChangeSummary:
        return get_change_summary(self.original, self.servers)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _apply(self, name: str, operation: Callable[[Server], ToggleResult]) -> ToggleResult:
        for index, server in enumerate(self.servers):
            if server.name != name:
                continue
            result = operation(server)
            if result.success and result.server is not None:
                self.servers[index] = result.server
            return result
        return ToggleResult(success=False, reason=f"Server not found: {name}")

    def enable(self, name: str) -> ToggleResult:
        return self._apply(name, enable_server)

    def disable(self, name: str) -> ToggleResult:
        return self._apply(name, disable_server)

    def pause(self, name: str) -> ToggleResult:
        return self._apply(name, pause_server)

    def toggle(self, name: str) -> ToggleResult:
        return self._apply(name, toggle_server)

    def enable_all(self) -> BulkResult:
        bulk = enable_all_servers(self.servers)
        self.servers = bulk.servers
        return bulk

    def disable_all(self) -> BulkResult:
        bulk = disable_all_servers(self.servers)
        self.servers = bulk.servers
        return bulk

    def strict_disable(self) -> BulkResult:
        bulk = apply_strict_disable(self.servers)
        self.servers = bulk.servers
        return bulk

    def apply_probe(self, probe: Probe) -> ProbeResult:
        """Record live status for display. ``servers``, and so ``save``, are unaffected."""
        result = probe()
        if result.error:
            logger.debug(f"Runtime probe unavailable: {result.error}")
        self.live_status = dict(result.statuses)
        return result

    @property
    def display_servers(self) -> list[Server]:
        """``servers`` with the last probe result overlaid."""
        return apply_runtime_status(self.servers, self.live_status)

    def save(self) -> SaveResult:
        """Write the current servers and make them the new baseline."""
        result = save_server_states(self.servers, self.cwd, self.settings)
        if result.ok:
            self.original = list(self.servers)
        return result
