"""Dual precedence resolution.

Where a server is *defined* and whether it is *on* are answered independently:
a server can be defined in one file and controlled from another. Both
questions use the scope ladder enterprise > local > project > user.

Tie-break contract: when two facts for the same key have equal scope priority,
the one that comes later in the fact list wins. Fact order is catalog order,
which is fixed (see ``catalog.discover_sources``).
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from .access import check_server_access
from .identity import get_plugin_key, token_fragment
from .models import (
    Definition,
    Disable,
    DisablePlugin,
    Enable,
    EnableAllProject,
    EnterprisePolicy,
    Fact,
    RuntimeDisable,
    RuntimeStatus,
    Scope,
    Server,
    ServerFlags,
    ServerState,
    SourceType,
    fact_to_dict,
)

logger = logging.getLogger(__name__)

# Equal-priority facts: the later one replaces the earlier one
DEFINITION_TIE_BREAK = "last"


def _wins(new: Scope, current: Scope | None) -> bool:
    return current is None or new.priority >= current.priority


@dataclass
class _Accumulator:
    """The precedence maps built from one pass over the facts."""

    definitions: dict[str, Definition] = field(default_factory=dict)
    states: dict[str, Enable | Disable] = field(default_factory=dict)
    plugins: dict[str, Enable | DisablePlugin] = field(default_factory=dict)
    runtime_tokens: set[str] = field(default_factory=set)
    enable_all: list[EnableAllProject] = field(default_factory=list)

    def add(self, fact: Fact) -> None:
        if isinstance(fact, Definition):
            current = self.definitions.get(fact.server_name)
            if _wins(fact.scope, current.scope if current else None):
                self.definitions[fact.server_name] = fact
        elif isinstance(fact, Enable) and fact.source_type == SourceType.PLUGIN:
            self._set_plugin(fact)
        elif isinstance(fact, DisablePlugin):
            self._set_plugin(fact)
        elif isinstance(fact, (Enable, Disable)):
            current_state = self.states.get(fact.server_name)
            if _wins(fact.scope, current_state.scope if current_state else None):
                self.states[fact.server_name] = fact
        elif isinstance(fact, RuntimeDisable):
            self.runtime_tokens.add(fact.server_name)
            fragment = token_fragment(fact.server_name)
            if fragment is not None:
                self.runtime_tokens.add(fragment)
        elif isinstance(fact, EnableAllProject):
            self.enable_all.append(fact)
        else:
            raise TypeError(f"Unknown fact type: {type(fact).__name__}")

    def _set_plugin(self, fact: Enable | DisablePlugin) -> None:
        current = self.plugins.get(fact.server_name)
        if _wins(fact.scope, current.scope if current else None):
            self.plugins[fact.server_name] = fact

    def is_runtime_disabled(self, name: str) -> bool:
        if name in self.runtime_tokens:
            return True
        # plugin:toolkit:ide is stored as ide:toolkit, matching ide:toolkit@market
        return "@" in name and name.split("@", 1)[0] in self.runtime_tokens

    def merge(self, definition: Definition, policy: EnterprisePolicy | None) -> Server:
        name = definition.server_name

        state = ServerState.ON
        if isinstance(self.states.get(name), Disable):
            state = ServerState.OFF

        if definition.source_type == SourceType.PLUGIN:
            key = get_plugin_key(name)
            if key is not None and isinstance(self.plugins.get(key), DisablePlugin):
                state = ServerState.OFF

        paused = self.is_runtime_disabled(name)
        # disabledMcpServers is the only off switch for direct servers
        if definition.source_type.is_direct and paused:
            state = ServerState.OFF

        runtime = RuntimeStatus.STOPPED if state == ServerState.ON and paused else RuntimeStatus.UNKNOWN

        server = Server(
            name=name,
            state=state,
            scope=definition.scope,
            definition_file=definition.source_file,
            source_type=definition.source_type,
            flags=ServerFlags(enterprise=definition.scope == Scope.ENTERPRISE),
            runtime=runtime,
            definition=definition.definition,
        )
        if policy is not None:
            access = check_server_access(server, policy)
            server.flags.blocked = access.blocked
            server.flags.restricted = access.restricted
        return server


def _accumulate(facts: list[Fact]) -> _Accumulator:
    acc = _Accumulator()
    for fact in facts:
        acc.add(fact)
    return acc


def resolve_servers(facts: list[Fact], policy: EnterprisePolicy | None = None) -> list[Server]:
    """Merge facts into exactly one server per defined name, sorted by name.

    Args:
        facts: Facts in extraction order
        policy: Enterprise allow/deny rules used to set blocked/restricted flags

    Returns:
        Resolved servers. Names that only appear in state facts are dropped.
    """
    acc = _accumulate(facts)
    servers = [acc.merge(definition, policy) for definition in acc.definitions.values()]
    servers.sort(key=lambda s: s.name)
    logger.debug(f"Resolved {len(servers)} servers from {len(facts)} facts")
    return servers


@dataclass
class PrecedenceTrace:
    """Every fact that touches one server, and which of them won."""

    name: str
    definition_facts: list[Definition] = field(default_factory=list)
    state_facts: list[Fact] = field(default_factory=list)
    runtime_facts: list[RuntimeDisable] = field(default_factory=list)
    definition_winner: Definition | None = None
    state_winner: Enable | Disable | None = None
    plugin_winner: Enable | DisablePlugin | None = None
    enable_all_project: list[EnableAllProject] = field(default_factory=list)
    resolved: Server | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "definitionSources": [fact_to_dict(f) for f in self.definition_facts],
            "stateSources": [fact_to_dict(f) for f in self.state_facts],
            "runtimeDisables": [fact_to_dict(f) for f in self.runtime_facts],
            "enableAllProject": [fact_to_dict(f) for f in self.enable_all_project],
            "resolved": {
                "definition": fact_to_dict(self.definition_winner) if self.definition_winner else None,
                "state": fact_to_dict(self.state_winner) if self.state_winner else None,
                "plugin": fact_to_dict(self.plugin_winner) if self.plugin_winner else None,
                "server": self.resolved.to_dict() if self.resolved else None,
            },
        }


def trace_precedence(
    name: str,
    facts: list[Fact],
    policy: EnterprisePolicy | None = None,
) -> PrecedenceTrace:
    """Explain how ``name`` resolves.

    Winners are read from the same accumulator ``resolve_servers`` uses, so
    the trace always agrees with the resolved server.
    """
    acc = _accumulate(facts)
    plugin_key = get_plugin_key(name)
    trace = PrecedenceTrace(name=name, enable_all_project=list(acc.enable_all))

    for fact in facts:
        if isinstance(fact, Definition):
            if fact.server_name == name:
                trace.definition_facts.append(fact)
        elif isinstance(fact, DisablePlugin) or (isinstance(fact, Enable) and fact.source_type == SourceType.PLUGIN):
            if fact.server_name == plugin_key:
                trace.state_facts.append(fact)
        elif isinstance(fact, (Enable, Disable)):
            if fact.server_name == name:
                trace.state_facts.append(fact)
        elif isinstance(fact, RuntimeDisable):
            probe = _Accumulator()
            probe.add(fact)
            if probe.is_runtime_disabled(name):
                trace.runtime_facts.append(fact)

    trace.definition_winner = acc.definitions.get(name)
    trace.state_winner = acc.states.get(name)
    if plugin_key is not None:
        trace.plugin_winner = acc.plugins.get(plugin_key)
    if trace.definition_winner is not None:
        trace.resolved = acc.merge(trace.definition_winner, policy)
    return trace
