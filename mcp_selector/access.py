"""Enterprise access control.

Rules, in order:

1. The denylist is absolute: a match blocks the server in every scope,
   enterprise included.
2. No allowlist configured: allowed.
3. Enterprise-scope servers bypass the allowlist.
4. An empty allowlist is lockdown: every other server is restricted.
5. Otherwise the server must match some allowlist entry or it is restricted.

A restriction entry matches by exactly one mode, tried in this order: server
name, exact command array, URL wildcard pattern.
"""

import logging
import re
from dataclasses import dataclass, replace
from pathlib import Path

from .models import EnterprisePolicy, Scope, Server, ServerFlags, ServerRestriction
from .parser import read_json_file

logger = logging.getLogger(__name__)


@dataclass
class AccessResult:
    allowed: bool
    blocked: bool = False
    restricted: bool = False
    reason: str | None = None


def wildcard_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a ``*`` wildcard pattern into a fully anchored regex.

    ``*`` matches any run of characters; everything else is literal.
    """
    body = ".*".join(re.escape(part) for part in pattern.split("*"))
    # \Z rather than $, which also matches before a trailing newline
    return re.compile(rf"^{body}\Z")


def match_by_name(server: Server, name: str) -> bool:
    return server.name == name


def match_by_command(server: Server, command: tuple[str, ...] | list[str]) -> bool:
    """Exact, ordered, equal-length comparison against ``[command, *args]``."""
    if server.definition is None:
        return False
    actual = server.definition.command_line
    if not actual:
        return False
    return list(actual) == list(command)


def match_by_url(server: Server, pattern: str) -> bool:
    if server.definition is None or not server.definition.url:
        return False
    return wildcard_to_regex(pattern).match(server.definition.url) is not None


def match_restriction(server: Server, restriction: ServerRestriction) -> bool:
    if restriction.server_name is not None:
        return match_by_name(server, restriction.server_name)
    if restriction.server_command is not None:
        return match_by_command(server, restriction.server_command)
    if restriction.server_url is not None:
        return match_by_url(server, restriction.server_url)
    return False


def check_server_access(server: Server, policy: EnterprisePolicy) -> AccessResult:
    """Decide whether a server is allowed under an enterprise policy."""
    for restriction in policy.denied:
        if match_restriction(server, restriction):
            return AccessResult(
                allowed=False,
                blocked=True,
                reason="Server is blocked by enterprise denylist",
            )

    if policy.allowed is None:
        return AccessResult(allowed=True)

    if server.scope == Scope.ENTERPRISE:
        return AccessResult(allowed=True)

    if not policy.allowed:
        return AccessResult(
            allowed=False,
            restricted=True,
            reason="Server is not in enterprise allowlist (lockdown mode)",
        )

    if any(match_restriction(server, r) for r in policy.allowed):
        return AccessResult(allowed=True)

    return AccessResult(
        allowed=False,
        restricted=True,
        reason="Server is not in enterprise allowlist",
    )


def apply_policy(servers: list[Server], policy: EnterprisePolicy) -> list[Server]:
    """Return copies of ``servers`` with enterprise/blocked/restricted flags recomputed."""
    result = []
    for server in servers:
        access = check_server_access(server, policy)
        flags = ServerFlags(
            enterprise=server.scope == Scope.ENTERPRISE,
            blocked=access.blocked,
            restricted=access.restricted,
        )
        result.append(replace(server, flags=flags))
    return result


def _restrictions(value: object, path: Path, key: str) -> list[ServerRestriction]:
    if not isinstance(value, list):
        logger.warning(f"{path}: {key} must be a list, ignoring")
        return []
    restrictions = []
    for entry in value:
        restriction = ServerRestriction.from_value(entry)
        if restriction is None:
            logger.warning(f"{path}: ignoring unrecognised {key} entry {entry!r}")
            continue
        restrictions.append(restriction)
    return restrictions


def load_enterprise_policy(path: Path | None) -> EnterprisePolicy | None:
    """Load allow/deny rules from ``managed-settings.json``.

    Returns None when the file is absent or sets neither list.

    Raises:
        ConfigParseError: If the file is not valid JSON
    """
    if path is None:
        return None
    data = read_json_file(path)
    if data is None:
        return None
    raw_denied = data.get("deniedMcpServers")
    raw_allowed = data.get("allowedMcpServers")
    if raw_denied is None and raw_allowed is None:
        return None

    denied = _restrictions(raw_denied, path, "deniedMcpServers") if raw_denied is not None else []
    allowed = _restrictions(raw_allowed, path, "allowedMcpServers") if raw_allowed is not None else None
    return EnterprisePolicy(denied=denied, allowed=allowed)
