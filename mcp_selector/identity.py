"""Conversions between the four server identity formats.

- Plain name: ``fetch`` (mcpjson and direct servers)
- Plugin server name: ``serverKey:pluginName@marketplace``
- Plugin key (``enabledPlugins``): ``pluginName@marketplace``
- Disable token (``disabledMcpServers``): ``plugin:pluginName:serverKey``

Plugin names are validated strictly: exactly one ``:`` followed by exactly one
``@``, with no empty parts. Anything else is treated as a plain name.
"""

from typing import NamedTuple

DISABLE_TOKEN_PREFIX = "plugin:"


class PluginServerName(NamedTuple):
    server_key: str
    plugin_name: str
    marketplace: str


class DisableToken(NamedTuple):
    plugin_name: str
    server_key: str


def parse_plugin_server_name(name: str) -> PluginServerName | None:
    """Split ``serverKey:pluginName@marketplace`` into its parts, or None."""
    if name.count(":") != 1 or name.count("@") != 1:
        return None
    colon = name.index(":")
    at = name.index("@")
    if at < colon:
        return None
    server_key = name[:colon]
    plugin_name = name[colon + 1:at]
    marketplace = name[at + 1:]
    if not server_key or not plugin_name or not marketplace:
        return None
    return PluginServerName(server_key, plugin_name, marketplace)


def is_plugin_server(name: str) -> bool:
    return parse_plugin_server_name(name) is not None


def is_plugin_key(key: str) -> bool:
    """Check for ``pluginName@marketplace`` with both parts non-empty."""
    if ":" in key or key.count("@") != 1:
        return False
    plugin_name, _, marketplace = key.partition("@")
    return bool(plugin_name) and bool(marketplace)


def make_plugin_key(plugin_name: str, marketplace: str) -> str:
    return f"{plugin_name}@{marketplace}"


def make_plugin_server_name(server_key: str, plugin_name: str, marketplace: str) -> str:
    return f"{server_key}:{plugin_name}@{marketplace}"


def get_plugin_key(name: str) -> str | None:
    """``ide:toolkit@market`` -> ``toolkit@market``; None for non-plugin names."""
    parsed = parse_plugin_server_name(name)
    if parsed is None:
        return None
    return make_plugin_key(parsed.plugin_name, parsed.marketplace)


def get_plugin_name(name: str) -> str | None:
    parsed = parse_plugin_server_name(name)
    return parsed.plugin_name if parsed else None


def get_server_key(name: str) -> str:
    """Server key of a plugin server name, or the name itself."""
    parsed = parse_plugin_server_name(name)
    return parsed.server_key if parsed else name


def to_disable_token(name: str) -> str:
    """Convert a server name to the form written into ``disabledMcpServers``.

    ``ide:toolkit@market`` becomes ``plugin:toolkit:ide``. A root-level plugin
    server ``ide@market`` (no separate plugin name) becomes ``plugin:ide:ide``.
    Plain names are returned unchanged.
    """
    parsed = parse_plugin_server_name(name)
    if parsed is not None:
        return f"{DISABLE_TOKEN_PREFIX}{parsed.plugin_name}:{parsed.server_key}"
    if is_plugin_key(name):
        root = name.partition("@")[0]
        return f"{DISABLE_TOKEN_PREFIX}{root}:{root}"
    return name


def parse_disable_token(token: str) -> DisableToken | None:
    """Parse ``plugin:pluginName:serverKey``; None for any other shape."""
    if not token.startswith(DISABLE_TOKEN_PREFIX):
        return None
    parts = token.split(":")
    if len(parts) != 3 or not parts[1] or not parts[2]:
        return None
    return DisableToken(plugin_name=parts[1], server_key=parts[2])


def token_fragment(token: str) -> str | None:
    """``plugin:toolkit:ide`` -> ``ide:toolkit``, the part before ``@`` of a full name."""
    parsed = parse_disable_token(token)
    if parsed is None:
        return None
    return f"{parsed.server_key}:{parsed.plugin_name}"


def matches_disable_token(name: str, token: str) -> bool:
    """Check whether a disabledMcpServers token refers to this server."""
    if name == token:
        return True
    fragment = token_fragment(token)
    if fragment is None or "@" not in name:
        return False
    return name.split("@", 1)[0] == fragment
