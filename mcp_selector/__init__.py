"""MCP Selector - Resolve and toggle MCP servers across Claude Code configuration files."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("mcp-selector")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    # Model
    "Scope",
    "Server",
    "DisplayState",
    "EnterprisePolicy",
    # Pipeline
    "Settings",
    "load_settings",
    "discover_sources",
    "extract_facts",
    "resolve_servers",
    "trace_precedence",
    "save_server_states",
    # Context
    "Workspace",
    "OutputHandler",
]


# Lazy imports keep `mcps --help` fast
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("Scope", "Server", "DisplayState", "EnterprisePolicy"):
        from . import models
        return getattr(models, name)
    elif name in ("Settings", "load_settings"):
        from .config import Settings, load_settings
        return {"Settings": Settings, "load_settings": load_settings}[name]
    elif name == "discover_sources":
        from .catalog import discover_sources
        return discover_sources
    elif name == "extract_facts":
        from .extract import extract_facts
        return extract_facts
    elif name in ("resolve_servers", "trace_precedence"):
        from .resolver import resolve_servers, trace_precedence
        return {"resolve_servers": resolve_servers, "trace_precedence": trace_precedence}[name]
    elif name == "save_server_states":
        from .state import save_server_states
        return save_server_states
    elif name == "Workspace":
        from .workspace import Workspace
        return Workspace
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
