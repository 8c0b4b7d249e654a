"""Tests for raw fact extraction."""

import logging

import pytest

from mcp_selector.extract import extract_facts, is_valid_plugin_path
from mcp_selector.models import (
    Definition,
    Disable,
    DisablePlugin,
    Enable,
    EnableAllProject,
    RuntimeDisable,
    Scope,
    SourceType,
)


def of_type(extraction, fact_type):
    return [f for f in extraction.facts if isinstance(f, fact_type)]


class TestMcpJsonSources:
    """Tests for .mcp.json and managed-mcp.json."""

    def test_project_mcp_json(self, project, settings, write_json):
        write_json(project / ".mcp.json", {"mcpServers": {"fetch": {"command": "uvx", "args": ["mcp-server-fetch"]}}})
        [definition] = of_type(extract_facts(project, settings), Definition)
        assert definition.server_name == "fetch"
        assert definition.scope == Scope.PROJECT
        assert definition.source_type == SourceType.MCPJSON
        assert definition.definition.command_line == ["uvx", "mcp-server-fetch"]

    def test_user_mcp_json(self, project, settings, home, write_json):
        write_json(home / ".mcp.json", {"mcpServers": {"memory": {"command": "npx"}}})
        [definition] = of_type(extract_facts(project, settings), Definition)
        assert definition.scope == Scope.USER

    def test_enterprise_mcp_json(self, project, settings, enterprise_dir, write_json):
        write_json(enterprise_dir / "managed-mcp.json", {"mcpServers": {"corp": {"url": "https://corp"}}})
        [definition] = of_type(extract_facts(project, settings), Definition)
        assert definition.scope == Scope.ENTERPRISE

    def test_non_object_server_entries_skipped(self, project, settings, write_json):
        write_json(project / ".mcp.json", {"mcpServers": {"ok": {"command": "a"}, "bad": "nope"}})
        names = [f.server_name for f in of_type(extract_facts(project, settings), Definition)]
        assert names == ["ok"]


class TestSettingsSources:
    """Tests for settings.json / settings.local.json."""

    def test_control_arrays(self, project, settings, write_json):
        write_json(
            project / ".claude" / "settings.local.json",
            {
                "enabledMcpjsonServers": ["fetch"],
                "disabledMcpjsonServers": ["memory"],
                "enabledPlugins": {"x@m": True, "y@m": False},
                "enableAllProjectMcpServers": True,
            },
        )
        extraction = extract_facts(project, settings)
        enables = of_type(extraction, Enable)
        assert [(f.server_name, f.source_type) for f in enables] == [("fetch", None), ("x@m", SourceType.PLUGIN)]
        assert all(f.scope == Scope.LOCAL for f in extraction.facts)
        assert [f.server_name for f in of_type(extraction, Disable)] == ["memory"]
        assert [f.server_name for f in of_type(extraction, DisablePlugin)] == ["y@m"]
        assert len(of_type(extraction, EnableAllProject)) == 1

    def test_missing_arrays_yield_nothing(self, project, settings, write_json):
        write_json(project / ".claude" / "settings.json", {"permissions": {}})
        assert extract_facts(project, settings).facts == []


class TestClaudeJson:
    """Tests for ~/.claude.json."""

    def test_global_and_project_sections(self, project, settings, home, project_key, write_json):
        write_json(
            home / ".claude.json",
            {
                "mcpServers": {"global-db": {"command": "db"}},
                "disabledMcpServers": ["old"],
                "projects": {
                    project_key: {
                        "mcpServers": {"local-db": {"command": "db"}},
                        "disabledMcpServers": ["fetch", "plugin:toolkit:ide"],
                        "disabledMcpjsonServers": ["memory"],
                    },
                    "/some/other/project": {"mcpServers": {"elsewhere": {"command": "x"}}},
                },
            },
        )
        extraction = extract_facts(project, settings)
        definitions = {f.server_name: f for f in of_type(extraction, Definition)}
        assert set(definitions) == {"global-db", "local-db"}
        assert definitions["global-db"].source_type == SourceType.DIRECT_GLOBAL
        assert definitions["global-db"].scope == Scope.USER
        assert definitions["local-db"].source_type == SourceType.DIRECT_LOCAL
        assert definitions["local-db"].scope == Scope.LOCAL

        tokens = {(f.server_name, f.scope) for f in of_type(extraction, RuntimeDisable)}
        assert tokens == {("old", Scope.USER), ("fetch", Scope.LOCAL), ("plugin:toolkit:ide", Scope.LOCAL)}
        assert [(f.server_name, f.scope) for f in of_type(extraction, Disable)] == [("memory", Scope.LOCAL)]


class TestPluginDiscovery:
    """Tests for plugin server lookup."""

    def test_install_path_servers(self, project, settings, plugin_install):
        install_path = plugin_install("toolkit", "market", {"ide": {"command": "ide-server"}})
        [definition] = of_type(extract_facts(project, settings), Definition)
        assert definition.server_name == "ide:toolkit@market"
        assert definition.source_type == SourceType.PLUGIN
        assert definition.scope == Scope.USER
        assert definition.source_file == install_path / ".mcp.json"

    def test_bare_server_map(self, project, settings, home, write_json):
        install_path = home / "installs" / "toolkit"
        write_json(install_path / ".mcp.json", {"ide": {"command": "ide-server"}})
        write_json(
            home / ".claude" / "plugins" / "installed_plugins.json",
            {"plugins": {"toolkit@market": {"installPath": str(install_path)}}},
        )
        [definition] = of_type(extract_facts(project, settings), Definition)
        assert definition.server_name == "ide:toolkit@market"

    def test_marketplace_source_directory(self, project, settings, home, write_json):
        market = home / ".claude" / "plugins" / "marketplaces" / "market"
        write_json(market / ".claude-plugin" / "marketplace.json", {"plugins": [{"name": "toolkit", "source": "./plugins/toolkit"}]})
        write_json(market / "plugins" / "toolkit" / ".mcp.json", {"mcpServers": {"ide": {"command": "x"}}})
        write_json(home / ".claude" / "plugins" / "installed_plugins.json", {"plugins": {"toolkit@market": []}})
        names = [f.server_name for f in of_type(extract_facts(project, settings), Definition)]
        assert names == ["ide:toolkit@market"]

    def test_inline_manifest_servers(self, project, settings, home, write_json):
        market = home / ".claude" / "plugins" / "marketplaces" / "market"
        write_json(
            market / ".claude-plugin" / "marketplace.json",
            {"plugins": [{"name": "toolkit", "mcpServers": {"a": {"command": "a"}, "b": {"command": "b"}}}]},
        )
        write_json(home / ".claude" / "plugins" / "installed_plugins.json", {"plugins": {"toolkit@market": []}})
        names = sorted(f.server_name for f in of_type(extract_facts(project, settings), Definition))
        assert names == ["a:toolkit@market", "b:toolkit@market"]

    def test_plugin_name_directory_fallback(self, project, settings, home, write_json):
        market = home / ".claude" / "plugins" / "marketplaces" / "market"
        write_json(market / "toolkit" / ".mcp.json", {"mcpServers": {"ide": {"command": "x"}}})
        write_json(home / ".claude" / "plugins" / "installed_plugins.json", {"plugins": {"toolkit@market": []}})
        names = [f.server_name for f in of_type(extract_facts(project, settings), Definition)]
        assert names == ["ide:toolkit@market"]

    def test_unsafe_source_path_ignored(self, project, settings, home, write_json, tmp_path):
        write_json(tmp_path / "outside" / ".mcp.json", {"mcpServers": {"evil": {"command": "x"}}})
        market = home / ".claude" / "plugins" / "marketplaces" / "market"
        write_json(market / ".claude-plugin" / "marketplace.json", {"plugins": [{"name": "toolkit", "source": "../../../../../outside"}]})
        write_json(home / ".claude" / "plugins" / "installed_plugins.json", {"plugins": {"toolkit@market": []}})
        assert of_type(extract_facts(project, settings), Definition) == []

    def test_plugin_without_servers(self, project, settings, home, write_json):
        write_json(home / ".claude" / "plugins" / "installed_plugins.json", {"plugins": {"toolkit@market": []}})
        assert of_type(extract_facts(project, settings), Definition) == []

    def test_malformed_plugin_key_skipped(self, project, settings, home, write_json):
        write_json(home / ".claude" / "plugins" / "installed_plugins.json", {"plugins": {"no-marketplace": []}})
        assert extract_facts(project, settings).facts == []


class TestMalformedSources:
    """A bad file is reported and skipped; the rest still loads."""

    def test_malformed_file_recorded_and_skipped(self, project, settings, home, write_json, caplog):
        (project / ".mcp.json").write_text("{ not json")
        write_json(home / ".mcp.json", {"mcpServers": {"memory": {"command": "npx"}}})

        with caplog.at_level(logging.WARNING):
            extraction = extract_facts(project, settings)

        assert [f.server_name for f in of_type(extraction, Definition)] == ["memory"]
        assert len(extraction.errors) == 1
        assert extraction.errors[0].path == project / ".mcp.json"
        assert "Skipping malformed" in caplog.text

    def test_non_object_json_is_malformed(self, project, settings, write_json):
        write_json(project / ".mcp.json", ["fetch"])
        extraction = extract_facts(project, settings)
        assert extraction.facts == []
        assert len(extraction.errors) == 1

    def test_blank_file_is_absent(self, project, settings):
        (project / ".mcp.json").write_text("   \n")
        extraction = extract_facts(project, settings)
        assert extraction.facts == []
        assert extraction.errors == []

    def test_malformed_manifest_recorded_once(self, project, settings, home, write_json):
        manifest = home / ".claude" / "plugins" / "marketplaces" / "market" / ".claude-plugin" / "marketplace.json"
        manifest.parent.mkdir(parents=True)
        manifest.write_text("{")
        write_json(home / ".claude" / "plugins" / "installed_plugins.json", {"plugins": {"toolkit@market": []}})
        extraction = extract_facts(project, settings)
        assert [e.path for e in extraction.errors] == [manifest]


class TestPluginPathValidation:
    """Tests for is_valid_plugin_path."""

    @pytest.mark.parametrize("path", ["plugins/toolkit", "./toolkit", "toolkit"])
    def test_valid(self, path):
        assert is_valid_plugin_path(path)

    @pytest.mark.parametrize("path", ["", "../x", "a/../../b", "/etc", "C:\\x", "a\\b"])
    def test_invalid(self, path):
        assert not is_valid_plugin_path(path)
