"""Tests for settings loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from mcp_selector.config import (
    DEFAULT_LOCK_RETRIES,
    DEFAULT_PROBE_COMMAND,
    Settings,
    find_env_file,
    load_settings,
)


class TestSettings:
    """Tests for derived paths."""

    def test_paths_follow_home(self, tmp_path):
        settings = Settings(home=tmp_path, enterprise_dir=tmp_path / "etc")
        assert settings.claude_json_path == tmp_path / ".claude.json"
        assert settings.installed_plugins_path == tmp_path / ".claude" / "plugins" / "installed_plugins.json"
        assert settings.marketplaces_dir == tmp_path / ".claude" / "plugins" / "marketplaces"
        assert settings.backups_path == tmp_path / ".claude" / "backups"
        assert settings.enterprise_settings_path == tmp_path / "etc" / "managed-settings.json"
        assert settings.enterprise_mcp_path == tmp_path / "etc" / "managed-mcp.json"

    def test_explicit_backup_dir(self, tmp_path):
        settings = Settings(home=tmp_path, backup_dir=tmp_path / "bak")
        assert settings.backups_path == tmp_path / "bak"

    def test_no_enterprise_dir(self, tmp_path):
        settings = Settings(home=tmp_path, enterprise_dir=None)
        assert settings.enterprise_mcp_path is None
        assert settings.enterprise_settings_path is None


class TestFindEnvFile:
    """Tests for find_env_file."""

    def test_explicit_path(self, tmp_path):
        env = tmp_path / "custom.env"
        env.write_text("MCPS_HOME=/x\n")
        assert find_env_file(env) == env

    def test_explicit_missing(self, tmp_path):
        assert find_env_file(tmp_path / "missing.env") is None

    def test_project_env_found(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("X=1\n")
        assert find_env_file() == Path(".env")


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        settings = load_settings(tmp_path / "none.env")
        assert settings.home == Path.home()
        assert settings.backup is True
        assert settings.lock_retries == DEFAULT_LOCK_RETRIES
        assert settings.probe_command == DEFAULT_PROBE_COMMAND

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MCPS_HOME", str(tmp_path))
        monkeypatch.setenv("MCPS_ENTERPRISE_DIR", str(tmp_path / "etc"))
        monkeypatch.setenv("MCPS_BACKUP_DIR", str(tmp_path / "bak"))
        monkeypatch.setenv("MCPS_NO_BACKUP", "1")
        monkeypatch.setenv("MCPS_LOCK_RETRIES", "3")
        monkeypatch.setenv("MCPS_LOCK_STALE", "2.5")
        monkeypatch.setenv("MCPS_PROBE_TIMEOUT", "9")
        monkeypatch.setenv("MCPS_PROBE_COMMAND", "claude mcp list --json")

        settings = load_settings(tmp_path / "none.env")

        assert settings.home == tmp_path
        assert settings.enterprise_dir == tmp_path / "etc"
        assert settings.backups_path == tmp_path / "bak"
        assert settings.backup is False
        assert settings.lock_retries == 3
        assert settings.lock_stale == 2.5
        assert settings.probe_timeout == 9.0
        assert settings.probe_command == ("claude", "mcp", "list", "--json")

    def test_env_file_loaded(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text(f"MCPS_HOME={tmp_path / 'fromfile'}\n")
        with patch.dict(os.environ):
            settings = load_settings(env)
        assert settings.home == tmp_path / "fromfile"
        assert settings.env_path == env

    def test_process_env_beats_env_file(self, tmp_path, monkeypatch):
        env = tmp_path / ".env"
        env.write_text("MCPS_LOCK_RETRIES=9\n")
        monkeypatch.setenv("MCPS_LOCK_RETRIES", "1")
        with patch.dict(os.environ):
            assert load_settings(env).lock_retries == 1

    def test_invalid_number(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MCPS_LOCK_RETRIES", "many")
        with pytest.raises(ValueError, match="MCPS_LOCK_RETRIES"):
            load_settings(tmp_path / "none.env")
