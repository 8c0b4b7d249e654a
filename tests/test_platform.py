"""Tests for cross-platform path and session utilities."""

from pathlib import Path
from unittest.mock import patch

import pytest

from mcp_selector.platform import (
    ENTERPRISE_DIRS,
    IS_WINDOWS,
    detect_platform,
    get_enterprise_dir,
    get_project_mcp_json_path,
    get_project_settings_path,
    get_session_warning,
    is_in_claude_session,
    normalise_project_path,
)


class TestDetectPlatform:
    """Tests for detect_platform."""

    def test_macos(self):
        with patch("mcp_selector.platform.sys.platform", "darwin"):
            assert detect_platform() == "macos"

    @pytest.mark.skipif(IS_WINDOWS, reason="Unix-specific test")
    def test_wsl_detected_from_kernel_release(self):
        with patch("mcp_selector.platform.sys.platform", "linux"), \
             patch("mcp_selector.platform._platform.release", return_value="5.15.0-microsoft-standard-WSL2"):
            assert detect_platform() == "wsl"

    @pytest.mark.skipif(IS_WINDOWS, reason="Unix-specific test")
    def test_plain_linux(self):
        with patch("mcp_selector.platform.sys.platform", "linux"), \
             patch("mcp_selector.platform._platform.release", return_value="6.8.0-generic"):
            assert detect_platform() == "linux"

    def test_enterprise_dir_per_platform(self):
        assert get_enterprise_dir("linux") == Path("/etc/claude-code")
        assert get_enterprise_dir("macos") == ENTERPRISE_DIRS["macos"]
        assert get_enterprise_dir("plan9") is None


class TestProjectPaths:
    """Tests for project-relative paths."""

    def test_settings_paths(self, tmp_path):
        assert get_project_settings_path(tmp_path) == tmp_path / ".claude" / "settings.json"
        assert get_project_settings_path(tmp_path, local=True) == tmp_path / ".claude" / "settings.local.json"

    def test_mcp_json_path(self, tmp_path):
        assert get_project_mcp_json_path(tmp_path) == tmp_path / ".mcp.json"

    @pytest.mark.skipif(IS_WINDOWS, reason="Unix-specific test")
    def test_normalise_strips_trailing_slash(self, tmp_path):
        key = normalise_project_path(f"{tmp_path}/")
        assert not key.endswith("/")
        assert key == str(tmp_path.resolve())

    @pytest.mark.skipif(IS_WINDOWS, reason="Unix-specific test")
    def test_normalise_resolves_symlinks(self, tmp_path):
        real = tmp_path / "real"
        real.mkdir()
        link = tmp_path / "link"
        link.symlink_to(real)
        assert normalise_project_path(link) == normalise_project_path(real)

    @pytest.mark.skipif(IS_WINDOWS, reason="Unix-specific test")
    def test_root_kept(self):
        assert normalise_project_path("/") == "/"


class TestSessionDetection:
    """Tests for running-inside-Claude detection."""

    def test_not_in_session(self):
        assert not is_in_claude_session()
        assert get_session_warning() is None

    @pytest.mark.parametrize("var", ["CLAUDE_SESSION_ID", "CLAUDE_CODE"])
    def test_session_warning(self, monkeypatch, var):
        monkeypatch.setenv(var, "1")
        assert is_in_claude_session()
        assert "next session" in get_session_warning()

    def test_running_as_mcp_server(self, monkeypatch):
        monkeypatch.setenv("MCP_SERVER_NAME", "selector")
        assert "apply immediately" in get_session_warning()
