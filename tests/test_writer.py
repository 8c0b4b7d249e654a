"""Tests for atomic writes and backups."""

import json
import os
import sys

import pytest

from mcp_selector.parser import ConfigParseError
from mcp_selector.writer import (
    MAX_BACKUPS_PER_FILE,
    atomic_write_json,
    cleanup_old_backups,
    create_backup,
    get_latest_backup,
    list_backups,
    restore_from_backup,
)


class TestAtomicWriteJson:
    """Tests for atomic_write_json."""

    def test_creates_parent_directories(self, tmp_path):
        target = tmp_path / "a" / "b" / "settings.json"
        atomic_write_json(target, {"x": 1})
        assert json.loads(target.read_text()) == {"x": 1}

    def test_format(self, tmp_path):
        target = tmp_path / "settings.json"
        atomic_write_json(target, {"x": [1]})
        assert target.read_text() == '{\n  "x": [\n    1\n  ]\n}\n'

    def test_no_temp_files_left(self, tmp_path):
        target = tmp_path / "settings.json"
        atomic_write_json(target, {})
        atomic_write_json(target, {"again": True})
        assert [p.name for p in tmp_path.iterdir()] == ["settings.json"]

    def test_failure_leaves_original(self, tmp_path):
        target = tmp_path / "settings.json"
        target.write_text('{"old": true}')
        with pytest.raises(TypeError):
            atomic_write_json(target, {"bad": object()})
        assert target.read_text() == '{"old": true}'
        assert [p.name for p in tmp_path.iterdir()] == ["settings.json"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_preserves_mode(self, tmp_path):
        target = tmp_path / "settings.json"
        target.write_text("{}")
        os.chmod(target, 0o600)
        atomic_write_json(target, {"x": 1})
        assert target.stat().st_mode & 0o777 == 0o600


class TestBackups:
    """Tests for create/list/restore/cleanup."""

    def test_missing_file_not_backed_up(self, tmp_path):
        assert create_backup(tmp_path / "nope.json", tmp_path / "backups") is None

    def test_create_and_list(self, tmp_path):
        target = tmp_path / "claude.json"
        target.write_text("{}")
        backup_dir = tmp_path / "backups"
        first = create_backup(target, backup_dir)
        second = create_backup(target, backup_dir)

        assert first.name.endswith(".bak")
        assert list_backups(target, backup_dir) == [second, first]
        assert get_latest_backup(target, backup_dir) == second

    def test_backups_are_per_file(self, tmp_path):
        backup_dir = tmp_path / "backups"
        a, b = tmp_path / "a.json", tmp_path / "b.json"
        a.write_text("{}")
        b.write_text("{}")
        create_backup(a, backup_dir)
        assert list_backups(b, backup_dir) == []

    def test_cleanup_keeps_newest(self, tmp_path):
        target = tmp_path / "claude.json"
        target.write_text("{}")
        backup_dir = tmp_path / "backups"
        created = [create_backup(target, backup_dir) for _ in range(MAX_BACKUPS_PER_FILE + 3)]

        remaining = list_backups(target, backup_dir)
        assert len(remaining) == MAX_BACKUPS_PER_FILE
        assert remaining[0] == created[-1]

    def test_cleanup_ignores_unrelated_files(self, tmp_path):
        backup_dir = tmp_path / "backups"
        backup_dir.mkdir()
        (backup_dir / "notes.txt").write_text("keep")
        assert cleanup_old_backups(backup_dir) == []
        assert (backup_dir / "notes.txt").exists()

    def test_restore_latest(self, tmp_path):
        target = tmp_path / "claude.json"
        backup_dir = tmp_path / "backups"
        target.write_text('{"version": 1}')
        create_backup(target, backup_dir)
        target.write_text('{"version": 2}')

        restored = restore_from_backup(target, backup_dir)

        assert json.loads(target.read_text()) == {"version": 1}
        # The pre-rollback state is itself backed up
        latest = get_latest_backup(target, backup_dir)
        assert latest != restored
        assert json.loads(latest.read_text()) == {"version": 2}

    def test_restore_without_backup(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            restore_from_backup(tmp_path / "claude.json", tmp_path / "backups")

    def test_restore_malformed_backup(self, tmp_path):
        target = tmp_path / "claude.json"
        target.write_text("{}")
        backup = tmp_path / "broken.bak"
        backup.write_text("{ nope")
        with pytest.raises(ConfigParseError):
            restore_from_backup(target, tmp_path / "backups", backup=backup)
        assert target.read_text() == "{}"
