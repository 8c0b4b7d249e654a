"""Tests for config file locking."""

import logging
import os
import time

import pytest

from mcp_selector.locking import (
    LockError,
    acquire_lock,
    backoff_delays,
    file_lock,
    lock_path_for,
    locked_files,
    release_lock,
)


@pytest.fixture
def no_sleep(monkeypatch):
    """Record backoff sleeps instead of sleeping."""
    sleeps: list[float] = []
    monkeypatch.setattr("mcp_selector.locking.time.sleep", sleeps.append)
    return sleeps


class TestBackoff:
    """Tests for backoff_delays."""

    def test_default_schedule(self):
        assert backoff_delays(5, 0.1, 1.0) == pytest.approx([0.1, 0.2, 0.4, 0.8, 1.0])

    def test_zero_retries(self):
        assert backoff_delays(0, 0.1, 1.0) == []


class TestAcquireLock:
    """Tests for acquire_lock / release_lock."""

    def test_creates_and_releases_lock_file(self, tmp_path, settings):
        target = tmp_path / "settings.json"
        lock_path = acquire_lock(target, settings)
        assert lock_path == lock_path_for(target)
        assert lock_path.read_text() == str(os.getpid())
        release_lock(lock_path)
        assert not lock_path.exists()

    def test_held_lock_times_out(self, tmp_path, settings, no_sleep):
        target = tmp_path / "settings.json"
        lock_path_for(target).write_text("12345")
        with pytest.raises(LockError):
            acquire_lock(target, settings)
        assert len(no_sleep) == settings.lock_retries

    def test_stale_lock_is_removed(self, tmp_path, settings, no_sleep, caplog):
        target = tmp_path / "settings.json"
        lock_path = lock_path_for(target)
        lock_path.write_text("12345")
        old = time.time() - settings.lock_stale - 5
        os.utime(lock_path, (old, old))

        with caplog.at_level(logging.WARNING):
            acquired = acquire_lock(target, settings)

        assert acquired == lock_path
        assert lock_path.read_text() == str(os.getpid())
        assert no_sleep == []
        assert "stale lock" in caplog.text

    def test_release_missing_lock_warns(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            release_lock(tmp_path / "gone.lock")
        assert "already removed" in caplog.text


class TestFileLock:
    """Tests for the file_lock context manager."""

    def test_yields_true_when_held(self, tmp_path, settings):
        target = tmp_path / "settings.json"
        with file_lock(target, settings) as held:
            assert held
            assert lock_path_for(target).exists()
        assert not lock_path_for(target).exists()

    def test_proceeds_unlocked_on_failure(self, tmp_path, settings, no_sleep, caplog):
        target = tmp_path / "settings.json"
        lock_path_for(target).write_text("12345")
        ran = False
        with caplog.at_level(logging.WARNING):
            with file_lock(target, settings) as held:
                ran = True
                assert held is False
        assert ran
        assert "proceeding without lock" in caplog.text
        # Someone else's lock is left alone
        assert lock_path_for(target).exists()

    def test_released_on_exception(self, tmp_path, settings):
        target = tmp_path / "settings.json"
        with pytest.raises(RuntimeError):
            with file_lock(target, settings):
                raise RuntimeError("boom")
        assert not lock_path_for(target).exists()

    def test_locked_files(self, tmp_path, settings):
        paths = [tmp_path / "a" / "settings.local.json", tmp_path / "claude.json"]
        with locked_files(paths, settings) as held:
            assert held == [True, True]
            assert all(lock_path_for(p).exists() for p in paths)
        assert not any(lock_path_for(p).exists() for p in paths)
