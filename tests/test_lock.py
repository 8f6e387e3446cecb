"""
Tests for the single-flight run lock.
"""

import os
from unittest.mock import patch

import pytest

from streak_sync.utils.lock import LockError, RunLock, RunLockHeldError


class TestRunLock:
    """Tests for RunLock."""

    def test_acquire_writes_pid(self, tmp_path):
        lock = RunLock(tmp_path / "sync.lock")
        lock.acquire()

        assert lock.held
        assert lock.read() == os.getpid()
        lock.release()

    def test_release_removes_file(self, tmp_path):
        lock_file = tmp_path / "sync.lock"
        lock = RunLock(lock_file)
        lock.acquire()
        lock.release()

        assert not lock_file.exists()
        assert not lock.held

    def test_release_without_acquire(self, tmp_path):
        """Test releasing an unheld lock leaves other holders alone."""
        lock_file = tmp_path / "sync.lock"
        lock_file.write_text("12345")

        RunLock(lock_file).release()

        assert lock_file.exists()

    def test_live_holder_blocks(self, tmp_path):
        lock_file = tmp_path / "sync.lock"
        with RunLock(lock_file):
            with pytest.raises(RunLockHeldError):
                RunLock(lock_file).acquire()

    def test_stale_lock_replaced(self, tmp_path):
        lock_file = tmp_path / "sync.lock"
        lock_file.write_text("99999999")
        lock = RunLock(lock_file)

        with patch.object(RunLock, "_is_process_running", return_value=False):
            lock.acquire()

        assert lock.read() == os.getpid()
        lock.release()

    def test_invalid_pid_file(self, tmp_path):
        lock_file = tmp_path / "sync.lock"
        lock_file.write_text("not a pid")

        with pytest.raises(LockError, match="Invalid PID"):
            RunLock(lock_file).acquire()

    def test_context_manager_releases_on_error(self, tmp_path):
        lock_file = tmp_path / "sync.lock"
        with pytest.raises(RuntimeError):
            with RunLock(lock_file):
                raise RuntimeError("boom")
        assert not lock_file.exists()

    def test_creates_parent_directory(self, tmp_path):
        lock = RunLock(tmp_path / "nested" / "sync.lock")
        with lock:
            assert lock.lock_file.exists()

    def test_is_process_running_current(self):
        assert RunLock._is_process_running(os.getpid()) is True
