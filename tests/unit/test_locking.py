"""
Unit tests for lock files (console_backup/backup/locking.py).
"""

import os
import time

import pytest

from console_backup.backup.locking import LockBusyError, acquire_lock, file_lock, release_lock


class TestLocking:
    """Test exclusive lock acquisition and release."""

    def test_acquire_and_release(self, tmp_path):
        path = tmp_path / 'run.lock'

        handle = acquire_lock(path)
        assert path.exists()
        assert f"pid={os.getpid()}" in path.read_text()

        release_lock(handle)
        assert not path.exists()

    def test_second_acquire_fails(self, tmp_path):
        """Test a held lock raises LockBusyError when not waiting."""
        path = tmp_path / 'run.lock'

        with file_lock(path):
            with pytest.raises(LockBusyError):
                acquire_lock(path, timeout=0)

    def test_wait_times_out(self, tmp_path):
        path = tmp_path / 'run.lock'

        with file_lock(path):
            started = time.monotonic()
            with pytest.raises(LockBusyError):
                acquire_lock(path, timeout=0.3, poll_interval=0.1)
            assert time.monotonic() - started >= 0.3

    def test_stale_lock_reclaimed(self, tmp_path):
        """Test a lock older than stale_seconds is taken over."""
        path = tmp_path / 'run.lock'
        path.write_text('pid=1\n')
        old = time.time() - 3600
        os.utime(path, (old, old))

        handle = acquire_lock(path, stale_seconds=60)

        assert f"pid={os.getpid()}" in path.read_text()
        release_lock(handle)

    def test_parent_directory_created(self, tmp_path):
        path = tmp_path / 'nested' / 'dir' / 'run.lock'

        with file_lock(path):
            assert path.exists()

        assert not path.exists()

    def test_released_on_exception(self, tmp_path):
        path = tmp_path / 'run.lock'

        with pytest.raises(RuntimeError):
            with file_lock(path):
                raise RuntimeError('boom')

        assert not path.exists()
