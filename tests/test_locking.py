"""Tests for the runtime reload lock."""

import os
import threading
import time

import pytest

from hostforge.utils.errors import LockTimeoutError
from hostforge.utils.locking import FileLock


class TestFileLock:
    """Exclusive, time-bounded locking."""

    def test_acquire_and_release_removes_file(self, tmp_path):
        """The holder removes the lock file on release."""
        path = tmp_path / "fpmlock"

        with FileLock(str(path)) as lock:
            assert lock.held
            assert path.exists()
            assert path.read_text().strip() == str(os.getpid())

        assert not lock.held
        assert not path.exists()

    def test_contention_times_out(self, tmp_path):
        """A second holder fails once the timeout elapses."""
        path = str(tmp_path / "fpmlock")

        with FileLock(path, timeout=1.0):
            waiter = FileLock(path, timeout=0.2, poll_interval=0.05)
            with pytest.raises(LockTimeoutError) as exc_info:
                waiter.acquire()
            assert not waiter.held

        assert "fpmlock" in exc_info.value.message
        assert any("rm -f" in s for s in exc_info.value.suggestions)
        assert not os.path.exists(path)

    def test_waiter_acquires_once_holder_releases(self, tmp_path):
        """A waiter blocks while the lock is held and takes it after release."""
        path = str(tmp_path / "fpmlock")
        holder = FileLock(path)
        holder.acquire()
        timer = threading.Timer(0.2, holder.release)
        timer.start()

        waiter = FileLock(path, timeout=5.0, poll_interval=0.02)
        started = time.monotonic()
        try:
            waiter.acquire()
            assert waiter.held
            assert not holder.held
            assert time.monotonic() - started >= 0.1
        finally:
            timer.join()
            waiter.release()

        assert not os.path.exists(path)

    def test_lock_available_after_release(self, tmp_path):
        """Releasing lets the next holder in immediately."""
        path = str(tmp_path / "fpmlock")

        with FileLock(path):
            pass
        with FileLock(path, timeout=0.2) as second:
            assert second.held

    def test_release_without_acquire_is_noop(self, tmp_path):
        FileLock(str(tmp_path / "fpmlock")).release()

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "run" / "hostforge" / "fpmlock"
        with FileLock(str(path)):
            assert path.exists()
