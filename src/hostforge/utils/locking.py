"""Advisory file lock used around the shared runtime reload."""

import fcntl
import os
import time
from pathlib import Path
from typing import Optional

from hostforge.utils.errors import LockTimeoutError, ErrorContext
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)


class FileLock:
    """Exclusive, time-bounded flock on a lock file.

    The holder unlinks the lock file on release. A waiter that wins the
    flock on an already-unlinked inode re-opens the path and tries again,
    so two holders can never coexist.
    """

    def __init__(self, path: str, timeout: float = 10.0, poll_interval: float = 0.1):
        """
        Initialize FileLock.

        Args:
            path: Lock file path
            timeout: Maximum seconds to wait for the lock
            poll_interval: Seconds between acquisition attempts
        """
        self.path = Path(path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """
        Acquire the lock.

        Raises:
            LockTimeoutError: If the lock is not acquired within the timeout
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout

        while True:
            fd = os.open(str(self.path), os.O_CREAT | os.O_RDWR, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
                if time.monotonic() >= deadline:
                    raise LockTimeoutError(
                        f"Failed to acquire lock {self.path} after {self.timeout:g}s",
                        context=ErrorContext(resource_id=str(self.path), operation="lock"),
                        suggestions=[
                            "Another deployment is reloading the shared runtime; retry when it finishes",
                            f"If no deployment is running, remove the stale lock: rm -f {self.path}",
                        ],
                    )
                time.sleep(self.poll_interval)
                continue

            if self._same_file(fd):
                self._fd = fd
                os.write(fd, f"{os.getpid()}\n".encode())
                logger.debug(f"Acquired lock {self.path}")
                return

            # Previous holder unlinked the file after we opened it
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def release(self) -> None:
        """Release the lock and remove the lock file."""
        if self._fd is None:
            return
        try:
            try:
                os.unlink(self.path)
            except FileNotFoundError:
                pass
            fcntl.flock(self._fd, fcntl.LOCK_UN)
            os.close(self._fd)
        finally:
            self._fd = None
            logger.debug(f"Released lock {self.path}")

    def _same_file(self, fd: int) -> bool:
        try:
            path_stat = os.stat(self.path)
        except FileNotFoundError:
            return False
        fd_stat = os.fstat(fd)
        return (path_stat.st_dev, path_stat.st_ino) == (fd_stat.st_dev, fd_stat.st_ino)

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
