"""
Lock files guarding backup runs and tier directories.

A lock is a file created with O_CREAT | O_EXCL holding the owner pid.
Locks older than stale_seconds are reclaimed (a crashed run never releases).
"""

import os
import time
from contextlib import contextmanager
from pathlib import Path


class LockBusyError(RuntimeError):
    """Raised when a lock could not be acquired within the timeout."""
    pass


class LockHandle:
    def __init__(self, path: Path, fd: int):
        self.path = path
        self.fd = fd


def _try_acquire(path: Path, stale_seconds: int):
    """Attempt one acquisition; returns a LockHandle or None if held by someone else."""
    payload = f"pid={os.getpid()}\ncreated_at={int(time.time())}\n"

    try:
        fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        try:
            age = time.time() - path.stat().st_mtime
        except FileNotFoundError:
            # Released between our open and stat; retry right away
            return _try_acquire(path, stale_seconds)

        if age > stale_seconds:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            return _try_acquire(path, stale_seconds)
        return None

    os.write(fd, payload.encode())
    os.fsync(fd)
    return LockHandle(path=path, fd=fd)


def acquire_lock(path, timeout: float = 0, stale_seconds: int = 21600,
                 poll_interval: float = 0.2) -> LockHandle:
    """
    Acquire a lock file, waiting up to timeout seconds.

    Args:
        path: Lock file path (parent directory is created)
        timeout: Seconds to keep retrying; 0 tries once
        stale_seconds: Age after which an existing lock is considered abandoned
        poll_interval: Delay between attempts

    Returns:
        LockHandle to pass to release_lock()

    Raises:
        LockBusyError: If the lock is still held after timeout
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + timeout

    while True:
        handle = _try_acquire(path, stale_seconds)
        if handle is not None:
            return handle
        if time.monotonic() >= deadline:
            raise LockBusyError(f"Lock is held by another process: {path}")
        time.sleep(poll_interval)


def release_lock(handle: LockHandle):
    try:
        os.close(handle.fd)
    except OSError:
        pass
    try:
        handle.path.unlink()
    except FileNotFoundError:
        pass


@contextmanager
def file_lock(path, timeout: float = 0, stale_seconds: int = 21600):
    """Context manager around acquire_lock()/release_lock()."""
    handle = acquire_lock(path, timeout=timeout, stale_seconds=stale_seconds)
    try:
        yield handle
    finally:
        release_lock(handle)
