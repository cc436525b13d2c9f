"""
Cross-process exclusive file lock.

Advisory lock on a dedicated lock file using fcntl.flock (POSIX) or
msvcrt.locking (Windows). Two FileLock instances on the same path exclude
each other whether they live in different processes or in different
threads of one process.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_fcntl: Any = None
_msvcrt: Any = None


def _get_fcntl():
    """Lazy import fcntl (POSIX only)."""
    global _fcntl
    if _fcntl is None and sys.platform != "win32":
        import fcntl

        _fcntl = fcntl
    return _fcntl


def _get_msvcrt():
    """Lazy import msvcrt (Windows only)."""
    global _msvcrt
    if _msvcrt is None and sys.platform == "win32":
        import msvcrt

        _msvcrt = msvcrt
    return _msvcrt


class FileLock:
    """
    Exclusive lock held on an open lock file.

    Example:
        lock = FileLock(cache_dir / ".lock")
        lock.acquire()
        try:
            ...
        finally:
            lock.release()
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._fd: int | None = None

    @property
    def is_locked(self) -> bool:
        return self._fd is not None

    def acquire(self, blocking: bool = True) -> bool:
        """
        Acquire the lock, creating the lock file if needed.

        Returns:
            True if the lock is held; False only when blocking is False and
            another holder has it
        """
        if self._fd is not None:
            return True
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            if not self._lock_fd(fd, blocking):
                os.close(fd)
                return False
        except OSError:
            os.close(fd)
            raise
        self._fd = fd
        logger.debug(f"[lock] Locked {self.path}")
        return True

    def release(self) -> None:
        """Release the lock. Safe to call when not held."""
        fd, self._fd = self._fd, None
        if fd is None:
            return
        try:
            self._unlock_fd(fd)
        except OSError as e:
            logger.warning(f"[lock] Could not unlock {self.path}: {e}")
        finally:
            os.close(fd)
        logger.debug(f"[lock] Unlocked {self.path}")

    def _lock_fd(self, fd: int, blocking: bool) -> bool:
        fcntl = _get_fcntl()
        if fcntl is not None:
            flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
            try:
                fcntl.flock(fd, flags)
            except BlockingIOError:
                return False
            return True

        msvcrt = _get_msvcrt()
        if msvcrt is None:
            raise RuntimeError("No file locking primitive available on this platform")
        mode = msvcrt.LK_LOCK if blocking else msvcrt.LK_NBLCK
        while True:
            try:
                msvcrt.locking(fd, mode, 1)
                return True
            except OSError:
                # LK_LOCK gives up after ~10s; keep waiting when blocking
                if not blocking:
                    return False

    def _unlock_fd(self, fd: int) -> None:
        fcntl = _get_fcntl()
        if fcntl is not None:
            fcntl.flock(fd, fcntl.LOCK_UN)
            return
        msvcrt = _get_msvcrt()
        if msvcrt is not None:
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"FileLock({str(self.path)!r}, locked={self.is_locked})"
