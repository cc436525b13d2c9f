"""
Per-application cache directory.

Layout:
    <cache root>/apps/<app id>/      extracted payload
    <cache root>/apps/<app id>/.lock       lock file (never deleted)
    <cache root>/apps/<app id>/.extracted  timestamp marker
    <cache root>/deps/               dependency backend store

State machine:

    UNINITIALIZED -> CHECKING -> FRESH ----------> READY
                              -> REBUILDING ----> READY

A cache is FRESH when its marker is at least as new as the archive. The
staleness check runs unlocked first; a stale result takes the lock and
checks again, because another launcher may have just finished extracting.
Only a launcher still seeing a stale cache while holding the lock wipes
and re-extracts. The marker is written by mark_ready() once launch
preparation has succeeded, and the lock is released by release() in every
case.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from jcapsule.errors import CacheUnavailableError, LaunchEnvironmentError

from .lock import FileLock

logger = logging.getLogger(__name__)

APP_CACHE_NAME = "apps"
DEPS_CACHE_NAME = "deps"
LOCK_FILE_NAME = ".lock"
TIMESTAMP_FILE_NAME = ".extracted"

Extractor = Callable[[Path], None]


class CacheState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CHECKING = "checking"
    FRESH = "fresh"
    REBUILDING = "rebuilding"
    READY = "ready"


def should_extract_entry(name: str) -> bool:
    """
    Whether an archive entry belongs in the app cache.

    Skips the launcher's own classes, all other compiled classes, the
    launcher's private capsule/ namespace and the META-INF/ metadata.
    """
    if name.endswith("/"):
        return False
    if name == "Capsule.class" or (name.startswith("Capsule$") and name.endswith(".class")):
        return False
    if name.endswith(".class"):
        return False
    if name.startswith(("capsule/", "META-INF/")):
        return False
    return True


def init_cache_root(root: Path) -> Path:
    """Create the cache root with its apps/ and deps/ subdirectories."""
    (root / APP_CACHE_NAME).mkdir(parents=True, exist_ok=True)
    (root / DEPS_CACHE_NAME).mkdir(parents=True, exist_ok=True)
    if not os.access(root / APP_CACHE_NAME, os.W_OK):
        raise PermissionError(f"Cache directory {root} is not writable")
    return root


def open_cache_root(root: Path | None) -> tuple[Path, bool]:
    """
    Open the cache root, falling back to a temporary directory.

    Returns:
        (root, temporary) where temporary means the directory is private
        to this process and must be deleted when the launch ends
    """
    if root is not None:
        try:
            return init_cache_root(root), False
        except OSError as e:
            logger.info(f"[cache] Cannot use cache directory {root} ({e}); using a temporary cache")
    else:
        logger.info("[cache] Persistent cache disabled; using a temporary cache")
    try:
        temp = Path(tempfile.mkdtemp(prefix="capsule-"))
        return init_cache_root(temp), True
    except OSError as e:
        raise LaunchEnvironmentError(f"Could not create a temporary cache directory: {e}") from e


class AppCache:
    """
    The extraction directory for one application id.

    Example:
        cache = AppCache(root / "apps" / app_id, archive)
        cache.prepare(lambda target: jar.extract(target, should_extract_entry))
        try:
            ... build the launch ...
            cache.mark_ready()
        finally:
            cache.release()
    """

    def __init__(
        self,
        directory: Path,
        archive: Path,
        *,
        reset: bool = False,
        temporary_root: Path | None = None,
    ) -> None:
        self.directory = Path(directory).absolute()
        self.archive = Path(archive)
        self.reset = reset
        self.temporary_root = temporary_root
        self.state = CacheState.UNINITIALIZED
        self._lock = FileLock(self.directory / LOCK_FILE_NAME)
        self._rebuilt = False

    @property
    def lock_file(self) -> Path:
        return self._lock.path

    @property
    def marker_file(self) -> Path:
        return self.directory / TIMESTAMP_FILE_NAME

    @property
    def is_locked(self) -> bool:
        return self._lock.is_locked

    @property
    def rebuilt(self) -> bool:
        """Whether this launch re-extracted the cache."""
        return self._rebuilt

    @property
    def up_to_date(self) -> bool:
        """Whether the cache was found fresh (valid after prepare())."""
        return self.state == CacheState.FRESH or (self.state == CacheState.READY and not self._rebuilt)

    # =========================================================================
    # Staleness
    # =========================================================================

    def is_up_to_date(self) -> bool:
        """Compare the marker's timestamp against the archive's."""
        if self.reset:
            return False
        try:
            marker_time = self.marker_file.stat().st_mtime
        except FileNotFoundError:
            return False
        return marker_time >= self.archive.stat().st_mtime

    def check(self) -> CacheState:
        """
        Determine freshness, taking the lock when the cache is stale.

        Leaves the cache FRESH (unlocked) or REBUILDING (locked).
        """
        self.state = CacheState.CHECKING
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LaunchEnvironmentError(
                f"Application cache directory {self.directory} could not be created: {e}"
            ) from e

        if self.is_up_to_date():
            self.state = CacheState.FRESH
        else:
            logger.info(f"[cache] Locking {self.lock_file}")
            self._lock.acquire()
            if self.is_up_to_date():
                self._lock.release()
                self.state = CacheState.FRESH
            else:
                self.state = CacheState.REBUILDING
        logger.debug(f"[cache] {self.directory} is {self.state.value}")
        return self.state

    # =========================================================================
    # Rebuild
    # =========================================================================

    def wipe(self) -> None:
        """Delete everything in the cache except the lock file."""
        if self.state != CacheState.REBUILDING:
            raise RuntimeError(f"Cannot wipe the app cache in state {self.state.value}")
        for entry in self.directory.iterdir():
            if entry.name == LOCK_FILE_NAME:
                continue
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()

    def prepare(self, extractor: Extractor | None = None) -> CacheState:
        """
        Check freshness and, if stale, wipe and re-populate the cache.

        Args:
            extractor: Callable filling the cache directory; None leaves the
                rebuilt cache empty (used when only native libraries are
                copied in)
        """
        if self.check() == CacheState.REBUILDING:
            logger.debug(f"[cache] Creating cache for {self.archive} in {self.directory}")
            self.wipe()
            if extractor is not None:
                logger.info(f"[cache] Extracting {self.archive} to app cache directory {self.directory}")
                extractor(self.directory)
            self._rebuilt = True
        else:
            logger.info(f"[cache] App cache {self.directory} is up to date.")
        return self.state

    def mark_ready(self) -> None:
        """Write the marker (if this launch rebuilt the cache) and unlock."""
        if self.state == CacheState.REBUILDING:
            self.marker_file.touch()
            now = time.time()
            os.utime(self.marker_file, (now, now))
            self._lock.release()
        if self.state in (CacheState.FRESH, CacheState.REBUILDING):
            self.state = CacheState.READY

    def require(self, purpose: str) -> Path:
        """
        The cache directory, once it has been prepared.

        Raises:
            CacheUnavailableError: If prepare() has not run yet
        """
        if self.state in (CacheState.UNINITIALIZED, CacheState.CHECKING):
            raise CacheUnavailableError(
                f"The app cache is not yet available; cannot resolve {purpose}",
                reason=CacheUnavailableError.NOT_YET_AVAILABLE,
            )
        return self.directory

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def release(self) -> None:
        """Release the lock if held. Never raises."""
        try:
            self._lock.release()
        except Exception as e:
            logger.warning(f"[cache] Error releasing {self.lock_file}: {e}")

    def cleanup(self) -> None:
        """Release the lock and delete a temporary cache root. Never raises."""
        self.release()
        if self.temporary_root is not None:
            shutil.rmtree(self.temporary_root, ignore_errors=True)
            logger.debug(f"[cache] Deleted temporary cache {self.temporary_root}")

    def __repr__(self) -> str:
        return f"AppCache({str(self.directory)!r}, state={self.state.value})"
