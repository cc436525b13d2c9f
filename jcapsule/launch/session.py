"""
Launch session.

One LaunchSession is created per launch and shared by every module in the
override chain. It owns the launch's identity (archive, app id, mode),
the collaborators built along the way (attribute store, resolver, app
cache, dependency backend) and the single cleanup path.

Nothing here is process-global: two sessions in one process (as in the
test suite) never see each other's state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from jcapsule.config.settings import LauncherSettings, LogLevel
from jcapsule.errors import CacheUnavailableError, ConfigurationError, ErrorContext
from jcapsule.platform import Platform, current_platform

if TYPE_CHECKING:
    from jcapsule.archive.manifest import Manifest
    from jcapsule.cache.app_cache import AppCache
    from jcapsule.caplets.chain import OverrideChain
    from jcapsule.config.attributes import AttributeRegistry
    from jcapsule.config.store import AttributeStore
    from jcapsule.dependency.base import DependencyManager
    from jcapsule.resolve.resolver import ReferenceResolver
    from jcapsule.runtime.discovery import JavaDiscovery
    from jcapsule.version import JavaVersion

logger = logging.getLogger(__name__)


@dataclass
class LaunchOptions:
    """
    Per-launch choices made on the command line.

    Attributes:
        mode: Requested mode, or None for the default mode
        java_home: Java installation to use, bypassing version matching
        reset: Force re-extraction of the app cache
        jvm_args: Extra JVM arguments (-J on the command line)
        trampoline: Print the command line instead of running it
        pump_io: Copy the child's stdio through launcher threads instead
            of letting the child inherit it
        log_level: Overrides the archive's Capsule-Log-Level
        app_id: Overrides the application id
    """

    mode: str | None = None
    java_home: Path | None = None
    reset: bool = False
    jvm_args: list[str] = field(default_factory=list)
    trampoline: bool = False
    pump_io: bool = False
    log_level: LogLevel | None = None
    app_id: str | None = None


@dataclass
class LaunchSession:
    """
    State shared by all modules of one launch.

    The archive starts unbound for an empty (wrapper) capsule and is bound
    to the real target exactly once.
    """

    settings: LauncherSettings
    options: LaunchOptions = field(default_factory=LaunchOptions)
    platform: Platform = field(default_factory=current_platform)

    jar: Path | None = None
    wrapper: Path | None = None
    manifest: "Manifest | None" = None
    registry: "AttributeRegistry | None" = None
    store: "AttributeStore | None" = None
    chain: "OverrideChain | None" = None
    resolver: "ReferenceResolver | None" = None
    discovery: "JavaDiscovery | None" = None
    cache: "AppCache | None" = None
    cache_root: Path | None = None
    dependency_manager: "DependencyManager | None" = None

    app_id: str | None = None
    java_home: Path | None = None
    java_version: "JavaVersion | None" = None
    current_java_home: Path | None = None

    error_context: ErrorContext | None = None
    timings: dict[str, float] = field(default_factory=dict)

    _finalized: bool = False
    _cleanups: list[Callable[[], Any]] = field(default_factory=list)
    _cleaned_up: bool = False
    _started_at: float = field(default_factory=time.perf_counter)

    # =========================================================================
    # Identity
    # =========================================================================

    def bind(self, jar: Path, manifest: "Manifest") -> None:
        """
        Bind the session to its target archive.

        An empty capsule binds once, to the archive it wraps; the wrapper
        itself is remembered in ``wrapper``.

        Raises:
            ConfigurationError: If the session is already finalized
        """
        if self._finalized:
            raise ConfigurationError(f"Capsule already bound to {self.jar}; cannot bind to {jar}")
        if self.jar is not None:
            self.wrapper = self.jar
        self.jar = Path(jar).absolute()
        self.manifest = manifest
        logger.debug(f"[session] Bound to {self.jar}")

    def finalize(self) -> None:
        self._finalized = True

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def is_wrapper(self) -> bool:
        return self.wrapper is not None

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def set_context(self, kind: str, key: str, value: Any = None) -> None:
        """Record what is being processed, for error messages."""
        self.error_context = ErrorContext(kind, key, None if value is None else str(value))

    def record_timing(self, stage: str, duration_ms: float) -> None:
        self.timings[stage] = duration_ms

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started_at) * 1000

    # =========================================================================
    # Cache access
    # =========================================================================

    def require_cache(self, purpose: str) -> Path:
        """
        The app cache directory.

        Raises:
            CacheUnavailableError: "not-applicable" when this launch has no
                app cache, "not-yet-available" when it is not prepared yet
        """
        if self.cache is None:
            raise CacheUnavailableError(
                f"Capsule not extracted; cannot resolve {purpose}",
                reason=CacheUnavailableError.NOT_APPLICABLE,
            )
        return self.cache.require(purpose)

    @property
    def cache_dir(self) -> Path | None:
        return self.cache.directory if self.cache is not None else None

    # =========================================================================
    # Cleanup
    # =========================================================================

    def add_cleanup(self, action: Callable[[], Any]) -> None:
        """Register an action for cleanup(); actions run last-in first-out."""
        self._cleanups.append(action)

    def cleanup(self) -> None:
        """
        Run all cleanup actions once. Never raises.

        Called from normal exit, signal handlers and the fatal error path;
        only the first call does anything.
        """
        if self._cleaned_up:
            return
        self._cleaned_up = True
        while self._cleanups:
            action = self._cleanups.pop()
            try:
                action()
            except Exception as e:
                logger.warning(f"[session] Cleanup action {action!r} failed: {e}")
        if self.cache is not None:
            self.cache.cleanup()
        logger.debug("[session] Cleanup complete")
