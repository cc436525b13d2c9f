"""
Launch Engine for jcapsule.

Drives one launch from archive to exit status:

    open       bind to the archive (or the capsule an empty one wraps),
               build the attribute store and the override chain
    prepare    mode, app id, dependency backend, app cache, launch plan
    launch     start the child and relay its exit status

The read-only actions (print_version, print_modes, print_jvms,
print_dependency_tree, resolve_dependencies, merge) stop after open().

Example:
    engine = LaunchEngine(Path("app.jar"), get_settings(), LaunchOptions(mode="debug"))
    exit_code = engine.run(sys.argv[2:])
"""

from __future__ import annotations

import logging
import shutil
import sys
from pathlib import Path
from typing import IO

from jcapsule.archive.jar import is_capsule, read_manifest
from jcapsule.archive.manifest import Manifest
from jcapsule.archive.merge import merge_capsules, merge_manifests
from jcapsule.cache.app_cache import APP_CACHE_NAME, AppCache, open_cache_root
from jcapsule.capsule import OPERATIONS, Capsule
from jcapsule.caplets.chain import OverrideChain
from jcapsule.caplets.registry import CapletRegistry, get_caplet_registry
from jcapsule.config.attributes import (
    ATTR_APP_ARTIFACT,
    ATTR_CAPLETS,
    ATTR_ENV,
    ATTR_EXTRACT,
    ATTR_JAVA_AGENTS,
    ATTR_LOG_LEVEL,
    ATTR_NATIVE_AGENTS,
    core_registry,
)
from jcapsule.config.settings import LauncherSettings, LogLevel, get_settings
from jcapsule.config.store import AttributeStore
from jcapsule.dependency.base import DependencyManager, is_dependency
from jcapsule.errors import ConfigurationError
from jcapsule.platform import Platform
from jcapsule.resolve.resolver import ReferenceResolver
from jcapsule.runtime.discovery import JavaDiscovery

from .plan import LaunchPlan
from .planner import LaunchPlanner
from .process import ChildProcess, install_cleanup_handlers
from .session import LaunchOptions, LaunchSession

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "jcapsule"


class LaunchEngine:
    """
    Orchestrates a launch.

    Args:
        jar: The capsule archive
        settings: Process settings (defaults to get_settings())
        options: Per-launch options
        platform: Host platform (defaults to the detected one)
        caplets: Caplet registry (defaults to the global one)
        discovery: Java installation discovery (injected in tests)
        dependency_manager: Dependency backend (defaults to one built by
            the chain's create_dependency_manager)
    """

    def __init__(
        self,
        jar: Path | None,
        settings: LauncherSettings | None = None,
        options: LaunchOptions | None = None,
        *,
        platform: Platform | None = None,
        caplets: CapletRegistry | None = None,
        discovery: JavaDiscovery | None = None,
        dependency_manager: DependencyManager | None = None,
    ) -> None:
        session_args = {"settings": settings or get_settings(), "options": options or LaunchOptions()}
        if platform is not None:
            session_args["platform"] = platform
        self.session = LaunchSession(**session_args)
        self.session.discovery = discovery
        self.session.dependency_manager = dependency_manager
        self.jar = Path(jar) if jar is not None else None
        self.caplets = caplets if caplets is not None else get_caplet_registry()
        self.capsule: Capsule | None = None
        self._args: list[str] | None = None
        self._temporary_root: Path | None = None

    @property
    def oc(self):
        """Virtual dispatcher over the override chain."""
        if self.session.chain is None:
            raise ConfigurationError("Launch engine is not open")
        return self.session.chain.virtual

    # =========================================================================
    # Open
    # =========================================================================

    def open(self, args: list[str]) -> list[str]:
        """
        Bind to the archive and build the attribute store and override chain.

        An empty capsule whose first argument names another capsule (a
        path or dependency coordinates) binds to that capsule instead and
        consumes the argument.

        Returns:
            The remaining application arguments
        """
        if self._args is not None:
            return self._args
        session = self.session
        args = list(args)
        if self.jar is None:
            raise ConfigurationError("No capsule archive given")

        manifest = read_manifest(self.jar)
        session.bind(self.jar, manifest)
        self._build(manifest)

        if self.capsule.is_empty() and args:
            target = self._locate_target(args[0])
            if target is not None:
                logger.info(f"[engine] Wrapping capsule {target}")
                session.bind(target, merge_manifests(manifest, read_manifest(target)))
                self._build(session.manifest)
                args = args[1:]

        session.finalize()
        self._args = args
        return args

    def _build(self, manifest: Manifest) -> None:
        session = self.session
        caplet_types = [self.caplets.get(name) for name in (manifest.main.get(ATTR_CAPLETS) or "").split()]

        registry = core_registry()
        for caplet_type in caplet_types:
            registry.register_all(caplet_type.ATTRIBUTES, owner=caplet_type.name)

        session.registry = registry
        session.store = AttributeStore(
            manifest,
            registry,
            session.platform,
            on_access=lambda name, raw: session.set_context("attribute", name, raw),
        )
        session.resolver = ReferenceResolver(
            session.require_cache,
            session.dependency_manager,
            java_homes=lambda: (session.current_java_home, session.java_home),
        )

        self.capsule = Capsule(session)
        chain = OverrideChain(self.capsule, OPERATIONS)
        for caplet_type in caplet_types:
            chain.append(caplet_type(session), after=chain.tail)
        chain.freeze()
        session.chain = chain
        logger.debug(f"[engine] Override chain: {chain}")

        session.store.validate()

    def _locate_target(self, candidate: str) -> Path | None:
        path = Path(candidate)
        if path.is_file():
            if not is_capsule(path):
                raise ConfigurationError(f"{candidate} is not a capsule")
            return path.absolute()
        if is_dependency(candidate):
            self._open_dependency_manager(force=True)
            paths = self.session.dependency_manager.resolve_dependency(candidate, "jar")
            if not paths or not is_capsule(paths[0]):
                raise ConfigurationError(f"Dependency {candidate} is not a capsule")
            return Path(paths[0]).absolute()
        return None

    # =========================================================================
    # Prepare
    # =========================================================================

    def _select_mode(self) -> None:
        store = self.session.store
        if store.mode is None:
            store.set_mode(self.oc.choose_mode(self.session.options.mode))

    def _apply_log_level(self) -> None:
        level = self.session.options.log_level
        if level is None:
            try:
                level = LogLevel.parse(self.oc.get_attribute(ATTR_LOG_LEVEL), self.session.settings.log_level)
            except ValueError as e:
                raise ConfigurationError(str(e)) from None
        logging.getLogger(PACKAGE_LOGGER).setLevel(level.logging_level)

    def _cache_root(self) -> Path:
        session = self.session
        if session.cache_root is None:
            root, temporary = open_cache_root(session.settings.cache_root())
            session.cache_root = root
            if temporary:
                self._temporary_root = root
                session.add_cleanup(lambda: shutil.rmtree(root, ignore_errors=True))
        return session.cache_root

    def _needs_dependency_manager(self) -> bool:
        oc = self.oc
        if oc.get_dependencies() or oc.get_native_dependencies():
            return True
        artifact = oc.get_attribute(ATTR_APP_ARTIFACT)
        if artifact and is_dependency(artifact):
            return True
        for attribute in (ATTR_JAVA_AGENTS, ATTR_NATIVE_AGENTS):
            if any(is_dependency(k) for k in oc.get_attribute(attribute)):
                return True
        return False

    def _open_dependency_manager(self, force: bool = False) -> None:
        session = self.session
        if session.dependency_manager is None and (force or self._needs_dependency_manager()):
            if session.settings.local_repo is None:
                self._cache_root()
            manager = self.oc.create_dependency_manager()
            close = getattr(manager, "close", None)
            if close is not None:
                session.add_cleanup(close)
            session.dependency_manager = manager
        if session.resolver is not None:
            session.resolver.dependency_manager = session.dependency_manager

    def _open_app_cache(self) -> None:
        session = self.session
        root = self._cache_root()
        cache = AppCache(
            root / APP_CACHE_NAME / session.app_id,
            session.jar,
            reset=session.options.reset or session.settings.reset,
            temporary_root=self._temporary_root,
        )
        session.cache = cache
        extractor = self.oc.extract_capsule if self.oc.get_attribute(ATTR_EXTRACT) else None
        cache.prepare(extractor)

    def prepare(self, args: list[str]) -> LaunchPlan:
        """
        Build the launch plan.

        Raises:
            CapsuleError: On any configuration, resolution or environment failure
        """
        args = self.open(args)
        session = self.session
        oc = self.oc

        self._apply_log_level()
        self._select_mode()
        session.app_id = oc.build_app_id()
        if session.app_id is None:
            raise ConfigurationError(f"No application to run: {session.jar} is an empty capsule")
        logger.info(f"[engine] Application {session.app_id}")

        if session.options.trampoline and oc.has_attribute(ATTR_ENV):
            raise ConfigurationError(
                f"Capsule cannot trampoline because it declares {ATTR_ENV}"
            )

        if session.discovery is None:
            session.discovery = JavaDiscovery(session.platform)
        session.current_java_home = session.discovery.current_java_home()

        self._open_dependency_manager()
        if oc.needs_app_cache():
            self._open_app_cache()

        plan = LaunchPlanner(session).build(args)
        if session.cache is not None:
            session.cache.mark_ready()
        return plan

    # =========================================================================
    # Launch
    # =========================================================================

    def launch(self, args: list[str], out: IO[str] | None = None) -> int:
        """
        Prepare and run the application, or print its command line in
        trampoline mode.

        Returns:
            The child's exit status (0 in trampoline mode)
        """
        plan = self.prepare(args)
        if self.session.options.trampoline:
            print(plan.command_line(windows=self.session.platform.is_windows), file=out or sys.stdout)
            return 0
        child = ChildProcess(plan, self.session, pump_io=self.session.options.pump_io)
        child.start()
        return child.wait()

    def run(self, args: list[str]) -> int:
        """launch() with cleanup handlers installed; cleanup always runs."""
        install_cleanup_handlers(self.session)
        try:
            return self.launch(args)
        finally:
            self.session.cleanup()

    # =========================================================================
    # Read-only actions
    # =========================================================================

    def print_version(self, args: list[str], out: IO[str]) -> None:
        from jcapsule import __version__

        self.open(args)
        self._select_mode()
        app_id = self.oc.build_app_id()
        print(f"Application {app_id or '(none)'}", file=out)
        print(f"jcapsule version {__version__}", file=out)

    def print_modes(self, args: list[str], out: IO[str]) -> None:
        self.open(args)
        store = self.session.store
        modes = store.modes
        if not modes:
            print("Default mode only", file=out)
            return
        print("Available modes:", file=out)
        for mode in modes:
            description = store.mode_description(mode)
            print(f"* {mode}" + (f": {description}" if description else ""), file=out)

    def print_jvms(self, out: IO[str]) -> None:
        discovery = self.session.discovery or JavaDiscovery(self.session.platform)
        current = discovery.current_java_home()
        print(f"CURRENT: {current or '(none)'}", file=out)
        installations = discovery.installations()
        if not installations:
            print("No Java installations found", file=out)
        for installation in installations:
            print(str(installation), file=out)

    def print_dependency_tree(self, args: list[str], out: IO[str]) -> None:
        self.open(args)
        self._select_mode()
        oc = self.oc
        dependencies = oc.get_dependencies()
        native = list(oc.get_native_dependencies())
        if not dependencies and not native:
            print("No external dependencies.", file=out)
            return
        self._open_dependency_manager(force=True)
        manager = self.session.dependency_manager
        if dependencies:
            print("Dependencies:", file=out)
            manager.print_dependency_tree(dependencies, "jar", out)
        if native:
            print("Native dependencies:", file=out)
            manager.print_dependency_tree(native, self.session.platform.native_lib_extension, out)

    def resolve_dependencies(self, args: list[str]) -> list[Path]:
        """Download every declared dependency into the local store."""
        self.open(args)
        self._select_mode()
        oc = self.oc
        self._open_dependency_manager()
        manager = self.session.dependency_manager
        if manager is None:
            return []
        paths = manager.resolve_dependencies(oc.get_dependencies(), "jar")
        native = list(oc.get_native_dependencies())
        if native:
            paths += manager.resolve_dependencies(native, self.session.platform.native_lib_extension)
        artifact = oc.get_attribute(ATTR_APP_ARTIFACT)
        if artifact and is_dependency(artifact):
            paths += manager.resolve_dependency(artifact, "jar")
        return paths

    def merge(self, args: list[str], output: Path) -> Path:
        """
        Write the wrapper and the capsule it wraps as one archive.

        Raises:
            ConfigurationError: If this archive does not wrap another
        """
        self.open(args)
        session = self.session
        if not session.is_wrapper:
            raise ConfigurationError(f"{self.jar} does not wrap another capsule; nothing to merge")
        return merge_capsules(session.wrapper, session.jar, Path(output))

    def cleanup(self) -> None:
        self.session.cleanup()
