"""
Reference Resolver for jcapsule.

Two-phase resolution of file and dependency references declared in the
manifest:

    handle = resolver.lookup("lib/foo", "jar", attribute="App-Class-Path")
    paths = resolver.resolve(handle)

lookup() is pure and cheap, so validation code can call it freely.
resolve() may touch the filesystem or the dependency backend; results are
memoized per handle, so side effects (copying a native library into the
cache, reading an artifact's embedded class path) happen at most once per
launch.

Descriptor forms:
    group:artifact:version[:classifier]   dependency
    lib/*.jar                             glob inside the app cache
    lib/foo.jar                           path inside the app cache
    /opt/foo.jar                          absolute path
"""

from __future__ import annotations

import logging
import posixpath
import re
import shutil
from collections.abc import Callable
from pathlib import Path, PurePath

from jcapsule.archive.jar import embedded_class_path
from jcapsule.config.attributes import (
    ATTR_APP_ARTIFACT,
    ATTR_NATIVE_DEPENDENCIES_LINUX,
    ATTR_NATIVE_DEPENDENCIES_MAC,
    ATTR_NATIVE_DEPENDENCIES_WIN,
)
from jcapsule.dependency.base import DependencyManager, is_dependency, parse_coordinates
from jcapsule.errors import CacheUnavailableError, ConfigurationError, ResolutionError

from .handles import AttributeHandle, DependencyHandle, GlobHandle, Handle, PathHandle

logger = logging.getLogger(__name__)

NATIVE_DEPENDENCY_ATTRIBUTES = frozenset(
    a.lower()
    for a in (ATTR_NATIVE_DEPENDENCIES_LINUX, ATTR_NATIVE_DEPENDENCIES_WIN, ATTR_NATIVE_DEPENDENCIES_MAC)
)

_GLOB_CHARS = re.compile(r"[*?\[]")
_WINDOWS_ABSOLUTE = re.compile(r"^[A-Za-z]:[\\/]")

CacheAccessor = Callable[[str], Path]
JavaHomes = Callable[[], "tuple[Path | None, Path | None]"]


def sanitize(path: str) -> str:
    """
    Normalize a cache-relative path, rejecting anything that escapes the cache.

    Raises:
        ConfigurationError: If the path is absolute or climbs out with ".."
    """
    candidate = path.replace("\\", "/")
    normalized = posixpath.normpath(candidate)
    if candidate.startswith("/") or normalized == ".." or normalized.startswith("../"):
        raise ConfigurationError(f"Path {path} is not local")
    return normalized


def _is_absolute(descriptor: str) -> bool:
    return PurePath(descriptor).is_absolute() or bool(_WINDOWS_ABSOLUTE.match(descriptor))


class ReferenceResolver:
    """
    Turns manifest references into paths.

    Args:
        cache: Returns the app cache directory for a purpose, raising
            CacheUnavailableError when there is none
        dependency_manager: Backend for dependency coordinates (optional)
        java_homes: Returns (current, selected) Java homes; absolute paths
            under the current home are remapped to the selected one
    """

    def __init__(
        self,
        cache: CacheAccessor,
        dependency_manager: DependencyManager | None = None,
        java_homes: JavaHomes | None = None,
    ) -> None:
        self._cache = cache
        self.dependency_manager = dependency_manager
        self._java_homes = java_homes
        self._memo: dict[Handle, tuple[Path, ...]] = {}
        self.native_copies = 0

    # =========================================================================
    # Lookup
    # =========================================================================

    def lookup(
        self,
        descriptor: str,
        expected_extension: str | None = None,
        attribute: str | None = None,
        map_value: str | None = None,
    ) -> Handle:
        """
        Classify a descriptor. Never touches the filesystem.

        Raises:
            ConfigurationError: On empty descriptors or paths escaping the cache
        """
        text = descriptor.strip()
        if not text:
            raise ConfigurationError("Empty file or dependency reference")

        handle: Handle
        if is_dependency(text):
            handle = DependencyHandle(text, parse_coordinates(text), expected_extension or "jar")
        elif _is_absolute(text):
            handle = PathHandle(text, str(Path(text)), absolute=True)
        elif _GLOB_CHARS.search(text):
            handle = GlobHandle(text, sanitize(text))
        else:
            path = sanitize(text)
            if expected_extension and not PurePath(path).suffix:
                path = f"{path}.{expected_extension}"
            handle = PathHandle(text, path)

        if attribute is not None:
            handle = AttributeHandle(text, handle, attribute, map_value)
        return handle

    # =========================================================================
    # Resolve
    # =========================================================================

    def resolve(self, handle: Handle, required: bool = True) -> list[Path]:
        """
        Resolve a handle to absolute paths. Memoized per handle.

        Raises:
            ResolutionError: If required and the handle denotes no files
        """
        cached = self._memo.get(handle)
        if cached is None:
            cached = tuple(self._resolve(handle))
            self._memo[handle] = cached
            logger.debug(f"[resolver] {handle.descriptor} -> {[str(p) for p in cached]}")
        if required and not cached:
            raise ResolutionError(
                f"{handle.descriptor} did not resolve to any file", descriptor=handle.descriptor
            )
        return list(cached)

    def resolve_one(self, handle: Handle) -> Path:
        """
        Resolve a handle that must denote exactly one file.

        Raises:
            ResolutionError: On zero or several files
        """
        paths = self.resolve(handle)
        if len(paths) != 1:
            raise ResolutionError(
                f"{handle.descriptor} resolved to {len(paths)} files; exactly one expected",
                descriptor=handle.descriptor,
            )
        return paths[0]

    def _resolve(self, handle: Handle) -> list[Path]:
        if isinstance(handle, AttributeHandle):
            return self._resolve_attribute(handle)
        if isinstance(handle, DependencyHandle):
            return self._resolve_dependency(handle)
        if isinstance(handle, GlobHandle):
            cache = self._cache(handle.descriptor)
            return sorted(p.absolute() for p in cache.glob(handle.pattern) if p.is_file())
        if isinstance(handle, PathHandle):
            if handle.absolute:
                return [self._remap_java_home(Path(handle.path))]
            return [(self._cache(handle.descriptor) / handle.path).absolute()]
        raise TypeError(f"Unknown handle type: {type(handle).__name__}")

    def _resolve_attribute(self, handle: AttributeHandle) -> list[Path]:
        paths = self.resolve(handle.inner, required=False)
        attribute = handle.attribute.lower()

        if attribute == ATTR_APP_ARTIFACT.lower():
            result = list(paths)
            for path in paths:
                if path.suffix == ".jar" and path.is_file():
                    for entry in embedded_class_path(path):
                        if entry not in result:
                            result.append(entry)
            return result

        if attribute in NATIVE_DEPENDENCY_ATTRIBUTES:
            if len(paths) != 1:
                raise ResolutionError(
                    f"Native dependency {handle.descriptor} resolved to {len(paths)} files; exactly one expected",
                    descriptor=handle.descriptor,
                )
            return [self._copy_native(paths[0], handle)]

        return paths

    def _resolve_dependency(self, handle: DependencyHandle) -> list[Path]:
        if self.dependency_manager is not None:
            paths = self.dependency_manager.resolve_dependency(str(handle.coords), handle.type)
            return [Path(p).absolute() for p in paths]

        # Without a backend, the archive may embed the artifact itself.
        try:
            cache = self._cache(handle.descriptor)
        except CacheUnavailableError as e:
            raise ResolutionError(
                f"Dependency manager not found. Cannot resolve {handle.descriptor}",
                descriptor=handle.descriptor,
            ) from e
        for with_group in (True, False):
            candidate = cache / handle.coords.file_name(handle.type, with_group=with_group)
            if candidate.is_file():
                return [candidate.absolute()]
        raise ResolutionError(
            f"Dependency manager not found, and could not locate artifact {handle.descriptor} in capsule",
            descriptor=handle.descriptor,
        )

    def _copy_native(self, source: Path, handle: AttributeHandle) -> Path:
        rename = sanitize(handle.map_value) if handle.map_value else None
        try:
            cache = self._cache(f"native dependency {handle.descriptor}")
        except CacheUnavailableError:
            if rename is not None:
                raise
            return source
        target = (cache / (rename or source.name)).absolute()
        if target.exists():
            logger.debug(f"[resolver] Native library {target} already in the app cache")
            return target
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)
        self.native_copies += 1
        logger.info(f"[resolver] Copied native library {source} to {target}")
        return target

    def _remap_java_home(self, path: Path) -> Path:
        if self._java_homes is None:
            return path
        current, selected = self._java_homes()
        if current is None or selected is None or current == selected:
            return path
        try:
            relative = path.relative_to(current)
        except ValueError:
            return path
        remapped = selected / relative
        logger.debug(f"[resolver] Remapped {path} to {remapped}")
        return remapped
