"""
Reference handles.

lookup() turns a descriptor string into one of these immutable values
without touching the filesystem; resolve() later turns a handle into
paths. Handles compare and hash by value, so equal descriptors looked up
in the same context share one memoized resolution.
"""

from __future__ import annotations

from dataclasses import dataclass

from jcapsule.dependency.base import Coordinates


@dataclass(frozen=True)
class Handle:
    """Base of all reference handles."""

    descriptor: str


@dataclass(frozen=True)
class PathHandle(Handle):
    """A concrete file path; relative paths are relative to the app cache."""

    path: str
    absolute: bool = False


@dataclass(frozen=True)
class DependencyHandle(Handle):
    """Dependency coordinates to be resolved by the dependency backend."""

    coords: Coordinates
    type: str = "jar"


@dataclass(frozen=True)
class GlobHandle(Handle):
    """A glob pattern matched inside the app cache."""

    pattern: str


@dataclass(frozen=True)
class AttributeHandle(Handle):
    """
    A handle tagged with the attribute that produced it.

    Some attributes need extra work on resolution: the application
    artifact contributes its own embedded class path, and native
    dependencies are copied into the app cache under an optional new name
    (carried in map_value).
    """

    inner: Handle
    attribute: str
    map_value: str | None = None
