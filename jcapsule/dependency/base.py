"""
Dependency backend interface.

The launcher never resolves dependency graphs itself. It hands dependency
coordinates to a DependencyManager and receives local files back.

Coordinates:
    group:artifact[:version[:classifier]][(exclusion,exclusion)]

An empty version, "RELEASE" or "LATEST" asks the backend for the newest
available version.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Protocol, runtime_checkable

from jcapsule.errors import ConfigurationError

_COORDS_PATTERN = re.compile(
    r"^(?P<group>[^:\s()]+):(?P<artifact>[^:\s()]+)"
    r"(?::(?P<version>[^:\s()]*))?"
    r"(?::(?P<classifier>[^:\s()]+))?"
    r"(?:\((?P<exclusions>[^)]*)\))?$"
)

LATEST_MARKERS = ("", "LATEST", "RELEASE")


@dataclass(frozen=True)
class Coordinates:
    """Parsed dependency coordinates."""

    group: str
    artifact: str
    version: str = ""
    classifier: str = ""
    exclusions: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_latest(self) -> bool:
        return self.version.upper() in LATEST_MARKERS

    @property
    def is_snapshot(self) -> bool:
        return self.version.upper().endswith("-SNAPSHOT")

    def with_version(self, version: str) -> "Coordinates":
        return Coordinates(self.group, self.artifact, version, self.classifier, self.exclusions)

    def file_name(self, type: str = "jar", with_group: bool = False) -> str:
        parts = [self.group] if with_group else []
        parts += [self.artifact, self.version]
        if self.classifier:
            parts.append(self.classifier)
        return "-".join(p for p in parts if p) + f".{type}"

    def __str__(self) -> str:
        text = f"{self.group}:{self.artifact}"
        if self.version or self.classifier:
            text += f":{self.version}"
        if self.classifier:
            text += f":{self.classifier}"
        if self.exclusions:
            text += "(" + ",".join(sorted(self.exclusions)) + ")"
        return text


def is_dependency(descriptor: str) -> bool:
    """Whether a descriptor names dependency coordinates rather than a path."""
    if ":" not in descriptor:
        return False
    # C:\foo or C:/foo are Windows paths
    if re.match(r"^[A-Za-z]:[\\/]", descriptor):
        return False
    return _COORDS_PATTERN.match(descriptor) is not None


def parse_coordinates(text: str) -> Coordinates:
    """
    Parse dependency coordinates.

    Raises:
        ConfigurationError: If the text is not group:artifact[:version[:classifier]]
    """
    match = _COORDS_PATTERN.match(text.strip())
    if match is None:
        raise ConfigurationError(f"Illegal dependency coordinates: {text}")
    exclusions = match.group("exclusions") or ""
    return Coordinates(
        group=match.group("group"),
        artifact=match.group("artifact"),
        version=match.group("version") or "",
        classifier=match.group("classifier") or "",
        exclusions=frozenset(e.strip() for e in exclusions.split(",") if e.strip()),
    )


@runtime_checkable
class DependencyManager(Protocol):
    """
    Backend that turns coordinates into local files.

    Implementations must be safe to call repeatedly with the same
    coordinates; the launcher memoizes results per handle but caplets may
    call the backend directly.
    """

    def resolve_dependency(self, coords: str, type: str = "jar") -> list[Path]:
        """Resolve one dependency to its local file(s)."""
        ...

    def resolve_dependencies(self, coords: list[str], type: str = "jar") -> list[Path]:
        """Resolve several dependencies, preserving order."""
        ...

    def print_dependency_tree(self, coords: list[str], type: str, out: IO[str]) -> None:
        """Write a human-readable dependency tree."""
        ...

    def latest_version(self, coords: str, type: str = "jar") -> str:
        """Return coordinates with the version pinned to the newest available."""
        ...
