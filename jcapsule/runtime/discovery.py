"""
Java installation discovery and selection.

Installations are found by scanning well-known roots for directories
named like Java installations (jdk1.8.0_45, jre8, jdk-17, 1.8.0.jdk) or
containing bin/java. A name that encodes a full version is trusted;
otherwise the installation's ``java -version`` output is queried.

Selection picks the highest version satisfying the declared constraints;
among equal versions the first discovered wins.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from jcapsule.errors import LaunchEnvironmentError
from jcapsule.platform import Platform
from jcapsule.version import JavaVersion, compare_versions, is_java_dir_name, parse_version

logger = logging.getLogger(__name__)

_VERSION_LINE = re.compile(r'.*?"(.+?)"')

MAX_VERSION_LINES = 10
VERSION_QUERY_TIMEOUT = 30.0
MAX_SEARCH_DEPTH = 3

VersionQuery = Callable[[Path], JavaVersion]


@dataclass(frozen=True)
class JavaInstallation:
    """A Java installation found on this host."""

    home: Path
    version: JavaVersion
    is_jdk: bool = False

    def __str__(self) -> str:
        kind = "JDK" if self.is_jdk else "JRE"
        return f"{self.version} {kind} {self.home}"


def java_executable(home: Path, platform: Platform) -> Path:
    return home / "bin" / platform.java_executable


def is_java_home(directory: Path, platform: Platform) -> bool:
    return java_executable(directory, platform).is_file()


def search_java_home(directory: Path, platform: Platform, depth: int = MAX_SEARCH_DEPTH) -> Path | None:
    """Find the directory containing bin/java at or below ``directory``."""
    if not directory.is_dir():
        return None
    if is_java_home(directory, platform):
        return directory
    if depth <= 0:
        return None
    try:
        children = sorted(p for p in directory.iterdir() if p.is_dir())
    except OSError:
        return None
    for child in children:
        if child.name == "bin":
            continue
        home = search_java_home(child, platform, depth - 1)
        if home is not None:
            return home
    return None


def query_java_version(home: Path, platform: Platform, timeout: float = VERSION_QUERY_TIMEOUT) -> JavaVersion:
    """
    Run ``java -version`` and parse the first quoted version.

    Reads at most MAX_VERSION_LINES lines, then waits for the process.

    Raises:
        LaunchEnvironmentError: If the process fails or prints no version
    """
    java = java_executable(home, platform)
    env = dict(os.environ, JAVA_HOME=str(home))
    try:
        proc = subprocess.Popen(
            [str(java), "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
    except OSError as e:
        raise LaunchEnvironmentError(f"Could not run {java}: {e}") from e

    version: str | None = None
    try:
        assert proc.stderr is not None
        for _ in range(MAX_VERSION_LINES):
            line = proc.stderr.readline()
            if not line:
                break
            match = _VERSION_LINE.match(line)
            if match and version is None:
                version = match.group(1)
                break
        proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.communicate()
        raise LaunchEnvironmentError(f"{java} -version did not finish within {timeout}s") from None

    if proc.returncode != 0:
        raise LaunchEnvironmentError(f"{java} -version exited with status {proc.returncode}")
    if version is None:
        raise LaunchEnvironmentError(f"Could not parse the version reported by {java}")
    try:
        return parse_version(version)
    except ValueError as e:
        raise LaunchEnvironmentError(f"{java} reported an unrecognized version: {version}") from e


# =============================================================================
# Constraints
# =============================================================================


@dataclass
class VersionConstraints:
    """
    Declared Java version requirements.

    Attributes:
        min_version: Lowest acceptable version (Min-Java-Version)
        max_version: Highest acceptable version, compared on feature and
            interim numbers only (Java-Version)
        min_update: Minimum update per version (Min-Update-Version)
        jdk_required: Whether a JDK is required (JDK-Required)
    """

    min_version: str | None = None
    max_version: str | None = None
    min_update: dict[str, str] = field(default_factory=dict)
    jdk_required: bool = False

    def matches(self, version: JavaVersion) -> bool:
        try:
            if self.min_version and compare_versions(version, self.min_version) < 0:
                logger.debug(f"[runtime] {version} fails Min-Java-Version {self.min_version}")
                return False
            if self.max_version and compare_versions(version, self.max_version, depth=2) > 0:
                logger.debug(f"[runtime] {version} fails Java-Version {self.max_version}")
                return False
            if version.update < self.min_update_for(version):
                logger.debug(f"[runtime] {version} fails Min-Update-Version {self.min_update}")
                return False
        except ValueError as e:
            logger.info(f"[runtime] Error parsing Java version constraint: {e}")
            return False
        return True

    def min_update_for(self, version: JavaVersion) -> int:
        for key, value in self.min_update.items():
            if compare_versions(version, key, depth=2) == 0:
                return int(value)
        return 0

    def describe(self) -> str:
        return (
            f"[Min. Java version: {self.min_version} JavaVersion: {self.max_version} "
            f"Min. update version: {self.min_update or None}] (JDK required: {self.jdk_required})"
        )


# =============================================================================
# Discovery
# =============================================================================


class JavaDiscovery:
    """
    Finds Java installations on the host.

    Args:
        platform: Host platform
        query: Version lookup for an installation (injected in tests)
        roots: Directories to scan; defaults to the platform's usual locations
        env: Environment used to locate the current installation
    """

    def __init__(
        self,
        platform: Platform,
        query: VersionQuery | None = None,
        roots: list[Path] | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self.platform = platform
        self._query = query or (lambda home: query_java_version(home, platform))
        self._roots = roots
        self._env = os.environ if env is None else env
        self._installations: list[JavaInstallation] | None = None
        self._versions: dict[Path, JavaVersion] = {}

    def current_java_home(self) -> Path | None:
        """The installation the launcher would use by default: JAVA_HOME, then PATH."""
        java_home = self._env.get("JAVA_HOME")
        if java_home and is_java_home(Path(java_home), self.platform):
            return Path(java_home).absolute()
        java = shutil.which(self.platform.java_executable, path=self._env.get("PATH"))
        if java:
            home = Path(java).resolve().parent.parent
            if is_java_home(home, self.platform):
                return home
        return None

    def version_of(self, home: Path) -> JavaVersion:
        """Query (once) the version of an installation."""
        if home not in self._versions:
            self._versions[home] = self._query(home)
        return self._versions[home]

    def search_roots(self) -> list[Path]:
        if self._roots is not None:
            return list(self._roots)
        roots: list[Path] = []
        current = self.current_java_home()
        if current is not None:
            # Siblings of the current installation; for a JRE nested in a JDK, the JDK's siblings too
            roots.append(current.parent)
            if current.name == "jre":
                roots.append(current.parent.parent)
            if current.name == "Home" and current.parent.name == "Contents":
                roots.append(current.parent.parent.parent)
        if self.platform.is_windows:
            for env_name in ("ProgramFiles", "ProgramFiles(x86)", "ProgramW6432"):
                base = self._env.get(env_name)
                if base:
                    roots.append(Path(base) / "Java")
        elif self.platform.is_mac:
            roots.append(Path("/Library/Java/JavaVirtualMachines"))
        else:
            roots.extend([Path("/usr/lib/jvm"), Path("/usr/java"), Path("/opt/java")])
        unique: list[Path] = []
        for root in roots:
            if root not in unique:
                unique.append(root)
        return unique

    def installations(self) -> list[JavaInstallation]:
        """All installations found, in discovery order (scanned once)."""
        if self._installations is not None:
            return self._installations
        found: list[JavaInstallation] = []
        seen: set[Path] = set()
        for root in self.search_roots():
            if not root.is_dir():
                continue
            for directory in sorted(p for p in root.iterdir() if p.is_dir()):
                home = search_java_home(directory, self.platform)
                if home is None:
                    continue
                home = home.absolute()
                if home in seen:
                    continue
                seen.add(home)
                installation = self._describe(directory, home)
                if installation is not None:
                    found.append(installation)
        self._installations = found
        logger.debug(f"[runtime] Found {len(found)} Java installations")
        return found

    def _describe(self, directory: Path, home: Path) -> JavaInstallation | None:
        name = directory.name
        named = is_java_dir_name(name)
        try:
            version = parse_version(named) if named else None
            if version is None or version.update == 0:
                version = self.version_of(home)
        except (ValueError, LaunchEnvironmentError) as e:
            logger.info(f"[runtime] Skipping {home}: {e}")
            return None
        lowered = name.lower()
        is_jdk = ("jdk" in lowered and "jre" not in lowered) or (home / "bin" / "javac").is_file() or (
            home / "bin" / "javac.exe"
        ).is_file()
        return JavaInstallation(home=home, version=version, is_jdk=is_jdk)

    def select(self, constraints: VersionConstraints) -> JavaInstallation | None:
        """Highest installation satisfying the constraints (first discovered on ties)."""
        best: JavaInstallation | None = None
        for installation in self.installations():
            if constraints.jdk_required and not installation.is_jdk:
                continue
            logger.debug(f"[runtime] Trying JVM: {installation}")
            if not constraints.matches(installation.version):
                continue
            if best is None or installation.version > best.version:
                best = installation
        return best
