"""
Maven repository backend.

Fetches single artifacts from Maven-layout HTTP repositories into a local
store. There is no POM processing: each coordinate resolves to exactly one
file, and transitive dependencies must be listed explicitly.

Usage:
    with MavenDependencyManager(["central"], local_repo=cache / "deps") as dm:
        jars = dm.resolve_dependency("com.acme:foo:1.0")

Repository entries are either URLs or one of the well-known aliases in
REPOSITORY_ALIASES.
"""

from __future__ import annotations

import logging
import random
import time
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import IO

import httpx

from jcapsule.errors import ConfigurationError, ResolutionError

from .base import Coordinates, parse_coordinates

logger = logging.getLogger(__name__)

REPOSITORY_ALIASES = {
    "central": "https://repo1.maven.org/maven2",
    "central-http": "http://repo1.maven.org/maven2",
}

DEFAULT_REPOSITORIES = ("central",)


def repository_url(entry: str) -> str:
    """
    Expand a repository alias to its URL.

    Raises:
        ConfigurationError: If the entry is neither an alias nor an http(s) URL
    """
    url = REPOSITORY_ALIASES.get(entry.lower(), entry)
    if not url.startswith(("http://", "https://")):
        available = ", ".join(REPOSITORY_ALIASES)
        raise ConfigurationError(f"Unknown repository: {entry}. Available aliases: {available}")
    return url.rstrip("/")


class MavenDependencyManager:
    """
    DependencyManager backed by Maven-layout repositories.

    Artifacts are stored as <local_repo>/<group path>/<artifact>/<version>/<file>,
    mirroring the remote layout, and are downloaded at most once.
    """

    def __init__(
        self,
        repositories: list[str] | None = None,
        local_repo: Path | None = None,
        *,
        allow_snapshots: bool = False,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
    ) -> None:
        entries = list(repositories or []) or list(DEFAULT_REPOSITORIES)
        self.repositories = [repository_url(r) for r in entries]
        self.local_repo = Path(local_repo) if local_repo else Path.home() / ".m2" / "repository"
        self.allow_snapshots = allow_snapshots
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    @property
    def name(self) -> str:
        return "maven"

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "MavenDependencyManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # DependencyManager
    # =========================================================================

    def resolve_dependency(self, coords: str, type: str = "jar") -> list[Path]:
        """
        Resolve one artifact to a local file, downloading it if needed.

        Raises:
            ResolutionError: If no repository has the artifact
        """
        parsed = parse_coordinates(coords)
        if parsed.is_latest:
            parsed = parse_coordinates(self.latest_version(coords, type))
        self._check_snapshot(parsed)

        target = self._local_path(parsed, type)
        if target.is_file():
            logger.debug(f"[{self.name}] {parsed} found in {target}")
            return [target]

        relative = self._relative_path(parsed, type)
        for repo in self.repositories:
            url = f"{repo}/{relative}"
            response = self._get(url)
            if response is None:
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            partial = target.with_name(target.name + ".part")
            partial.write_bytes(response.content)
            partial.replace(target)
            logger.info(f"[{self.name}] Downloaded {parsed} from {repo}")
            return [target]

        raise ResolutionError(
            f"Dependency {coords} was not found in {', '.join(self.repositories)}",
            descriptor=coords,
        )

    def resolve_dependencies(self, coords: list[str], type: str = "jar") -> list[Path]:
        paths: list[Path] = []
        for c in coords:
            paths.extend(self.resolve_dependency(c, type))
        return paths

    def print_dependency_tree(self, coords: list[str], type: str, out: IO[str]) -> None:
        for c in coords:
            parsed = parse_coordinates(c)
            if parsed.is_latest:
                parsed = parse_coordinates(self.latest_version(c, type))
            print(f"+- {parsed}", file=out)

    def latest_version(self, coords: str, type: str = "jar") -> str:
        """
        Pin coordinates to the newest version listed in maven-metadata.xml.

        Coordinates that already carry a concrete version are returned as is.
        """
        parsed = parse_coordinates(coords)
        if not parsed.is_latest:
            return str(parsed)

        group_path = parsed.group.replace(".", "/")
        for repo in self.repositories:
            response = self._get(f"{repo}/{group_path}/{parsed.artifact}/maven-metadata.xml")
            if response is None:
                continue
            version = self._pick_version(response.content, release_only=parsed.version.upper() != "LATEST")
            if version:
                return str(parsed.with_version(version))

        raise ResolutionError(f"Could not determine the latest version of {coords}", descriptor=coords)

    # =========================================================================
    # Internals
    # =========================================================================

    def _check_snapshot(self, coords: Coordinates) -> None:
        if coords.is_snapshot and not self.allow_snapshots:
            raise ConfigurationError(
                f"Snapshot dependency {coords} is not allowed; set Allow-Snapshots to true"
            )

    def _relative_path(self, coords: Coordinates, type: str) -> str:
        group_path = coords.group.replace(".", "/")
        return f"{group_path}/{coords.artifact}/{coords.version}/{coords.file_name(type)}"

    def _local_path(self, coords: Coordinates, type: str) -> Path:
        return self.local_repo / self._relative_path(coords, type)

    def _pick_version(self, content: bytes, release_only: bool) -> str | None:
        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            logger.warning(f"[{self.name}] Malformed maven-metadata.xml: {e}")
            return None
        versioning = root.find("versioning")
        if versioning is None:
            return None
        for tag in ("release",) if release_only else ("latest", "release"):
            value = versioning.findtext(tag)
            if value and (self.allow_snapshots or not value.upper().endswith("-SNAPSHOT")):
                return value.strip()
        versions = [v.text.strip() for v in versioning.findall("versions/version") if v.text]
        if not self.allow_snapshots:
            versions = [v for v in versions if not v.upper().endswith("-SNAPSHOT")]
        return versions[-1] if versions else None

    def _get(self, url: str) -> httpx.Response | None:
        """
        GET with retry and exponential backoff.

        Returns None on 404; raises ResolutionError on other failures once
        retries are exhausted.
        """
        for attempt in range(self.max_retries + 1):
            try:
                response = self._client.get(url)
            except httpx.TransportError as e:
                error = f"{type(e).__name__}: {e}"
            else:
                if response.status_code == 404:
                    logger.debug(f"[{self.name}] Not found: {url}")
                    return None
                if response.status_code < 400:
                    return response
                if response.status_code < 500 and response.status_code != 429:
                    raise ResolutionError(f"GET {url} failed with HTTP {response.status_code}")
                error = f"HTTP {response.status_code}"

            if attempt >= self.max_retries:
                raise ResolutionError(f"GET {url} failed after {attempt + 1} attempts: {error}")
            backoff = self.retry_delay * (2 ** attempt)
            backoff += backoff * 0.25 * (2 * random.random() - 1)
            logger.info(
                f"[{self.name}] Retry {attempt + 1}/{self.max_retries} for {url} after {backoff:.2f}s ({error})"
            )
            time.sleep(backoff)
        return None
