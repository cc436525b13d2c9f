"""
Launcher settings.

Process-level configuration read from the environment once per process.
Per-launch choices (mode, Java home override, extra JVM arguments) travel
in LaunchOptions instead.

Environment:
    CAPSULE_CACHE_DIR    explicit cache root
    CAPSULE_CACHE_NAME   cache directory name under the user's home
                         ("NONE" disables the persistent cache)
    CAPSULE_REPOS        extra dependency repositories (comma/space separated)
    CAPSULE_LOCAL_REPO   local artifact store for the dependency backend
    CAPSULE_LOG_LEVEL    NONE | QUIET | VERBOSE | DEBUG
    CAPSULE_JAVA_HOME    Java installation to use, bypassing version matching
    CAPSULE_RESET        "true" forces re-extraction of the app cache
"""

from __future__ import annotations

import logging
import os
import re
from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

from jcapsule.platform import current_platform

CACHE_DEFAULT_NAME = "capsule"
CACHE_NONE = "NONE"

_REPO_SEPARATOR = re.compile(r"[,\s]\s*")


class LogLevel(str, Enum):
    """Launcher verbosity levels."""

    NONE = "NONE"
    QUIET = "QUIET"
    VERBOSE = "VERBOSE"
    DEBUG = "DEBUG"

    @property
    def logging_level(self) -> int:
        return {
            LogLevel.NONE: logging.CRITICAL + 10,
            LogLevel.QUIET: logging.WARNING,
            LogLevel.VERBOSE: logging.INFO,
            LogLevel.DEBUG: logging.DEBUG,
        }[self]

    @classmethod
    def parse(cls, value: str | None, default: "LogLevel | None" = None) -> "LogLevel":
        if not value:
            return default or cls.QUIET
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(
                f"Unrecognized log level: {value}. "
                f"Available: {', '.join(level.value for level in cls)}"
            ) from None


class LauncherSettings(BaseModel):
    """
    Process-wide launcher settings.

    Used for type-safe settings access; construct directly in tests.
    """

    cache_dir: Path | None = Field(None, description="Explicit cache root")
    cache_name: str = Field(CACHE_DEFAULT_NAME, description="Cache directory name")
    repos: list[str] = Field(default_factory=list, description="Extra repositories")
    local_repo: Path | None = Field(None, description="Local artifact store")
    log_level: LogLevel = LogLevel.QUIET
    java_home: Path | None = Field(None, description="Forced Java installation")
    reset: bool = False

    class Config:
        extra = "forbid"

    @property
    def cache_disabled(self) -> bool:
        return self.cache_dir is None and self.cache_name == CACHE_NONE

    def cache_root(self) -> Path | None:
        """
        The cache root directory, or None when the cache is disabled.

        Windows keeps the cache under %LOCALAPPDATA%; elsewhere it is a dot
        directory in the user's home.
        """
        if self.cache_dir is not None:
            return self.cache_dir
        if self.cache_disabled:
            return None
        if current_platform().is_windows:
            return _local_app_data() / self.cache_name
        return Path.home() / f".{self.cache_name}"


def _local_app_data() -> Path:
    local = os.getenv("LOCALAPPDATA")
    if local:
        return Path(local)
    home = Path.home()
    for candidate in (home / "AppData" / "Local", home / "Local Settings" / "Application Data"):
        if candidate.is_dir():
            return candidate
    return home / "AppData" / "Local"


def split_repositories(value: str | None) -> list[str]:
    if not value:
        return []
    return [r for r in _REPO_SEPARATOR.split(value.strip()) if r]


def settings_from_env(env: dict[str, str] | None = None) -> LauncherSettings:
    """Build settings from an environment mapping (defaults to os.environ)."""
    source = os.environ if env is None else env
    cache_dir = source.get("CAPSULE_CACHE_DIR")
    local_repo = source.get("CAPSULE_LOCAL_REPO")
    java_home = source.get("CAPSULE_JAVA_HOME")
    return LauncherSettings(
        cache_dir=Path(cache_dir) if cache_dir else None,
        cache_name=source.get("CAPSULE_CACHE_NAME") or CACHE_DEFAULT_NAME,
        repos=split_repositories(source.get("CAPSULE_REPOS")),
        local_repo=Path(local_repo) if local_repo else None,
        log_level=LogLevel.parse(source.get("CAPSULE_LOG_LEVEL")),
        java_home=Path(java_home) if java_home else None,
        reset=source.get("CAPSULE_RESET", "false").lower() == "true",
    )


@lru_cache()
def get_settings() -> LauncherSettings:
    """
    Get launcher settings from the process environment.

    Uses lru_cache for singleton pattern.
    """
    return settings_from_env()
