"""
Host platform facts.

Attribute sections may be qualified by platform. The qualifiers form a
hierarchy from least to most specific:

    POSIX  >  Unix  >  Linux / Solaris
    POSIX  >  MacOS
    Windows

A Linux host therefore reads POSIX, Unix and Linux sections, in that
order of increasing precedence.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

OS_WINDOWS = "Windows"
OS_MACOS = "MacOS"
OS_LINUX = "Linux"
OS_SOLARIS = "Solaris"
OS_UNIX = "Unix"
OS_POSIX = "POSIX"

PLATFORM_NAMES = (OS_WINDOWS, OS_MACOS, OS_LINUX, OS_SOLARIS, OS_UNIX, OS_POSIX)

# Windows CreateProcess limit is 32767 chars; leave room for the environment block.
WINDOWS_COMMAND_LINE_LIMIT = 32 * 1024 - 1


@dataclass(frozen=True)
class Platform:
    """The operating system the launcher runs on."""

    name: str

    @property
    def is_windows(self) -> bool:
        return self.name == OS_WINDOWS

    @property
    def is_mac(self) -> bool:
        return self.name == OS_MACOS

    @property
    def is_unix(self) -> bool:
        return self.name in (OS_LINUX, OS_SOLARIS)

    @property
    def section_names(self) -> tuple[str, ...]:
        """Platform qualifiers for this host, least specific first."""
        if self.is_windows:
            return (OS_WINDOWS,)
        if self.is_mac:
            return (OS_POSIX, OS_MACOS)
        return (OS_POSIX, OS_UNIX, self.name)

    @property
    def native_lib_extension(self) -> str:
        if self.is_windows:
            return "dll"
        if self.is_mac:
            return "dylib"
        return "so"

    @property
    def path_separator(self) -> str:
        return ";" if self.is_windows else ":"

    @property
    def java_executable(self) -> str:
        return "java.exe" if self.is_windows else "java"

    @property
    def command_line_limit(self) -> int | None:
        """Maximum command line length, or None where there is no hard ceiling."""
        return WINDOWS_COMMAND_LINE_LIMIT if self.is_windows else None

    @property
    def library_path_variable(self) -> str:
        """Environment variable the dynamic linker searches."""
        if self.is_windows:
            return "PATH"
        if self.is_mac:
            return "DYLD_LIBRARY_PATH"
        return "LD_LIBRARY_PATH"

    @property
    def native_agent_extension(self) -> str:
        return self.native_lib_extension

    def default_library_path(self) -> list[Path]:
        """The JVM's default java.library.path on this platform."""
        if self.is_windows:
            entries = os.environ.get("PATH", "").split(";")
            return [Path(e) for e in entries if e]
        if self.is_mac:
            env = os.environ.get("DYLD_LIBRARY_PATH", "")
            base = [Path(e) for e in env.split(":") if e]
            return base + [
                Path.home() / "Library" / "Java" / "Extensions",
                Path("/Library/Java/Extensions"),
                Path("/Network/Library/Java/Extensions"),
                Path("/System/Library/Java/Extensions"),
                Path("/usr/lib/java"),
            ]
        env = os.environ.get("LD_LIBRARY_PATH", "")
        base = [Path(e) for e in env.split(":") if e]
        return base + [
            Path("/usr/java/packages/lib"),
            Path("/usr/lib64"),
            Path("/lib64"),
            Path("/lib"),
            Path("/usr/lib"),
        ]


def detect_platform(sys_platform: str | None = None) -> Platform:
    """Map sys.platform onto a Platform."""
    value = (sys_platform or sys.platform).lower()
    if value.startswith(("win", "cygwin")):
        return Platform(OS_WINDOWS)
    if value.startswith("darwin"):
        return Platform(OS_MACOS)
    if value.startswith(("sunos", "solaris")):
        return Platform(OS_SOLARIS)
    return Platform(OS_LINUX)


_current: Platform | None = None


def current_platform() -> Platform:
    """The host platform (detected once)."""
    global _current
    if _current is None:
        _current = detect_platform()
    return _current
