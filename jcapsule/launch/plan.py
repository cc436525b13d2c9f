"""
Launch plan: everything needed to start the child process.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class LaunchPlan:
    """
    The child process invocation.

    Built once per launch. After the child starts only ``pid`` and
    ``exit_code`` change.

    Attributes:
        command: Executable followed by its arguments
        env: Variables to set on top of the launcher's environment
        class_path: Assembled class path (also exported in script mode)
        library_path: Assembled native library path
        java_home: Selected Java installation
        script: Startup script, when the archive runs one instead of java
        pathing_jar: Synthesized class path archive, when one was needed
    """

    command: list[str]
    env: dict[str, str] = field(default_factory=dict)
    class_path: list[Path] = field(default_factory=list)
    library_path: list[Path] = field(default_factory=list)
    java_home: Path | None = None
    script: Path | None = None
    pathing_jar: Path | None = None
    pid: int | None = None
    exit_code: int | None = None

    @property
    def executable(self) -> str:
        return self.command[0]

    @property
    def args(self) -> list[str]:
        return self.command[1:]

    def environment(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """The child's full environment: ``base`` (default os.environ) plus the overlay."""
        env = dict(os.environ if base is None else base)
        env.update(self.env)
        return env

    def command_line(self, windows: bool = False) -> str:
        """The command as a single shell-quoted line (used by trampoline mode)."""
        if windows:
            return subprocess.list2cmdline(self.command)
        return shlex.join(self.command)

    def command_length(self) -> int:
        return len(subprocess.list2cmdline(self.command))
