"""
Launch Planner for jcapsule.

Builds a LaunchPlan by running a fixed sequence of stages over a shared
PlanDraft. Each stage asks the override chain for its values, so caplets
can change any step without the planner knowing about them.

Stages (order matters; later stages use earlier results):

    runtime       select the Java installation, enable Java-N sections
    script        a startup script short-circuits the Java-specific stages
    jvm           JVM arguments, system properties, boot class path, agents
    class-path    the application class path
    library-path  copy native dependencies, assemble java.library.path
    environment   the child's environment overlay
    command       final argument vector, long command line mitigation

Example:
    planner = LaunchPlanner(session)
    plan = planner.build(["arg1", "arg2"])
"""

from __future__ import annotations

import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from jcapsule.archive.jar import create_pathing_jar
from jcapsule.capsule import PROP_JAVA_LIBRARY_PATH
from jcapsule.errors import LaunchEnvironmentError

from .plan import LaunchPlan

if TYPE_CHECKING:
    from .session import LaunchSession

logger = logging.getLogger(__name__)


@dataclass
class PlanDraft:
    """Values accumulated by the planner stages."""

    args: list[str]
    java_home: Path | None = None
    script: Path | None = None
    jvm_args: list[str] = field(default_factory=list)
    system_properties: dict[str, str] = field(default_factory=dict)
    boot_class_path: list[Path] | None = None
    boot_class_path_p: list[Path] | None = None
    boot_class_path_a: list[Path] | None = None
    java_agents: list[tuple[Path, str]] = field(default_factory=list)
    native_agents: list[tuple[Path, str]] = field(default_factory=list)
    class_path: list[Path] = field(default_factory=list)
    library_path: list[Path] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    main_class: str | None = None
    command: list[str] = field(default_factory=list)
    pathing_jar: Path | None = None

    def to_plan(self) -> LaunchPlan:
        return LaunchPlan(
            command=list(self.command),
            env=dict(self.env),
            class_path=list(self.class_path),
            library_path=list(self.library_path),
            java_home=self.java_home,
            script=self.script,
            pathing_jar=self.pathing_jar,
        )


def join_paths(paths: list[Path], separator: str) -> str:
    return separator.join(str(p) for p in paths)


# =============================================================================
# Stages
# =============================================================================


class PlanStage(ABC):
    """
    One step of launch planning.

    Subclasses implement:
    - name: Stage identifier, used in logging and timings
    - run(): Fill in part of the draft
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    def applies(self, draft: PlanDraft) -> bool:
        """Whether the stage runs for this draft. Default: always."""
        return True

    @abstractmethod
    def run(self, session: "LaunchSession", draft: PlanDraft) -> None:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class RuntimeStage(PlanStage):
    """Select the Java installation and enable its Java-N sections."""

    @property
    def name(self) -> str:
        return "runtime"

    def run(self, session: "LaunchSession", draft: PlanDraft) -> None:
        java_home = session.chain.virtual.choose_java_home()
        session.java_home = java_home
        session.java_version = session.discovery.version_of(java_home)
        session.store.set_java_major(session.java_version.major)
        draft.java_home = java_home
        logger.info(f"[planner] Using JVM: {java_home} ({session.java_version})")


class ScriptStage(PlanStage):
    @property
    def name(self) -> str:
        return "script"

    def run(self, session: "LaunchSession", draft: PlanDraft) -> None:
        draft.script = session.chain.virtual.build_script()
        if draft.script is not None:
            logger.info(f"[planner] Running startup script {draft.script}")


class JvmStage(PlanStage):
    """JVM arguments, system properties, boot class path and agents."""

    @property
    def name(self) -> str:
        return "jvm"

    def applies(self, draft: PlanDraft) -> bool:
        return draft.script is None

    def run(self, session: "LaunchSession", draft: PlanDraft) -> None:
        oc = session.chain.virtual
        cmd_line = list(session.options.jvm_args)
        draft.jvm_args = oc.build_jvm_args(cmd_line)
        draft.system_properties = oc.build_system_properties(cmd_line)
        draft.boot_class_path = oc.build_boot_class_path(cmd_line)
        draft.boot_class_path_p = oc.build_boot_class_path_p()
        draft.boot_class_path_a = oc.build_boot_class_path_a()
        draft.java_agents = oc.build_java_agents()
        draft.native_agents = oc.build_native_agents()


class ClassPathStage(PlanStage):
    @property
    def name(self) -> str:
        return "class-path"

    def run(self, session: "LaunchSession", draft: PlanDraft) -> None:
        draft.class_path = session.chain.virtual.build_class_path()
        logger.debug(f"[planner] Class path: {[str(p) for p in draft.class_path]}")


class LibraryPathStage(PlanStage):
    """Copy native dependencies into the cache, then assemble the library path."""

    @property
    def name(self) -> str:
        return "library-path"

    def run(self, session: "LaunchSession", draft: PlanDraft) -> None:
        oc = session.chain.virtual
        oc.resolve_native_dependencies()
        draft.library_path = oc.build_native_library_path()
        if draft.script is None:
            draft.system_properties.setdefault(
                PROP_JAVA_LIBRARY_PATH,
                join_paths(draft.library_path, session.platform.path_separator),
            )


class EnvironmentStage(PlanStage):
    @property
    def name(self) -> str:
        return "environment"

    def run(self, session: "LaunchSession", draft: PlanDraft) -> None:
        draft.env = session.chain.virtual.build_environment(dict(os.environ))
        if draft.script is not None:
            separator = session.platform.path_separator
            draft.env["CLASSPATH"] = join_paths(draft.class_path, separator)
            draft.env[session.platform.library_path_variable] = join_paths(draft.library_path, separator)


class CommandStage(PlanStage):
    """
    Assemble the final argument vector.

    On platforms with a command line ceiling, a class path pushing the
    command over it is replaced by a pathing JAR.
    """

    @property
    def name(self) -> str:
        return "command"

    def run(self, session: "LaunchSession", draft: PlanDraft) -> None:
        oc = session.chain.virtual
        args = oc.build_args(list(draft.args))
        if draft.script is not None:
            draft.command = [str(draft.script)] + args
            return

        draft.main_class = oc.get_main_class(draft.class_path)
        draft.command = self._java_command(session, draft, draft.class_path, args)

        limit = session.platform.command_line_limit
        if limit is not None and draft.to_plan().command_length() >= limit:
            if session.options.trampoline:
                raise LaunchEnvironmentError(
                    "Command line length exceeds the platform limit; cannot build a trampoline "
                    "command line that refers to a temporary pathing jar"
                )
            directory = session.cache_dir or session.cache_root or Path.cwd()
            draft.pathing_jar = create_pathing_jar(directory, draft.class_path)
            session.add_cleanup(lambda path=draft.pathing_jar: path.unlink(missing_ok=True))
            draft.command = self._java_command(session, draft, [draft.pathing_jar], args)
            logger.info(f"[planner] Command line too long; using pathing jar {draft.pathing_jar}")

    def _java_command(
        self,
        session: "LaunchSession",
        draft: PlanDraft,
        class_path: list[Path],
        args: list[str],
    ) -> list[str]:
        separator = session.platform.path_separator
        java = draft.java_home / "bin" / session.platform.java_executable
        command = [str(java)]
        command.extend(draft.jvm_args)
        for key, value in draft.system_properties.items():
            command.append(f"-D{key}={value}" if value else f"-D{key}")
        if draft.boot_class_path is not None:
            command.append("-Xbootclasspath:" + join_paths(draft.boot_class_path, separator))
        if draft.boot_class_path_p is not None:
            command.append("-Xbootclasspath/p:" + join_paths(draft.boot_class_path_p, separator))
        if draft.boot_class_path_a is not None:
            command.append("-Xbootclasspath/a:" + join_paths(draft.boot_class_path_a, separator))
        for path, options in draft.java_agents:
            command.append(f"-javaagent:{path}" + (f"={options}" if options else ""))
        for path, options in draft.native_agents:
            command.append(f"-agentpath:{path}" + (f"={options}" if options else ""))
        command.extend(["-classpath", join_paths(class_path, separator)])
        command.append(draft.main_class)
        command.extend(args)
        return command


def default_stages() -> list[PlanStage]:
    return [
        RuntimeStage(),
        ScriptStage(),
        JvmStage(),
        ClassPathStage(),
        LibraryPathStage(),
        EnvironmentStage(),
        CommandStage(),
    ]


# =============================================================================
# Planner
# =============================================================================


class LaunchPlanner:
    """
    Runs the planning stages in order.

    Stage failures propagate unchanged; the session's error context tells
    the top level what was being processed.
    """

    def __init__(self, session: "LaunchSession", stages: list[PlanStage] | None = None):
        self.session = session
        self.stages = stages if stages is not None else default_stages()
        if not self.stages:
            raise ValueError("LaunchPlanner must have at least one stage")

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]

    def build(self, args: list[str]) -> LaunchPlan:
        draft = PlanDraft(args=list(args))
        for stage in self.stages:
            if not stage.applies(draft):
                logger.debug(f"[planner] Skipping stage {stage.name}")
                continue
            start_time = time.perf_counter()
            stage.run(self.session, draft)
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.session.record_timing(stage.name, duration_ms)
            logger.debug(f"[planner] Stage {stage.name} completed in {duration_ms:.1f}ms")
        plan = draft.to_plan()
        logger.info(f"[planner] Command: {plan.command}")
        return plan

    def __repr__(self) -> str:
        return f"LaunchPlanner(stages={self.stage_names})"
