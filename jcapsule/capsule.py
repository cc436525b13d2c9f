"""
The base Capsule: head of every override chain.

Capsule implements each overridable launch operation. Caplets appended
after it may override any of them; code that wants the most specific
implementation calls through ``self.oc`` and an override that wants the
behaviour it replaces calls ``self.sup``.

Operations fall into four groups:

    identity     choose_mode, build_app_id, needs_app_cache, extract_capsule
    attributes   get_attribute, has_attribute, expand, lookup, resolve
    runtime      version_constraints, choose_java_home, create_dependency_manager
    command      build_script, build_jvm_args, build_system_properties,
                 build_boot_class_path[_p|_a], build_java_agents,
                 build_native_agents, build_class_path, get_dependencies,
                 get_native_dependencies, resolve_native_dependencies,
                 build_native_library_path, build_environment,
                 get_main_class, build_args
"""

from __future__ import annotations

import logging
import re
import stat
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from jcapsule.archive.jar import JarArchive, get_main_class
from jcapsule.cache.app_cache import should_extract_entry
from jcapsule.caplets.base import Caplet
from jcapsule.config.attributes import (
    ATTR_ALLOW_SNAPSHOTS,
    ATTR_APP_ARTIFACT,
    ATTR_APP_CLASS,
    ATTR_APP_CLASS_PATH,
    ATTR_APP_ID,
    ATTR_APP_NAME,
    ATTR_APP_VERSION,
    ATTR_ARGS,
    ATTR_BOOT_CLASS_PATH,
    ATTR_BOOT_CLASS_PATH_A,
    ATTR_BOOT_CLASS_PATH_P,
    ATTR_CAPSULE_IN_CLASS_PATH,
    ATTR_DEPENDENCIES,
    ATTR_ENV,
    ATTR_EXTRACT,
    ATTR_IMPLEMENTATION_VERSION,
    ATTR_JAVA_AGENTS,
    ATTR_JAVA_VERSION,
    ATTR_JDK_REQUIRED,
    ATTR_JVM_ARGS,
    ATTR_LIBRARY_PATH_A,
    ATTR_LIBRARY_PATH_P,
    ATTR_MIN_JAVA_VERSION,
    ATTR_MIN_UPDATE_VERSION,
    ATTR_NATIVE_AGENTS,
    ATTR_NATIVE_DEPENDENCIES_LINUX,
    ATTR_NATIVE_DEPENDENCIES_MAC,
    ATTR_NATIVE_DEPENDENCIES_WIN,
    ATTR_REPOSITORIES,
    ATTR_SECURITY_MANAGER,
    ATTR_SECURITY_POLICY,
    ATTR_SECURITY_POLICY_A,
    ATTR_SYSTEM_PROPERTIES,
    ATTR_UNIX_SCRIPT,
    ATTR_WINDOWS_SCRIPT,
)
from jcapsule.dependency.base import DependencyManager, is_dependency, parse_coordinates
from jcapsule.dependency.maven import MavenDependencyManager
from jcapsule.errors import ConfigurationError, LaunchEnvironmentError, ResolutionError
from jcapsule.resolve.handles import Handle
from jcapsule.runtime.discovery import VersionConstraints

logger = logging.getLogger(__name__)

OPERATIONS = (
    "get_attribute",
    "has_attribute",
    "expand",
    "lookup",
    "resolve",
    "choose_mode",
    "build_app_id",
    "needs_app_cache",
    "extract_capsule",
    "create_dependency_manager",
    "version_constraints",
    "choose_java_home",
    "build_script",
    "build_jvm_args",
    "build_system_properties",
    "build_boot_class_path",
    "build_boot_class_path_p",
    "build_boot_class_path_a",
    "build_java_agents",
    "build_native_agents",
    "build_class_path",
    "get_dependencies",
    "get_native_dependencies",
    "resolve_native_dependencies",
    "build_native_library_path",
    "build_environment",
    "get_main_class",
    "build_args",
)

# Environment variables exported to the child
VAR_CAPSULE_APP = "CAPSULE_APP"
VAR_CAPSULE_DIR = "CAPSULE_DIR"
VAR_CAPSULE_JAR = "CAPSULE_JAR"
VAR_JAVA_HOME = "JAVA_HOME"

# System properties passed to the child
PROP_CAPSULE_APP = "capsule.app"
PROP_CAPSULE_DIR = "capsule.dir"
PROP_CAPSULE_JAR = "capsule.jar"
PROP_JAVA_LIBRARY_PATH = "java.library.path"
PROP_JAVA_SECURITY_MANAGER = "java.security.manager"
PROP_JAVA_SECURITY_POLICY = "java.security.policy"

BOOT_CLASS_PATH_OPTION = "-Xbootclasspath:"
JAVA_AGENT_OPTION = "-javaagent:"

_POSITIONAL = re.compile(r"^\$(\d+)$")
_ARG_ZERO = re.compile(r"\$0(?!\d)")


# =============================================================================
# Helpers
# =============================================================================


def expand_args(declared: list[str], supplied: list[str]) -> list[str]:
    """
    Combine declared application arguments with the user's.

    ``$*`` expands to all supplied arguments and ``$N`` to the N-th. When
    the declared arguments reference none of them, the supplied arguments
    are appended.

    Example:
        >>> expand_args(["$2", "$1"], ["hi", "there"])
        ['there', 'hi']
        >>> expand_args(["-v"], ["x"])
        ['-v', 'x']

    Raises:
        ConfigurationError: If ``$N`` names a missing argument
    """
    result: list[str] = []
    expanded = False
    for arg in declared:
        if arg == "$*":
            result.extend(supplied)
            expanded = True
            continue
        match = _POSITIONAL.match(arg)
        if match:
            index = int(match.group(1))
            if index < 1 or index > len(supplied):
                raise ConfigurationError(
                    f"Argument {arg} refers to a missing command line argument ({len(supplied)} supplied)"
                )
            result.append(supplied[index - 1])
            expanded = True
            continue
        result.append(arg)
    if not expanded:
        result.extend(supplied)
    return result


def jvm_arg_key(arg: str) -> str:
    """
    The key under which a JVM argument is de-duplicated.

    Arguments with equal keys override each other: -Xmx1g and -Xmx2g
    share the key -Xmx, -client and -server share "compiler".
    """
    if arg in ("-client", "-server"):
        return "compiler"
    if arg in ("-enablesystemassertions", "-esa", "-disablesystemassertions", "-dsa"):
        return "systemassertions"
    if arg in ("-jre-restrict-search", "-no-jre-restrict-search"):
        return "-jre-restrict-search"
    if arg.startswith("-Xloggc:"):
        return "-Xloggc"
    for prefix in ("-Xss", "-Xmx", "-Xms"):
        if arg.startswith(prefix):
            return prefix
    if arg.startswith("-XX:"):
        rest = arg[4:]
        if rest[:1] in ("+", "-"):
            return "-XX:" + rest[1:]
        return "-XX:" + rest.split("=", 1)[0]
    if "=" in arg:
        return arg.split("=", 1)[0]
    return arg


def _split_native_dependency(entry: str) -> tuple[str, str | None]:
    coords, _, rename = entry.partition(",")
    return coords.strip(), (rename.strip() or None)


class Capsule(Caplet):
    """
    The launcher's own behaviour; always the head of the chain.

    Every method named in OPERATIONS may be overridden by a caplet.
    """

    name = "capsule"

    # =========================================================================
    # Session shortcuts
    # =========================================================================

    @property
    def store(self):
        return self.session.store

    @property
    def resolver(self):
        return self.session.resolver

    @property
    def platform(self):
        return self.session.platform

    @property
    def jar(self) -> Path:
        if self.session.jar is None:
            raise ConfigurationError("Capsule is not bound to an archive")
        return self.session.jar

    # =========================================================================
    # Attributes
    # =========================================================================

    def get_attribute(self, name: str) -> Any:
        self.session.set_context("attribute", name)
        return self.store.get(name)

    def has_attribute(self, name: str) -> bool:
        return self.store.has(name)

    def expand(self, text: str) -> str:
        """
        Substitute launcher variables in an attribute value.

        Raises:
            CacheUnavailableError: If $CAPSULE_DIR is used without an app cache
        """
        if "$CAPSULE_DIR" in text:
            text = text.replace("$CAPSULE_DIR", str(self.session.require_cache(f"$CAPSULE_DIR in {text}")))
        if "$CAPSULE_APP" in text:
            text = text.replace("$CAPSULE_APP", self.session.app_id or "")
        if "$CAPSULE_JAR" in text:
            text = text.replace("$CAPSULE_JAR", str(self.jar))
        if "$JAVA_HOME" in text and self.session.java_home is not None:
            text = text.replace("$JAVA_HOME", str(self.session.java_home))
        text = _ARG_ZERO.sub(lambda _: str(self.jar), text)
        if text.startswith("~/"):
            text = str(Path.home()) + text[1:]
        return text

    def lookup(
        self,
        descriptor: str,
        expected_extension: str | None = None,
        attribute: str | None = None,
        map_value: str | None = None,
    ) -> Handle:
        return self.resolver.lookup(descriptor, expected_extension, attribute, map_value)

    def resolve(self, handle: Handle, required: bool = True) -> list[Path]:
        return self.resolver.resolve(handle, required)

    def _resolve_all(self, descriptors: list[str], extension: str | None, attribute: str) -> list[Path]:
        paths: list[Path] = []
        for descriptor in descriptors:
            self.session.set_context("attribute", attribute, descriptor)
            handle = self.oc.lookup(self.oc.expand(descriptor), extension, attribute)
            for path in self.oc.resolve(handle):
                if path not in paths:
                    paths.append(path)
        return paths

    def _resolve_single(self, descriptor: str, extension: str | None, attribute: str) -> Path:
        self.session.set_context("attribute", attribute, descriptor)
        handle = self.oc.lookup(self.oc.expand(descriptor), extension, attribute)
        paths = self.oc.resolve(handle)
        if len(paths) != 1:
            raise ResolutionError(
                f"{descriptor} in {attribute} resolved to {len(paths)} files; exactly one expected",
                descriptor=descriptor,
            )
        return paths[0]

    # =========================================================================
    # Identity
    # =========================================================================

    def is_empty(self) -> bool:
        """An empty capsule has no application of its own and can only wrap another."""
        return (
            not self.oc.has_attribute(ATTR_APP_ARTIFACT)
            and not self.oc.has_attribute(ATTR_APP_CLASS)
            and not self.oc.has_attribute(self._script_attribute())
        )

    def choose_mode(self, requested: str | None) -> str | None:
        return requested

    def build_app_id(self) -> str | None:
        """
        Derive the application id.

        Order: explicit id, Application-Name, the application artifact's
        coordinates, Application-Class. Names and classes get a version
        suffix from Application-Version or Implementation-Version.

        Raises:
            ConfigurationError: If the id would come from an attribute set
                in a mode section, or nothing identifies the application
        """
        explicit = self.session.options.app_id or self.oc.get_attribute(ATTR_APP_ID)
        if explicit:
            return explicit
        if self.is_empty():
            return None

        name = self.oc.get_attribute(ATTR_APP_NAME)
        if not name:
            artifact = self.oc.get_attribute(ATTR_APP_ARTIFACT)
            if artifact and is_dependency(artifact):
                self._check_not_modal(ATTR_APP_ARTIFACT)
                coords = parse_coordinates(artifact)
                parts = [coords.group, coords.artifact] + ([coords.version] if coords.version else [])
                return "_".join(parts)
        if not name:
            name = self.oc.get_attribute(ATTR_APP_CLASS)
            if name:
                self._check_not_modal(ATTR_APP_CLASS)
        if not name:
            raise ConfigurationError(
                f"Capsule jar {self.jar} must either have the {ATTR_APP_NAME} manifest attribute "
                f"or the {ATTR_APP_CLASS} attribute"
            )

        version = self.oc.get_attribute(ATTR_APP_VERSION) or self.oc.get_attribute(ATTR_IMPLEMENTATION_VERSION)
        return f"{name}_{version}" if version else name

    def _check_not_modal(self, attribute: str) -> None:
        if self.store.defined_in_mode_section(attribute):
            raise ConfigurationError(
                f"App ID-related attribute {attribute} is defined in a modal section of the manifest. "
                f"In this case, you must add the {ATTR_APP_NAME} attribute to the manifest's main section."
            )

    def needs_app_cache(self) -> bool:
        if self.is_empty():
            return False
        if any(rename for rename in self.oc.get_native_dependencies().values()):
            return True
        artifact = self.oc.get_attribute(ATTR_APP_ARTIFACT)
        if artifact and is_dependency(artifact):
            return False
        return bool(self.oc.get_attribute(ATTR_EXTRACT))

    def extract_capsule(self, target: Path) -> None:
        JarArchive(self.jar).extract(target, should_extract_entry)

    def create_dependency_manager(self) -> DependencyManager:
        settings = self.session.settings
        repositories = list(self.oc.get_attribute(ATTR_REPOSITORIES)) + list(settings.repos)
        local_repo = settings.local_repo
        if local_repo is None and self.session.cache_root is not None:
            local_repo = self.session.cache_root / "deps"
        return MavenDependencyManager(
            repositories,
            local_repo,
            allow_snapshots=bool(self.oc.get_attribute(ATTR_ALLOW_SNAPSHOTS)),
        )

    # =========================================================================
    # Runtime selection
    # =========================================================================

    def version_constraints(self) -> VersionConstraints:
        return VersionConstraints(
            min_version=self.oc.get_attribute(ATTR_MIN_JAVA_VERSION),
            max_version=self.oc.get_attribute(ATTR_JAVA_VERSION),
            min_update=self.oc.get_attribute(ATTR_MIN_UPDATE_VERSION),
            jdk_required=bool(self.oc.get_attribute(ATTR_JDK_REQUIRED)),
        )

    def choose_java_home(self) -> Path:
        """
        Pick the Java installation to launch with.

        An explicit override wins; otherwise the current installation if it
        satisfies the declared constraints, otherwise the best discovered one.

        Raises:
            LaunchEnvironmentError: If no installation matches
        """
        explicit = self.session.options.java_home or self.session.settings.java_home
        if explicit is not None:
            logger.info(f"[capsule] Using Java home override {explicit}")
            return Path(explicit).absolute()

        discovery = self.session.discovery
        constraints = self.oc.version_constraints()
        current = self.session.current_java_home
        if current is not None:
            jdk_ok = not constraints.jdk_required or (current / "bin" / "javac").exists() or (
                current / "bin" / "javac.exe"
            ).exists()
            if jdk_ok and constraints.matches(discovery.version_of(current)):
                return current

        best = discovery.select(constraints)
        if best is None:
            raise LaunchEnvironmentError(
                f"Could not find Java installation for requested version {constraints.describe()}. "
                f"You can override the used Java version with the CAPSULE_JAVA_HOME environment "
                f"variable or the --java-home flag."
            )
        return best.home

    # =========================================================================
    # JVM arguments and system properties
    # =========================================================================

    def build_jvm_args(self, cmd_line: list[str]) -> list[str]:
        """
        Declared JVM-Args followed by the command line's, de-duplicated by key.

        A later argument replaces an earlier one with the same key but keeps
        the earlier one's position.
        """
        args: dict[str, str] = {}
        for arg in self.oc.get_attribute(ATTR_JVM_ARGS):
            arg = self.oc.expand(arg)
            if arg.startswith((BOOT_CLASS_PATH_OPTION, JAVA_AGENT_OPTION)):
                continue
            args[jvm_arg_key(arg)] = arg
        for arg in cmd_line:
            if arg.startswith(("-D", BOOT_CLASS_PATH_OPTION)):
                continue
            args[jvm_arg_key(arg)] = arg
        return list(args.values())

    def build_system_properties(self, cmd_line: list[str]) -> dict[str, str]:
        props: dict[str, str] = {}
        for key, value in self.oc.get_attribute(ATTR_SYSTEM_PROPERTIES).items():
            self.session.set_context("system property", key, value)
            props[key] = self.oc.expand(value)

        policy = self.oc.get_attribute(ATTR_SECURITY_POLICY)
        policy_a = self.oc.get_attribute(ATTR_SECURITY_POLICY_A)
        if policy or policy_a:
            props[PROP_JAVA_SECURITY_MANAGER] = ""
            if policy_a:
                props[PROP_JAVA_SECURITY_POLICY] = self._jar_url(policy_a)
            if policy:
                props[PROP_JAVA_SECURITY_POLICY] = "=" + self._jar_url(policy)
        manager = self.oc.get_attribute(ATTR_SECURITY_MANAGER)
        if manager:
            props[PROP_JAVA_SECURITY_MANAGER] = manager

        if self.session.cache_dir is not None:
            props[PROP_CAPSULE_DIR] = str(self.session.cache_dir)
        props[PROP_CAPSULE_JAR] = str(self.jar)
        if self.session.app_id:
            props[PROP_CAPSULE_APP] = self.session.app_id

        for arg in cmd_line:
            if arg.startswith("-D"):
                key, _, value = arg[2:].partition("=")
                if not key:
                    raise ConfigurationError(f"Illegal system property definition: {arg}")
                props[key] = value
        return props

    def _jar_url(self, entry: str) -> str:
        return f"jar:{self.jar.as_uri()}!/{entry.lstrip('/')}"

    # =========================================================================
    # Boot class path and agents
    # =========================================================================

    def build_boot_class_path(self, cmd_line: list[str]) -> list[Path] | None:
        for arg in cmd_line:
            if arg.startswith(BOOT_CLASS_PATH_OPTION):
                value = arg[len(BOOT_CLASS_PATH_OPTION):]
                return [Path(p) for p in value.split(self.platform.path_separator) if p]
        if not self.oc.has_attribute(ATTR_BOOT_CLASS_PATH):
            return None
        return self._resolve_all(self.oc.get_attribute(ATTR_BOOT_CLASS_PATH), "jar", ATTR_BOOT_CLASS_PATH)

    def build_boot_class_path_p(self) -> list[Path] | None:
        if not self.oc.has_attribute(ATTR_BOOT_CLASS_PATH_P):
            return None
        return self._resolve_all(self.oc.get_attribute(ATTR_BOOT_CLASS_PATH_P), "jar", ATTR_BOOT_CLASS_PATH_P)

    def build_boot_class_path_a(self) -> list[Path] | None:
        if not self.oc.has_attribute(ATTR_BOOT_CLASS_PATH_A):
            return None
        return self._resolve_all(self.oc.get_attribute(ATTR_BOOT_CLASS_PATH_A), "jar", ATTR_BOOT_CLASS_PATH_A)

    def build_java_agents(self) -> list[tuple[Path, str]]:
        """Java agents as (jar, options); each must resolve to exactly one file."""
        agents = []
        for descriptor, options in self.oc.get_attribute(ATTR_JAVA_AGENTS).items():
            agents.append((self._resolve_single(descriptor, "jar", ATTR_JAVA_AGENTS), options))
        return agents

    def build_native_agents(self) -> list[tuple[Path, str]]:
        agents = []
        extension = self.platform.native_agent_extension
        for descriptor, options in self.oc.get_attribute(ATTR_NATIVE_AGENTS).items():
            agents.append((self._resolve_single(descriptor, extension, ATTR_NATIVE_AGENTS), options))
        return agents

    # =========================================================================
    # Class path
    # =========================================================================

    def build_class_path(self) -> list[Path]:
        """
        The application class path.

        Order: the capsule itself (unless an application artifact is
        declared, or Capsule-In-Class-Path is false), the application
        artifact, App-Class-Path, the default cache class path, dependencies.

        Raises:
            ConfigurationError: If the capsule is excluded from the class path
                while there is no app cache to take its place
        """
        class_path: list[Path] = []
        cache_dir = self.session.cache_dir

        if not self.oc.has_attribute(ATTR_APP_ARTIFACT):
            if self.oc.get_attribute(ATTR_CAPSULE_IN_CLASS_PATH):
                class_path.append(self.jar)
            elif cache_dir is None:
                raise ConfigurationError(
                    f"Cannot set the {ATTR_CAPSULE_IN_CLASS_PATH} attribute to false when the "
                    f"{ATTR_EXTRACT} attribute is also set to false"
                )
        else:
            artifact = self.oc.get_attribute(ATTR_APP_ARTIFACT)
            class_path.extend(self._resolve_all([artifact], "jar", ATTR_APP_ARTIFACT))

        for path in self._resolve_all(self.oc.get_attribute(ATTR_APP_CLASS_PATH), "jar", ATTR_APP_CLASS_PATH):
            if path not in class_path:
                class_path.append(path)

        if cache_dir is not None:
            for path in self.default_cache_class_path(cache_dir):
                if path not in class_path:
                    class_path.append(path)

        for path in self._resolve_all(self.oc.get_dependencies(), "jar", ATTR_DEPENDENCIES):
            if path not in class_path:
                class_path.append(path)
        return class_path

    def default_cache_class_path(self, cache_dir: Path) -> list[Path]:
        """The cache directory followed by its top-level JARs, sorted by name."""
        jars = sorted(p.absolute() for p in cache_dir.glob("*.jar") if p.is_file())
        return [cache_dir] + jars

    def get_dependencies(self) -> list[str]:
        return list(self.oc.get_attribute(ATTR_DEPENDENCIES))

    # =========================================================================
    # Native libraries
    # =========================================================================

    def _native_dependencies_attribute(self) -> str:
        if self.platform.is_windows:
            return ATTR_NATIVE_DEPENDENCIES_WIN
        if self.platform.is_mac:
            return ATTR_NATIVE_DEPENDENCIES_MAC
        return ATTR_NATIVE_DEPENDENCIES_LINUX

    def get_native_dependencies(self) -> dict[str, str | None]:
        """Native dependency coordinates mapped to their rename (or None)."""
        result: dict[str, str | None] = {}
        for entry in self.oc.get_attribute(self._native_dependencies_attribute()):
            coords, rename = _split_native_dependency(entry)
            result[coords] = rename
        return result

    def resolve_native_dependencies(self) -> list[Path]:
        """Resolve native dependencies, copying them into the app cache."""
        attribute = self._native_dependencies_attribute()
        extension = self.platform.native_lib_extension
        paths = []
        for coords, rename in self.oc.get_native_dependencies().items():
            self.session.set_context("attribute", attribute, coords)
            handle = self.oc.lookup(coords, extension, attribute, rename)
            paths.extend(self.oc.resolve(handle))
        return paths

    def build_native_library_path(self) -> list[Path]:
        """
        The java.library.path for the child.

        Library-Path-P entries, the platform default, Library-Path-A entries,
        then the app cache directory.

        Raises:
            ConfigurationError: If Library-Path-P/-A are declared without an
                app cache
        """
        prepend = self.oc.get_attribute(ATTR_LIBRARY_PATH_P)
        append = self.oc.get_attribute(ATTR_LIBRARY_PATH_A)
        cache_dir = self.session.cache_dir
        if (prepend or append) and cache_dir is None:
            raise ConfigurationError(
                f"Cannot use the {ATTR_LIBRARY_PATH_P} or the {ATTR_LIBRARY_PATH_A} attributes "
                f"when the {ATTR_EXTRACT} attribute is set to false"
            )

        library_path: list[Path] = []
        library_path.extend(self._resolve_all(prepend, None, ATTR_LIBRARY_PATH_P))
        library_path.extend(self.platform.default_library_path())
        library_path.extend(self._resolve_all(append, None, ATTR_LIBRARY_PATH_A))
        if cache_dir is not None:
            library_path.append(cache_dir)
        for path in self.oc.resolve_native_dependencies():
            if path.parent not in library_path:
                library_path.append(path.parent)
        return library_path

    # =========================================================================
    # Script mode
    # =========================================================================

    def _script_attribute(self) -> str:
        return ATTR_WINDOWS_SCRIPT if self.platform.is_windows else ATTR_UNIX_SCRIPT

    def build_script(self) -> Path | None:
        """
        The startup script to run instead of java, made executable.

        Raises:
            ConfigurationError: If a script is declared without an app cache
        """
        attribute = self._script_attribute()
        script = self.oc.get_attribute(attribute)
        if not script:
            return None
        if self.session.cache is None:
            raise ConfigurationError(
                f"Cannot run the startup script {script} when the {ATTR_EXTRACT} attribute is set to false"
            )
        path = self._resolve_single(script, None, attribute)
        if not self.platform.is_windows and path.exists():
            mode = path.stat().st_mode
            path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    # =========================================================================
    # Environment, entry point and arguments
    # =========================================================================

    def build_environment(self, base: Mapping[str, str]) -> dict[str, str]:
        """
        Variables to set for the child, on top of ``base``.

        Entries are VAR=value (set unless already defined) or VAR:=value
        (always set).

        Raises:
            ConfigurationError: On an entry without "="
        """
        overlay: dict[str, str] = {}
        for entry in self.oc.get_attribute(ATTR_ENV):
            self.session.set_context("environment variable", entry)
            name, sep, value = entry.partition("=")
            if not sep or not name:
                raise ConfigurationError(f"Malformed environment variable definition: {entry}")
            overwrite = name.endswith(":")
            if overwrite:
                name = name[:-1]
            if overwrite or (name not in base and name not in overlay):
                overlay[name] = self.oc.expand(value)

        overlay[VAR_CAPSULE_JAR] = str(self.jar)
        if self.session.app_id:
            overlay[VAR_CAPSULE_APP] = self.session.app_id
        if self.session.cache_dir is not None:
            overlay[VAR_CAPSULE_DIR] = str(self.session.cache_dir)
        if self.session.java_home is not None:
            overlay[VAR_JAVA_HOME] = str(self.session.java_home)
        return overlay

    def get_main_class(self, class_path: list[Path]) -> str:
        """
        Raises:
            ConfigurationError: If neither Application-Class nor the
                application artifact names a main class
        """
        main_class = self.oc.get_attribute(ATTR_APP_CLASS)
        if not main_class and self.oc.has_attribute(ATTR_APP_ARTIFACT) and class_path:
            main_class = get_main_class(class_path[0])
        if not main_class:
            first = class_path[0] if class_path else self.jar
            raise ConfigurationError(f"Jar {first} does not have a main class defined in the manifest.")
        return main_class

    def build_args(self, args: list[str]) -> list[str]:
        declared = [self.oc.expand(a) for a in self.oc.get_attribute(ATTR_ARGS)]
        return expand_args(declared, args)

