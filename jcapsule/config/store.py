"""
Attribute Store for jcapsule.

Typed, mode-, platform- and Java-version-aware view over an archive's
manifest.

Section precedence (lowest first):

    main
    POSIX, Unix, Linux                  platform qualifiers, least specific first
    Java-N                              selected Java major version
    POSIX-Java-N ... Linux-Java-N       platform and version
    <mode>                              the active mode, same pattern again
    <mode>-POSIX ... <mode>-Linux
    <mode>-Java-N
    <mode>-Linux-Java-N

Scalars take the value of the highest-precedence section that defines
them with a non-empty value. Lists, sets and maps merge across all
applicable sections in ascending order; lists and sets drop repeated
items keeping the first occurrence, maps let later sections replace
earlier keys.

Non-modal attributes are read from the main section only, and declaring
one anywhere else is a configuration error reported by validate().
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

from jcapsule.archive.jar import LAUNCHER_MAIN_CLASS
from jcapsule.archive.manifest import Attributes, Manifest
from jcapsule.errors import ConfigurationError
from jcapsule.platform import PLATFORM_NAMES, Platform

from .attributes import (
    ATTR_CLASS_PATH,
    ATTR_MAIN_CLASS,
    ATTR_MODE_DESC,
    AttributeDeclaration,
    AttributeRegistry,
    AttributeType,
)

logger = logging.getLogger(__name__)

_JAVA_QUALIFIER = re.compile(r"(?:^|-)java-(\d+)$", re.IGNORECASE)

AccessHook = Callable[[str, "str | None"], None]


def split_section_name(name: str) -> tuple[str | None, str | None, int | None]:
    """
    Split a section name into (mode, platform, java major).

    Example:
        >>> split_section_name("debug-Linux-Java-8")
        ('debug', 'Linux', 8)
        >>> split_section_name("Windows")
        (None, 'Windows', None)
    """
    base = name
    java = None
    match = _JAVA_QUALIFIER.search(base)
    if match:
        java = int(match.group(1))
        base = base[: match.start()]

    platform = None
    lowered = base.lower()
    for candidate in PLATFORM_NAMES:
        suffix = candidate.lower()
        if lowered == suffix:
            platform, base = candidate, ""
            break
        if lowered.endswith("-" + suffix):
            platform, base = candidate, base[: -(len(suffix) + 1)]
            break
    return (base or None), platform, java


def _is_entry_section(name: str) -> bool:
    # Per-entry sections of the JAR format, e.g. "com/acme/Foo.class"
    return "/" in name


class AttributeStore:
    """
    Resolves declared attributes against a manifest.

    The store is created once per launch. The mode and the Java major
    version are each chosen once; the Java version becomes known only
    after runtime selection, so Java-N sections are ignored until then.

    Example:
        store = AttributeStore(manifest, core_registry(), current_platform())
        store.set_mode("debug")
        store.get("JVM-Args")        # main list followed by debug's list
    """

    def __init__(
        self,
        manifest: Manifest,
        registry: AttributeRegistry,
        platform: Platform,
        on_access: AccessHook | None = None,
    ) -> None:
        self.manifest = manifest
        self.registry = registry
        self.platform = platform
        self.on_access = on_access
        self._mode: str | None = None
        self._mode_chosen = False
        self._java_major: int | None = None
        self._validated = False

    # =========================================================================
    # Modes
    # =========================================================================

    @property
    def modes(self) -> list[str]:
        """Modes declared by the manifest, in declaration order."""
        seen: dict[str, str] = {}
        for name, _ in self.manifest.sections():
            if _is_entry_section(name):
                continue
            mode, _, _ = split_section_name(name)
            if mode is not None and mode.lower() not in seen:
                seen[mode.lower()] = mode
        return list(seen.values())

    def has_mode(self, mode: str) -> bool:
        return mode.lower() in {m.lower() for m in self.modes}

    def mode_description(self, mode: str) -> str | None:
        section = self.manifest.section(mode)
        if section is None:
            return None
        return section.get(ATTR_MODE_DESC) or None

    @property
    def mode(self) -> str | None:
        return self._mode

    def set_mode(self, mode: str | None) -> None:
        """
        Choose the active mode. May be called once.

        Raises:
            ConfigurationError: If the mode is not declared, or a mode was
                already chosen
        """
        if self._mode_chosen:
            if (mode or None) == self._mode:
                return
            raise ConfigurationError(f"Mode already chosen: {self._mode}")
        mode = mode or None
        if mode is not None and not self.has_mode(mode):
            available = ", ".join(self.modes) or "(none)"
            raise ConfigurationError(f"Capsule does not have mode {mode}. Available: {available}")
        self._mode = mode
        self._mode_chosen = True
        if mode:
            logger.info(f"[attributes] Mode: {mode}")

    @property
    def java_major(self) -> int | None:
        return self._java_major

    def set_java_major(self, major: int) -> None:
        """Enable Java-N sections for the selected runtime. May be called once."""
        if self._java_major is not None and self._java_major != major:
            raise ConfigurationError(
                f"Java version already selected: {self._java_major} (requested {major})"
            )
        self._java_major = major

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> None:
        """
        Check the manifest's structure. Runs once; later calls are no-ops.

        Raises:
            ConfigurationError: If a non-modal attribute appears outside the
                main section, the raw Class-Path attribute is present, or the
                manifest does not name the launcher as its main class
        """
        if self._validated:
            return
        main = self.manifest.main
        if ATTR_CLASS_PATH in main:
            raise ConfigurationError(
                f"The {ATTR_CLASS_PATH} attribute is not allowed in a capsule manifest; "
                f"use App-Class-Path or Dependencies"
            )
        main_class = main.get(ATTR_MAIN_CLASS)
        if main_class != LAUNCHER_MAIN_CLASS:
            raise ConfigurationError(
                f"Manifest {ATTR_MAIN_CLASS} must be {LAUNCHER_MAIN_CLASS} (found {main_class or 'nothing'})"
            )
        non_modal = self.registry.non_modal
        for name, attrs in self.manifest.sections():
            if _is_entry_section(name):
                continue
            for attr in non_modal:
                if attr in attrs:
                    raise ConfigurationError(
                        f"Manifest section {name} contains non-modal attribute {attr}"
                    )
        self._validated = True

    # =========================================================================
    # Lookup
    # =========================================================================

    def declaration(self, name: str) -> AttributeDeclaration:
        return self.registry.get(name) or AttributeDeclaration(name)

    def applicable_sections(self, name: str | None = None) -> list[str]:
        """Names of the sections consulted for an attribute, lowest precedence first."""
        if name is not None and not self.declaration(name).modal:
            return [""]
        platforms = list(self.platform.section_names)
        qualifiers = [""] + platforms
        if self._java_major is not None:
            java = f"Java-{self._java_major}"
            qualifiers += [java] + [f"{p}-{java}" for p in platforms]
        bases = [""] + ([self._mode] if self._mode else [])
        names = []
        for base in bases:
            for qualifier in qualifiers:
                names.append("-".join(part for part in (base, qualifier) if part))
        return names

    def _section(self, name: str) -> Attributes | None:
        return self.manifest.main if name == "" else self.manifest.section(name)

    def _raw_values(self, name: str) -> list[tuple[str, str]]:
        self.validate()
        found = []
        for section_name in self.applicable_sections(name):
            section = self._section(section_name)
            if section is None:
                continue
            value = section.get(name)
            if value is not None and value.strip():
                found.append((section_name or "main", value.strip()))
        return found

    def has(self, name: str) -> bool:
        """Whether any applicable section defines the attribute non-empty."""
        return bool(self._raw_values(name))

    def get_raw(self, name: str) -> str | None:
        """The highest-precedence raw text of an attribute."""
        values = self._raw_values(name)
        return values[-1][1] if values else None

    def defined_in_mode_section(self, name: str) -> bool:
        """Whether any mode section (active or not) declares the attribute."""
        for section_name, attrs in self.manifest.sections():
            if _is_entry_section(section_name):
                continue
            mode, _, _ = split_section_name(section_name)
            if mode is not None and name in attrs:
                return True
        return False

    def get(self, name: str) -> Any:
        """
        Resolve an attribute to its typed value.

        Raises:
            ConfigurationError: If a value cannot be parsed as the declared type
        """
        declaration = self.declaration(name)
        values = self._raw_values(name)
        if not values:
            if self.on_access is not None:
                self.on_access(name, None)
            if declaration.default is not None:
                default = declaration.default
                return list(default) if isinstance(default, list) else (
                    dict(default) if isinstance(default, dict) else default
                )
            return declaration.empty_value()

        if not declaration.type.is_collection:
            section, raw = values[-1]
            if self.on_access is not None:
                self.on_access(name, raw)
            return _parse_scalar(declaration, raw)

        merged: Any = {} if declaration.type == AttributeType.MAP else []
        for section, raw in values:
            if self.on_access is not None:
                self.on_access(name, raw)
            if declaration.type == AttributeType.MAP:
                merged.update(_parse_map(declaration, raw))
            else:
                for item in raw.split():
                    if item not in merged:
                        merged.append(item)
        if declaration.type == AttributeType.SET:
            return frozenset(merged)
        return merged

    def __repr__(self) -> str:
        return f"AttributeStore(mode={self._mode!r}, java={self._java_major!r}, platform={self.platform.name!r})"


# =============================================================================
# Parsing
# =============================================================================


def _parse_scalar(declaration: AttributeDeclaration, raw: str) -> Any:
    kind = declaration.type
    if kind == AttributeType.STRING:
        return raw
    if kind == AttributeType.BOOLEAN:
        return raw.lower() == "true"
    try:
        if kind == AttributeType.INTEGER:
            return int(raw)
        if kind == AttributeType.FLOAT:
            return float(raw)
    except ValueError:
        raise ConfigurationError(
            f"Attribute {declaration.name} must be of type {kind.value}, found {raw}"
        ) from None
    raise ConfigurationError(f"Unsupported attribute type {kind} for {declaration.name}")


def _parse_map(declaration: AttributeDeclaration, raw: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for entry in raw.split():
        key, sep, value = entry.partition("=")
        if not sep:
            if declaration.map_default is None:
                raise ConfigurationError(
                    f"Element {entry} in \"{raw}\" is not a key-value entry separated with = "
                    f"and no default value provided"
                )
            value = declaration.map_default
        result[key.strip()] = value.strip()
    return result
