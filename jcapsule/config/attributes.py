"""
Attribute declarations.

Every attribute the launcher (or a caplet) reads is declared up front with
a type, a default, and a modality flag. The store uses the declaration to
decide whether values merge across sections (lists, sets, maps) or
override (scalars), and how the raw manifest text is parsed.

Declarations are registered per owning module. Registering the same name
twice is fine as long as the shape matches; a conflicting shape is a
configuration error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from jcapsule.errors import ConfigurationError

logger = logging.getLogger(__name__)


class AttributeType(str, Enum):
    """Declared value type of an attribute."""

    STRING = "string"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    LIST = "list"
    SET = "set"
    MAP = "map"

    @property
    def is_collection(self) -> bool:
        return self in (AttributeType.LIST, AttributeType.SET, AttributeType.MAP)


@dataclass(frozen=True)
class AttributeDeclaration:
    """
    Shape of a declared attribute.

    Attributes:
        name: Literal manifest key
        type: Value type
        default: Value used when no applicable section defines the attribute
        modal: Whether mode sections may override it
        reference: Whether values (map keys, for maps) are file/dependency
            references to be handed to the reference resolver
        map_default: Value for map entries written without "=";
            None makes such entries an error
        description: Human readable summary
    """

    name: str
    type: AttributeType = AttributeType.STRING
    default: Any = None
    modal: bool = True
    reference: bool = False
    map_default: str | None = ""
    description: str = ""

    def same_shape(self, other: "AttributeDeclaration") -> bool:
        return (
            self.type == other.type
            and self.default == other.default
            and self.modal == other.modal
            and self.reference == other.reference
        )

    def empty_value(self) -> Any:
        if self.type == AttributeType.LIST:
            return []
        if self.type == AttributeType.SET:
            return frozenset()
        if self.type == AttributeType.MAP:
            return {}
        return None


class AttributeRegistry:
    """
    Registry of attribute declarations, keyed case-insensitively.

    Example:
        registry = AttributeRegistry()
        registry.register(AttributeDeclaration("My-Flag", AttributeType.BOOLEAN, False), owner="mycaplet")
        registry.get("my-flag").type   # AttributeType.BOOLEAN
    """

    def __init__(self) -> None:
        self._declarations: dict[str, tuple[AttributeDeclaration, str]] = {}

    def register(self, declaration: AttributeDeclaration, owner: str = "capsule") -> None:
        """
        Register a declaration.

        Raises:
            ConfigurationError: If the name is registered with a different shape
        """
        key = declaration.name.lower()
        existing = self._declarations.get(key)
        if existing is not None:
            current, current_owner = existing
            if not current.same_shape(declaration):
                raise ConfigurationError(
                    f"Attribute {declaration.name} declared by {owner} conflicts with "
                    f"the declaration by {current_owner}"
                )
            return
        self._declarations[key] = (declaration, owner)
        logger.debug(f"[attributes] Registered {declaration.name} ({declaration.type.value}) for {owner}")

    def register_all(self, declarations: tuple[AttributeDeclaration, ...], owner: str) -> None:
        for declaration in declarations:
            self.register(declaration, owner)

    def get(self, name: str) -> AttributeDeclaration | None:
        entry = self._declarations.get(name.lower())
        return entry[0] if entry else None

    def has(self, name: str) -> bool:
        return name.lower() in self._declarations

    def owner(self, name: str) -> str | None:
        entry = self._declarations.get(name.lower())
        return entry[1] if entry else None

    @property
    def non_modal(self) -> list[str]:
        return [d.name for d, _ in self._declarations.values() if not d.modal]

    def __iter__(self):
        return (d for d, _ in self._declarations.values())

    def __len__(self) -> int:
        return len(self._declarations)


# =============================================================================
# Core Attributes
# =============================================================================

ATTR_APP_NAME = "Application-Name"
ATTR_APP_ID = "Application-Id"
ATTR_APP_VERSION = "Application-Version"
ATTR_APP_CLASS = "Application-Class"
ATTR_APP_ARTIFACT = "Application"
ATTR_IMPLEMENTATION_VERSION = "Implementation-Version"
ATTR_MODE_DESC = "Description"
ATTR_UNIX_SCRIPT = "Unix-Script"
ATTR_WINDOWS_SCRIPT = "Windows-Script"
ATTR_EXTRACT = "Extract-Capsule"
ATTR_MIN_JAVA_VERSION = "Min-Java-Version"
ATTR_JAVA_VERSION = "Java-Version"
ATTR_MIN_UPDATE_VERSION = "Min-Update-Version"
ATTR_JDK_REQUIRED = "JDK-Required"
ATTR_JVM_ARGS = "JVM-Args"
ATTR_ARGS = "Args"
ATTR_ENV = "Environment-Variables"
ATTR_SYSTEM_PROPERTIES = "System-Properties"
ATTR_APP_CLASS_PATH = "App-Class-Path"
ATTR_CAPSULE_IN_CLASS_PATH = "Capsule-In-Class-Path"
ATTR_BOOT_CLASS_PATH = "Boot-Class-Path"
ATTR_BOOT_CLASS_PATH_A = "Boot-Class-Path-A"
ATTR_BOOT_CLASS_PATH_P = "Boot-Class-Path-P"
ATTR_LIBRARY_PATH_A = "Library-Path-A"
ATTR_LIBRARY_PATH_P = "Library-Path-P"
ATTR_SECURITY_MANAGER = "Security-Manager"
ATTR_SECURITY_POLICY = "Security-Policy"
ATTR_SECURITY_POLICY_A = "Security-Policy-A"
ATTR_JAVA_AGENTS = "Java-Agents"
ATTR_NATIVE_AGENTS = "Native-Agents"
ATTR_REPOSITORIES = "Repositories"
ATTR_ALLOW_SNAPSHOTS = "Allow-Snapshots"
ATTR_DEPENDENCIES = "Dependencies"
ATTR_NATIVE_DEPENDENCIES_LINUX = "Native-Dependencies-Linux"
ATTR_NATIVE_DEPENDENCIES_WIN = "Native-Dependencies-Win"
ATTR_NATIVE_DEPENDENCIES_MAC = "Native-Dependencies-Mac"
ATTR_CAPLETS = "Caplets"
ATTR_LOG_LEVEL = "Capsule-Log-Level"
ATTR_MAIN_CLASS = "Main-Class"
ATTR_CLASS_PATH = "Class-Path"

_S = AttributeType.STRING
_B = AttributeType.BOOLEAN
_L = AttributeType.LIST
_M = AttributeType.MAP

CORE_ATTRIBUTES: tuple[AttributeDeclaration, ...] = (
    AttributeDeclaration(ATTR_APP_NAME, _S, modal=False, description="Application name, used for the app id"),
    AttributeDeclaration(ATTR_APP_ID, _S, modal=False, description="Explicit application id"),
    AttributeDeclaration(ATTR_APP_VERSION, _S, modal=False, description="Application version"),
    AttributeDeclaration(ATTR_CAPLETS, _L, modal=False, description="Override modules, head to tail"),
    AttributeDeclaration(ATTR_LOG_LEVEL, _S, modal=False, description="Launcher log level"),
    AttributeDeclaration(ATTR_IMPLEMENTATION_VERSION, _S, modal=False),
    AttributeDeclaration(ATTR_MODE_DESC, _S, description="Mode description"),
    AttributeDeclaration(ATTR_APP_CLASS, _S, description="Entry point class"),
    AttributeDeclaration(ATTR_APP_ARTIFACT, _S, reference=True, description="Application artifact"),
    AttributeDeclaration(ATTR_UNIX_SCRIPT, _S, reference=True, description="Startup script (POSIX)"),
    AttributeDeclaration(ATTR_WINDOWS_SCRIPT, _S, reference=True, description="Startup script (Windows)"),
    AttributeDeclaration(ATTR_EXTRACT, _B, default=True, description="Extract the archive into the app cache"),
    AttributeDeclaration(ATTR_MIN_JAVA_VERSION, _S, description="Lowest acceptable Java version"),
    AttributeDeclaration(ATTR_JAVA_VERSION, _S, description="Highest acceptable Java version"),
    AttributeDeclaration(ATTR_MIN_UPDATE_VERSION, _M, map_default=None, description="Minimum update per version"),
    AttributeDeclaration(ATTR_JDK_REQUIRED, _B, default=False, description="Require a JDK"),
    AttributeDeclaration(ATTR_JVM_ARGS, _L, description="JVM arguments"),
    AttributeDeclaration(ATTR_ARGS, _L, description="Application arguments"),
    AttributeDeclaration(ATTR_ENV, _L, description="Environment variable assignments"),
    AttributeDeclaration(ATTR_SYSTEM_PROPERTIES, _M, description="System properties"),
    AttributeDeclaration(ATTR_APP_CLASS_PATH, _L, reference=True, description="Extra class path entries"),
    AttributeDeclaration(ATTR_CAPSULE_IN_CLASS_PATH, _B, default=True, description="Put the archive on the class path"),
    AttributeDeclaration(ATTR_BOOT_CLASS_PATH, _L, reference=True),
    AttributeDeclaration(ATTR_BOOT_CLASS_PATH_A, _L, reference=True),
    AttributeDeclaration(ATTR_BOOT_CLASS_PATH_P, _L, reference=True),
    AttributeDeclaration(ATTR_LIBRARY_PATH_A, _L),
    AttributeDeclaration(ATTR_LIBRARY_PATH_P, _L),
    AttributeDeclaration(ATTR_SECURITY_MANAGER, _S),
    AttributeDeclaration(ATTR_SECURITY_POLICY, _S),
    AttributeDeclaration(ATTR_SECURITY_POLICY_A, _S),
    AttributeDeclaration(ATTR_JAVA_AGENTS, _M, reference=True, description="Java agents and their options"),
    AttributeDeclaration(ATTR_NATIVE_AGENTS, _M, reference=True, description="Native agents and their options"),
    AttributeDeclaration(ATTR_REPOSITORIES, _L, description="Dependency repositories"),
    AttributeDeclaration(ATTR_ALLOW_SNAPSHOTS, _B, default=False),
    AttributeDeclaration(ATTR_DEPENDENCIES, _L, reference=True, description="Dependency coordinates"),
    AttributeDeclaration(ATTR_NATIVE_DEPENDENCIES_LINUX, _L, reference=True),
    AttributeDeclaration(ATTR_NATIVE_DEPENDENCIES_WIN, _L, reference=True),
    AttributeDeclaration(ATTR_NATIVE_DEPENDENCIES_MAC, _L, reference=True),
)


def core_registry() -> AttributeRegistry:
    """A registry preloaded with the launcher's own declarations."""
    registry = AttributeRegistry()
    registry.register_all(CORE_ATTRIBUTES, owner="capsule")
    return registry
