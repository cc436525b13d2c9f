"""
Caplet Registry for jcapsule.

Caplets are registered ahead of time under their name; the Caplets
manifest attribute then selects registered caplets by name. Third-party
packages can also publish caplets through the ``jcapsule.caplets`` entry
point group.
"""

from __future__ import annotations

import logging
from importlib.metadata import entry_points

from jcapsule.errors import ConfigurationError

from .base import Caplet

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "jcapsule.caplets"


class CapletNotFoundError(ConfigurationError):
    """
    Raised when a caplet name is not registered.

    This typically indicates a configuration error: the Caplets attribute
    names a caplet that is not installed.
    """

    pass


class CapletRegistry:
    """
    Registry of caplet factories.

    Example:
        # At startup
        registry = get_caplet_registry()
        registry.register(HeapCaplet)

        # When building the chain
        caplet_type = registry.get("heap")
        chain.append(caplet_type(session))
    """

    def __init__(self) -> None:
        self._caplets: dict[str, type[Caplet]] = {}

    def register(self, caplet_type: type[Caplet]) -> type[Caplet]:
        """
        Register a caplet type under its ``name``.

        Returns the type, so this doubles as a class decorator.

        Raises:
            ValueError: If the type has no name or is not a Caplet
        """
        if not isinstance(caplet_type, type) or not issubclass(caplet_type, Caplet):
            raise ValueError(f"{caplet_type!r} is not a Caplet subclass")
        name = caplet_type.name
        if not name:
            raise ValueError(f"Caplet {caplet_type.__name__} has no name")
        if name in self._caplets and self._caplets[name] is not caplet_type:
            logger.warning(f"Replacing existing caplet: {name}")
        self._caplets[name] = caplet_type
        logger.debug(f"Registered caplet: {name}")
        return caplet_type

    def get(self, name: str) -> type[Caplet]:
        """
        Get a caplet type by name.

        Raises:
            CapletNotFoundError: If no caplet is registered under the name
        """
        caplet_type = self._caplets.get(name)
        if caplet_type is None:
            available = ", ".join(self._caplets.keys()) or "(none)"
            raise CapletNotFoundError(f"No caplet registered with name: {name}. Available: {available}")
        return caplet_type

    def has(self, name: str) -> bool:
        return name in self._caplets

    @property
    def registered_names(self) -> list[str]:
        return list(self._caplets.keys())

    def unregister(self, name: str) -> bool:
        if name in self._caplets:
            del self._caplets[name]
            logger.debug(f"Unregistered caplet: {name}")
            return True
        return False

    def clear(self) -> None:
        """Clear all registered caplets (for testing)."""
        self._caplets.clear()

    def discover(self, group: str = ENTRY_POINT_GROUP) -> int:
        """
        Register caplets published as entry points.

        Returns:
            Number of caplets registered
        """
        count = 0
        for ep in entry_points(group=group):
            try:
                caplet_type = ep.load()
                self.register(caplet_type)
                count += 1
            except (ImportError, AttributeError, ValueError) as e:
                logger.warning(f"Could not load caplet entry point {ep.name}: {e}")
        return count


# Global registry instance
_registry: CapletRegistry | None = None


def get_caplet_registry() -> CapletRegistry:
    """
    Get the global caplet registry.

    Creates the registry on first access (lazy initialization).
    """
    global _registry
    if _registry is None:
        _registry = CapletRegistry()
    return _registry


def register_caplet(caplet_type: type[Caplet]) -> type[Caplet]:
    """Class decorator registering a caplet in the global registry."""
    return get_caplet_registry().register(caplet_type)


def reset_caplet_registry() -> None:
    """
    Reset the global caplet registry (for testing).

    Creates a fresh registry instance.
    """
    global _registry
    if _registry is not None:
        _registry.clear()
    _registry = None
