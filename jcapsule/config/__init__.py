"""
Launcher configuration: process settings, attribute declarations, and the
mode-aware attribute store.
"""

from .attributes import (
    CORE_ATTRIBUTES,
    AttributeDeclaration,
    AttributeRegistry,
    AttributeType,
    core_registry,
)
from .settings import LauncherSettings, LogLevel, get_settings, settings_from_env
from .store import AttributeStore, split_section_name

__all__ = [
    "CORE_ATTRIBUTES",
    "AttributeDeclaration",
    "AttributeRegistry",
    "AttributeStore",
    "AttributeType",
    "LauncherSettings",
    "LogLevel",
    "core_registry",
    "get_settings",
    "settings_from_env",
    "split_section_name",
]
