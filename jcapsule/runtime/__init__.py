"""
Java runtime discovery.
"""

from .discovery import (
    JavaDiscovery,
    JavaInstallation,
    VersionConstraints,
    java_executable,
    query_java_version,
    search_java_home,
)

__all__ = [
    "JavaDiscovery",
    "JavaInstallation",
    "VersionConstraints",
    "java_executable",
    "query_java_version",
    "search_java_home",
]
