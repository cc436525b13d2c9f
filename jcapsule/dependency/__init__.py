"""
Dependency backends.
"""

from .base import Coordinates, DependencyManager, is_dependency, parse_coordinates
from .maven import MavenDependencyManager, repository_url

__all__ = [
    "Coordinates",
    "DependencyManager",
    "MavenDependencyManager",
    "is_dependency",
    "parse_coordinates",
    "repository_url",
]
