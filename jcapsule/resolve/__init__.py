"""
File and dependency reference resolution.
"""

from .handles import AttributeHandle, DependencyHandle, GlobHandle, Handle, PathHandle
from .resolver import ReferenceResolver, sanitize

__all__ = [
    "AttributeHandle",
    "DependencyHandle",
    "GlobHandle",
    "Handle",
    "PathHandle",
    "ReferenceResolver",
    "sanitize",
]
