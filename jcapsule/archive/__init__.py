"""
Archive primitives: manifest records, JAR files and wrapper merging.
"""

from .jar import (
    ATTR_CLASS_PATH,
    ATTR_MAIN_CLASS,
    LAUNCHER_MAIN_CLASS,
    MANIFEST_NAME,
    JarArchive,
    copy_attributes,
    create_pathing_jar,
    embedded_class_path,
    get_main_class,
    is_capsule,
    read_manifest,
    write_jar,
)
from .manifest import Attributes, Manifest
from .merge import merge_caplet_names, merge_capsules, merge_manifests

__all__ = [
    "ATTR_CLASS_PATH",
    "ATTR_MAIN_CLASS",
    "LAUNCHER_MAIN_CLASS",
    "MANIFEST_NAME",
    "Attributes",
    "JarArchive",
    "Manifest",
    "copy_attributes",
    "create_pathing_jar",
    "embedded_class_path",
    "get_main_class",
    "is_capsule",
    "merge_caplet_names",
    "merge_capsules",
    "merge_manifests",
    "read_manifest",
    "write_jar",
]
