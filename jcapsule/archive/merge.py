"""
Wrapper merge.

An empty capsule (one with no application of its own) can wrap another
capsule: it runs the target, layering its own attributes and caplets on
top. merge_manifests() computes the manifest the launch sees, and
merge_capsules() writes the pair out as a single archive.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

from .jar import ATTR_MAIN_CLASS, MANIFEST_NAME, JarArchive, copy_attributes, read_manifest, write_jar
from .manifest import Manifest

logger = logging.getLogger(__name__)

ATTR_CAPLETS = "Caplets"

# Attributes that identify an archive rather than configure a launch
IDENTITY_ATTRIBUTES = frozenset(
    a.lower()
    for a in (
        "Manifest-Version",
        "Created-By",
        ATTR_MAIN_CLASS,
        "Application-Name",
        "Application-Id",
        "Application-Version",
        "Application-Class",
        "Application",
        "Implementation-Version",
        ATTR_CAPLETS,
    )
)


def merge_caplet_names(target: str | None, wrapper: str | None) -> list[str]:
    """The target's caplets followed by the wrapper's, without repeats."""
    names: list[str] = []
    for value in (target, wrapper):
        for name in (value or "").split():
            if name not in names:
                names.append(name)
    return names


def merge_manifests(wrapper: Manifest, target: Manifest) -> Manifest:
    """
    Overlay a wrapper's launch attributes on a target's manifest.

    The target keeps its identity (name, version, application); every
    other wrapper attribute replaces the target's. Sections are merged the
    same way, attribute by attribute.
    """
    merged = target.copy()
    copy_attributes(wrapper.main, merged.main, skip=IDENTITY_ATTRIBUTES)

    caplets = merge_caplet_names(target.main.get(ATTR_CAPLETS), wrapper.main.get(ATTR_CAPLETS))
    if caplets:
        merged.main[ATTR_CAPLETS] = " ".join(caplets)

    for name, attributes in wrapper.sections():
        section = merged.section(name)
        if section is None:
            merged.add_section(name, attributes.copy())
        else:
            section.update(attributes)
    return merged


def _launcher_entries(wrapper: JarArchive) -> Iterator[tuple[str, bytes]]:
    for info, data in wrapper.entries():
        name = info.filename
        if name == MANIFEST_NAME:
            continue
        if name.startswith("capsule/") or (name.startswith("Capsule") and name.endswith(".class")):
            yield name, data


def merge_capsules(wrapper: Path, target: Path, output: Path) -> Path:
    """
    Write a single capsule equivalent to running ``target`` through ``wrapper``.

    Entries are the wrapper's launcher entries followed by the target's
    entries; when both carry an entry, the first one written wins.
    """
    manifest = merge_manifests(read_manifest(wrapper), read_manifest(target))
    wrapper_jar, target_jar = JarArchive(wrapper), JarArchive(target)

    def entries() -> Iterator[tuple[str, bytes]]:
        seen: set[str] = set()
        for source in (_launcher_entries(wrapper_jar), _target_entries(target_jar)):
            for name, data in source:
                if name in seen:
                    continue
                seen.add(name)
                yield name, data

    write_jar(output, manifest, entries())
    logger.info(f"[merge] Merged {wrapper} and {target} into {output}")
    return Path(output)


def _target_entries(target: JarArchive) -> Iterator[tuple[str, bytes]]:
    for info, data in target.entries():
        if info.filename != MANIFEST_NAME:
            yield info.filename, data
