"""
JAR archive access.

Thin layer over zipfile covering what the launcher needs from an archive:
read the manifest, iterate and extract entries, write new archives, and
synthesize the small "pathing" JAR used when a class path is too long for
the platform's command line.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import zipfile
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

from jcapsule.errors import ConfigurationError

from .manifest import Attributes, Manifest

logger = logging.getLogger(__name__)

MANIFEST_NAME = "META-INF/MANIFEST.MF"

ATTR_MAIN_CLASS = "Main-Class"
ATTR_CLASS_PATH = "Class-Path"

# Entry used by archives built around the launcher's own implementation.
LAUNCHER_MAIN_CLASS = "Capsule"


class JarArchive:
    """
    Read access to a JAR file.

    Example:
        jar = JarArchive(Path("app.jar"))
        manifest = jar.manifest
        for name in jar.names():
            ...
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._manifest: Manifest | None = None

    @property
    def manifest(self) -> Manifest:
        """The archive's manifest (an empty one if the archive has none)."""
        if self._manifest is None:
            self._manifest = read_manifest(self.path)
        return self._manifest

    def names(self) -> list[str]:
        with zipfile.ZipFile(self.path) as zf:
            return zf.namelist()

    def has_entry(self, name: str) -> bool:
        with zipfile.ZipFile(self.path) as zf:
            try:
                zf.getinfo(name)
            except KeyError:
                return False
            return True

    def read(self, name: str) -> bytes:
        with zipfile.ZipFile(self.path) as zf:
            return zf.read(name)

    def entries(self) -> Iterator[tuple[zipfile.ZipInfo, bytes]]:
        """Iterate (info, data) for every file entry."""
        with zipfile.ZipFile(self.path) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                yield info, zf.read(info)

    def extract(self, target: Path, should_extract: Callable[[str], bool]) -> list[Path]:
        """
        Extract the entries accepted by ``should_extract`` into ``target``.

        Entry names that would land outside ``target`` are rejected.

        Returns:
            The extracted files
        """
        written: list[Path] = []
        root = target.resolve()
        with zipfile.ZipFile(self.path) as zf:
            for info in zf.infolist():
                if info.is_dir() or not should_extract(info.filename):
                    continue
                destination = (root / info.filename).resolve()
                if root != destination and root not in destination.parents:
                    raise ConfigurationError(
                        f"Archive entry {info.filename} in {self.path} escapes the extraction directory"
                    )
                destination.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, open(destination, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                written.append(destination)
        logger.debug(f"[jar] Extracted {len(written)} entries from {self.path} to {target}")
        return written

    def __repr__(self) -> str:
        return f"JarArchive({str(self.path)!r})"


def read_manifest(path: Path) -> Manifest:
    """Read the manifest of a JAR file."""
    try:
        with zipfile.ZipFile(path) as zf:
            try:
                data = zf.read(MANIFEST_NAME)
            except KeyError:
                return Manifest()
    except zipfile.BadZipFile as e:
        raise ConfigurationError(f"{path} is not a valid JAR archive: {e}") from e
    return Manifest.parse(data)


def get_main_class(path: Path) -> str | None:
    return read_manifest(path).main.get(ATTR_MAIN_CLASS) or None


def is_capsule(path: Path) -> bool:
    """Whether the file is an archive built around the launcher."""
    if not Path(path).is_file():
        return False
    try:
        return get_main_class(path) == LAUNCHER_MAIN_CLASS
    except ConfigurationError:
        return False


def write_jar(
    path: Path,
    manifest: Manifest | None,
    entries: Iterable[tuple[str, bytes]] = (),
) -> Path:
    """
    Write a JAR file with the given manifest and entries.

    The manifest is written first, as the JAR format expects.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        if manifest is not None:
            zf.writestr(MANIFEST_NAME, manifest.to_bytes())
        for name, data in entries:
            if name == MANIFEST_NAME:
                continue
            zf.writestr(name, data)
    return path


def create_pathing_jar(directory: Path, class_path: list[Path]) -> Path:
    """
    Write a JAR whose only content is a Class-Path naming ``class_path``.

    Entries are written as file URIs so absolute locations survive. The JAR
    is created in ``directory`` and is the caller's to delete.
    """
    directory.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        prefix="capsule_pathing_", suffix=".jar", dir=directory, delete=False
    ) as handle:
        path = Path(handle.name)

    manifest = Manifest()
    manifest.main[ATTR_CLASS_PATH] = " ".join(_class_path_uri(p) for p in class_path)
    write_jar(path, manifest)
    logger.info(f"[jar] Wrote pathing jar {path} for {len(class_path)} class path entries")
    return path


def _class_path_uri(path: Path) -> str:
    uri = path.absolute().as_uri()
    if path.is_dir() and not uri.endswith("/"):
        uri += "/"
    return uri


def embedded_class_path(jar: Path) -> list[Path]:
    """Resolve a JAR's own Class-Path attribute relative to its directory."""
    value = read_manifest(jar).main.get(ATTR_CLASS_PATH, "")
    result: list[Path] = []
    for item in value.split():
        if item.startswith("file:"):
            result.append(Path(unquote(urlparse(item).path)))
        else:
            result.append((jar.parent / PurePosixPath(item)).absolute())
    return result


def copy_attributes(source: Attributes, target: Attributes, skip: Iterable[str] = ()) -> None:
    skipped = {s.lower() for s in skip}
    for key, value in source.items():
        if key.lower() not in skipped:
            target[key] = value
