"""
JAR manifest records.

A manifest is a main section followed by zero or more named sections,
separated by blank lines. Each line is "Key: value"; lines longer than 72
bytes continue on following lines that start with a single space. Keys and
section names are case-insensitive.

Usage:
    manifest = Manifest.parse(data)
    manifest.main["Application-Class"]          # "com.acme.Foo"
    manifest.section("debug")["JVM-Args"]       # modal value
    data = manifest.to_bytes()
"""

from __future__ import annotations

from collections.abc import Iterator, MutableMapping

from jcapsule.errors import ConfigurationError

MANIFEST_VERSION = "Manifest-Version"
SECTION_NAME = "Name"
MAX_LINE_BYTES = 72


class Attributes(MutableMapping):
    """Insertion-ordered mapping with case-insensitive string keys."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        self._items: dict[str, tuple[str, str]] = {}
        if data:
            self.update(data)

    def __getitem__(self, key: str) -> str:
        return self._items[key.lower()][1]

    def __setitem__(self, key: str, value: str) -> None:
        lowered = key.lower()
        name = self._items[lowered][0] if lowered in self._items else key
        self._items[lowered] = (name, value)

    def __delitem__(self, key: str) -> None:
        del self._items[key.lower()]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._items

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"Attributes({dict(self.items())!r})"

    def copy(self) -> "Attributes":
        return Attributes(dict(self.items()))


class Manifest:
    """A parsed manifest: main attributes plus named sections."""

    def __init__(self) -> None:
        self.main = Attributes()
        self._sections: dict[str, tuple[str, Attributes]] = {}

    # =========================================================================
    # Sections
    # =========================================================================

    @property
    def section_names(self) -> list[str]:
        return [name for name, _ in self._sections.values()]

    def section(self, name: str) -> Attributes | None:
        entry = self._sections.get(name.lower())
        return entry[1] if entry else None

    def has_section(self, name: str) -> bool:
        return name.lower() in self._sections

    def add_section(self, name: str, attributes: Attributes | None = None) -> Attributes:
        """
        Add a named section.

        Raises:
            ConfigurationError: If a section with the same name exists,
                ignoring case
        """
        if name.lower() in self._sections:
            existing = self._sections[name.lower()][0]
            raise ConfigurationError(
                f"Manifest section {name} collides with section {existing}"
            )
        attrs = attributes if attributes is not None else Attributes()
        self._sections[name.lower()] = (name, attrs)
        return attrs

    def remove_section(self, name: str) -> None:
        self._sections.pop(name.lower(), None)

    def sections(self) -> Iterator[tuple[str, Attributes]]:
        return iter(list(self._sections.values()))

    def copy(self) -> "Manifest":
        other = Manifest()
        other.main = self.main.copy()
        for name, attrs in self.sections():
            other.add_section(name, attrs.copy())
        return other

    # =========================================================================
    # Serialization
    # =========================================================================

    @classmethod
    def parse(cls, data: bytes | str) -> "Manifest":
        """
        Parse manifest text.

        Raises:
            ConfigurationError: On invalid UTF-8, malformed lines or colliding
                section names
        """
        if isinstance(data, bytes):
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ConfigurationError(f"Manifest is not valid UTF-8: {e}") from e
        else:
            text = data
        manifest = cls()

        for index, lines in enumerate(_logical_blocks(text)):
            first_key, first_value = _split_line(lines[0])
            if first_key.lower() == SECTION_NAME.lower():
                target = manifest.add_section(first_value)
                lines = lines[1:]
            elif index == 0:
                target = manifest.main
            else:
                raise ConfigurationError(f"Manifest section is missing a Name: header: {lines[0]}")
            for line in lines:
                key, value = _split_line(line)
                target[key] = value
        return manifest

    def to_bytes(self) -> bytes:
        out: list[str] = []
        main = self.main.copy()
        if MANIFEST_VERSION not in main:
            out.extend(_wrap(f"{MANIFEST_VERSION}: 1.0"))
        else:
            out.extend(_wrap(f"{MANIFEST_VERSION}: {main.pop(MANIFEST_VERSION)}"))
        for key, value in main.items():
            out.extend(_wrap(f"{key}: {value}"))
        out.append("")
        for name, attrs in self.sections():
            out.extend(_wrap(f"{SECTION_NAME}: {name}"))
            for key, value in attrs.items():
                out.extend(_wrap(f"{key}: {value}"))
            out.append("")
        return ("\r\n".join(out) + "\r\n").encode("utf-8")


def _logical_blocks(text: str) -> Iterator[list[str]]:
    """Yield blank-line separated blocks with continuation lines joined."""
    block: list[str] = []
    for raw in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        if raw.startswith(" ") and block:
            block[-1] += raw[1:]
        elif raw.strip() == "":
            if block:
                yield block
            block = []
        else:
            block.append(raw)
    if block:
        yield block


def _split_line(line: str) -> tuple[str, str]:
    key, sep, value = line.partition(":")
    if not sep or not key.strip():
        raise ConfigurationError(f"Malformed manifest line: {line}")
    return key.strip(), value.strip()


def _wrap(line: str) -> list[str]:
    data = line.encode("utf-8")
    if len(data) <= MAX_LINE_BYTES:
        return [line]
    parts: list[str] = []
    limit = MAX_LINE_BYTES
    while data:
        cut = min(limit, len(data))
        # never split a multi-byte character
        while cut < len(data) and (data[cut] & 0xC0) == 0x80:
            cut -= 1
        chunk = data[:cut].decode("utf-8")
        parts.append(chunk if not parts else " " + chunk)
        data = data[cut:]
        limit = MAX_LINE_BYTES - 1
    return parts
