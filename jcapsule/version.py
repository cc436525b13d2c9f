"""
Java version strings.

Parses and orders the version strings reported by Java installations and
declared in archive attributes. Both numbering schemes are accepted:

- legacy:  1.8.0, 1.8.0_45, 1.7.0_80-ea
- modern:  9, 11.0.2, 11.0.9.1, 17.0.1+12, 21-ea

Versions are normalized to (feature, interim, update, patch, pre) so that the
two schemes compare against each other: 1.8.0_45 is feature 8 update 45, and
11.0.9.1 is feature 11 update 9 patch 1. Parts beyond the fourth are ignored.

Pre-release markers order below their release: ea < beta < rc < release.
Build suffixes (-b14, +12) are accepted and ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering

_VERSION_PATTERN = re.compile(
    r"^(?P<legacy>1\.)?(?P<feature>\d+)"
    r"(?:\.(?P<second>\d+))?"
    r"(?:\.(?P<third>\d+))?"
    r"(?P<extra>(?:\.\d+)*)"
    r"(?:_(?P<update>\d+))?"
    r"(?:-(?P<pre>[A-Za-z]+)\d*)?"
    r"(?:[-+](?P<build>.+))?$"
)

# Release is 0; anything unrecognized counts as a release.
PRE_RELEASE_RANKS = {"rc": -1, "beta": -2, "ea": -3}
_RANK_NAMES = {rank: name for name, rank in PRE_RELEASE_RANKS.items()}

MIN_FEATURE_VERSION = 5


@total_ordering
@dataclass(frozen=True)
class JavaVersion:
    """A parsed Java version."""

    feature: int
    interim: int = 0
    update: int = 0
    patch: int = 0
    pre: int = 0

    @property
    def major(self) -> int:
        """The major version used for Java-N qualified sections."""
        return self.feature

    @property
    def is_release(self) -> bool:
        return self.pre == 0

    def key(self, depth: int = 5) -> tuple[int, ...]:
        return (self.feature, self.interim, self.update, self.patch, self.pre)[:depth]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, JavaVersion):
            return NotImplemented
        return self.key() < other.key()

    def __str__(self) -> str:
        if self.feature < 9:
            text = f"1.{self.feature}.{self.interim}"
            if self.patch:
                text += f".{self.patch}"
            if self.update > 0:
                text += f"_{self.update}"
        else:
            text = f"{self.feature}.{self.interim}.{self.update}"
            if self.patch:
                text += f".{self.patch}"
        if self.pre:
            text += f"-{_RANK_NAMES[self.pre]}"
        return text


def parse_version(text: str) -> JavaVersion:
    """
    Parse a Java version string.

    Raises:
        ValueError: If the text is not a recognizable Java version
    """
    match = _VERSION_PATTERN.match(text.strip()) if text else None
    if match is None:
        raise ValueError(f"Could not parse version: {text}")

    feature = int(match.group("feature"))
    if feature < MIN_FEATURE_VERSION:
        raise ValueError(f"Unrecognized major Java version: {text}")

    second = int(match.group("second") or 0)
    third = int(match.group("third") or 0)
    extra = [int(part) for part in match.group("extra").split(".") if part]
    if match.group("legacy"):
        interim, update = second, int(match.group("update") or 0)
        patch = third
    else:
        interim, update = second, int(match.group("update") or third)
        patch = extra[0] if extra else 0

    pre = 0
    marker = (match.group("pre") or "").lower()
    for name, rank in PRE_RELEASE_RANKS.items():
        if marker.startswith(name):
            pre = rank
            break

    return JavaVersion(feature=feature, interim=interim, update=update, patch=patch, pre=pre)


def compare_versions(a: str | JavaVersion, b: str | JavaVersion, depth: int = 5) -> int:
    """
    Compare two versions on their first ``depth`` components.

    Returns a negative number, zero, or a positive number.
    """
    va = a if isinstance(a, JavaVersion) else parse_version(a)
    vb = b if isinstance(b, JavaVersion) else parse_version(b)
    ka, kb = va.key(depth), vb.key(depth)
    return (ka > kb) - (ka < kb)


def short_java_version(text: str) -> str:
    """Expand an abbreviated version: "8" -> "1.8.0", "1.7" -> "1.7.0"."""
    return str(parse_version(text))


def is_java_dir_name(name: str) -> str | None:
    """
    Extract the version encoded in a Java installation directory name.

    Recognizes jdk1.8.0_45, jre8, jdk-11.0.2 and 1.8.0.jdk style names.
    Returns the normalized version, or None for other names.
    """
    lowered = name.lower()
    if not (lowered.startswith(("jdk", "jre")) or lowered.endswith((".jdk", ".jre"))):
        return None
    if lowered.startswith(("jdk", "jre")):
        lowered = lowered[3:]
    if lowered.endswith((".jdk", ".jre")):
        lowered = lowered[:-4]
    lowered = lowered.lstrip("-")
    try:
        return str(parse_version(lowered))
    except ValueError:
        return None
