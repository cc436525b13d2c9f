"""
Pytest configuration and fixtures for jcapsule tests.
"""

import sys
from pathlib import Path

import pytest

# Add the repository root to path for imports
# This allows `from jcapsule.capsule import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from jcapsule.archive.jar import write_jar  # noqa: E402
from jcapsule.archive.manifest import Attributes, Manifest  # noqa: E402
from jcapsule.caplets.registry import CapletRegistry  # noqa: E402
from jcapsule.config.settings import LauncherSettings  # noqa: E402
from jcapsule.launch.engine import LaunchEngine  # noqa: E402
from jcapsule.launch.session import LaunchOptions  # noqa: E402
from jcapsule.platform import OS_LINUX, OS_WINDOWS, Platform  # noqa: E402
from jcapsule.runtime.discovery import JavaDiscovery  # noqa: E402
from jcapsule.version import parse_version  # noqa: E402

LAUNCHER_ENTRIES = [
    ("Capsule.class", b"\xca\xfe\xba\xbe"),
    ("capsule/Helper.class", b"\xca\xfe\xba\xbe"),
]


def build_manifest(attrs=None, sections=None, main_class="Capsule"):
    manifest = Manifest()
    if main_class:
        manifest.main["Main-Class"] = main_class
    for key, value in (attrs or {}).items():
        manifest.main[key] = value
    for name, section in (sections or {}).items():
        manifest.add_section(name, Attributes(section))
    return manifest


@pytest.fixture
def make_capsule(tmp_path):
    """Factory writing a capsule JAR into tmp_path."""

    def _make(attrs=None, sections=None, entries=(), name="app.jar"):
        manifest = build_manifest(attrs, sections)
        return write_jar(tmp_path / name, manifest, LAUNCHER_ENTRIES + list(entries))

    return _make


@pytest.fixture
def linux():
    return Platform(OS_LINUX)


@pytest.fixture
def windows():
    return Platform(OS_WINDOWS)


@pytest.fixture
def java_home(tmp_path):
    """A fake JDK: bin/java (and java.exe, javac) as empty executables."""
    home = tmp_path / "jvm" / "jdk-11.0.2"
    (home / "bin").mkdir(parents=True)
    for name in ("java", "java.exe", "javac"):
        exe = home / "bin" / name
        exe.write_text("")
        exe.chmod(0o755)
    return home


@pytest.fixture
def settings(tmp_path):
    return LauncherSettings(cache_dir=tmp_path / "cache", local_repo=tmp_path / "repo")


@pytest.fixture
def make_discovery(java_home):
    def _make(platform, version="11.0.2"):
        return JavaDiscovery(
            platform,
            query=lambda home: parse_version(version),
            roots=[],
            env={"JAVA_HOME": str(java_home), "PATH": ""},
        )

    return _make


@pytest.fixture
def make_engine(settings, linux, make_discovery):
    """Factory for an engine wired to fake Java and a private caplet registry."""
    engines = []

    def _make(jar, platform=None, caplets=None, dependency_manager=None, **options):
        platform = platform or linux
        engine = LaunchEngine(
            jar,
            settings,
            LaunchOptions(**options),
            platform=platform,
            caplets=caplets or CapletRegistry(),
            discovery=make_discovery(platform),
            dependency_manager=dependency_manager,
        )
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.cleanup()


@pytest.fixture(name="build_manifest")
def build_manifest_fixture():
    return build_manifest
