"""
Tests for the Maven dependency backend, using httpx.MockTransport.
"""
import io

import httpx
import pytest

from jcapsule.dependency.base import is_dependency, parse_coordinates
from jcapsule.dependency.maven import MavenDependencyManager, repository_url
from jcapsule.errors import ConfigurationError, ResolutionError

REPO = "https://repo.example.com/maven"

METADATA = b"""<?xml version="1.0"?>
<metadata>
  <groupId>com.acme</groupId>
  <artifactId>foo</artifactId>
  <versioning>
    <latest>2.0-SNAPSHOT</latest>
    <release>1.1</release>
    <versions>
      <version>1.0</version>
      <version>1.1</version>
      <version>2.0-SNAPSHOT</version>
    </versions>
  </versioning>
</metadata>
"""


class Repository:
    """In-memory Maven repository served through MockTransport."""

    def __init__(self, files=None, failures=0):
        self.files = dict(files or {})
        self.failures = failures
        self.requests = []

    def handler(self, request):
        self.requests.append(str(request.url))
        if self.failures:
            self.failures -= 1
            return httpx.Response(503)
        path = str(request.url)[len(REPO) + 1:]
        if path in self.files:
            return httpx.Response(200, content=self.files[path])
        return httpx.Response(404)

    def manager(self, tmp_path, **kwargs):
        client = httpx.Client(transport=httpx.MockTransport(self.handler))
        return MavenDependencyManager([REPO], tmp_path / "repo", client=client, retry_delay=0, **kwargs)


class TestCoordinates:
    """Tests for coordinate parsing."""

    def test_parse(self):
        coords = parse_coordinates("com.acme:foo:1.0:linux(org.bad:dep)")
        assert (coords.group, coords.artifact, coords.version, coords.classifier) == (
            "com.acme",
            "foo",
            "1.0",
            "linux",
        )
        assert coords.exclusions == frozenset({"org.bad:dep"})

    def test_file_name(self):
        assert parse_coordinates("com.acme:foo:1.0").file_name() == "foo-1.0.jar"
        assert parse_coordinates("com.acme:foo:1.0:linux").file_name("so", with_group=True) == (
            "com.acme-foo-1.0-linux.so"
        )

    def test_is_dependency(self):
        assert is_dependency("com.acme:foo:1.0")
        assert is_dependency("com.acme:foo")
        assert not is_dependency("lib/foo.jar")
        assert not is_dependency("C:\\lib\\foo.jar")

    def test_latest_markers(self):
        assert parse_coordinates("com.acme:foo").is_latest
        assert parse_coordinates("com.acme:foo:RELEASE").is_latest
        assert not parse_coordinates("com.acme:foo:1.0").is_latest

    def test_illegal(self):
        with pytest.raises(ConfigurationError):
            parse_coordinates("not coordinates")


class TestMavenDependencyManager:
    """Tests for MavenDependencyManager."""

    def test_repository_aliases(self):
        assert repository_url("central") == "https://repo1.maven.org/maven2"
        assert repository_url("https://x.example.com/") == "https://x.example.com"
        with pytest.raises(ConfigurationError):
            repository_url("ftp://nope")

    def test_download_once(self, tmp_path):
        repo = Repository({"com/acme/foo/1.0/foo-1.0.jar": b"jar bytes"})
        with repo.manager(tmp_path) as manager:
            first = manager.resolve_dependency("com.acme:foo:1.0")
            second = manager.resolve_dependency("com.acme:foo:1.0")
        assert first == second
        assert first[0].read_bytes() == b"jar bytes"
        assert first[0] == tmp_path / "repo" / "com/acme/foo/1.0/foo-1.0.jar"
        assert len(repo.requests) == 1

    def test_not_found(self, tmp_path):
        repo = Repository()
        with pytest.raises(ResolutionError, match="was not found"):
            repo.manager(tmp_path).resolve_dependency("com.acme:foo:1.0")

    def test_retries_server_errors(self, tmp_path):
        repo = Repository({"com/acme/foo/1.0/foo-1.0.jar": b"jar"}, failures=2)
        paths = repo.manager(tmp_path, max_retries=2).resolve_dependency("com.acme:foo:1.0")
        assert paths[0].is_file()
        assert len(repo.requests) == 3

    def test_gives_up_after_retries(self, tmp_path):
        repo = Repository(failures=5)
        with pytest.raises(ResolutionError, match="after 2 attempts"):
            repo.manager(tmp_path, max_retries=1).resolve_dependency("com.acme:foo:1.0")

    def test_latest_release(self, tmp_path):
        repo = Repository(
            {
                "com/acme/foo/maven-metadata.xml": METADATA,
                "com/acme/foo/1.1/foo-1.1.jar": b"jar",
            }
        )
        manager = repo.manager(tmp_path)
        assert manager.latest_version("com.acme:foo") == "com.acme:foo:1.1"
        assert manager.resolve_dependency("com.acme:foo")[0].name == "foo-1.1.jar"

    def test_latest_with_snapshots(self, tmp_path):
        repo = Repository({"com/acme/foo/maven-metadata.xml": METADATA})
        manager = repo.manager(tmp_path, allow_snapshots=True)
        assert manager.latest_version("com.acme:foo:LATEST") == "com.acme:foo:2.0-SNAPSHOT"

    def test_snapshots_rejected_by_default(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Allow-Snapshots"):
            Repository().manager(tmp_path).resolve_dependency("com.acme:foo:2.0-SNAPSHOT")

    def test_native_type(self, tmp_path):
        repo = Repository({"com/acme/native/1.0/native-1.0-linux.so": b"elf"})
        paths = repo.manager(tmp_path).resolve_dependency("com.acme:native:1.0:linux", "so")
        assert paths[0].name == "native-1.0-linux.so"

    def test_print_dependency_tree(self, tmp_path):
        out = io.StringIO()
        Repository().manager(tmp_path).print_dependency_tree(["com.acme:foo:1.0", "com.acme:bar:2.0"], "jar", out)
        assert out.getvalue() == "+- com.acme:foo:1.0\n+- com.acme:bar:2.0\n"
