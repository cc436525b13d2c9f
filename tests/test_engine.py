"""
End-to-end tests for LaunchEngine: from capsule archive to launch plan.
"""
import io
import os
import shlex
import sys

import pytest

from jcapsule.archive.jar import JarArchive, is_capsule, read_manifest, write_jar
from jcapsule.archive.manifest import Manifest
from jcapsule.caplets import Caplet, CapletRegistry
from jcapsule.config.attributes import AttributeDeclaration, AttributeType
from jcapsule.config.settings import CACHE_NONE, LauncherSettings
from jcapsule.errors import ConfigurationError, LaunchEnvironmentError

APP = {"Application-Class": "com.acme.Foo", "Application-Version": "1.0"}


class FakeDependencyManager:
    """Serves every coordinate as a small JAR (or native library) on disk."""

    def __init__(self, root, main_class="com.acme.App"):
        self.root = root
        self.main_class = main_class
        self.calls = []

    def resolve_dependency(self, coords, type="jar"):
        self.calls.append((coords, type))
        path = self.root / f"{coords.replace(':', '-')}.{type}"
        if not path.exists():
            if type == "jar":
                manifest = Manifest()
                manifest.main["Main-Class"] = self.main_class
                write_jar(path, manifest)
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(b"native")
        return [path]

    def resolve_dependencies(self, coords, type="jar"):
        return [p for c in coords for p in self.resolve_dependency(c, type)]

    def print_dependency_tree(self, coords, type, out):
        for c in coords:
            print(f"+- {c}", file=out)

    def latest_version(self, coords, type="jar"):
        return coords


class HeapCaplet(Caplet):
    name = "heap"
    ATTRIBUTES = (AttributeDeclaration("Heap-Size", AttributeType.STRING, default="512m"),)

    def build_jvm_args(self, cmd_line):
        return self.sup.build_jvm_args(cmd_line) + ["-Xmx" + self.oc.get_attribute("Heap-Size")]


def cache_dir_of(engine):
    return engine.session.cache_dir


# =============================================================================
# Plan Building
# =============================================================================


class TestLaunchPlan:
    """Tests for the planned command line."""

    def test_extracted_capsule(self, make_capsule, make_engine, java_home, settings):
        jar = make_capsule(
            APP,
            entries=[
                ("foo.jar", b"jar"),
                ("lib/a.txt", b"a"),
                ("com/acme/Foo.class", b"class"),
            ],
        )
        engine = make_engine(jar)
        plan = engine.prepare(["x"])

        cache_dir = settings.cache_dir / "apps" / "com.acme.Foo_1.0"
        assert engine.session.app_id == "com.acme.Foo_1.0"
        assert cache_dir_of(engine) == cache_dir
        assert plan.class_path == [jar, cache_dir, cache_dir / "foo.jar"]
        assert (cache_dir / "lib" / "a.txt").is_file()
        assert not (cache_dir / "com").exists()
        assert not (cache_dir / "Capsule.class").exists()

        assert plan.command[0] == str(java_home / "bin" / "java")
        assert "-Dcapsule.app=com.acme.Foo_1.0" in plan.command
        assert f"-Dcapsule.dir={cache_dir}" in plan.command
        assert plan.command[-4:] == [
            "-classpath",
            ":".join(str(p) for p in plan.class_path),
            "com.acme.Foo",
            "x",
        ]
        assert plan.env["CAPSULE_APP"] == "com.acme.Foo_1.0"
        assert plan.env["CAPSULE_DIR"] == str(cache_dir)
        assert plan.env["JAVA_HOME"] == str(java_home)
        assert engine.session.cache.rebuilt

    def test_second_launch_reuses_cache(self, make_capsule, make_engine):
        jar = make_capsule(APP, entries=[("foo.jar", b"jar")])
        make_engine(jar).prepare([])
        second = make_engine(jar)
        second.prepare([])
        assert not second.session.cache.rebuilt

    def test_positional_args(self, make_capsule, make_engine):
        jar = make_capsule(dict(APP, Args="$2 $1"))
        plan = make_engine(jar).prepare(["hi", "there"])
        assert plan.command[-3:] == ["com.acme.Foo", "there", "hi"]

    def test_declared_args_precede_supplied(self, make_capsule, make_engine):
        jar = make_capsule(dict(APP, Args="-v"))
        plan = make_engine(jar).prepare(["x"])
        assert plan.command[-2:] == ["-v", "x"]

    def test_missing_positional_arg(self, make_capsule, make_engine):
        jar = make_capsule(dict(APP, Args="$3"))
        with pytest.raises(ConfigurationError):
            make_engine(jar).prepare(["a"])

    def test_jvm_args_and_properties(self, make_capsule, make_engine):
        jar = make_capsule(dict(APP, **{"JVM-Args": "-Xmx1g -Xss2m", "System-Properties": "a=1 b"}))
        plan = make_engine(jar, jvm_args=["-Xmx2g", "-Dc=3"]).prepare([])
        assert "-Xmx2g" in plan.command
        assert "-Xmx1g" not in plan.command
        assert plan.command.index("-Xmx2g") < plan.command.index("-Xss2m")
        assert "-Da=1" in plan.command
        assert "-Db" in plan.command
        assert "-Dc=3" in plan.command

    def test_option_order(self, make_capsule, make_engine):
        attrs = dict(
            APP,
            **{
                "JVM-Args": "-Xmx1g",
                "Boot-Class-Path-A": "lib/boot.jar",
                "Java-Agents": "agent.jar=verbose",
            },
        )
        engine = make_engine(make_capsule(attrs))
        plan = engine.prepare([])
        cache_dir = cache_dir_of(engine)
        command = plan.command

        boot = f"-Xbootclasspath/a:{cache_dir / 'lib' / 'boot.jar'}"
        agent = f"-javaagent:{cache_dir / 'agent.jar'}=verbose"
        assert boot in command
        assert agent in command
        positions = [
            command.index("-Xmx1g"),
            command.index(f"-Dcapsule.jar={engine.session.jar}"),
            command.index(boot),
            command.index(agent),
            command.index("-classpath"),
        ]
        assert positions == sorted(positions)

    def test_mode_section(self, make_capsule, make_engine):
        jar = make_capsule(APP, {"debug": {"JVM-Args": "-Xdebug"}})
        assert "-Xdebug" in make_engine(jar, mode="debug").prepare([]).command
        assert "-Xdebug" not in make_engine(jar).prepare([]).command

    def test_unknown_mode(self, make_capsule, make_engine):
        jar = make_capsule(APP, {"debug": {"JVM-Args": "-Xdebug"}})
        with pytest.raises(ConfigurationError, match="does not have mode"):
            make_engine(jar, mode="prod").prepare([])

    def test_java_section_applies_after_selection(self, make_capsule, make_engine):
        jar = make_capsule(APP, {"Java-11": {"JVM-Args": "-XX:+UseZGC"}})
        assert "-XX:+UseZGC" in make_engine(jar).prepare([]).command


# =============================================================================
# App Cache Variations
# =============================================================================


class TestExtraction:
    """Tests for launches with and without an app cache."""

    def test_no_extraction(self, make_capsule, make_engine):
        jar = make_capsule(dict(APP, **{"Extract-Capsule": "false"}))
        engine = make_engine(jar)
        plan = engine.prepare([])
        assert engine.session.cache is None
        assert plan.class_path == [jar]
        assert "CAPSULE_DIR" not in plan.env

    def test_library_path_requires_extraction(self, make_capsule, make_engine):
        jar = make_capsule(dict(APP, **{"Extract-Capsule": "false", "Library-Path-A": "lib"}))
        with pytest.raises(ConfigurationError, match="Library-Path-A"):
            make_engine(jar).prepare([])

    def test_capsule_dir_requires_extraction(self, make_capsule, make_engine):
        jar = make_capsule(dict(APP, **{"Extract-Capsule": "false", "System-Properties": "d=$CAPSULE_DIR"}))
        with pytest.raises(ConfigurationError):
            make_engine(jar).prepare([])

    def test_excluding_capsule_requires_extraction(self, make_capsule, make_engine):
        jar = make_capsule(dict(APP, **{"Extract-Capsule": "false", "Capsule-In-Class-Path": "false"}))
        with pytest.raises(ConfigurationError, match="Capsule-In-Class-Path"):
            make_engine(jar).prepare([])

    def test_temporary_cache_removed(self, make_capsule, make_discovery, linux):
        jar = make_capsule(APP, entries=[("foo.jar", b"jar")])
        from jcapsule.launch import LaunchEngine, LaunchOptions

        engine = LaunchEngine(
            jar,
            LauncherSettings(cache_name=CACHE_NONE),
            LaunchOptions(),
            platform=linux,
            caplets=CapletRegistry(),
            discovery=make_discovery(linux),
        )
        engine.prepare([])
        root = engine.session.cache_root
        assert (cache_dir_of(engine) / "foo.jar").is_file()
        engine.cleanup()
        assert not root.exists()

    def test_startup_script(self, make_capsule, make_engine):
        jar = make_capsule(
            {"Application-Name": "scripted", "Unix-Script": "start.sh"},
            entries=[("start.sh", b"#!/bin/sh\n"), ("lib.jar", b"jar")],
        )
        engine = make_engine(jar)
        plan = engine.prepare(["a"])
        script = cache_dir_of(engine) / "start.sh"
        assert plan.command == [str(script), "a"]
        assert os.access(script, os.X_OK)
        assert str(jar) in plan.env["CLASSPATH"]
        assert "LD_LIBRARY_PATH" in plan.env


# =============================================================================
# Dependencies and Runtime Selection
# =============================================================================


class TestDependencies:
    """Tests for dependency-backed launches."""

    def test_dependencies_on_class_path(self, make_capsule, make_engine, tmp_path):
        manager = FakeDependencyManager(tmp_path / "deps")
        jar = make_capsule(dict(APP, Dependencies="com.acme:lib:1.0"))
        plan = make_engine(jar, dependency_manager=manager).prepare([])
        assert plan.class_path[-1] == tmp_path / "deps" / "com.acme-lib-1.0.jar"

    def test_application_artifact(self, make_capsule, make_engine, tmp_path):
        manager = FakeDependencyManager(tmp_path / "deps")
        jar = make_capsule({"Application": "com.acme:app:2.0"})
        engine = make_engine(jar, dependency_manager=manager)
        plan = engine.prepare([])
        assert engine.session.app_id == "com.acme_app_2.0"
        assert engine.session.cache is None
        assert plan.class_path == [tmp_path / "deps" / "com.acme-app-2.0.jar"]
        assert plan.command[-1] == "com.acme.App"

    def test_native_dependency_copied(self, make_capsule, make_engine, tmp_path):
        manager = FakeDependencyManager(tmp_path / "deps")
        jar = make_capsule(dict(APP, **{"Native-Dependencies-Linux": "com.acme:native:1.0,libfoo.so"}))
        engine = make_engine(jar, dependency_manager=manager)
        plan = engine.prepare([])
        cache_dir = cache_dir_of(engine)
        assert (cache_dir / "libfoo.so").read_bytes() == b"native"
        assert cache_dir in plan.library_path
        assert manager.calls == [("com.acme:native:1.0", "so")]

    def test_java_version_unsatisfied(self, make_capsule, make_engine):
        jar = make_capsule(dict(APP, **{"Min-Java-Version": "17"}))
        with pytest.raises(LaunchEnvironmentError, match="CAPSULE_JAVA_HOME"):
            make_engine(jar).prepare([])

    def test_java_home_override(self, make_capsule, make_engine, tmp_path):
        other = tmp_path / "other-jdk"
        jar = make_capsule(dict(APP, **{"Min-Java-Version": "17"}))
        plan = make_engine(jar, java_home=other).prepare([])
        assert plan.command[0] == str(other / "bin" / "java")


# =============================================================================
# Identity
# =============================================================================


class TestAppId:
    """Tests for application id derivation."""

    @pytest.mark.parametrize(
        "attrs,expected",
        [
            ({"Application-Class": "com.acme.Foo"}, "com.acme.Foo"),
            ({"Application-Class": "com.acme.Foo", "Implementation-Version": "2"}, "com.acme.Foo_2"),
            ({"Application-Name": "foo", "Application-Version": "3", "Application-Class": "a.B"}, "foo_3"),
            ({"Application-Id": "explicit", "Application-Version": "3", "Application-Class": "a.B"}, "explicit"),
        ],
    )
    def test_derivation(self, make_capsule, make_engine, attrs, expected):
        engine = make_engine(make_capsule(attrs))
        engine.prepare([])
        assert engine.session.app_id == expected

    def test_option_overrides(self, make_capsule, make_engine):
        engine = make_engine(make_capsule(APP), app_id="forced")
        engine.prepare([])
        assert engine.session.app_id == "forced"

    def test_modal_class_needs_name(self, make_capsule, make_engine):
        jar = make_capsule({"Application-Class": "a.B"}, {"debug": {"Application-Class": "a.Debug"}})
        with pytest.raises(ConfigurationError, match="modal section"):
            make_engine(jar).prepare([])


# =============================================================================
# Wrapping
# =============================================================================


class TestWrapper:
    """Tests for empty capsules wrapping another capsule."""

    def test_wraps_capsule_path(self, make_capsule, make_engine):
        wrapper = make_capsule({"JVM-Args": "-Xmx1g"}, name="wrapper.jar")
        target = make_capsule(APP, entries=[("foo.jar", b"jar")], name="target.jar")
        engine = make_engine(wrapper)

        plan = engine.prepare([str(target), "a"])
        assert engine.session.is_wrapper
        assert engine.session.wrapper == wrapper
        assert engine.session.jar == target
        assert plan.class_path[0] == target
        assert "-Xmx1g" in plan.command
        assert plan.command[-2:] == ["com.acme.Foo", "a"]

    def test_wraps_capsule_coordinates(self, make_capsule, make_engine, tmp_path):
        target = make_capsule(APP, name="target.jar")
        manager = FakeDependencyManager(tmp_path / "deps")
        manager.resolve_dependency = lambda coords, type="jar": [target]
        engine = make_engine(make_capsule({}, name="wrapper.jar"), dependency_manager=manager)
        assert engine.open(["com.acme:target:1.0", "a"]) == ["a"]
        assert engine.session.jar == target

    def test_empty_capsule_without_target(self, make_capsule, make_engine):
        engine = make_engine(make_capsule({}, name="wrapper.jar"))
        with pytest.raises(ConfigurationError, match="No application"):
            engine.prepare([])

    def test_non_capsule_target_rejected(self, make_capsule, make_engine, build_manifest, tmp_path):
        plain = write_jar(tmp_path / "plain.jar", build_manifest(main_class="com.acme.Foo"))
        engine = make_engine(make_capsule({}, name="wrapper.jar"))
        with pytest.raises(ConfigurationError, match="not a capsule"):
            engine.open([str(plain)])

    def test_merge(self, make_capsule, make_engine, tmp_path):
        wrapper = make_capsule({"JVM-Args": "-Xmx1g"}, name="wrapper.jar")
        target = make_capsule(APP, entries=[("foo.jar", b"jar")], name="target.jar")
        output = make_engine(wrapper).merge([str(target)], tmp_path / "merged.jar")
        assert is_capsule(output)
        assert "foo.jar" in JarArchive(output).names()
        assert read_manifest(output).main["JVM-Args"] == "-Xmx1g"

    def test_merge_requires_wrapper(self, make_capsule, make_engine, tmp_path):
        with pytest.raises(ConfigurationError):
            make_engine(make_capsule(APP)).merge([], tmp_path / "merged.jar")


# =============================================================================
# Caplets, Environment and Trampoline
# =============================================================================


class TestCaplets:
    """Tests for caplets named in the manifest."""

    def test_caplet_overrides_operation(self, make_capsule, make_engine):
        registry = CapletRegistry()
        registry.register(HeapCaplet)
        jar = make_capsule(dict(APP, Caplets="heap", **{"Heap-Size": "2g", "JVM-Args": "-Xss2m"}))
        plan = make_engine(jar, caplets=registry).prepare([])
        assert "-Xss2m" in plan.command
        assert "-Xmx2g" in plan.command

    def test_caplet_attribute_default(self, make_capsule, make_engine):
        registry = CapletRegistry()
        registry.register(HeapCaplet)
        jar = make_capsule(dict(APP, Caplets="heap"))
        assert "-Xmx512m" in make_engine(jar, caplets=registry).prepare([]).command

    def test_unknown_caplet(self, make_capsule, make_engine):
        jar = make_capsule(dict(APP, Caplets="missing"))
        with pytest.raises(ConfigurationError, match="No caplet registered"):
            make_engine(jar).prepare([])


class TestEnvironment:
    """Tests for Environment-Variables."""

    def test_assignments(self, make_capsule, make_engine, monkeypatch):
        monkeypatch.setenv("JCAPSULE_EXISTING", "1")
        monkeypatch.delenv("JCAPSULE_NEW", raising=False)
        jar = make_capsule(
            dict(
                APP,
                **{
                    "Environment-Variables": "JCAPSULE_NEW=a JCAPSULE_EXISTING=2 JCAPSULE_FORCED:=$CAPSULE_APP",
                },
            )
        )
        plan = make_engine(jar).prepare([])
        assert plan.env["JCAPSULE_NEW"] == "a"
        assert "JCAPSULE_EXISTING" not in plan.env
        assert plan.env["JCAPSULE_FORCED"] == "com.acme.Foo_1.0"
        assert plan.environment()["JCAPSULE_EXISTING"] == "1"

    def test_malformed(self, make_capsule, make_engine):
        jar = make_capsule(dict(APP, **{"Environment-Variables": "NOEQUALS"}))
        with pytest.raises(ConfigurationError, match="Malformed"):
            make_engine(jar).prepare([])


class TestTrampoline:
    """Tests for trampoline mode."""

    def test_prints_command_line(self, make_capsule, make_engine):
        engine = make_engine(make_capsule(APP), trampoline=True)
        out = io.StringIO()
        assert engine.launch(["a b"], out=out) == 0
        line = out.getvalue().strip()
        assert shlex.split(line)[-2:] == ["com.acme.Foo", "a b"]

    def test_rejects_environment_variables(self, make_capsule, make_engine):
        jar = make_capsule(dict(APP, **{"Environment-Variables": "A=1"}))
        with pytest.raises(ConfigurationError, match="trampoline"):
            make_engine(jar, trampoline=True).prepare([])


# =============================================================================
# Windows Command Line Limit
# =============================================================================


class TestPathingJar:
    """Tests for the pathing JAR used on long Windows command lines."""

    def long_class_path_capsule(self, make_capsule):
        entries = " ".join(f"lib/a-rather-long-library-name-number-{i:04d}.jar" for i in range(700))
        return make_capsule(dict(APP, **{"App-Class-Path": entries}))

    def test_pathing_jar_replaces_class_path(self, make_capsule, make_engine, windows):
        engine = make_engine(self.long_class_path_capsule(make_capsule), platform=windows)
        plan = engine.prepare([])

        assert plan.pathing_jar is not None
        assert plan.pathing_jar.parent == cache_dir_of(engine)
        assert plan.command[plan.command.index("-classpath") + 1] == str(plan.pathing_jar)
        assert plan.command[0].endswith("java.exe")
        assert len(plan.class_path) > 700
        class_path = read_manifest(plan.pathing_jar).main["Class-Path"].split()
        assert len(class_path) == len(plan.class_path)

        engine.cleanup()
        assert not plan.pathing_jar.exists()

    def test_short_command_has_no_pathing_jar(self, make_capsule, make_engine, windows):
        plan = make_engine(make_capsule(APP), platform=windows).prepare([])
        assert plan.pathing_jar is None

    def test_trampoline_cannot_use_pathing_jar(self, make_capsule, make_engine, windows):
        engine = make_engine(self.long_class_path_capsule(make_capsule), platform=windows, trampoline=True)
        with pytest.raises(LaunchEnvironmentError, match="pathing jar"):
            engine.prepare([])


# =============================================================================
# Read-only Actions
# =============================================================================


class TestActions:
    """Tests for the informational actions."""

    def test_print_modes(self, make_capsule, make_engine):
        jar = make_capsule(APP, {"debug": {"Description": "Debugging", "JVM-Args": "-Xdebug"}, "prod": {"Args": "-q"}})
        out = io.StringIO()
        make_engine(jar).print_modes([], out)
        assert out.getvalue() == "Available modes:\n* debug: Debugging\n* prod\n"

    def test_print_modes_default_only(self, make_capsule, make_engine):
        out = io.StringIO()
        make_engine(make_capsule(APP)).print_modes([], out)
        assert out.getvalue() == "Default mode only\n"

    def test_print_version(self, make_capsule, make_engine):
        from jcapsule import __version__

        out = io.StringIO()
        make_engine(make_capsule(APP)).print_version([], out)
        assert out.getvalue() == f"Application com.acme.Foo_1.0\njcapsule version {__version__}\n"

    def test_print_dependency_tree(self, make_capsule, make_engine, tmp_path):
        manager = FakeDependencyManager(tmp_path / "deps")
        jar = make_capsule(dict(APP, Dependencies="com.acme:lib:1.0"))
        out = io.StringIO()
        make_engine(jar, dependency_manager=manager).print_dependency_tree([], out)
        assert out.getvalue() == "Dependencies:\n+- com.acme:lib:1.0\n"

    def test_no_dependencies(self, make_capsule, make_engine):
        out = io.StringIO()
        make_engine(make_capsule(APP)).print_dependency_tree([], out)
        assert out.getvalue() == "No external dependencies.\n"

    def test_resolve_dependencies(self, make_capsule, make_engine, tmp_path):
        manager = FakeDependencyManager(tmp_path / "deps")
        jar = make_capsule(dict(APP, Dependencies="com.acme:lib:1.0 com.acme:other:2.0"))
        paths = make_engine(jar, dependency_manager=manager).resolve_dependencies([])
        assert [p.name for p in paths] == ["com.acme-lib-1.0.jar", "com.acme-other-2.0.jar"]


# =============================================================================
# Running the Child
# =============================================================================


@pytest.mark.skipif(sys.platform == "win32", reason="shell script fake java")
class TestRun:
    """Tests for running the planned command."""

    @pytest.fixture(autouse=True)
    def no_signal_handlers(self, monkeypatch):
        monkeypatch.setattr("jcapsule.launch.engine.install_cleanup_handlers", lambda session: None)

    def fake_java(self, java_home, body):
        java = java_home / "bin" / "java"
        java.write_text("#!/bin/sh\n" + body)
        java.chmod(0o755)

    def test_exit_status_relayed(self, make_capsule, make_engine, java_home):
        self.fake_java(java_home, "exit 7\n")
        assert make_engine(make_capsule(APP)).run([]) == 7

    def test_child_sees_environment(self, make_capsule, make_engine, java_home, capfd):
        self.fake_java(java_home, 'echo "app=$CAPSULE_APP"\necho "args=$*"\n')
        assert make_engine(make_capsule(APP)).run(["z"]) == 0
        out = capfd.readouterr().out
        assert "app=com.acme.Foo_1.0" in out
        assert "args=" in out and out.rstrip().endswith("com.acme.Foo z")

    def test_pumped_output(self, make_capsule, make_engine, java_home, capfd):
        self.fake_java(java_home, "echo pumped\n")
        assert make_engine(make_capsule(APP), pump_io=True).run([]) == 0
        assert "pumped" in capfd.readouterr().out

    def test_cleanup_after_run(self, make_capsule, make_engine, java_home):
        self.fake_java(java_home, "exit 0\n")
        engine = make_engine(make_capsule(APP))
        engine.run([])
        assert engine.session.cache is not None
        assert not engine.session.cache.is_locked
