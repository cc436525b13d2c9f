"""
jcapsule command line entry point.

Usage:
    jcapsule app.jar [app args...]
    jcapsule --mode debug -J-Xmx2g app.jar arg1
    jcapsule --modes app.jar
    jcapsule --trampoline app.jar      # print the command line instead
    jcapsule wrapper.jar com.acme:app:1.0 arg1

Exit status is the application's own; launcher failures exit with 1.
"""

from __future__ import annotations

import argparse
import logging
import sys
import traceback
from pathlib import Path

from jcapsule.caplets.registry import get_caplet_registry
from jcapsule.config.settings import LogLevel, get_settings
from jcapsule.errors import CapsuleError, describe_error
from jcapsule.launch.engine import PACKAGE_LOGGER, LaunchEngine
from jcapsule.launch.session import LaunchOptions

logger = logging.getLogger(__name__)

LOG_FORMAT = "CAPSULE: %(asctime)s - %(name)s - %(levelname)s - %(message)s"
VERBOSE_HINT = "Run with --log-level VERBOSE for details."


def configure_logging(level: LogLevel) -> None:
    """Launcher diagnostics go to stderr; stdout belongs to the application."""
    logging.basicConfig(stream=sys.stderr, format=LOG_FORMAT)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level.logging_level)


def _log_level(value: str) -> LogLevel:
    try:
        return LogLevel.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jcapsule",
        description="Launch a packaged JVM application.",
    )
    parser.add_argument("archive", type=Path, nargs="?", help="Capsule archive to launch")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Application arguments")
    parser.add_argument("--mode", help="Launch mode declared by the archive")
    parser.add_argument("--java-home", type=Path, help="Java installation to use")
    parser.add_argument("--reset", action="store_true", help="Re-extract the app cache")
    parser.add_argument(
        "-J",
        dest="jvm_args",
        action="append",
        default=[],
        metavar="ARG",
        help="Extra JVM argument (repeatable), e.g. -J-Xmx2g",
    )
    parser.add_argument("--log-level", type=_log_level, help="NONE, QUIET, VERBOSE or DEBUG")
    parser.add_argument("--trampoline", action="store_true", help="Print the command line instead of running it")
    parser.add_argument("--pump-io", action="store_true", help="Relay the child's stdio through the launcher")

    actions = parser.add_mutually_exclusive_group()
    actions.add_argument("--version", action="store_true", help="Print the application and launcher versions")
    actions.add_argument("--modes", action="store_true", help="List the archive's modes")
    actions.add_argument("--jvms", action="store_true", help="List installed Java runtimes")
    actions.add_argument("--tree", action="store_true", help="Print the dependency tree")
    actions.add_argument("--resolve", action="store_true", help="Download all dependencies")
    actions.add_argument("--merge", type=Path, metavar="OUT", help="Merge a wrapper with the capsule it wraps")
    return parser


def _options(ns: argparse.Namespace) -> LaunchOptions:
    return LaunchOptions(
        mode=ns.mode,
        java_home=ns.java_home,
        reset=ns.reset,
        jvm_args=list(ns.jvm_args),
        trampoline=ns.trampoline,
        pump_io=ns.pump_io,
        log_level=ns.log_level,
    )


def run(ns: argparse.Namespace, engine: LaunchEngine) -> int:
    args = list(ns.args)
    out = sys.stdout

    if ns.jvms:
        engine.print_jvms(out)
        return 0
    if not (ns.version or ns.modes or ns.tree or ns.resolve or ns.merge):
        return engine.run(args)

    try:
        if ns.version:
            engine.print_version(args, out)
        elif ns.modes:
            engine.print_modes(args, out)
        elif ns.tree:
            engine.print_dependency_tree(args, out)
        elif ns.resolve:
            paths = engine.resolve_dependencies(args)
            logger.info(f"[cli] Resolved {len(paths)} files")
        elif ns.merge:
            print(f"Wrote {engine.merge(args, ns.merge)}", file=out)
    finally:
        engine.cleanup()
    return 0


def report_fatal(summary: str, level: LogLevel) -> None:
    """One-line summary on stderr, then the traceback or a hint to get it."""
    print(f"CAPSULE EXCEPTION: {summary}", file=sys.stderr)
    if level in (LogLevel.VERBOSE, LogLevel.DEBUG):
        traceback.print_exc()
    else:
        print(VERBOSE_HINT, file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)
    if ns.archive is None and not ns.jvms:
        parser.error("the following arguments are required: archive")

    settings = get_settings()
    level = ns.log_level or settings.log_level
    configure_logging(level)
    get_caplet_registry().discover()

    engine = LaunchEngine(ns.archive, settings, _options(ns))
    try:
        return run(ns, engine)
    except KeyboardInterrupt:
        return 130
    except CapsuleError as e:
        report_fatal(describe_error(e, engine.session.error_context), level)
        return 1
    except OSError as e:
        report_fatal(str(e), level)
        return 1


if __name__ == "__main__":
    sys.exit(main())
