"""
jcapsule - a self-contained launcher for packaged JVM applications.

A capsule is a JAR whose manifest declares everything needed to run the
application inside it: dependencies, JVM arguments, the Java versions it
accepts, native libraries and alternative launch modes. jcapsule reads
that manifest, extracts the archive into a per-application cache when
needed, picks a matching Java installation, builds the java command line
and supervises the child process.

Quick Start:
    >>> from pathlib import Path
    >>> from jcapsule import LaunchEngine, LaunchOptions
    >>>
    >>> engine = LaunchEngine(Path("app.jar"), options=LaunchOptions(mode="debug"))
    >>> plan = engine.prepare(["arg1"])
    >>> plan.command
    ['/usr/lib/jvm/java-17/bin/java', ..., 'com.acme.Main', 'arg1']

Behaviour is extended with caplets: subclasses of Caplet registered under
a name and listed in the archive's Caplets attribute.
"""

__version__ = "0.9.0"

from jcapsule.capsule import Capsule
from jcapsule.caplets import Caplet, OverrideChain, register_caplet
from jcapsule.errors import (
    CapsuleError,
    ConfigurationError,
    LaunchEnvironmentError,
    ResolutionError,
)
from jcapsule.launch import LaunchEngine, LaunchOptions, LaunchPlan, LaunchSession
from jcapsule.version import JavaVersion

__all__ = [
    # Version info
    "__version__",
    # Launching
    "LaunchEngine",
    "LaunchOptions",
    "LaunchPlan",
    "LaunchSession",
    # Extension
    "Capsule",
    "Caplet",
    "OverrideChain",
    "register_caplet",
    # Errors
    "CapsuleError",
    "ConfigurationError",
    "LaunchEnvironmentError",
    "ResolutionError",
    # Versions
    "JavaVersion",
]
