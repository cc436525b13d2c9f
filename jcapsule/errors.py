"""
Error taxonomy for jcapsule.

Every fatal launcher failure is a CapsuleError. The subclasses mirror the
three failure families the launcher distinguishes:

- ConfigurationError: malformed or contradictory declared attributes,
  unknown modes, non-modal attributes in named sections.
- ResolutionError: a file/dependency reference that resolves to nothing.
- LaunchEnvironmentError: no matching Java installation, a cache that
  cannot be created, a command line the platform cannot accept.

Child-process failures are never translated; the launcher relays the
child's exit status as its own.

Diagnostics:
    Call sites do not format their own "while processing" suffix. The
    session records an ErrorContext just before a risky operation and
    describe_error() appends it when the top-level error is printed.
"""

from __future__ import annotations

from dataclasses import dataclass


class CapsuleError(Exception):
    """Base class for all launcher errors."""

    pass


class ConfigurationError(CapsuleError):
    """Raised for invalid or contradictory archive configuration."""

    pass


class CacheUnavailableError(ConfigurationError):
    """
    Raised when a cache-relative value is requested without an app cache.

    Attributes:
        reason: "not-applicable" when this launch has no app cache at all,
            "not-yet-available" when the cache exists but has not been
            prepared yet.
    """

    NOT_APPLICABLE = "not-applicable"
    NOT_YET_AVAILABLE = "not-yet-available"

    def __init__(self, message: str, reason: str = NOT_APPLICABLE):
        self.reason = reason
        super().__init__(message)


class ResolutionError(CapsuleError):
    """Raised when a descriptor cannot be turned into files."""

    def __init__(self, message: str, descriptor: str | None = None):
        self.descriptor = descriptor
        super().__init__(message)


class LaunchEnvironmentError(CapsuleError):
    """Raised when the host cannot satisfy the launch requirements."""

    pass


@dataclass(frozen=True)
class ErrorContext:
    """What the launcher was processing when an error surfaced."""

    kind: str
    key: str
    value: str | None = None

    def __str__(self) -> str:
        if self.value is None:
            return f"{self.kind} {self.key}"
        return f"{self.kind} {self.key}: {self.value}"


def describe_error(exc: BaseException, context: ErrorContext | None = None) -> str:
    """
    Render a one-line description of a fatal error.

    Example:
        >>> describe_error(ValueError("bad"), ErrorContext("attribute", "JVM-Args", "-Xmx"))
        'bad while processing attribute JVM-Args: -Xmx'
    """
    message = str(exc) or exc.__class__.__name__
    if context is None:
        return message
    return f"{message} while processing {context}"
