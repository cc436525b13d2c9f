"""
Caplet base class.

A caplet is an override module chained after the base Capsule. It
overrides any of the overridable operations simply by defining a method
with the operation's name, and reaches the rest of the chain through two
dispatchers:

    self.oc.<op>(...)   virtual call: runs the most specific implementation
    self.sup.<op>(...)  super call: runs the next implementation toward the head

Example:
    @register_caplet
    class HeapCaplet(Caplet):
        name = "heap"

        def build_jvm_args(self, cmd_line):
            args = self.sup.build_jvm_args(cmd_line)
            return args + ["-Xmx2g"]
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

from jcapsule.errors import ConfigurationError

if TYPE_CHECKING:
    from jcapsule.config.attributes import AttributeDeclaration
    from jcapsule.launch.session import LaunchSession

    from .chain import OverrideChain


class ChainError(ConfigurationError):
    """Raised on invalid override chain construction or dispatch."""

    pass


class Caplet:
    """
    Base class for chain members.

    Subclasses set ``name`` (the id used in the Caplets attribute and the
    registry) and may declare extra manifest attributes in ``ATTRIBUTES``.
    """

    name: ClassVar[str] = ""
    ATTRIBUTES: ClassVar[tuple["AttributeDeclaration", ...]] = ()

    def __init__(self, session: "LaunchSession") -> None:
        self.session = session
        self.chain: "OverrideChain | None" = None

    @property
    def oc(self) -> Any:
        """Virtual dispatcher: the most specific implementation of each operation."""
        return self._require_chain().virtual

    @property
    def sup(self) -> Any:
        """Super dispatcher: the next implementation toward the chain head."""
        return self._require_chain().super_of(self)

    @classmethod
    def implements(cls, operation: str) -> bool:
        """Whether this class itself (not Caplet) defines the operation."""
        for klass in cls.__mro__:
            if klass in (Caplet, object):
                continue
            if operation in klass.__dict__:
                return True
        return False

    def _require_chain(self) -> "OverrideChain":
        if self.chain is None:
            raise ChainError(f"{type(self).__name__} is not attached to an override chain")
        return self.chain

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
