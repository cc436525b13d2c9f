"""
Override Chain for jcapsule.

An ordered list of modules (the base Capsule at the head, caplets after
it) with virtual-call and super-call dispatch computed up front.

Design:
    Dispatch is an explicit table built whenever the chain grows:

    - virtual[op]            the tail-most module defining op
    - super[(module, op)]    the nearest module before ``module`` defining op

    Every call is a dictionary lookup. Nothing inspects the call stack.

Invariants:
    - The chain only grows at the tail, and not at all once frozen.
    - A module type appears at most once; re-appending it is a no-op.
    - All modules share the head's session, so they see one app id,
      archive and mode.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from .base import Caplet, ChainError

logger = logging.getLogger(__name__)


class _Dispatcher:
    """Attribute-style access to chain operations (``chain.virtual.build_args(...)``)."""

    __slots__ = ("_chain", "_origin")

    def __init__(self, chain: "OverrideChain", origin: Caplet | None) -> None:
        self._chain = chain
        self._origin = origin

    def __getattr__(self, operation: str) -> Callable[..., Any]:
        if self._origin is None:
            return self._chain.dispatch(operation)
        return self._chain.dispatch_super(self._origin, operation)


class OverrideChain:
    """
    Chain of cooperating override modules.

    Example:
        chain = OverrideChain(capsule, operations=OPERATIONS)
        chain.append(HeapCaplet(session))
        chain.freeze()
        chain.virtual.build_jvm_args([])   # HeapCaplet's, which may call sup
    """

    def __init__(self, head: Caplet, operations: Iterable[str]) -> None:
        self._operations = tuple(operations)
        self._modules: list[Caplet] = []
        self._virtual: dict[str, Caplet] = {}
        self._super: dict[tuple[int, str], Caplet] = {}
        self._frozen = False
        self._attach(head)
        self.virtual = _Dispatcher(self, None)

    # =========================================================================
    # Construction
    # =========================================================================

    @property
    def head(self) -> Caplet:
        return self._modules[0]

    @property
    def tail(self) -> Caplet:
        return self._modules[-1]

    @property
    def operations(self) -> tuple[str, ...]:
        return self._operations

    @property
    def frozen(self) -> bool:
        return self._frozen

    def append(self, module: Caplet, after: Caplet | None = None) -> bool:
        """
        Append a module at the tail.

        Args:
            module: Module to append
            after: Expected predecessor; must be the current tail if given

        Returns:
            True if appended, False if a module of the same type is already
            in the chain

        Raises:
            ChainError: If the chain is frozen or ``after`` is not the tail
        """
        if self._frozen:
            raise ChainError(f"Cannot append {module!r}: the override chain is read-only")
        if after is not None and after is not self.tail:
            raise ChainError(
                f"Cannot insert {module!r} after {after!r}: modules may only be appended at the tail"
            )
        if any(type(m) is type(module) for m in self._modules):
            logger.debug(f"[chain] {type(module).__name__} already in chain; skipping")
            return False
        self._attach(module)
        logger.info(f"[chain] Appended {type(module).__name__} ({module.name or 'unnamed'})")
        return True

    def freeze(self) -> None:
        self._frozen = True

    def _attach(self, module: Caplet) -> None:
        if module.chain is not None and module.chain is not self:
            raise ChainError(f"{module!r} already belongs to another chain")
        module.chain = self
        self._modules.append(module)
        self._rebuild()

    def _rebuild(self) -> None:
        virtual: dict[str, Caplet] = {}
        supers: dict[tuple[int, str], Caplet] = {}
        for module in self._modules:
            for op in self._operations:
                if op in virtual:
                    supers[(id(module), op)] = virtual[op]
            for op in self._operations:
                if type(module).implements(op):
                    virtual[op] = module
        self._virtual = virtual
        self._super = supers

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _check(self, operation: str) -> None:
        if operation not in self._operations:
            raise AttributeError(f"{operation} is not an overridable operation")

    def dispatch(self, operation: str) -> Callable[..., Any]:
        """Bound method of the most specific implementation."""
        self._check(operation)
        module = self._virtual.get(operation)
        if module is None:
            raise ChainError(f"No module implements {operation}")
        return getattr(module, operation)

    def dispatch_super(self, origin: Caplet, operation: str) -> Callable[..., Any]:
        """Bound method of the next implementation toward the head from ``origin``."""
        self._check(operation)
        module = self._super.get((id(origin), operation))
        if module is None:
            raise ChainError(f"{type(origin).__name__} has no super implementation of {operation}")
        return getattr(module, operation)

    def super_of(self, origin: Caplet) -> _Dispatcher:
        return _Dispatcher(self, origin)

    # =========================================================================
    # Queries
    # =========================================================================

    def has_override(self, module_type: type) -> bool:
        """Whether a module of this type (or a subclass) is in the chain."""
        return any(isinstance(m, module_type) for m in self._modules)

    def nearest_override(self, module_type: type, start: Caplet | None = None) -> Caplet | None:
        """
        Search from ``start`` (default: the tail) toward the head.

        Returns:
            The first module of the given type, or None
        """
        index = len(self._modules) - 1
        if start is not None:
            index = next((i for i, m in enumerate(self._modules) if m is start), None)
            if index is None:
                raise ChainError(f"{start!r} is not in this chain")
        for module in reversed(self._modules[: index + 1]):
            if isinstance(module, module_type):
                return module
        return None

    def chain_order(self) -> list[type]:
        """Module types, head to tail."""
        return [type(m) for m in self._modules]

    def __iter__(self):
        return iter(list(self._modules))

    def __len__(self) -> int:
        return len(self._modules)

    def __repr__(self) -> str:
        names = " -> ".join(type(m).__name__ for m in self._modules)
        return f"OverrideChain({names})"
