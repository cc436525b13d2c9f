"""
Override modules ("caplets") and the override chain.
"""

from .base import Caplet, ChainError
from .chain import OverrideChain
from .registry import (
    CapletNotFoundError,
    CapletRegistry,
    get_caplet_registry,
    register_caplet,
    reset_caplet_registry,
)

__all__ = [
    "Caplet",
    "CapletNotFoundError",
    "CapletRegistry",
    "ChainError",
    "OverrideChain",
    "get_caplet_registry",
    "register_caplet",
    "reset_caplet_registry",
]
