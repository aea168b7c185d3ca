"""
core/model.py - Block and Attribute definitions.

Attributes are identified as ``Block.name``. Formulas are plain callables
taking a read-only dependency snapshot and returning a number; they never
see anything they did not declare.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Tuple
import math

from loopmetrics.core.enums import AttributeKind


SEPARATOR = "."

Formula = Callable[[Mapping[str, float]], Any]


def qualify(block: str, name: str) -> str:
    """Build the qualified identity of an attribute."""
    return f"{block}{SEPARATOR}{name}"


def split_identity(identity: str) -> Tuple[str, str]:
    """Split ``Block.name`` into its parts."""
    block, _, name = identity.partition(SEPARATOR)
    return block, name


def is_number(value: Any) -> bool:
    """True for finite ints and floats (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


@dataclass(frozen=True)
class Attribute:
    """A named numeric quantity inside a block."""
    block: str
    name: str
    kind: AttributeKind
    default: Optional[float] = None
    formula: Optional[Formula] = field(default=None, compare=False)

    # Declared references as written (bare or qualified); None = not declared
    dependencies: Optional[Tuple[str, ...]] = None

    # Qualified identities, resolved when the registry is sealed
    dependency_ids: Tuple[str, ...] = ()

    description: str = ""

    @property
    def identity(self) -> str:
        return qualify(self.block, self.name)

    @property
    def is_input(self) -> bool:
        return self.kind is AttributeKind.INPUT

    @property
    def is_calculated(self) -> bool:
        return self.kind is AttributeKind.CALCULATED

    def resolve_reference(self, ref: str) -> str:
        """Map a declared reference to a qualified identity."""
        if SEPARATOR in ref:
            return ref
        return qualify(self.block, ref)


@dataclass
class Block:
    """Named namespace grouping attributes."""
    name: str
    description: str = ""
    attributes: List[str] = field(default_factory=list)

    def __contains__(self, identity: str) -> bool:
        return identity in self.attributes
