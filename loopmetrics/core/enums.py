"""
core/enums.py - Model enumerations.
"""

from enum import Enum


class AttributeKind(Enum):
    """How an attribute gets its value."""
    INPUT = "input"              # Supplied by defaults or scenario overrides
    CALCULATED = "calculated"    # Derived by a formula over declared dependencies
