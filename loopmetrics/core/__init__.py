"""
loopmetrics core data model

Provides:
- ModelRegistry: Block/Attribute definitions, sealed after loading
- ScenarioStore: Named input overrides and layered input resolution
"""

from .enums import AttributeKind
from .model import Attribute, Block, Formula, qualify, split_identity, is_number
from .registry import ModelRegistry
from .scenarios import Scenario, ScenarioStore, BASE_SCENARIO

__all__ = [
    "AttributeKind",
    "Attribute",
    "Block",
    "Formula",
    "qualify",
    "split_identity",
    "is_number",
    "ModelRegistry",
    "Scenario",
    "ScenarioStore",
    "BASE_SCENARIO",
]
