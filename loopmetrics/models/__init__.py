"""
models/ - Sample models.
"""

from .cost_model import COST_FORMULAS, COST_MODEL, build_cost_model

__all__ = [
    "COST_FORMULAS",
    "COST_MODEL",
    "build_cost_model",
]
