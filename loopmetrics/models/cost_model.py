"""
models/cost_model.py - Sample production/logistics cost model

Two blocks with one cyclic pair each, linked by a cross-block reference:

    Production.disposalCost = 0.8 * materialCost + co2Cost
    Production.co2Cost      = 0.1 * energyCost + 0.05 * disposalCost
    Logistics.logisticsCost = transportCost + ecoFees
    Logistics.ecoFees       = 0.1 * logisticsCost + 0.05 * Production.co2Cost

All amounts are in euros.
"""

from __future__ import annotations
from typing import Any, Dict, Mapping, Tuple

from loopmetrics.contracts.loader import define_model, define_scenarios
from loopmetrics.core.model import Formula
from loopmetrics.core.registry import ModelRegistry
from loopmetrics.core.scenarios import ScenarioStore


COST_FORMULAS: Dict[str, Formula] = {
    "disposal_cost": lambda d: d["materialCost"] * 0.8 + d["co2Cost"],
    "co2_cost": lambda d: d["energyCost"] * 0.1 + d["disposalCost"] * 0.05,
    "logistics_cost": lambda d: d["transportCost"] + d["ecoFees"],
    "eco_fees": lambda d: d["logisticsCost"] * 0.1 + d["Production.co2Cost"] * 0.05,
}


COST_MODEL: Mapping[str, Any] = {
    "version": "1",
    "blocks": [
        {
            "name": "Production",
            "description": "Manufacturing costs",
            "attributes": [
                {"name": "materialCost", "kind": "input", "default": 120,
                 "description": "Raw material cost"},
                {"name": "energyCost", "kind": "input", "default": 60,
                 "description": "Energy cost"},
                {"name": "disposalCost", "kind": "calculated", "formula": "disposal_cost",
                 "dependencies": ["materialCost", "co2Cost"]},
                {"name": "co2Cost", "kind": "calculated", "formula": "co2_cost",
                 "dependencies": ["energyCost", "disposalCost"]},
            ],
        },
        {
            "name": "Logistics",
            "description": "Transport and fees",
            "attributes": [
                {"name": "transportCost", "kind": "input", "default": 35,
                 "description": "Transport cost"},
                {"name": "logisticsCost", "kind": "calculated", "formula": "logistics_cost",
                 "dependencies": ["transportCost", "ecoFees"]},
                {"name": "ecoFees", "kind": "calculated", "formula": "eco_fees",
                 "dependencies": ["logisticsCost", "Production.co2Cost"]},
            ],
        },
    ],
    "scenarios": [
        {
            "name": "Base",
            "description": "Current prices",
            "overrides": {
                "Production": {"materialCost": 120, "energyCost": 60},
                "Logistics": {"transportCost": 35},
            },
        },
        {
            "name": "HighEnergyPrices",
            "description": "Energy and transport price shock",
            "overrides": {
                "Production": {"energyCost": 90},
                "Logistics": {"transportCost": 40},
            },
        },
    ],
}


def build_cost_model(version: str = "1") -> Tuple[ModelRegistry, ScenarioStore]:
    """Sealed cost model registry and its scenarios."""
    registry = define_model(COST_MODEL, COST_FORMULAS, version=version)
    store = define_scenarios(ScenarioStore(registry), COST_MODEL["scenarios"])
    return registry, store
