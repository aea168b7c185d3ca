"""
loopmetrics Test Configuration and Fixtures

Shared models: the sample cost model, a small acyclic chain, and a cost
model whose formulas count their calls so tests can tell computed values
from reused ones.
"""

import threading
from collections import Counter

import pytest

from loopmetrics.bootstrap.config import EngineConfig, reset_config
from loopmetrics.core.registry import ModelRegistry
from loopmetrics.core.scenarios import ScenarioStore
from loopmetrics.kernel.engine import SimulationEngine
from loopmetrics.models.cost_model import build_cost_model


class CallCounter:
    """Thread-safe call counter wrapped around formulas."""

    def __init__(self):
        self._lock = threading.Lock()
        self.calls = Counter()

    def wrap(self, identity, formula):
        def counted(deps):
            with self._lock:
                self.calls[identity] += 1
            return formula(deps)
        return counted

    def total(self):
        with self._lock:
            return sum(self.calls.values())

    def reset(self):
        with self._lock:
            self.calls.clear()


def define_cost_model(registry, counter=None):
    """Declare the cost model attributes on an open registry."""
    wrap = counter.wrap if counter is not None else (lambda _identity, f: f)

    registry.define_input("Production", "materialCost", 120)
    registry.define_input("Production", "energyCost", 60)
    registry.define_calculated(
        "Production", "disposalCost",
        wrap("Production.disposalCost", lambda d: d["materialCost"] * 0.8 + d["co2Cost"]),
        ["materialCost", "co2Cost"],
    )
    registry.define_calculated(
        "Production", "co2Cost",
        wrap("Production.co2Cost", lambda d: d["energyCost"] * 0.1 + d["disposalCost"] * 0.05),
        ["energyCost", "disposalCost"],
    )
    registry.define_input("Logistics", "transportCost", 35)
    registry.define_calculated(
        "Logistics", "logisticsCost",
        wrap("Logistics.logisticsCost", lambda d: d["transportCost"] + d["ecoFees"]),
        ["transportCost", "ecoFees"],
    )
    registry.define_calculated(
        "Logistics", "ecoFees",
        wrap("Logistics.ecoFees",
             lambda d: d["logisticsCost"] * 0.1 + d["Production.co2Cost"] * 0.05),
        ["logisticsCost", "Production.co2Cost"],
    )
    return registry


@pytest.fixture(autouse=True)
def _fresh_config():
    """Forget any globally loaded configuration between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    """Default configuration, independent of the environment."""
    return EngineConfig()


@pytest.fixture
def cost_model():
    """Sealed sample cost model and its scenarios."""
    return build_cost_model()


@pytest.fixture
def cost_registry(cost_model):
    return cost_model[0]


@pytest.fixture
def engine(cost_model, config):
    """Engine over the sample cost model."""
    registry, scenarios = cost_model
    return SimulationEngine(registry, scenarios, config=config)


@pytest.fixture
def counter():
    return CallCounter()


@pytest.fixture
def counted_engine(counter, config):
    """Engine over the cost model with call-counting formulas."""
    registry = define_cost_model(ModelRegistry(version="1"), counter).seal()
    scenarios = ScenarioStore(registry)
    scenarios.define_scenario(
        "HighEnergyPrices",
        {"Production.energyCost": 90, "Logistics.transportCost": 40},
    )
    scenarios.define_scenario("ExpensiveTransport", {"Logistics.transportCost": 50})
    return SimulationEngine(registry, scenarios, config=config)


@pytest.fixture
def chain_registry():
    """Acyclic model: x -> y -> z, with z also reading x."""
    registry = ModelRegistry(version="1")
    registry.define_input("A", "x", 2)
    registry.define_calculated("A", "y", lambda d: d["x"] * 3, ["x"])
    registry.define_calculated("A", "z", lambda d: d["y"] + d["x"], ["y", "x"])
    return registry.seal()


@pytest.fixture
def divergent_registry():
    """Cyclic pair with unit gain: never converges."""
    registry = ModelRegistry(version="1")
    registry.define_calculated("Loop", "a", lambda d: d["b"] + 1, ["b"])
    registry.define_calculated("Loop", "b", lambda d: d["a"] * 1.0, ["a"])
    return registry.seal()


@pytest.fixture
def counted_registry(counter):
    """Factory for sealed counted cost models of a given version."""
    def build(version="1"):
        return define_cost_model(ModelRegistry(version=version), counter).seal()
    return build
