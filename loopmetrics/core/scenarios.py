"""
Scenario Store

Named input-override sets and layered input resolution:
defaults first, then the scenario's overrides. The result is a total,
validated mapping over every input attribute.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional
import logging
import threading

from loopmetrics.core.model import is_number
from loopmetrics.errors import (
    DuplicateScenarioError,
    InvalidOverrideError,
    RegistryNotSealedError,
    RegistrySealedError,
    UnknownScenarioError,
)

from loopmetrics.core.registry import ModelRegistry

logger = logging.getLogger(__name__)


BASE_SCENARIO = "Base"


@dataclass(frozen=True)
class Scenario:
    """A named set of input overrides."""
    name: str
    overrides: Mapping[str, float] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self):
        object.__setattr__(self, "overrides", MappingProxyType(dict(self.overrides)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "overrides": dict(self.overrides),
            "description": self.description,
        }


class ScenarioStore:
    """
    Holds scenarios for one model version.

    When bound to a registry, overrides are validated as soon as a scenario
    is defined; ``resolve_inputs`` validates again against whichever
    registry it is given.
    """

    def __init__(self, registry: Optional[ModelRegistry] = None):
        self._registry = registry
        self._scenarios: Dict[str, Scenario] = {
            BASE_SCENARIO: Scenario(name=BASE_SCENARIO, description="Model defaults")
        }
        self._implicit = {BASE_SCENARIO}
        self._sealed = False
        self._lock = threading.Lock()

    @property
    def registry(self) -> Optional[ModelRegistry]:
        return self._registry

    def define_scenario(
        self,
        name: str,
        overrides: Optional[Mapping[str, Any]] = None,
        description: str = "",
        replace: bool = False,
    ) -> Scenario:
        """
        Define a named scenario.

        Args:
            name: Scenario name
            overrides: Input identity -> override value
            replace: Allow redefining an existing scenario

        Raises:
            DuplicateScenarioError: name taken and replace is False
            InvalidOverrideError: override targets an unknown or calculated
                attribute, or is not a finite number
        """
        scenario = Scenario(name=name, overrides=dict(overrides or {}), description=description)
        if self._registry is not None:
            self._validate(scenario, self._registry)

        with self._lock:
            if self._sealed:
                raise RegistrySealedError("Scenario store is sealed")
            existing = self._scenarios.get(name)
            if existing is not None and not replace and name not in self._implicit:
                raise DuplicateScenarioError(name)
            self._implicit.discard(name)
            self._scenarios[name] = scenario

        logger.debug(f"Defined scenario {name!r} with {len(scenario.overrides)} overrides")
        return scenario

    def get_scenario(self, name: str) -> Scenario:
        try:
            return self._scenarios[name]
        except KeyError:
            raise UnknownScenarioError(name) from None

    def has_scenario(self, name: str) -> bool:
        return name in self._scenarios

    def list_scenarios(self) -> List[str]:
        return list(self._scenarios.keys())

    def seal(self) -> "ScenarioStore":
        with self._lock:
            self._sealed = True
        return self

    @property
    def is_sealed(self) -> bool:
        return self._sealed

    def resolve_inputs(
        self,
        scenario_name: str,
        registry: Optional[ModelRegistry] = None,
    ) -> Dict[str, float]:
        """
        Resolve the effective value of every input attribute.

        Returns:
            Mapping input identity -> value, in declaration order
        """
        if registry is None:
            registry = self._registry
        if registry is None:
            raise RegistryNotSealedError("No model registry given for input resolution")
        if not registry.is_sealed:
            raise RegistryNotSealedError(
                f"Model registry v{registry.version} must be sealed before resolving inputs"
            )

        scenario = self.get_scenario(scenario_name)
        self._validate(scenario, registry)

        resolved = registry.defaults()
        for identity, value in scenario.overrides.items():
            resolved[identity] = float(value)
        return resolved

    @staticmethod
    def _validate(scenario: Scenario, registry: ModelRegistry) -> None:
        for identity, value in scenario.overrides.items():
            if not registry.has_attribute(identity):
                raise InvalidOverrideError(scenario.name, identity, "unknown attribute")
            if not registry.resolve(identity).is_input:
                raise InvalidOverrideError(
                    scenario.name, identity, "only input attributes can be overridden"
                )
            if not is_number(value):
                raise InvalidOverrideError(
                    scenario.name, identity, f"{value!r} is not a finite number"
                )

    def to_dict(self) -> Dict[str, Any]:
        return {name: s.to_dict() for name, s in self._scenarios.items()}
