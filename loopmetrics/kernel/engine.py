"""
kernel/engine.py - Simulation engine facade

Single entry point for callers: resolve a scenario's inputs, look the run
up in the cache, otherwise schedule it, and hand back values plus
convergence diagnostics. Distinct scenarios run fully in parallel; each
run owns its value context.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
import logging
import math
import threading
import time
import uuid

from loopmetrics.bootstrap.config import EngineConfig, get_config
from loopmetrics.contracts.schemas import RunResultPayload
from loopmetrics.core.registry import ModelRegistry
from loopmetrics.core.scenarios import BASE_SCENARIO, Scenario, ScenarioStore
from loopmetrics.dependencies.analysis import EvaluationPlan, analyze_graph
from loopmetrics.dependencies.graph import build_dependency_graph
from loopmetrics.dependencies.invalidation import (
    InvalidationEvent,
    InvalidationIndex,
    InvalidationReason,
)
from loopmetrics.errors import RegistryNotSealedError, UnknownAttributeError
from loopmetrics.kernel.cache import CacheManager, compute_fingerprint
from loopmetrics.kernel.context import CancellationToken, RunOptions
from loopmetrics.kernel.enums import RunState
from loopmetrics.kernel.scheduler import EvaluationScheduler
from loopmetrics.kernel.solver import GroupDiagnostic

logger = logging.getLogger(__name__)


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class RunDiagnostics:
    """How a run went."""
    per_group: Tuple[GroupDiagnostic, ...] = ()
    state: RunState = RunState.DONE
    from_cache: bool = False
    elapsed_ms: float = 0.0
    levels: int = 0
    run_id: str = ""
    evaluated_components: int = 0
    cached_components: int = 0

    @property
    def converged(self) -> bool:
        return all(d.converged for d in self.per_group)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "from_cache": self.from_cache,
            "elapsed_ms": self.elapsed_ms,
            "levels": self.levels,
            "evaluated_components": self.evaluated_components,
            "cached_components": self.cached_components,
            "per_group": [d.to_dict() for d in self.per_group],
        }


@dataclass(frozen=True)
class RunResult:
    """Values of every attribute for one scenario, plus diagnostics."""
    scenario: str
    model_version: str
    fingerprint: str
    values: Mapping[str, float] = field(default_factory=dict)
    diagnostics: RunDiagnostics = field(default_factory=RunDiagnostics)

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @property
    def converged(self) -> bool:
        return self.diagnostics.converged

    def value(self, identity: str) -> float:
        try:
            return self.values[identity]
        except KeyError:
            raise UnknownAttributeError(identity) from None

    def as_cached(self) -> "RunResult":
        """The same result, marked as served from the cache."""
        return replace(
            self,
            diagnostics=replace(
                self.diagnostics,
                from_cache=True,
                per_group=tuple(replace(d, from_cache=True) for d in self.diagnostics.per_group),
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario,
            "model_version": self.model_version,
            "fingerprint": self.fingerprint,
            "converged": self.converged,
            "values": dict(self.values),
            "diagnostics": self.diagnostics.to_dict(),
        }

    def to_payload(self) -> RunResultPayload:
        """Validated payload for reporting and UI consumers."""
        data = self.to_dict()
        for group in data["diagnostics"]["per_group"]:
            if not math.isfinite(group["max_delta"]):
                group["max_delta"] = None
        return RunResultPayload.model_validate(data)


# =============================================================================
# ENGINE
# =============================================================================

class SimulationEngine:
    """
    Runs scenarios against a sealed model.

    The dependency graph and evaluation plan are built once per model
    version, on first use, and shared by every run.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        scenarios: Optional[ScenarioStore] = None,
        cache: Optional[CacheManager] = None,
        config: Optional[EngineConfig] = None,
    ):
        if not registry.is_sealed:
            raise RegistryNotSealedError(
                f"Model registry v{registry.version} must be sealed before it can be run"
            )
        self._config = config or get_config()
        self._registry = registry
        self._scenarios = scenarios if scenarios is not None else ScenarioStore(registry)
        self._cache = cache if cache is not None else CacheManager(
            max_entries=self._config.cache.max_entries,
            component_cache=self._config.cache.component_cache,
        )
        self._plan: Optional[EvaluationPlan] = None
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Model
    # -------------------------------------------------------------------------

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def scenarios(self) -> ScenarioStore:
        return self._scenarios

    @property
    def cache(self) -> CacheManager:
        return self._cache

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def model_version(self) -> str:
        return self._registry.version

    def plan(self) -> EvaluationPlan:
        """Evaluation plan of the current model, built on first use."""
        return self._snapshot()[1]

    def _snapshot(self) -> Tuple[ModelRegistry, EvaluationPlan, ScenarioStore]:
        with self._lock:
            if self._plan is None:
                graph = build_dependency_graph(self._registry)
                self._plan = analyze_graph(graph)
                self._cache.register_index(InvalidationIndex(self._plan))
            return self._registry, self._plan, self._scenarios

    def replace_model(
        self,
        registry: ModelRegistry,
        scenarios: Optional[ScenarioStore] = None,
    ) -> InvalidationEvent:
        """
        Swap in a new model version.

        Scenarios are carried over and validated against the new model
        unless a store is given. Every cache entry of the old version is
        dropped. Runs already in progress finish against the old model.

        Raises:
            RegistryNotSealedError: the new registry is not sealed
            InvalidOverrideError: a carried-over scenario no longer fits
        """
        if not registry.is_sealed:
            raise RegistryNotSealedError(
                f"Model registry v{registry.version} must be sealed before it can be run"
            )

        with self._lock:
            if scenarios is None:
                scenarios = ScenarioStore(registry)
                for name in self._scenarios.list_scenarios():
                    old = self._scenarios.get_scenario(name)
                    scenarios.define_scenario(old.name, old.overrides, old.description, replace=True)

            old_version = self._registry.version
            self._registry = registry
            self._scenarios = scenarios
            self._plan = None
            event = self._cache.invalidate_version(old_version)

        logger.info(f"Model replaced: v{old_version} -> v{registry.version}")
        return event

    # -------------------------------------------------------------------------
    # Scenarios
    # -------------------------------------------------------------------------

    def define_scenario(
        self,
        name: str,
        overrides: Optional[Mapping[str, Any]] = None,
        description: str = "",
        replace: bool = False,
    ) -> Scenario:
        """
        Define (or with ``replace`` redefine) a scenario.

        Redefining drops the scenario's cached results and the component
        entries downstream of every input whose override changed.
        """
        with self._lock:
            previous = None
            if replace and self._scenarios.has_scenario(name):
                previous = self._scenarios.get_scenario(name)

            scenario = self._scenarios.define_scenario(name, overrides, description, replace)

            if previous is not None:
                changed = sorted(
                    identity
                    for identity in set(previous.overrides) | set(scenario.overrides)
                    if previous.overrides.get(identity) != scenario.overrides.get(identity)
                )
                self._snapshot()
                self._cache.invalidate_inputs(
                    self._registry.version,
                    changed,
                    reason=InvalidationReason.SCENARIO_REDEFINED,
                    scenario=name,
                )
        return scenario

    def resolve_inputs(self, scenario_name: str = BASE_SCENARIO) -> Dict[str, float]:
        registry, _, scenarios = self._snapshot()
        return scenarios.resolve_inputs(scenario_name, registry)

    def fingerprint(
        self,
        scenario_name: str = BASE_SCENARIO,
        options: Optional[RunOptions] = None,
    ) -> str:
        """Cache key a run of this scenario would use."""
        options = options or RunOptions.from_config(self._config)
        return compute_fingerprint(
            self.model_version,
            scenario_name,
            self.resolve_inputs(scenario_name),
            options.solver_key(),
        )

    def invalidate_input(
        self,
        identities: Iterable[str],
        scenario: Optional[str] = None,
    ) -> InvalidationEvent:
        """Drop cached component values downstream of the given inputs."""
        self._snapshot()
        return self._cache.invalidate_inputs(
            self.model_version, list(identities), scenario=scenario
        )

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    def run(
        self,
        scenario_name: str = BASE_SCENARIO,
        options: Optional[RunOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RunResult:
        """
        Evaluate every attribute for a scenario.

        Args:
            scenario_name: Scenario to run
            options: Run options (engine configuration when omitted)
            cancel_token: Token to cancel the run from another thread;
                ``options.deadline_seconds`` is applied to it

        Returns:
            RunResult; a group that did not converge is reported in the
            diagnostics, the run itself still succeeds

        Raises:
            UnknownScenarioError: no such scenario
            FormulaEvaluationError: a formula failed
            RunCancelledError: cancelled or past its deadline
        """
        options = options or RunOptions.from_config(self._config)
        registry, plan, scenarios = self._snapshot()

        inputs = scenarios.resolve_inputs(scenario_name, registry)
        fingerprint = compute_fingerprint(
            registry.version, scenario_name, inputs, options.solver_key()
        )
        token = (cancel_token or CancellationToken()).with_deadline(options.deadline_seconds)

        def compute() -> RunResult:
            return self._execute(registry, plan, scenario_name, inputs, fingerprint, options, token)

        if not options.use_cache:
            return compute()

        result, reused = self._cache.get_or_compute(
            fingerprint, compute, registry.version, scenario_name, inputs, token=token
        )
        if reused:
            logger.debug(f"Scenario {scenario_name!r} served from cache ({fingerprint})")
            return result.as_cached()
        return result

    def run_many(
        self,
        scenario_names: Iterable[str],
        options: Optional[RunOptions] = None,
    ) -> Dict[str, RunResult]:
        """Run several scenarios concurrently."""
        names = list(dict.fromkeys(scenario_names))
        options = options or RunOptions.from_config(self._config)
        with ThreadPoolExecutor(max_workers=max(1, min(len(names), options.max_workers))) as pool:
            futures = {name: pool.submit(self.run, name, options) for name in names}
            return {name: future.result() for name, future in futures.items()}

    def _execute(
        self,
        registry: ModelRegistry,
        plan: EvaluationPlan,
        scenario_name: str,
        inputs: Mapping[str, float],
        fingerprint: str,
        options: RunOptions,
        token: CancellationToken,
    ) -> RunResult:
        run_id = str(uuid.uuid4())[:8]
        started = time.perf_counter()
        logger.info(f"Run {run_id}: scenario {scenario_name!r} on model v{registry.version}")

        scheduler = EvaluationScheduler(
            registry,
            plan,
            options=options,
            token=token,
            cache=self._cache if options.use_cache else None,
            run_id=run_id,
        )
        outcome = scheduler.run(inputs)

        if options.use_cache:
            self._cache.put_components(outcome.pending_components)

        elapsed_ms = (time.perf_counter() - started) * 1000
        result = RunResult(
            scenario=scenario_name,
            model_version=registry.version,
            fingerprint=fingerprint,
            values=outcome.values,
            diagnostics=RunDiagnostics(
                per_group=tuple(outcome.diagnostics),
                state=outcome.state,
                elapsed_ms=round(elapsed_ms, 3),
                levels=outcome.levels,
                run_id=run_id,
                evaluated_components=outcome.evaluated_components,
                cached_components=outcome.cached_components,
            ),
        )

        logger.info(
            f"Run {run_id} finished: {outcome.state.value}, "
            f"{len(outcome.diagnostics)} cyclic groups, "
            f"{outcome.cached_components} components reused, {elapsed_ms:.1f} ms"
        )
        return result

    def get_stats(self) -> Dict[str, Any]:
        plan = self.plan()
        return {
            "model_version": self.model_version,
            "scenarios": len(self._scenarios.list_scenarios()),
            "components": len(plan.components),
            "levels": plan.level_count,
            "cyclic_groups": len(plan.cyclic_components),
            "cache": self._cache.get_stats(),
        }
