"""
kernel/scheduler.py - Level-parallel evaluation

Walks the evaluation plan level by level. Components inside a level share
no edges, so they are evaluated concurrently against the values committed
by earlier levels; their results are merged on the calling thread once the
whole level has finished. Cyclic components are handed to the fixed-point
solver.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Tuple, TYPE_CHECKING
import logging

from loopmetrics.errors import FormulaEvaluationError, RunCancelledError
from loopmetrics.kernel.cache import CacheManager, ComponentEntry, compute_component_key
from loopmetrics.kernel.context import CancellationToken, RunOptions, evaluate_formula
from loopmetrics.kernel.enums import RunState
from loopmetrics.kernel.run_state import RunStateMachine, StateTransition
from loopmetrics.kernel.solver import FixedPointSolver, GroupDiagnostic

if TYPE_CHECKING:
    from loopmetrics.core.registry import ModelRegistry
    from loopmetrics.dependencies.analysis import Component, EvaluationPlan

logger = logging.getLogger(__name__)


@dataclass
class ComponentResult:
    """Output of evaluating one component."""
    component_id: str
    values: Dict[str, float]
    diagnostic: Optional[GroupDiagnostic] = None
    from_cache: bool = False
    cache_key: Optional[str] = None


@dataclass
class ScheduleOutcome:
    """Everything a finished schedule produced."""
    values: Dict[str, float] = field(default_factory=dict)
    diagnostics: List[GroupDiagnostic] = field(default_factory=list)
    state: RunState = RunState.INITIALIZING
    transitions: List[StateTransition] = field(default_factory=list)
    levels: int = 0
    evaluated_components: int = 0
    cached_components: int = 0

    # Component values to commit once the run is known to have succeeded
    pending_components: List[ComponentEntry] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return all(d.converged for d in self.diagnostics)


class EvaluationScheduler:
    """Runs one evaluation plan for one set of resolved inputs."""

    def __init__(
        self,
        registry: "ModelRegistry",
        plan: "EvaluationPlan",
        options: Optional[RunOptions] = None,
        token: Optional[CancellationToken] = None,
        cache: Optional[CacheManager] = None,
        run_id: str = "",
    ):
        self._registry = registry
        self._plan = plan
        self._options = options or RunOptions()
        self._token = token or CancellationToken()
        self._cache = cache
        self._run_id = run_id
        self._solver = FixedPointSolver(
            registry,
            max_iterations=self._options.max_iterations,
            threshold=self._options.threshold,
            token=self._token,
        )

    def run(self, inputs: Mapping[str, float]) -> ScheduleOutcome:
        """
        Evaluate every attribute.

        Args:
            inputs: Resolved value of every input attribute

        Raises:
            FormulaEvaluationError: a formula failed; the run is FAILED
            RunCancelledError: cancelled or past deadline; carries the
                diagnostics gathered so far
        """
        machine = RunStateMachine(self._run_id)
        outcome = ScheduleOutcome(levels=self._plan.level_count)
        values: Dict[str, float] = {}

        executor = None
        if self._options.parallel and self._options.max_workers > 1:
            executor = ThreadPoolExecutor(
                max_workers=self._options.max_workers,
                thread_name_prefix=f"loopmetrics-{self._run_id or 'run'}",
            )

        try:
            machine.transition(RunState.LEVEL_PROCESSING, 0)

            for number, level in enumerate(self._plan.levels):
                self._token.raise_if_cancelled(outcome.diagnostics)

                if machine.state is not RunState.LEVEL_PROCESSING:
                    machine.transition(RunState.LEVEL_PROCESSING, number)
                if any(c.is_cyclic for c in level):
                    machine.transition(RunState.CONVERGING, number)

                results = self._run_level(level, inputs, values, executor)
                for result in results:
                    values.update(result.values)
                    if result.diagnostic is not None:
                        outcome.diagnostics.append(result.diagnostic)
                    if result.from_cache:
                        outcome.cached_components += 1
                    else:
                        outcome.evaluated_components += 1
                        if result.cache_key is not None:
                            outcome.pending_components.append(ComponentEntry(
                                key=result.cache_key,
                                model_version=self._plan.model_version,
                                component_id=result.component_id,
                                values=result.values,
                                diagnostic=result.diagnostic,
                            ))

            if machine.state is RunState.CONVERGING:
                machine.transition(RunState.LEVEL_PROCESSING, self._plan.level_count)
            machine.transition(RunState.DONE if outcome.converged else RunState.EXHAUSTED)

        except RunCancelledError as e:
            machine.transition(RunState.CANCELLED)
            e.diagnostics = outcome.diagnostics + [
                d for d in e.diagnostics if d not in outcome.diagnostics
            ]
            logger.warning(f"Run {self._run_id} cancelled ({e.reason})")
            raise
        except FormulaEvaluationError as e:
            machine.transition(RunState.FAILED)
            logger.error(f"Run {self._run_id} failed: {e}")
            raise
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        outcome.values = {i: values[i] for i in self._registry.identities}
        outcome.state = machine.state
        outcome.transitions = machine.history
        return outcome

    # -------------------------------------------------------------------------
    # Levels
    # -------------------------------------------------------------------------

    def _run_level(
        self,
        level: List["Component"],
        inputs: Mapping[str, float],
        values: Mapping[str, float],
        executor: Optional[ThreadPoolExecutor],
    ) -> List[ComponentResult]:
        """Evaluate one level; results come back in plan order."""
        results: List[Optional[ComponentResult]] = [None] * len(level)
        work: List[Tuple[int, "Component"]] = []

        for position, component in enumerate(level):
            if component.is_input:
                identity = component.members[0]
                results[position] = ComponentResult(
                    component_id=component.component_id,
                    values={identity: float(inputs[identity])},
                )
            else:
                work.append((position, component))

        if executor is None or len(work) < 2:
            for position, component in work:
                results[position] = self._run_component(component, inputs, values)
            return results

        futures = [
            executor.submit(self._run_component, component, inputs, values)
            for _, component in work
        ]
        wait(futures)

        # Report the first failure in plan order; cancellations collect the
        # diagnostics of every group that stopped.
        cancelled: List[RunCancelledError] = []
        for (position, _), future in zip(work, futures):
            error = future.exception()
            if error is None:
                results[position] = future.result()
            elif isinstance(error, RunCancelledError):
                cancelled.append(error)
            else:
                raise error
        if cancelled:
            first = cancelled[0]
            for other in cancelled[1:]:
                first.diagnostics.extend(other.diagnostics)
            raise first
        return results

    def _run_component(
        self,
        component: "Component",
        inputs: Mapping[str, float],
        values: Mapping[str, float],
    ) -> ComponentResult:
        cache_key = None
        if self._cache is not None and self._cache.component_cache:
            cache_key = compute_component_key(
                self._plan.model_version,
                component.component_id,
                {i: inputs[i] for i in self._plan.upstream_inputs[component.component_id]},
                self._options.solver_key(),
            )
            entry = self._cache.get_component(cache_key)
            if entry is not None:
                logger.debug(f"Component {component.component_id} reused from cache")
                diagnostic = entry.diagnostic
                if diagnostic is not None:
                    diagnostic = replace(diagnostic, from_cache=True)
                return ComponentResult(
                    component_id=component.component_id,
                    values=dict(entry.values),
                    diagnostic=diagnostic,
                    from_cache=True,
                )

        if component.is_cyclic:
            initial = None
            if self._options.warm_start and self._cache is not None:
                initial = self._cache.last_values(
                    self._plan.model_version, component.component_id
                )
            solved = self._solver.solve(component, values, initial)
            return ComponentResult(
                component_id=component.component_id,
                values=solved.values,
                diagnostic=solved.diagnostic,
                cache_key=cache_key,
            )

        identity = component.members[0]
        attribute = self._registry.resolve(identity)
        return ComponentResult(
            component_id=component.component_id,
            values={identity: evaluate_formula(attribute, values)},
            cache_key=cache_key,
        )
