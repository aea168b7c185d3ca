"""
kernel/ - Evaluation kernel

Scheduling, fixed-point solving, caching and the engine facade.
"""

from .enums import RunState, GroupStatus, CancelReason
from .run_state import RunStateMachine, StateTransition, is_legal_transition
from .context import RunOptions, CancellationToken, DependencySnapshot, evaluate_formula
from .solver import FixedPointSolver, GroupDiagnostic, SolveOutcome
from .cache import (
    CacheManager,
    CacheEntry,
    ComponentEntry,
    compute_fingerprint,
    compute_component_key,
)
from .scheduler import EvaluationScheduler, ScheduleOutcome
from .engine import SimulationEngine, RunResult, RunDiagnostics

__all__ = [
    # Enums
    "RunState",
    "GroupStatus",
    "CancelReason",
    # State
    "RunStateMachine",
    "StateTransition",
    "is_legal_transition",
    # Context
    "RunOptions",
    "CancellationToken",
    "DependencySnapshot",
    "evaluate_formula",
    # Solver
    "FixedPointSolver",
    "GroupDiagnostic",
    "SolveOutcome",
    # Cache
    "CacheManager",
    "CacheEntry",
    "ComponentEntry",
    "compute_fingerprint",
    "compute_component_key",
    # Scheduling
    "EvaluationScheduler",
    "ScheduleOutcome",
    "SimulationEngine",
    "RunResult",
    "RunDiagnostics",
]
