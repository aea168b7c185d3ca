"""
kernel/solver.py - Fixed-point solver for cyclic groups

Gauss-Seidel iteration: members are updated one after another in
declaration order and each update is visible to the members evaluated
after it in the same sweep. A sweep's change is the largest absolute
difference between a member's value before and after the sweep.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, TYPE_CHECKING
import logging
import math

from loopmetrics.errors import RunCancelledError
from loopmetrics.kernel.context import CancellationToken, evaluate_formula
from loopmetrics.kernel.enums import GroupStatus

if TYPE_CHECKING:
    from loopmetrics.core.registry import ModelRegistry
    from loopmetrics.dependencies.analysis import Component

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupDiagnostic:
    """Convergence record of one cyclic group."""
    members: Tuple[str, ...]
    converged: bool
    iterations: int
    max_delta: float
    status: GroupStatus = GroupStatus.CONVERGED
    from_cache: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "members": list(self.members),
            "converged": self.converged,
            "iterations": self.iterations,
            "max_delta": self.max_delta,
            "status": self.status.value,
            "from_cache": self.from_cache,
        }


@dataclass
class SolveOutcome:
    """Values and diagnostic produced for one group."""
    values: Dict[str, float] = field(default_factory=dict)
    diagnostic: Optional[GroupDiagnostic] = None


class FixedPointSolver:
    """Solves one cyclic group against already-materialized upstream values."""

    def __init__(
        self,
        registry: "ModelRegistry",
        max_iterations: int = 100,
        threshold: float = 0.001,
        token: Optional[CancellationToken] = None,
    ):
        self._registry = registry
        self._max_iterations = max_iterations
        self._threshold = threshold
        self._token = token or CancellationToken()

    def solve(
        self,
        component: "Component",
        upstream: Mapping[str, float],
        initial: Optional[Mapping[str, float]] = None,
    ) -> SolveOutcome:
        """
        Iterate a cyclic group until the sweep change drops below threshold.

        Args:
            component: The cyclic group to solve
            upstream: Values of everything the group reads from outside
            initial: Starting values for members (zero when absent)

        Returns:
            SolveOutcome; a group that exhausts max_iterations is returned
            with status NOT_CONVERGED and its last values. A group whose
            values overflow is NOT_CONVERGED with max_delta inf and the
            values of the last finite sweep.

        Raises:
            FormulaEvaluationError: a member's formula failed
            RunCancelledError: cancelled or past deadline between sweeps
        """
        members = component.members
        attributes = [self._registry.resolve(m) for m in members]

        working: Dict[str, float] = dict(upstream)
        for m in members:
            working[m] = float((initial or {}).get(m, 0.0))

        iterations = 0
        max_delta = float("inf")

        while iterations < self._max_iterations:
            if self._token.is_cancelled:
                diagnostic = GroupDiagnostic(
                    members=members,
                    converged=False,
                    iterations=iterations,
                    max_delta=max_delta,
                    status=GroupStatus.CANCELLED,
                )
                logger.warning(
                    f"Cyclic group {component.component_id} cancelled after "
                    f"{iterations} iterations ({self._token.reason.value})"
                )
                raise RunCancelledError(self._token.reason.value, [diagnostic])

            iterations += 1
            previous = {m: working[m] for m in members}

            diverged = None
            for attribute in attributes:
                value = evaluate_formula(attribute, working, iterations, allow_overflow=True)
                if not math.isfinite(value):
                    diverged = attribute.identity
                    break
                working[attribute.identity] = value

            if diverged is not None:
                # Overflowed: report the last sweep that stayed finite
                logger.warning(
                    f"Cyclic group {component.component_id} diverged at iteration "
                    f"{iterations}: {diverged} is no longer finite"
                )
                return SolveOutcome(
                    values=previous,
                    diagnostic=GroupDiagnostic(
                        members=members,
                        converged=False,
                        iterations=iterations,
                        max_delta=math.inf,
                        status=GroupStatus.NOT_CONVERGED,
                    ),
                )

            max_delta = max(abs(working[m] - previous[m]) for m in members)

            if max_delta < self._threshold:
                logger.info(
                    f"Cyclic group {component.component_id} converged in "
                    f"{iterations} iterations (max delta {max_delta:.3g})"
                )
                return SolveOutcome(
                    values={m: working[m] for m in members},
                    diagnostic=GroupDiagnostic(
                        members=members,
                        converged=True,
                        iterations=iterations,
                        max_delta=max_delta,
                    ),
                )

        logger.warning(
            f"Cyclic group {component.component_id} did not converge after "
            f"{iterations} iterations (max delta {max_delta:.3g})"
        )
        return SolveOutcome(
            values={m: working[m] for m in members},
            diagnostic=GroupDiagnostic(
                members=members,
                converged=False,
                iterations=iterations,
                max_delta=max_delta,
                status=GroupStatus.NOT_CONVERGED,
            ),
        )
