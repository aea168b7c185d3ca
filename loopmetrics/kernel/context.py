"""
kernel/context.py - Run options, cancellation and formula evaluation.

A run owns its value context exclusively. Formulas never see the context
itself, only a DependencySnapshot restricted to what they declared.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator, Mapping, Optional, TYPE_CHECKING
import math
import threading
import time

from loopmetrics.core.model import Attribute, is_number
from loopmetrics.errors import FormulaEvaluationError, RunCancelledError
from loopmetrics.kernel.enums import CancelReason

if TYPE_CHECKING:
    from loopmetrics.bootstrap.config import EngineConfig


# =============================================================================
# RUN OPTIONS
# =============================================================================

@dataclass(frozen=True)
class RunOptions:
    """Options for one evaluation run."""

    max_iterations: int = 100
    threshold: float = 0.001
    deadline_seconds: Optional[float] = None
    parallel: bool = True
    max_workers: int = 4
    warm_start: bool = False
    use_cache: bool = True

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if not self.threshold > 0:
            raise ValueError(f"threshold must be > 0, got {self.threshold}")
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            raise ValueError(f"deadline_seconds must be > 0, got {self.deadline_seconds}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

    @classmethod
    def from_config(cls, config: "EngineConfig", **overrides: Any) -> "RunOptions":
        """Build options from engine configuration, then apply overrides."""
        options = cls(
            max_iterations=config.solver.max_iterations,
            threshold=config.solver.threshold,
            deadline_seconds=config.solver.deadline_seconds,
            parallel=config.scheduler.parallel,
            max_workers=config.scheduler.max_workers,
            warm_start=config.solver.warm_start,
            use_cache=config.cache.enabled,
        )
        return replace(options, **overrides) if overrides else options

    def solver_key(self) -> Dict[str, Any]:
        """The options that change computed values."""
        return {
            "max_iterations": self.max_iterations,
            "threshold": self.threshold,
            "warm_start": self.warm_start,
        }


# =============================================================================
# CANCELLATION
# =============================================================================

class CancellationToken:
    """
    Cooperative cancellation for a run.

    Checked between levels and between solver iterations. A deadline, when
    set, cancels the run the same way once it has passed.
    """

    def __init__(self, deadline_seconds: Optional[float] = None):
        self._event = threading.Event()
        self._reason: Optional[CancelReason] = None
        self._deadline = (
            time.monotonic() + deadline_seconds if deadline_seconds is not None else None
        )

    def cancel(self) -> None:
        if self._reason is None:
            self._reason = CancelReason.REQUESTED
        self._event.set()

    def with_deadline(self, deadline_seconds: Optional[float]) -> "CancellationToken":
        """Tighten the deadline; keeps an earlier one if already set."""
        if deadline_seconds is not None:
            candidate = time.monotonic() + deadline_seconds
            if self._deadline is None or candidate < self._deadline:
                self._deadline = candidate
        return self

    @property
    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._reason = CancelReason.DEADLINE
            self._event.set()
            return True
        return False

    @property
    def reason(self) -> Optional[CancelReason]:
        return self._reason

    def raise_if_cancelled(self, diagnostics: Optional[list] = None) -> None:
        if self.is_cancelled:
            raise RunCancelledError(self._reason.value, diagnostics)


# =============================================================================
# DEPENDENCY SNAPSHOT
# =============================================================================

class DependencySnapshot(Mapping[str, float]):
    """
    Read-only view of an attribute's declared dependencies.

    Values are reachable under the reference as declared and under the
    qualified identity. Anything undeclared raises KeyError.
    """

    __slots__ = ("_values", "_owner")

    def __init__(self, attribute: Attribute, values: Mapping[str, float]):
        self._owner = attribute.identity
        data: Dict[str, float] = {}
        for ref in attribute.dependencies or ():
            identity = attribute.resolve_reference(ref)
            data[ref] = values[identity]
            data[identity] = values[identity]
        self._values = data

    def __getitem__(self, key: str) -> float:
        try:
            return self._values[key]
        except KeyError:
            raise KeyError(f"{key!r} is not a declared dependency of {self._owner}") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"DependencySnapshot({self._owner}: {self._values!r})"


def evaluate_formula(
    attribute: Attribute,
    values: Mapping[str, float],
    iteration: Optional[int] = None,
    allow_overflow: bool = False,
) -> float:
    """
    Apply an attribute's formula to a snapshot of its dependencies.

    Args:
        allow_overflow: Return ``inf``/``nan`` results (and ``inf`` for an
            OverflowError) instead of failing; the fixed-point solver uses
            this to detect a diverging group

    Raises:
        FormulaEvaluationError: the formula raised, or returned something
            other than a finite number
    """
    snapshot = DependencySnapshot(attribute, values)
    try:
        result = attribute.formula(snapshot)
    except KeyError as e:
        raise FormulaEvaluationError(attribute.identity, str(e.args[0]), iteration) from e
    except OverflowError as e:
        if allow_overflow:
            return math.inf
        raise FormulaEvaluationError(
            attribute.identity, f"{type(e).__name__}: {e}", iteration
        ) from e
    except Exception as e:
        raise FormulaEvaluationError(
            attribute.identity, f"{type(e).__name__}: {e}", iteration
        ) from e

    if allow_overflow and isinstance(result, float) and not math.isfinite(result):
        return result
    if not is_number(result):
        raise FormulaEvaluationError(
            attribute.identity, f"returned non-numeric result {result!r}", iteration
        )
    return float(result)
