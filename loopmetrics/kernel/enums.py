"""
kernel/enums.py - Kernel enumerations.
"""

from enum import Enum


class RunState(Enum):
    """Evaluation run state."""
    INITIALIZING = "initializing"
    LEVEL_PROCESSING = "level_processing"
    CONVERGING = "converging"
    DONE = "done"               # Every cyclic group converged
    EXHAUSTED = "exhausted"     # Finished, at least one group hit max_iterations
    FAILED = "failed"
    CANCELLED = "cancelled"


class GroupStatus(Enum):
    """Outcome of solving one cyclic group."""
    CONVERGED = "converged"
    NOT_CONVERGED = "not_converged"
    CANCELLED = "cancelled"


class CancelReason(Enum):
    """Why a run stopped early."""
    REQUESTED = "requested"
    DEADLINE = "deadline"
