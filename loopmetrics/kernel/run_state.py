"""
kernel/run_state.py - Run state machine

Legal transitions of one evaluation run:

    INITIALIZING -> LEVEL_PROCESSING -> (CONVERGING -> LEVEL_PROCESSING)*
                 -> DONE | EXHAUSTED | FAILED | CANCELLED
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List
import logging

from loopmetrics.errors import InvalidTransitionError
from loopmetrics.kernel.enums import RunState

logger = logging.getLogger(__name__)


# ==================== Legal State Transitions ====================

LEGAL_TRANSITIONS: Dict[RunState, List[RunState]] = {
    RunState.INITIALIZING: [
        RunState.LEVEL_PROCESSING,
        RunState.FAILED,
        RunState.CANCELLED,
    ],

    RunState.LEVEL_PROCESSING: [
        RunState.CONVERGING,
        RunState.DONE,
        RunState.EXHAUSTED,
        RunState.FAILED,
        RunState.CANCELLED,
    ],

    RunState.CONVERGING: [
        RunState.LEVEL_PROCESSING,
        RunState.FAILED,
        RunState.CANCELLED,
    ],

    RunState.DONE: [],
    RunState.EXHAUSTED: [],
    RunState.FAILED: [],
    RunState.CANCELLED: [],
}

TERMINAL_STATES = frozenset(s for s, targets in LEGAL_TRANSITIONS.items() if not targets)


def is_legal_transition(from_state: RunState, to_state: RunState) -> bool:
    return to_state in LEGAL_TRANSITIONS.get(from_state, [])


@dataclass
class StateTransition:
    """Record of one transition."""
    from_state: RunState
    to_state: RunState
    level: int = -1
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "level": self.level,
            "timestamp": self.timestamp.isoformat(),
        }


class RunStateMachine:
    """Tracks the state of a single run and rejects illegal moves."""

    def __init__(self, run_id: str = ""):
        self.run_id = run_id
        self._state = RunState.INITIALIZING
        self._history: List[StateTransition] = []

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def history(self) -> List[StateTransition]:
        return list(self._history)

    def transition(self, to_state: RunState, level: int = -1) -> None:
        if not is_legal_transition(self._state, to_state):
            raise InvalidTransitionError(self._state.value, to_state.value)
        self._history.append(StateTransition(self._state, to_state, level))
        logger.debug(f"Run {self.run_id}: {self._state.value} -> {to_state.value} (level {level})")
        self._state = to_state
