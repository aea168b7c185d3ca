"""
loopmetrics Invalidation Index

Reverse-dependency index used by the cache manager: for every attribute,
the condensed components downstream of it. When an input changes, only
cache entries for those components are dropped.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set
import logging
import uuid

from loopmetrics.dependencies.analysis import EvaluationPlan

logger = logging.getLogger(__name__)


# =============================================================================
# INVALIDATION TYPES
# =============================================================================

class InvalidationReason(Enum):
    """Why invalidation occurred."""
    INPUT_CHANGED = "input_changed"               # Scenario input value changed
    SCENARIO_REDEFINED = "scenario_redefined"     # Scenario overrides replaced
    MODEL_REPLACED = "model_replaced"             # New model version loaded
    MANUAL_INVALIDATION = "manual_invalidation"   # Caller forced invalidation


class InvalidationScope(Enum):
    """Scope of invalidation."""
    DOWNSTREAM = "downstream"    # Components downstream of the changed inputs
    SCENARIO = "scenario"        # Run results of one scenario
    VERSION = "version"          # Everything keyed to a model version
    ALL = "all"                  # Everything


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InvalidationEvent:
    """Record of an invalidation occurrence."""
    event_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    timestamp: datetime = field(default_factory=_utcnow)

    # What triggered invalidation
    trigger_attributes: List[str] = field(default_factory=list)
    scenario: Optional[str] = None
    model_version: Optional[str] = None
    reason: InvalidationReason = InvalidationReason.INPUT_CHANGED
    scope: InvalidationScope = InvalidationScope.DOWNSTREAM

    # What was affected
    invalidated_components: List[str] = field(default_factory=list)
    removed_entries: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging."""
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "trigger_attributes": list(self.trigger_attributes),
            "scenario": self.scenario,
            "model_version": self.model_version,
            "reason": self.reason.value,
            "scope": self.scope.value,
            "invalidated_components": list(self.invalidated_components),
            "removed_entries": self.removed_entries,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InvalidationEvent":
        """Load from serialized data."""
        return cls(
            event_id=data.get("event_id", str(uuid.uuid4())[:8]),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else _utcnow(),
            trigger_attributes=list(data.get("trigger_attributes", [])),
            scenario=data.get("scenario"),
            model_version=data.get("model_version"),
            reason=InvalidationReason(data.get("reason", "input_changed")),
            scope=InvalidationScope(data.get("scope", "downstream")),
            invalidated_components=list(data.get("invalidated_components", [])),
            removed_entries=data.get("removed_entries", 0),
        )


# =============================================================================
# INVALIDATION INDEX
# =============================================================================

class InvalidationIndex:
    """
    Attribute -> downstream component ids, derived from an evaluation plan.

    Components outside an attribute's downstream closure (for instance a
    block with no path from it and no shared cycle) never appear in its
    entry.
    """

    def __init__(self, plan: EvaluationPlan):
        self._model_version = plan.model_version
        self._downstream: Dict[str, Set[str]] = {
            identity: plan.downstream_components(identity)
            for identity in plan.component_of
        }
        self._members: Dict[str, Set[str]] = {
            c.component_id: set(c.members) for c in plan.components
        }
        self._inputs: Set[str] = {c.component_id for c in plan.components if c.is_input}

    @property
    def model_version(self) -> str:
        return self._model_version

    def downstream_components(self, identity: str) -> Set[str]:
        return set(self._downstream.get(identity, set()))

    def affected_components(
        self, identities: Iterable[str], include_inputs: bool = True
    ) -> Set[str]:
        """
        Union of the downstream closures of several attributes.

        With include_inputs=False, components made of input attributes are
        left out; they hold no computed values to recompute.
        """
        result: Set[str] = set()
        for identity in identities:
            result |= self._downstream.get(identity, set())
        if not include_inputs:
            result -= self._inputs
        return result

    def affected_attributes(self, identities: Iterable[str]) -> Set[str]:
        """Every attribute whose value can change with the given attributes."""
        result: Set[str] = set()
        for cid in self.affected_components(identities):
            result |= self._members[cid]
        return result
