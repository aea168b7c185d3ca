"""
Unit tests for dependencies/invalidation.py

Tests invalidation events and the reverse-dependency index.
"""

from datetime import datetime

from loopmetrics.dependencies.analysis import analyze_graph
from loopmetrics.dependencies.graph import build_dependency_graph
from loopmetrics.dependencies.invalidation import (
    InvalidationEvent,
    InvalidationIndex,
    InvalidationReason,
    InvalidationScope,
)

PRODUCTION_LOOP = "Production.disposalCost+Production.co2Cost"
LOGISTICS_LOOP = "Logistics.logisticsCost+Logistics.ecoFees"


class TestInvalidationReason:
    """Test InvalidationReason enum."""

    def test_reason_values(self):
        """Test invalidation reason enum values."""
        assert InvalidationReason.INPUT_CHANGED.value == "input_changed"
        assert InvalidationReason.SCENARIO_REDEFINED.value == "scenario_redefined"
        assert InvalidationReason.MODEL_REPLACED.value == "model_replaced"
        assert InvalidationReason.MANUAL_INVALIDATION.value == "manual_invalidation"


class TestInvalidationScope:
    """Test InvalidationScope enum."""

    def test_scope_values(self):
        assert InvalidationScope.DOWNSTREAM.value == "downstream"
        assert InvalidationScope.SCENARIO.value == "scenario"
        assert InvalidationScope.VERSION.value == "version"
        assert InvalidationScope.ALL.value == "all"


class TestInvalidationEvent:
    """Test InvalidationEvent dataclass."""

    def test_create_event(self):
        """Test creating invalidation event."""
        event = InvalidationEvent(
            trigger_attributes=["Logistics.transportCost"],
            reason=InvalidationReason.INPUT_CHANGED,
        )
        assert event.trigger_attributes == ["Logistics.transportCost"]
        assert len(event.event_id) == 8
        assert isinstance(event.timestamp, datetime)

    def test_event_serialization(self):
        """Test round trip through to_dict/from_dict."""
        event = InvalidationEvent(
            trigger_attributes=["Production.energyCost"],
            scenario="High",
            model_version="2",
            reason=InvalidationReason.SCENARIO_REDEFINED,
            scope=InvalidationScope.DOWNSTREAM,
            invalidated_components=[PRODUCTION_LOOP],
            removed_entries=3,
        )
        restored = InvalidationEvent.from_dict(event.to_dict())

        assert restored.event_id == event.event_id
        assert restored.timestamp == event.timestamp
        assert restored.reason == InvalidationReason.SCENARIO_REDEFINED
        assert restored.invalidated_components == [PRODUCTION_LOOP]
        assert restored.removed_entries == 3

    def test_from_dict_defaults(self):
        """Test loading a sparse record."""
        event = InvalidationEvent.from_dict({})
        assert event.reason == InvalidationReason.INPUT_CHANGED
        assert event.scope == InvalidationScope.DOWNSTREAM


class TestInvalidationIndex:
    """Test the reverse-dependency index."""

    def _index(self, registry):
        return InvalidationIndex(analyze_graph(build_dependency_graph(registry)))

    def test_model_version(self, cost_registry):
        assert self._index(cost_registry).model_version == "1"

    def test_downstream_of_transport(self, cost_registry):
        """Test that Production components are unaffected by transport cost."""
        index = self._index(cost_registry)
        affected = index.downstream_components("Logistics.transportCost")

        assert LOGISTICS_LOOP in affected
        assert PRODUCTION_LOOP not in affected

    def test_downstream_of_energy(self, cost_registry):
        """Test that energy cost reaches both loops."""
        index = self._index(cost_registry)
        assert {PRODUCTION_LOOP, LOGISTICS_LOOP} <= index.downstream_components(
            "Production.energyCost"
        )

    def test_affected_components_union(self, cost_registry):
        index = self._index(cost_registry)
        assert index.affected_components(
            ["Logistics.transportCost", "Production.materialCost"]
        ) == {
            "Logistics.transportCost",
            "Production.materialCost",
            PRODUCTION_LOOP,
            LOGISTICS_LOOP,
        }

    def test_affected_components_without_inputs(self, cost_registry):
        """Test that input components can be left out of the closure."""
        index = self._index(cost_registry)
        assert index.affected_components(
            ["Logistics.transportCost", "Production.materialCost"], include_inputs=False
        ) == {PRODUCTION_LOOP, LOGISTICS_LOOP}
        assert index.affected_components(
            ["Logistics.transportCost"], include_inputs=False
        ) == {LOGISTICS_LOOP}

    def test_affected_attributes(self, cost_registry):
        """Test expansion of components to attributes."""
        index = self._index(cost_registry)
        assert index.affected_attributes(["Logistics.transportCost"]) == {
            "Logistics.transportCost",
            "Logistics.logisticsCost",
            "Logistics.ecoFees",
        }

    def test_unknown_attribute(self, cost_registry):
        index = self._index(cost_registry)
        assert index.affected_components(["Nope.x"]) == set()

    def test_returned_sets_are_copies(self, cost_registry):
        """Test callers cannot corrupt the index."""
        index = self._index(cost_registry)
        index.downstream_components("Logistics.transportCost").clear()
        assert index.downstream_components("Logistics.transportCost")
