"""
Unit tests for dependencies/graph.py

Tests graph construction from a registry, edges and traversal.
"""

import pytest

from loopmetrics.core.registry import ModelRegistry
from loopmetrics.dependencies.graph import (
    DependencyEdge,
    DependencyGraph,
    DependencyNode,
    EdgeType,
    build_dependency_graph,
)
from loopmetrics.errors import RegistryNotSealedError, UnknownDependencyError


class TestEdgeType:
    """Test EdgeType enum."""

    def test_edge_type_values(self):
        """Test edge type enum values."""
        assert EdgeType.DATA_FLOW.value == "data_flow"
        assert EdgeType.SELF_LOOP.value == "self_loop"


class TestDependencyNode:
    """Test DependencyNode dataclass."""

    def test_create_node(self):
        """Test creating a dependency node."""
        node = DependencyNode(identity="A.x", block="A", is_input=True)
        assert node.identity == "A.x"
        assert node.depends_on == set()
        assert node.depended_by == set()
        assert not node.has_self_loop

    def test_node_hash(self):
        """Test nodes hash by identity."""
        node1 = DependencyNode(identity="A.x", block="A")
        node2 = DependencyNode(identity="A.x", block="A")
        assert hash(node1) == hash(node2)


class TestDependencyEdge:
    """Test DependencyEdge dataclass."""

    def test_create_edge(self):
        edge = DependencyEdge(source="A.x", target="A.y")
        assert edge.edge_type == EdgeType.DATA_FLOW

    def test_edge_hash(self):
        edge1 = DependencyEdge(source="A.x", target="A.y")
        edge2 = DependencyEdge(source="A.x", target="A.y", edge_type=EdgeType.SELF_LOOP)
        assert hash(edge1) == hash(edge2)


class TestDependencyGraph:
    """Test manual graph construction."""

    def test_add_attribute(self):
        """Test adding nodes."""
        graph = DependencyGraph()
        node = graph.add_attribute("A.x", is_input=True)
        assert node.block == "A"
        assert graph.add_attribute("A.x") is node
        assert graph.node_count == 1

    def test_add_dependency(self):
        """Test adding an edge creates both directions."""
        graph = DependencyGraph()
        graph.add_attribute("A.x")
        graph.add_attribute("A.y")
        edge = graph.add_dependency("A.y", "A.x")

        assert edge.source == "A.x"
        assert edge.target == "A.y"
        assert graph.get_direct_dependencies("A.y") == {"A.x"}
        assert graph.get_direct_dependents("A.x") == {"A.y"}

    def test_add_dependency_twice(self):
        """Test that duplicate edges are ignored."""
        graph = DependencyGraph()
        graph.add_attribute("A.x")
        graph.add_attribute("A.y")
        graph.add_dependency("A.y", "A.x")
        graph.add_dependency("A.y", "A.x")
        assert graph.edge_count == 1

    def test_add_dependency_unknown_node(self):
        """Test that edges need existing nodes."""
        graph = DependencyGraph()
        graph.add_attribute("A.y")
        with pytest.raises(UnknownDependencyError):
            graph.add_dependency("A.y", "A.x")

    def test_self_loop(self):
        """Test self-referencing attributes."""
        graph = DependencyGraph()
        graph.add_attribute("A.x")
        edge = graph.add_dependency("A.x", "A.x")
        assert edge.edge_type == EdgeType.SELF_LOOP
        assert graph.has_self_loop("A.x")

    def test_cycles_allowed(self):
        """Test that cyclic edges are accepted."""
        graph = DependencyGraph()
        graph.add_attribute("A.x")
        graph.add_attribute("A.y")
        graph.add_dependency("A.y", "A.x")
        graph.add_dependency("A.x", "A.y")
        assert graph.edge_count == 2


class TestFromRegistry:
    """Test building graphs from model registries."""

    def test_cost_model_edges(self, cost_registry):
        """Test the cost model graph."""
        graph = build_dependency_graph(cost_registry)

        assert graph.node_count == 7
        assert graph.edge_count == 8
        assert graph.model_version == "1"
        assert graph.get_direct_dependencies("Logistics.ecoFees") == {
            "Logistics.logisticsCost",
            "Production.co2Cost",
        }
        assert graph.get_node("Production.materialCost").is_input

    def test_declaration_order_kept(self, cost_registry):
        """Test that nodes keep registry declaration order."""
        graph = DependencyGraph.from_registry(cost_registry)
        assert graph.get_all_attributes() == cost_registry.identities
        assert graph.get_node("Logistics.ecoFees").declaration_order == 6

    def test_attributes_for_block(self, cost_registry):
        graph = DependencyGraph.from_registry(cost_registry)
        assert graph.get_attributes_for_block("Logistics") == [
            "Logistics.transportCost",
            "Logistics.logisticsCost",
            "Logistics.ecoFees",
        ]

    def test_transitive_dependencies(self, chain_registry):
        """Test upstream closure."""
        graph = DependencyGraph.from_registry(chain_registry)
        assert graph.get_all_dependencies("A.z") == {"A.x", "A.y"}
        assert graph.get_all_dependencies("A.x") == set()

    def test_transitive_downstream_through_cycle(self, cost_registry):
        """Test downstream closure crosses cycles and blocks."""
        graph = DependencyGraph.from_registry(cost_registry)
        assert graph.get_all_downstream("Production.energyCost") == {
            "Production.co2Cost",
            "Production.disposalCost",
            "Logistics.ecoFees",
            "Logistics.logisticsCost",
        }
        assert graph.get_all_downstream("Logistics.transportCost") == {
            "Logistics.logisticsCost",
            "Logistics.ecoFees",
        }

    def test_requires_sealed_registry(self):
        """Test that an open registry is refused."""
        registry = ModelRegistry()
        registry.define_input("A", "x", 1)
        with pytest.raises(RegistryNotSealedError):
            DependencyGraph.from_registry(registry)

    def test_to_dict(self, chain_registry):
        """Test serialization."""
        data = DependencyGraph.from_registry(chain_registry).to_dict()
        assert data["nodes"]["A.z"]["depends_on"] == ["A.x", "A.y"]
        assert {"source": "A.x", "target": "A.y", "edge_type": "data_flow"} in data["edges"]
        assert data["build_timestamp"] is not None
