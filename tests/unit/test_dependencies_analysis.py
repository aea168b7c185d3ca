"""
Unit tests for dependencies/analysis.py

Tests Tarjan SCC detection, condensation and level assignment.
"""

import pytest

from loopmetrics.core.registry import ModelRegistry
from loopmetrics.dependencies.analysis import (
    Component,
    analyze_graph,
    find_strongly_connected_components,
)
from loopmetrics.dependencies.graph import DependencyGraph, build_dependency_graph

PRODUCTION_LOOP = "Production.disposalCost+Production.co2Cost"
LOGISTICS_LOOP = "Logistics.logisticsCost+Logistics.ecoFees"


def _plan(registry):
    return analyze_graph(build_dependency_graph(registry))


class TestComponent:
    """Test Component dataclass."""

    def test_component_membership(self):
        component = Component(component_id="A.x+A.y", members=("A.x", "A.y"), is_cyclic=True)
        assert component.size == 2
        assert "A.x" in component
        assert "A.z" not in component


class TestTarjan:
    """Test strongly connected component detection."""

    def test_cost_model_components(self, cost_registry):
        """Test the two cyclic pairs are found."""
        sccs = find_strongly_connected_components(build_dependency_graph(cost_registry))
        as_sets = [frozenset(c) for c in sccs]

        assert frozenset({"Production.disposalCost", "Production.co2Cost"}) in as_sets
        assert frozenset({"Logistics.logisticsCost", "Logistics.ecoFees"}) in as_sets
        assert len(sccs) == 5

    def test_members_in_declaration_order(self, cost_registry):
        """Test that members are listed in declaration order."""
        sccs = find_strongly_connected_components(build_dependency_graph(cost_registry))
        assert ["Production.disposalCost", "Production.co2Cost"] in sccs
        assert ["Logistics.logisticsCost", "Logistics.ecoFees"] in sccs

    def test_dependents_emitted_first(self, chain_registry):
        """Test reverse topological output."""
        sccs = find_strongly_connected_components(build_dependency_graph(chain_registry))
        assert sccs == [["A.z"], ["A.y"], ["A.x"]]

    def test_partition(self, cost_registry):
        """Test that every attribute lands in exactly one component."""
        sccs = find_strongly_connected_components(build_dependency_graph(cost_registry))
        members = [m for c in sccs for m in c]
        assert sorted(members) == sorted(cost_registry.identities)

    def test_deep_chain_no_recursion_limit(self):
        """Test a chain longer than the default recursion limit."""
        registry = ModelRegistry()
        registry.define_input("C", "n0", 1)
        for i in range(1, 3000):
            registry.define_calculated("C", f"n{i}", lambda d, p=f"n{i - 1}": d[p] + 1, [f"n{i - 1}"])
        registry.seal()

        sccs = find_strongly_connected_components(build_dependency_graph(registry))
        assert len(sccs) == 3000


class TestAnalyzeGraph:
    """Test condensation and levels."""

    def test_cost_model_levels(self, cost_registry):
        """Test the level layout of the cost model."""
        plan = _plan(cost_registry)

        assert [[c.component_id for c in level] for level in plan.levels] == [
            ["Production.materialCost", "Production.energyCost", "Logistics.transportCost"],
            [PRODUCTION_LOOP],
            [LOGISTICS_LOOP],
        ]
        assert plan.level_count == 3

    def test_cyclic_flags(self, cost_registry):
        """Test which components are cyclic or inputs."""
        plan = _plan(cost_registry)
        assert [c.component_id for c in plan.cyclic_components] == [
            PRODUCTION_LOOP,
            LOGISTICS_LOOP,
        ]
        assert plan.get_component("Production.energyCost").is_input
        assert not plan.get_component(PRODUCTION_LOOP).is_input

    def test_component_lookup(self, cost_registry):
        plan = _plan(cost_registry)
        assert plan.component_for("Production.co2Cost").component_id == PRODUCTION_LOOP
        assert plan.component_of["Logistics.ecoFees"] == LOGISTICS_LOOP

    def test_dependencies_before_dependents(self, cost_registry):
        """Test that every dependency sits on a lower level."""
        graph = build_dependency_graph(cost_registry)
        plan = analyze_graph(graph)
        level_of = {m: c.level for c in plan.components for m in c.members}

        for identity in cost_registry.identities:
            for dep in graph.get_direct_dependencies(identity):
                if plan.component_of[dep] != plan.component_of[identity]:
                    assert level_of[dep] < level_of[identity]

    def test_no_edges_within_level(self, cost_registry):
        """Test components of one level are independent."""
        plan = _plan(cost_registry)
        for level in plan.levels:
            ids = {c.component_id for c in level}
            for component in level:
                assert not (plan.upstream[component.component_id] & ids)

    def test_upstream_inputs(self, cost_registry):
        """Test the inputs each component can see."""
        plan = _plan(cost_registry)
        assert plan.upstream_inputs[PRODUCTION_LOOP] == (
            "Production.materialCost",
            "Production.energyCost",
        )
        assert plan.upstream_inputs[LOGISTICS_LOOP] == (
            "Production.materialCost",
            "Production.energyCost",
            "Logistics.transportCost",
        )
        assert plan.upstream_inputs["Logistics.transportCost"] == ("Logistics.transportCost",)

    def test_downstream_components(self, cost_registry):
        """Test downstream closure over the condensed graph."""
        plan = _plan(cost_registry)
        assert plan.downstream_components("Logistics.transportCost") == {
            "Logistics.transportCost",
            LOGISTICS_LOOP,
        }
        assert plan.downstream_components("Production.energyCost") == {
            "Production.energyCost",
            PRODUCTION_LOOP,
            LOGISTICS_LOOP,
        }
        assert plan.downstream_components("Nope.nothing") == set()

    def test_self_loop_is_cyclic(self):
        """Test that a single self-referencing attribute forms a cyclic group."""
        registry = ModelRegistry()
        registry.define_input("A", "base", 10)
        registry.define_calculated("A", "s", lambda d: d["base"] + 0.5 * d["s"], ["base", "s"])
        plan = _plan(registry.seal())

        component = plan.get_component("A.s")
        assert component.is_cyclic
        assert component.size == 1

    def test_cross_block_cycle_merges(self):
        """Test that a cycle spanning blocks is one component."""
        registry = ModelRegistry()
        registry.define_calculated("A", "p", lambda d: d["B.q"] * 0.5, ["B.q"])
        registry.define_calculated("B", "q", lambda d: d["A.p"] * 0.5 + 1, ["A.p"])
        plan = _plan(registry.seal())

        assert [c.component_id for c in plan.components] == ["A.p+B.q"]

    def test_independent_cycles_share_level(self):
        """Test that unrelated cycles can run side by side."""
        registry = ModelRegistry()
        for block in ("A", "B"):
            registry.define_input(block, "x", 1)
            registry.define_calculated(block, "u", lambda d: d["x"] + 0.5 * d["v"], ["x", "v"])
            registry.define_calculated(block, "v", lambda d: 0.5 * d["u"], ["u"])
        plan = _plan(registry.seal())

        assert [c.component_id for c in plan.levels[1]] == ["A.u+A.v", "B.u+B.v"]

    def test_empty_model(self):
        """Test analyzing an empty model."""
        plan = _plan(ModelRegistry().seal())
        assert plan.components == []
        assert plan.levels == []

    def test_to_dict(self, cost_registry):
        data = _plan(cost_registry).to_dict()
        assert data["model_version"] == "1"
        assert data["levels"][1][0]["members"] == [
            "Production.disposalCost",
            "Production.co2Cost",
        ]
        assert data["levels"][1][0]["is_cyclic"] is True
