"""
loopmetrics Graph Analyzer

Finds strongly connected components (Tarjan), condenses them into a DAG
and layers that DAG into levels. Components inside one level share no
edges and may be evaluated concurrently; levels run in order.

A component is cyclic when it has more than one member or its single
member reads itself.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set, Tuple
import logging

from loopmetrics.dependencies.graph import DependencyGraph

logger = logging.getLogger(__name__)


# =============================================================================
# PLAN TYPES
# =============================================================================

@dataclass(frozen=True)
class Component:
    """One node of the condensed graph."""
    component_id: str
    members: Tuple[str, ...]          # Declaration order, also update order
    is_cyclic: bool = False
    is_input: bool = False
    level: int = 0

    @property
    def size(self) -> int:
        return len(self.members)

    def __contains__(self, identity: str) -> bool:
        return identity in self.members


@dataclass
class EvaluationPlan:
    """Levels of condensed components in dependency order."""
    model_version: str
    components: List[Component] = field(default_factory=list)
    levels: List[List[Component]] = field(default_factory=list)

    # Lookups
    component_of: Dict[str, str] = field(default_factory=dict)
    upstream: Dict[str, Set[str]] = field(default_factory=dict)
    upstream_inputs: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self):
        self._by_id: Dict[str, Component] = {c.component_id: c for c in self.components}

    def get_component(self, component_id: str) -> Component:
        return self._by_id[component_id]

    @property
    def cyclic_components(self) -> List[Component]:
        return [c for c in self.components if c.is_cyclic]

    @property
    def level_count(self) -> int:
        return len(self.levels)

    def component_for(self, identity: str) -> Component:
        return self._by_id[self.component_of[identity]]

    def downstream_components(self, identity: str) -> Set[str]:
        """Components whose values can change when ``identity`` changes."""
        start = self.component_of.get(identity)
        if start is None:
            return set()
        return {
            cid for cid, ups in self.upstream.items() if start in ups
        } | {start}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_version": self.model_version,
            "levels": [
                [
                    {
                        "component_id": c.component_id,
                        "members": list(c.members),
                        "is_cyclic": c.is_cyclic,
                        "is_input": c.is_input,
                    }
                    for c in level
                ]
                for level in self.levels
            ],
        }


# =============================================================================
# TARJAN SCC
# =============================================================================

def find_strongly_connected_components(graph: DependencyGraph) -> List[List[str]]:
    """
    Tarjan's algorithm, iterative so deep chains do not hit the recursion limit.

    Returns components in reverse topological order of the edge direction
    (dependents before their dependencies), each listed in declaration order.
    """
    order = {ident: i for i, ident in enumerate(graph.get_all_attributes())}

    def successors(ident: str) -> List[str]:
        return sorted(graph.get_direct_dependents(ident), key=order.__getitem__)

    index_counter = 0
    indices: Dict[str, int] = {}
    lowlinks: Dict[str, int] = {}
    on_stack: Set[str] = set()
    stack: List[str] = []
    result: List[List[str]] = []

    for root in order:
        if root in indices:
            continue

        indices[root] = lowlinks[root] = index_counter
        index_counter += 1
        stack.append(root)
        on_stack.add(root)
        work = [(root, iter(successors(root)))]

        while work:
            node, children = work[-1]
            advanced = False

            for child in children:
                if child not in indices:
                    indices[child] = lowlinks[child] = index_counter
                    index_counter += 1
                    stack.append(child)
                    on_stack.add(child)
                    work.append((child, iter(successors(child))))
                    advanced = True
                    break
                if child in on_stack:
                    lowlinks[node] = min(lowlinks[node], indices[child])

            if advanced:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlinks[parent] = min(lowlinks[parent], lowlinks[node])

            if lowlinks[node] == indices[node]:
                members = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    members.append(member)
                    if member == node:
                        break
                result.append(sorted(members, key=order.__getitem__))

    return result


# =============================================================================
# CONDENSATION AND LEVELS
# =============================================================================

def analyze_graph(graph: DependencyGraph) -> EvaluationPlan:
    """Condense the graph and compute evaluation levels."""
    order = {ident: i for i, ident in enumerate(graph.get_all_attributes())}
    sccs = find_strongly_connected_components(graph)

    component_of: Dict[str, str] = {}
    members_of: Dict[str, Tuple[str, ...]] = {}
    for members in sccs:
        cid = "+".join(members)
        members_of[cid] = tuple(members)
        for m in members:
            component_of[m] = cid

    # Condensed edges: direct upstream components of each component
    direct_up: Dict[str, Set[str]] = {cid: set() for cid in members_of}
    for cid, members in members_of.items():
        for m in members:
            for dep in graph.get_direct_dependencies(m):
                dep_cid = component_of[dep]
                if dep_cid != cid:
                    direct_up[cid].add(dep_cid)

    # Tarjan emits dependents first; reversed it is a topological order
    topo = ["+".join(m) for m in reversed(sccs)]

    level_of: Dict[str, int] = {}
    upstream: Dict[str, Set[str]] = {}
    for cid in topo:
        ups = direct_up[cid]
        level_of[cid] = 1 + max((level_of[u] for u in ups), default=-1)
        closure = set(ups)
        for u in ups:
            closure |= upstream[u]
        upstream[cid] = closure

    components: List[Component] = []
    for cid in topo:
        members = members_of[cid]
        first = graph.get_node(members[0])
        components.append(
            Component(
                component_id=cid,
                members=members,
                is_cyclic=len(members) > 1 or graph.has_self_loop(members[0]),
                is_input=bool(first and first.is_input) and len(members) == 1,
                level=level_of[cid],
            )
        )

    components.sort(key=lambda c: (c.level, order[c.members[0]]))

    levels: List[List[Component]] = []
    for component in components:
        while len(levels) <= component.level:
            levels.append([])
        levels[component.level].append(component)

    input_members = {i for i in order if graph.get_node(i).is_input}
    upstream_inputs: Dict[str, Tuple[str, ...]] = {}
    for c in components:
        found = [
            members_of[u][0] for u in upstream[c.component_id]
            if members_of[u][0] in input_members
        ]
        if c.is_input:
            found.append(c.members[0])
        upstream_inputs[c.component_id] = tuple(sorted(found, key=order.__getitem__))

    plan = EvaluationPlan(
        model_version=graph.model_version,
        components=components,
        levels=levels,
        component_of=component_of,
        upstream=upstream,
        upstream_inputs=upstream_inputs,
    )

    logger.info(
        f"Evaluation plan for model v{graph.model_version}: "
        f"{len(components)} components in {len(levels)} levels, "
        f"{len(plan.cyclic_components)} cyclic"
    )
    return plan
