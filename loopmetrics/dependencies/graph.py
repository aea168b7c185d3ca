"""
loopmetrics Dependency Graph

Directed graph of attribute dependencies built from a sealed model
registry. Edges run dependency -> dependent. Unlike a plain DAG, cycles
are allowed here: they are found and grouped by the graph analyzer.
Self-loops are kept as ordinary edges.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple, TYPE_CHECKING
import logging

from loopmetrics.errors import RegistryNotSealedError, UnknownDependencyError

if TYPE_CHECKING:
    from loopmetrics.core.registry import ModelRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# EDGE TYPES
# =============================================================================

class EdgeType(Enum):
    """Type of dependency relationship."""
    DATA_FLOW = "data_flow"      # Dependent's formula reads the dependency
    SELF_LOOP = "self_loop"      # Formula reads its own previous value


# =============================================================================
# NODES AND EDGES
# =============================================================================

@dataclass
class DependencyNode:
    """A node in the dependency graph representing an attribute."""
    identity: str
    block: str

    # Dependencies
    depends_on: Set[str] = field(default_factory=set)
    depended_by: Set[str] = field(default_factory=set)

    # Metadata
    is_input: bool = False
    declaration_order: int = 0

    def __hash__(self):
        return hash(self.identity)

    @property
    def has_self_loop(self) -> bool:
        return self.identity in self.depends_on


@dataclass
class DependencyEdge:
    """An edge in the dependency graph."""
    source: str      # Upstream attribute (dependency)
    target: str      # Downstream attribute (dependent)
    edge_type: EdgeType = EdgeType.DATA_FLOW

    def __hash__(self):
        return hash((self.source, self.target))


# =============================================================================
# DEPENDENCY GRAPH
# =============================================================================

class DependencyGraph:
    """Directed graph of attribute dependencies for one model version."""

    def __init__(self, model_version: str = ""):
        self._nodes: Dict[str, DependencyNode] = {}
        self._edges: Dict[Tuple[str, str], DependencyEdge] = {}
        self._model_version = model_version
        self._build_timestamp: Optional[datetime] = None

    def add_attribute(
        self,
        identity: str,
        block: str = "",
        is_input: bool = False,
    ) -> DependencyNode:
        """Add an attribute node; returns the existing node if present."""
        if identity in self._nodes:
            return self._nodes[identity]

        node = DependencyNode(
            identity=identity,
            block=block or identity.split(".", 1)[0],
            is_input=is_input,
            declaration_order=len(self._nodes),
        )
        self._nodes[identity] = node
        return node

    def add_dependency(self, dependent: str, dependency: str) -> DependencyEdge:
        """
        Add a dependency: dependent reads dependency.

        Both nodes must already exist.
        """
        if dependent not in self._nodes or dependency not in self._nodes:
            raise UnknownDependencyError({dependent: [dependency]})

        edge_key = (dependency, dependent)
        if edge_key in self._edges:
            return self._edges[edge_key]

        edge = DependencyEdge(
            source=dependency,
            target=dependent,
            edge_type=EdgeType.SELF_LOOP if dependency == dependent else EdgeType.DATA_FLOW,
        )
        self._edges[edge_key] = edge

        self._nodes[dependent].depends_on.add(dependency)
        self._nodes[dependency].depended_by.add(dependent)

        return edge

    @classmethod
    def from_registry(cls, registry: "ModelRegistry") -> "DependencyGraph":
        """
        Build the graph from a sealed registry.

        Every declared dependency is checked again here, even though the
        registry validated them when it was sealed.
        """
        if not registry.is_sealed:
            raise RegistryNotSealedError(
                f"Model registry v{registry.version} must be sealed before building the graph"
            )

        graph = cls(model_version=registry.version)
        for attribute in registry.attributes:
            graph.add_attribute(attribute.identity, attribute.block, attribute.is_input)

        missing: Dict[str, List[str]] = {}
        for attribute in registry.attributes:
            for dep in attribute.dependency_ids:
                if dep not in graph._nodes:
                    missing.setdefault(attribute.identity, []).append(dep)
                    continue
                graph.add_dependency(attribute.identity, dep)

        if missing:
            raise UnknownDependencyError(missing)

        graph._build_timestamp = datetime.now(timezone.utc)

        logger.info(
            f"Dependency graph built for model v{registry.version}: "
            f"{len(graph._nodes)} attributes, {len(graph._edges)} edges"
        )
        return graph

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_direct_dependencies(self, identity: str) -> Set[str]:
        """Get attributes that this attribute directly reads."""
        node = self._nodes.get(identity)
        return node.depends_on.copy() if node else set()

    def get_direct_dependents(self, identity: str) -> Set[str]:
        """Get attributes that directly read this attribute."""
        node = self._nodes.get(identity)
        return node.depended_by.copy() if node else set()

    def get_all_dependencies(self, identity: str) -> Set[str]:
        """Get all upstream dependencies (transitive closure)."""
        result = set()
        to_process = [identity]

        while to_process:
            current = to_process.pop()
            node = self._nodes.get(current)
            if node:
                for dep in node.depends_on:
                    if dep not in result:
                        result.add(dep)
                        to_process.append(dep)

        return result

    def get_all_downstream(self, identity: str) -> Set[str]:
        """Get all downstream dependents (transitive closure)."""
        result = set()
        to_process = [identity]

        while to_process:
            current = to_process.pop()
            node = self._nodes.get(current)
            if node:
                for dependent in node.depended_by:
                    if dependent not in result:
                        result.add(dependent)
                        to_process.append(dependent)

        return result

    def has_self_loop(self, identity: str) -> bool:
        node = self._nodes.get(identity)
        return bool(node and node.has_self_loop)

    def get_node(self, identity: str) -> Optional[DependencyNode]:
        """Get a node by identity."""
        return self._nodes.get(identity)

    def get_edge(self, source: str, target: str) -> Optional[DependencyEdge]:
        """Get an edge by source and target."""
        return self._edges.get((source, target))

    def has_attribute(self, identity: str) -> bool:
        return identity in self._nodes

    def get_all_attributes(self) -> List[str]:
        """All attribute identities in declaration order."""
        return list(self._nodes.keys())

    def get_attributes_for_block(self, block: str) -> List[str]:
        return [i for i, n in self._nodes.items() if n.block == block]

    @property
    def model_version(self) -> str:
        return self._model_version

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize graph structure for inspection."""
        return {
            "model_version": self._model_version,
            "nodes": {
                i: {
                    "block": n.block,
                    "is_input": n.is_input,
                    "depends_on": sorted(n.depends_on),
                    "depended_by": sorted(n.depended_by),
                    "declaration_order": n.declaration_order,
                }
                for i, n in self._nodes.items()
            },
            "edges": [
                {
                    "source": e.source,
                    "target": e.target,
                    "edge_type": e.edge_type.value,
                }
                for e in self._edges.values()
            ],
            "build_timestamp": self._build_timestamp.isoformat() if self._build_timestamp else None,
        }


def build_dependency_graph(registry: "ModelRegistry") -> DependencyGraph:
    """Build the dependency graph of a sealed registry."""
    return DependencyGraph.from_registry(registry)
