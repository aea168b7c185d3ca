"""
loopmetrics Dependency Engine

Provides:
- DependencyGraph: Directed graph of attribute dependencies (cycles allowed)
- analyze_graph: SCC condensation and evaluation levels
- InvalidationIndex: Reverse-dependency index for cache invalidation
"""

from .graph import (
    DependencyGraph,
    DependencyNode,
    DependencyEdge,
    EdgeType,
    build_dependency_graph,
)
from .analysis import (
    Component,
    EvaluationPlan,
    analyze_graph,
    find_strongly_connected_components,
)
from .invalidation import (
    InvalidationEvent,
    InvalidationIndex,
    InvalidationReason,
    InvalidationScope,
)

__all__ = [
    # Graph
    "DependencyGraph",
    "DependencyNode",
    "DependencyEdge",
    "EdgeType",
    "build_dependency_graph",
    # Analysis
    "Component",
    "EvaluationPlan",
    "analyze_graph",
    "find_strongly_connected_components",
    # Invalidation
    "InvalidationEvent",
    "InvalidationIndex",
    "InvalidationReason",
    "InvalidationScope",
]
