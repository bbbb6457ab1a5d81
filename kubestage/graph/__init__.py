"""Deployment dependency graph.

Builds an acyclic graph from declared configuration (explicit annotations,
Namespace membership, PVC->PV bindings, volume / Secret / ConfigMap
references, upstream and proxy Services, Service selectors) and layers it
into stages that can be applied concurrently.
"""

from kubestage.graph.dependency_graph import DependencyGraph
from kubestage.graph.inference import DEFAULT_RULES, InferenceRule, default_rules
from kubestage.graph.models import EdgeType, GraphEdge, Stage

__all__ = [
    "DEFAULT_RULES",
    "DependencyGraph",
    "EdgeType",
    "GraphEdge",
    "InferenceRule",
    "Stage",
    "default_rules",
]
