"""
CompiledGraph: a validated, indexed, read-only view of one WorkflowVersion.

Compiled once per published version and cached by WorkflowManager; the
coordinator walks these, reading the raw version only for reachability.
"""

from __future__ import annotations

from typing import Optional

from autoflow.types import NodeKind, WorkflowEdge, WorkflowNode, WorkflowVersion

from .dag import topological_sort
from .validator import WorkflowValidator


class CompiledGraph:
    """Indexed snapshot of a valid workflow version."""

    def __init__(self, version: WorkflowVersion, order: list[str]) -> None:
        self.version = version
        self.order = order
        self.position = {node_id: i for i, node_id in enumerate(order)}
        self.nodes: dict[str, WorkflowNode] = {n.id: n for n in version.nodes}
        self._outgoing: dict[str, list[WorkflowEdge]] = {n.id: [] for n in version.nodes}
        self._incoming: dict[str, list[WorkflowEdge]] = {n.id: [] for n in version.nodes}
        for edge in version.edges:
            self._outgoing[edge.source_node_id].append(edge)
            self._incoming[edge.target_node_id].append(edge)

    @property
    def workflow_id(self) -> str:
        return self.version.workflow_id

    @property
    def number(self) -> int:
        return self.version.version

    def node(self, node_id: str) -> WorkflowNode:
        return self.nodes[node_id]

    def outgoing(self, node_id: str) -> list[WorkflowEdge]:
        """Outgoing edges in declared order."""
        return self._outgoing[node_id]

    def incoming(self, node_id: str) -> list[WorkflowEdge]:
        return self._incoming[node_id]

    def trigger_nodes(self) -> list[WorkflowNode]:
        return [self.nodes[nid] for nid in self.order if self.nodes[nid].kind == NodeKind.TRIGGER]

    def __repr__(self) -> str:
        return f"CompiledGraph({self.workflow_id!r}, v{self.number}, nodes={len(self.order)})"


def compile_graph(
    version: WorkflowVersion,
    validator: Optional[WorkflowValidator] = None,
    max_nodes: int = 100,
) -> CompiledGraph:
    """
    Validate *version* and build its CompiledGraph.

    Raises:
        WorkflowValidationError: with every GraphViolation found.
    """
    (validator or WorkflowValidator()).validate_or_raise(version, max_nodes=max_nodes)
    return CompiledGraph(version, topological_sort(version.nodes, version.edges))
