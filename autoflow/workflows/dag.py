"""
DAG utilities for workflow graph traversal.

All functions operate on WorkflowNode / WorkflowEdge lists and are pure
(no side effects, no I/O) so they can be called safely from the validator,
the compiled graph, and the coordinator alike.  Edge lists keep their
declared order everywhere; branch selection depends on it.
"""

from __future__ import annotations

from collections import deque
from typing import Iterable

from autoflow.exceptions import WorkflowValidationError
from autoflow.types import WorkflowEdge, WorkflowNode


# ── Traversal helpers ─────────────────────────────────────────────────────────


def get_children(
    node_id: str, edges: list[WorkflowEdge]
) -> list[tuple[str, WorkflowEdge]]:
    """Return (target_node_id, edge) pairs for outgoing edges, in declared order."""
    return [(e.target_node_id, e) for e in edges if e.source_node_id == node_id]


def reachable_from(start_ids: Iterable[str], edges: list[WorkflowEdge]) -> set[str]:
    """Every node ID reachable from start_ids (inclusive) following edge direction."""
    adjacency: dict[str, list[str]] = {}
    for edge in edges:
        adjacency.setdefault(edge.source_node_id, []).append(edge.target_node_id)

    seen: set[str] = set()
    queue: deque[str] = deque(start_ids)
    while queue:
        node = queue.popleft()
        if node in seen:
            continue
        seen.add(node)
        queue.extend(adjacency.get(node, []))
    return seen


# ── Topological sort (Kahn's algorithm) ──────────────────────────────────────


def topological_sort(
    nodes: list[WorkflowNode], edges: list[WorkflowEdge]
) -> list[str]:
    """
    Return node IDs in topological order.

    Uses Kahn's BFS algorithm:
      1. Compute in-degree for every node.
      2. Seed queue with zero-in-degree nodes (entry points), in declared order.
      3. BFS: pop node, emit it, decrement in-degrees of its children.
      4. If emitted count < total nodes → cycle exists.

    Ties are broken by declaration order so the result is deterministic.

    Raises:
        WorkflowValidationError: if the graph contains a cycle, naming the
            nodes that could not be ordered.
    """
    # duplicate ids are reported by the validator, not as a cycle
    node_ids = list(dict.fromkeys(n.id for n in nodes))
    if not node_ids:
        return []

    in_degree: dict[str, int] = {nid: 0 for nid in node_ids}
    adjacency: dict[str, list[str]] = {nid: [] for nid in node_ids}

    for edge in edges:
        src, tgt = edge.source_node_id, edge.target_node_id
        # Only count edges whose endpoints exist (validator checks the rest)
        if src in adjacency and tgt in in_degree:
            adjacency[src].append(tgt)
            in_degree[tgt] += 1

    queue: deque[str] = deque(
        nid for nid in node_ids if in_degree[nid] == 0
    )
    order: list[str] = []

    while queue:
        node = queue.popleft()
        order.append(node)
        for child in adjacency[node]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                queue.append(child)

    if len(order) != len(node_ids):
        emitted = set(order)
        cycle_nodes = [nid for nid in node_ids if nid not in emitted]
        raise WorkflowValidationError(
            f"Cycle detected in workflow graph. Involved node IDs: {cycle_nodes}",
            violations=cycle_nodes,
        )

    return order
