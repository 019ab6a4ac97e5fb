"""
WorkflowValidator: publish-time structural checker for WorkflowVersion.

Every check is a non-destructive read of the graph and all checks run even
if earlier ones fail, so callers get the full violation list in one shot.
Runtime graph walks rely on a version having passed this validator and do
not re-check anything.
"""

from __future__ import annotations

from collections import Counter

from autoflow.exceptions import WorkflowValidationError
from autoflow.types import (
    ConditionNodeConfig,
    GraphViolation,
    NodeKind,
    ViolationCode,
    WorkflowVersion,
)

from .conditions import supported_predicates
from .dag import get_children, reachable_from, topological_sort


class WorkflowValidator:
    """
    Validates the structural integrity of a WorkflowVersion.

    Usage::

        validator = WorkflowValidator()
        violations = validator.validate(version)
        if violations:
            raise WorkflowValidationError("Invalid workflow", violations=violations)

    ``validate_or_raise`` does exactly that.
    """

    def validate(
        self,
        workflow: WorkflowVersion,
        max_nodes: int = 100,
    ) -> list[GraphViolation]:
        """
        Run all structural checks on a WorkflowVersion.

        Returns:
            List of GraphViolation.  Empty list means the version is valid.
        """
        violations: list[GraphViolation] = []
        nodes = workflow.nodes
        edges = workflow.edges
        node_map = {n.id: n for n in nodes}

        # ── Unique node / edge ids ────────────────────────────────────────────
        for node_id, count in Counter(n.id for n in nodes).items():
            if count > 1:
                violations.append(GraphViolation(
                    code=ViolationCode.DUPLICATE_NODE_ID,
                    message=f"Node id '{node_id}' is declared {count} times.",
                    node_ids=[node_id],
                ))
        for edge_id, count in Counter(e.id for e in edges).items():
            if count > 1:
                violations.append(GraphViolation(
                    code=ViolationCode.DUPLICATE_EDGE_ID,
                    message=f"Edge id '{edge_id}' is declared {count} times.",
                    edge_ids=[edge_id],
                ))

        # ── Edge validity ─────────────────────────────────────────────────────
        # Must run before the graph checks so they work on a consistent set.
        valid_edges = []
        for edge in edges:
            missing = [
                nid for nid in (edge.source_node_id, edge.target_node_id)
                if nid not in node_map
            ]
            if missing:
                violations.append(GraphViolation(
                    code=ViolationCode.DANGLING_EDGE,
                    message=(
                        f"Edge '{edge.id}' references node(s) {missing} "
                        "that do not exist in this version."
                    ),
                    node_ids=missing,
                    edge_ids=[edge.id],
                ))
            else:
                valid_edges.append(edge)

        # ── Node count limit ──────────────────────────────────────────────────
        if len(nodes) > max_nodes:
            violations.append(GraphViolation(
                code=ViolationCode.TOO_MANY_NODES,
                message=f"Workflow has {len(nodes)} nodes; maximum allowed is {max_nodes}.",
            ))

        # ── Payload matches node kind ─────────────────────────────────────────
        known_predicates = supported_predicates()
        for node in nodes:
            if node.config.kind != node.kind.value:
                violations.append(GraphViolation(
                    code=ViolationCode.INVALID_NODE_CONFIG,
                    message=(
                        f"Node '{node.id}' is a {node.kind.value} node but carries "
                        f"a {node.config.kind} configuration."
                    ),
                    node_ids=[node.id],
                ))
            elif node.kind == NodeKind.CONDITION and node.config.predicate not in known_predicates:
                violations.append(GraphViolation(
                    code=ViolationCode.UNSUPPORTED_PREDICATE,
                    message=f"Node '{node.id}' uses unknown predicate {node.config.predicate!r}.",
                    node_ids=[node.id],
                ))

        # ── Acyclicity ────────────────────────────────────────────────────────
        try:
            topological_sort(nodes, valid_edges)
        except WorkflowValidationError as exc:
            violations.append(GraphViolation(
                code=ViolationCode.CYCLE_DETECTED,
                message=str(exc),
                node_ids=[str(v) for v in exc.violations],
            ))

        # ── Entry set ─────────────────────────────────────────────────────────
        # Roots must be triggers, triggers must be roots, everything else must
        # hang off a trigger.
        incoming = {e.target_node_id for e in valid_edges}
        trigger_ids = [n.id for n in nodes if n.kind == NodeKind.TRIGGER]
        if nodes and not trigger_ids:
            violations.append(GraphViolation(
                code=ViolationCode.NO_TRIGGER,
                message="Workflow has no trigger node.",
            ))
        for node_id in trigger_ids:
            if node_id in incoming:
                violations.append(GraphViolation(
                    code=ViolationCode.INVALID_ENTRY,
                    message=f"Trigger node '{node_id}' has incoming edges.",
                    node_ids=[node_id],
                ))

        reachable = reachable_from(trigger_ids, valid_edges)
        for node in nodes:
            if node.kind == NodeKind.TRIGGER:
                continue
            if node.id not in incoming:
                violations.append(GraphViolation(
                    code=ViolationCode.UNREACHABLE_NODE,
                    message=(
                        f"Node '{node.id}' ({node.kind.value}) has no incoming edges; "
                        "only trigger nodes may be entry points."
                    ),
                    node_ids=[node.id],
                ))
            elif node.id not in reachable:
                violations.append(GraphViolation(
                    code=ViolationCode.UNREACHABLE_NODE,
                    message=f"Node '{node.id}' is not reachable from any trigger node.",
                    node_ids=[node.id],
                ))

        # ── Condition arms ────────────────────────────────────────────────────
        for edge in valid_edges:
            source = node_map[edge.source_node_id]
            if source.kind != NodeKind.CONDITION and (edge.is_default or edge.guard is not None):
                violations.append(GraphViolation(
                    code=ViolationCode.INVALID_DEFAULT_ARM,
                    message=(
                        f"Edge '{edge.id}' carries branch-arm settings but its source "
                        f"'{source.id}' is a {source.kind.value} node."
                    ),
                    edge_ids=[edge.id],
                ))
            if edge.guard is not None and edge.guard.predicate not in known_predicates:
                violations.append(GraphViolation(
                    code=ViolationCode.UNSUPPORTED_PREDICATE,
                    message=f"Edge '{edge.id}' guard uses unknown predicate {edge.guard.predicate!r}.",
                    edge_ids=[edge.id],
                ))

        for node in nodes:
            if node.kind != NodeKind.CONDITION or not isinstance(node.config, ConditionNodeConfig):
                continue
            arms = [e for _, e in get_children(node.id, valid_edges)]
            defaults = [i for i, e in enumerate(arms) if e.is_default]
            if len(defaults) > 1:
                violations.append(GraphViolation(
                    code=ViolationCode.INVALID_DEFAULT_ARM,
                    message=f"Condition '{node.id}' has {len(defaults)} default arms; at most one is allowed.",
                    node_ids=[node.id],
                    edge_ids=[arms[i].id for i in defaults],
                ))
            elif defaults and defaults[0] != len(arms) - 1:
                violations.append(GraphViolation(
                    code=ViolationCode.INVALID_DEFAULT_ARM,
                    message=(
                        f"Condition '{node.id}' declares its default arm before other arms; "
                        "arms after it could never be taken."
                    ),
                    node_ids=[node.id],
                    edge_ids=[arms[defaults[0]].id],
                ))

        return violations

    def validate_or_raise(self, workflow: WorkflowVersion, max_nodes: int = 100) -> None:
        violations = self.validate(workflow, max_nodes=max_nodes)
        if violations:
            raise WorkflowValidationError(
                f"Workflow '{workflow.name}' failed validation "
                f"({len(violations)} violation(s)).",
                violations=violations,
            )
