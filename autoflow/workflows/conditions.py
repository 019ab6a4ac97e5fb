"""
Condition evaluation for branch nodes.

Predicates are plain functions registered by kind with ``@predicate``.  The
coordinator only ever calls ``ConditionEvaluator.evaluate``; adding a kind
means adding one decorated function here and nothing else.

Every predicate is pure: it reads the inbound event and the contact snapshot
the coordinator already fetched, and never performs I/O.  That is what makes
re-evaluating a branch on retry or replay safe.
"""

from __future__ import annotations

from typing import Callable, Optional

from autoflow.exceptions import UnsupportedPredicate
from autoflow.types import (
    ConditionNodeConfig,
    Contact,
    InboundEvent,
    NodeKind,
    WorkflowEdge,
    WorkflowNode,
)

PredicateFn = Callable[[str, InboundEvent, Optional[Contact]], bool]

_PREDICATES: dict[str, PredicateFn] = {}


def predicate(kind: str) -> Callable[[PredicateFn], PredicateFn]:
    """Register *fn* as the implementation of predicate *kind*."""
    def decorator(fn: PredicateFn) -> PredicateFn:
        _PREDICATES[kind] = fn
        return fn
    return decorator


def supported_predicates() -> frozenset[str]:
    return frozenset(_PREDICATES)


# ── Built-in predicates ──────────────────────────────────────────────────────


@predicate("contains")
def _contains(operand: str, event: InboundEvent, contact: Optional[Contact]) -> bool:
    return operand.lower() in (event.text or "").lower()


@predicate("not_contains")
def _not_contains(operand: str, event: InboundEvent, contact: Optional[Contact]) -> bool:
    return not _contains(operand, event, contact)


@predicate("equals")
def _equals(operand: str, event: InboundEvent, contact: Optional[Contact]) -> bool:
    return (event.text or "").strip().lower() == operand.strip().lower()


@predicate("starts_with")
def _starts_with(operand: str, event: InboundEvent, contact: Optional[Contact]) -> bool:
    return (event.text or "").strip().lower().startswith(operand.strip().lower())


@predicate("has_tag")
def _has_tag(operand: str, event: InboundEvent, contact: Optional[Contact]) -> bool:
    return contact is not None and operand in contact.tags


# ── Evaluator ────────────────────────────────────────────────────────────────


class ConditionEvaluator:
    """Evaluates condition nodes and condition arms against an event + contact."""

    def evaluate_predicate(
        self,
        config: ConditionNodeConfig,
        event: InboundEvent,
        contact: Optional[Contact],
    ) -> bool:
        """
        Raises:
            UnsupportedPredicate: if ``config.predicate`` is not registered.
        """
        fn = _PREDICATES.get(config.predicate)
        if fn is None:
            raise UnsupportedPredicate(
                f"Unsupported predicate {config.predicate!r}. "
                f"Known: {sorted(_PREDICATES)}",
                predicate=config.predicate,
            )
        return bool(fn(config.operand, event, contact))

    def evaluate(
        self,
        node: WorkflowNode,
        event: InboundEvent,
        contact: Optional[Contact],
    ) -> bool:
        """Evaluate the predicate configured on a condition node."""
        if node.kind != NodeKind.CONDITION or not isinstance(node.config, ConditionNodeConfig):
            raise UnsupportedPredicate(
                f"Node '{node.id}' is a {node.kind.value} node, not a condition.",
                predicate="",
            )
        return self.evaluate_predicate(node.config, event, contact)

    def arm_passes(
        self,
        node: WorkflowNode,
        edge: WorkflowEdge,
        event: InboundEvent,
        contact: Optional[Contact],
    ) -> bool:
        """Guard of one outgoing arm of a condition node.

        Default arms always pass; an arm with its own guard uses it;
        otherwise the arm is guarded by the node's predicate.
        """
        if edge.is_default:
            return True
        if edge.guard is not None:
            return self.evaluate_predicate(edge.guard, event, contact)
        return self.evaluate(node, event, contact)

    def select_arm(
        self,
        node: WorkflowNode,
        arms: list[WorkflowEdge],
        event: InboundEvent,
        contact: Optional[Contact],
    ) -> Optional[WorkflowEdge]:
        """First-match-wins: the first arm in declared order whose guard passes."""
        for edge in arms:
            if self.arm_passes(node, edge, event, contact):
                return edge
        return None
