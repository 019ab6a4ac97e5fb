"""Tests for DAG utility functions and the compiled graph view."""

import pytest

from autoflow.exceptions import WorkflowValidationError
from autoflow.workflows.dag import (
    get_children,
    reachable_from,
    topological_sort,
)
from autoflow.workflows.graph import CompiledGraph, compile_graph

from builders import condition, edge, message, tag, trigger, version


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def diamond():
    """t → a, t → b, a → j, b → j."""
    nodes = [trigger("t"), tag("a", "x"), tag("b", "y"), message("j", "joined")]
    edges = [edge("t", "a"), edge("t", "b"), edge("a", "j"), edge("b", "j")]
    return nodes, edges


@pytest.fixture
def cyclic():
    """a → b → a."""
    nodes = [tag("a", "x"), tag("b", "y")]
    return nodes, [edge("a", "b"), edge("b", "a")]


# ── Tests ────────────────────────────────────────────────────────────────────


def test_topological_sort_diamond(diamond):
    """Join node comes after both of its parents."""
    nodes, edges = diamond
    order = topological_sort(nodes, edges)
    assert order[0] == "t"
    assert order[-1] == "j"
    assert set(order) == {"t", "a", "b", "j"}


def test_topological_sort_ties_follow_declaration_order(diamond):
    nodes, edges = diamond
    assert topological_sort(nodes, edges) == ["t", "a", "b", "j"]


def test_topological_sort_cycle_raises(cyclic):
    nodes, edges = cyclic
    with pytest.raises(WorkflowValidationError, match="[Cc]ycle") as exc_info:
        topological_sort(nodes, edges)
    assert set(exc_info.value.violations) == {"a", "b"}


def test_topological_sort_empty():
    assert topological_sort([], []) == []


def test_topological_sort_ignores_dangling_edges():
    """Edges to unknown nodes are the validator's problem, not the sort's."""
    nodes = [trigger("t"), message("m", "hi")]
    edges = [edge("t", "m"), edge("m", "ghost")]
    assert topological_sort(nodes, edges) == ["t", "m"]


def test_topological_sort_duplicate_ids_are_not_a_cycle():
    nodes = [trigger("t"), message("m", "one"), message("m", "two")]
    assert topological_sort(nodes, [edge("t", "m")]) == ["t", "m"]


def test_get_children_keeps_declared_order():
    edges = [edge("c", "z"), edge("c", "a"), edge("x", "c")]
    assert [target for target, _ in get_children("c", edges)] == ["z", "a"]


def test_reachable_from(diamond):
    _, edges = diamond
    assert reachable_from(["a"], edges) == {"a", "j"}
    assert reachable_from(["t"], edges) == {"t", "a", "b", "j"}


def test_compile_graph_indexes_edges(diamond):
    nodes, edges = diamond
    graph = compile_graph(version(nodes, edges))
    assert isinstance(graph, CompiledGraph)
    assert graph.order == ["t", "a", "b", "j"]
    assert [e.target_node_id for e in graph.outgoing("t")] == ["a", "b"]
    assert len(graph.incoming("j")) == 2
    assert [n.id for n in graph.trigger_nodes()] == ["t"]


def test_compile_graph_rejects_invalid_version(cyclic):
    nodes, edges = cyclic
    with pytest.raises(WorkflowValidationError):
        compile_graph(version(nodes, edges))


def test_compiled_graph_properties():
    v = version([trigger("t"), condition("c", "hi"), message("m", "ok")],
                [edge("t", "c"), edge("c", "m")], workflow_id="wf-props", version=3)
    graph = compile_graph(v)
    assert graph.workflow_id == "wf-props"
    assert graph.number == 3
    assert "wf-props" in repr(graph)
