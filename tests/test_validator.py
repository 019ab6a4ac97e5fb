"""Tests for WorkflowValidator: every structural check, all reported at once."""

import pytest

from autoflow.exceptions import WorkflowValidationError
from autoflow.types import (
    ConditionNodeConfig,
    MessageNodeConfig,
    NodeKind,
    ViolationCode,
    WorkflowNode,
)
from autoflow.workflows.validator import WorkflowValidator

from builders import condition, edge, message, tag, trigger, version


@pytest.fixture
def validator():
    return WorkflowValidator()


def _codes(violations):
    return [v.code for v in violations]


def test_valid_branching_graph(validator):
    v = version(
        [trigger("t"), condition("c", "urgent"), message("m1", "fast"), message("m2", "slow")],
        [edge("t", "c"), edge("c", "m1"), edge("c", "m2", is_default=True)],
    )
    assert validator.validate(v) == []


def test_seed_workflows_are_valid(validator, seed_versions):
    for v in seed_versions:
        assert validator.validate(v) == [], v.name


def test_cycle_detected(validator):
    v = version(
        [trigger("t"), tag("a", "x"), tag("b", "y")],
        [edge("t", "a"), edge("a", "b"), edge("b", "a")],
    )
    violations = validator.validate(v)
    assert ViolationCode.CYCLE_DETECTED in _codes(violations)
    cycle = next(x for x in violations if x.code == ViolationCode.CYCLE_DETECTED)
    assert set(cycle.node_ids) == {"a", "b"}


def test_dangling_edge(validator):
    v = version([trigger("t"), message("m", "hi")], [edge("t", "m"), edge("m", "ghost", edge_id="e-bad")])
    violations = validator.validate(v)
    dangling = [x for x in violations if x.code == ViolationCode.DANGLING_EDGE]
    assert len(dangling) == 1
    assert dangling[0].edge_ids == ["e-bad"]
    assert dangling[0].node_ids == ["ghost"]


def test_duplicate_node_and_edge_ids(validator):
    v = version(
        [trigger("t"), message("m", "one"), message("m", "two")],
        [edge("t", "m", edge_id="e1"), edge("t", "m", edge_id="e1")],
    )
    codes = _codes(validator.validate(v))
    assert ViolationCode.DUPLICATE_NODE_ID in codes
    assert ViolationCode.DUPLICATE_EDGE_ID in codes
    assert ViolationCode.CYCLE_DETECTED not in codes


def test_duplicate_node_id_is_the_only_violation(validator):
    v = version(
        [trigger("t"), message("m", "one"), message("m", "two")],
        [edge("t", "m")],
    )
    violations = validator.validate(v)
    assert _codes(violations) == [ViolationCode.DUPLICATE_NODE_ID]
    assert violations[0].node_ids == ["m"]


def test_orphan_non_trigger_root_is_unreachable(validator):
    v = version([trigger("t"), message("m", "hi"), message("orphan", "?")], [edge("t", "m")])
    violations = validator.validate(v)
    assert _codes(violations) == [ViolationCode.UNREACHABLE_NODE]
    assert violations[0].node_ids == ["orphan"]


def test_island_below_non_trigger_is_unreachable(validator):
    v = version(
        [trigger("t"), message("m", "hi"), tag("a", "x"), tag("b", "y")],
        [edge("t", "m"), edge("a", "b")],
    )
    flagged = {
        nid for x in validator.validate(v)
        if x.code == ViolationCode.UNREACHABLE_NODE for nid in x.node_ids
    }
    assert flagged == {"a", "b"}


def test_no_trigger(validator):
    v = version([message("m", "hi")], [])
    assert ViolationCode.NO_TRIGGER in _codes(validator.validate(v))


def test_trigger_with_incoming_edge(validator):
    v = version([trigger("t1"), trigger("t2"), message("m", "hi")],
                [edge("t1", "t2"), edge("t2", "m")])
    assert ViolationCode.INVALID_ENTRY in _codes(validator.validate(v))


def test_node_config_must_match_kind(validator):
    bad = WorkflowNode(id="m", kind=NodeKind.MESSAGE, config=ConditionNodeConfig(operand="x"))
    v = version([trigger("t"), bad], [edge("t", "m")])
    assert ViolationCode.INVALID_NODE_CONFIG in _codes(validator.validate(v))


def test_unknown_predicate_rejected(validator):
    v = version([trigger("t"), condition("c", "x", predicate="regex"), message("m", "hi")],
                [edge("t", "c"), edge("c", "m")])
    assert ViolationCode.UNSUPPORTED_PREDICATE in _codes(validator.validate(v))


def test_unknown_guard_predicate_rejected(validator):
    v = version(
        [trigger("t"), condition("c", "x"), message("m", "hi")],
        [edge("t", "c"), edge("c", "m", guard=ConditionNodeConfig(predicate="sounds_like", operand="y"))],
    )
    assert ViolationCode.UNSUPPORTED_PREDICATE in _codes(validator.validate(v))


def test_two_default_arms(validator):
    v = version(
        [trigger("t"), condition("c", "x"), message("a", "a"), message("b", "b")],
        [edge("t", "c"), edge("c", "a", is_default=True), edge("c", "b", is_default=True)],
    )
    assert ViolationCode.INVALID_DEFAULT_ARM in _codes(validator.validate(v))


def test_default_arm_must_be_last(validator):
    v = version(
        [trigger("t"), condition("c", "x"), message("a", "a"), message("b", "b")],
        [edge("t", "c"), edge("c", "a", is_default=True), edge("c", "b")],
    )
    violations = validator.validate(v)
    assert _codes(violations) == [ViolationCode.INVALID_DEFAULT_ARM]
    assert violations[0].edge_ids == ["c->a"]


def test_default_flag_on_non_condition_edge(validator):
    v = version([trigger("t"), message("m", "hi")], [edge("t", "m", is_default=True)])
    assert ViolationCode.INVALID_DEFAULT_ARM in _codes(validator.validate(v))


def test_too_many_nodes(validator):
    nodes = [trigger("t")] + [message(f"m{i}", "x") for i in range(5)]
    edges = [edge("t", f"m{i}") for i in range(5)]
    v = version(nodes, edges)
    assert validator.validate(v, max_nodes=10) == []
    assert ViolationCode.TOO_MANY_NODES in _codes(validator.validate(v, max_nodes=3))


def test_all_violations_reported_in_one_pass(validator):
    v = version(
        [trigger("t"), tag("a", "x"), tag("b", "y"), message("orphan", "?")],
        [edge("t", "a"), edge("a", "b"), edge("b", "a"), edge("a", "nowhere")],
    )
    codes = set(_codes(validator.validate(v)))
    assert {ViolationCode.CYCLE_DETECTED, ViolationCode.DANGLING_EDGE,
            ViolationCode.UNREACHABLE_NODE} <= codes


def test_validate_or_raise(validator):
    v = version([message("m", "hi")], [], name="broken")
    with pytest.raises(WorkflowValidationError, match="broken") as exc_info:
        validator.validate_or_raise(v)
    assert ViolationCode.NO_TRIGGER in exc_info.value.codes


def test_validate_or_raise_passes_valid_graph(validator):
    v = version([trigger("t"), WorkflowNode(id="m", kind=NodeKind.MESSAGE, config=MessageNodeConfig(text="x"))],
                [edge("t", "m")])
    validator.validate_or_raise(v)
