"""Import workflows saved by the visual flow editor.

The editor stores each node as ``{id, type, position, data: {label, type,
config}}`` with a loosely-typed ``config`` dict per node type, and edges as
``{id, source, target}``.  This module validates that shape with pydantic and
converts it into a WorkflowVersion with typed node payloads.  The result
still has to go through WorkflowManager.publish_version() to be validated as
a graph.

Editor configs map as follows::

    trigger    {triggerType, keywords}   → TriggerNodeConfig
    condition  {condition, value}        → ConditionNodeConfig
    message    {message, messageType}    → MessageNodeConfig
    tag        {tag, action}             → TagNodeConfig

The editor has no notion of a default arm: a condition simply has several
outgoing edges.  With ``implicit_default_arm`` the last of them becomes the
default arm, which is how the editor renders a two-way branch.
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from autoflow.exceptions import WorkflowValidationError
from autoflow.types import (
    ConditionNodeConfig,
    GraphViolation,
    MessageNodeConfig,
    NodeKind,
    TagAction,
    TagNodeConfig,
    TriggerKind,
    TriggerNodeConfig,
    ViolationCode,
    WorkflowEdge,
    WorkflowNode,
    WorkflowVersion,
)


class EditorNodeData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    label: str = ""
    type: Optional[str] = None
    config: dict[str, Any] = Field(default_factory=dict)


class EditorNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: NodeKind
    data: EditorNodeData = Field(default_factory=EditorNodeData)

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, v):
        if isinstance(v, str):
            return NodeKind(v.lower())
        return v


class EditorGuard(BaseModel):
    condition: str = "contains"
    value: str = ""


class EditorEdge(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    source: str
    target: str
    is_default: bool = Field(default=False, alias="isDefault")
    guard: Optional[EditorGuard] = None


class EditorWorkflow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: str
    description: str = ""
    trigger: TriggerKind = TriggerKind.MESSAGE_RECEIVED
    status: str = "ACTIVE"
    nodes: list[EditorNode] = Field(default_factory=list)
    edges: list[EditorEdge] = Field(default_factory=list)

    @field_validator("trigger", mode="before")
    @classmethod
    def coerce_trigger(cls, v):
        if isinstance(v, str):
            return TriggerKind(v.lower())
        return v


def _node_config(node: EditorNode):
    cfg = node.data.config
    if node.type == NodeKind.TRIGGER:
        return TriggerNodeConfig(
            trigger_type=TriggerKind(str(cfg.get("triggerType", "message_received")).lower()),
            keywords=list(cfg.get("keywords") or []),
        )
    if node.type == NodeKind.CONDITION:
        return ConditionNodeConfig(
            predicate=str(cfg.get("condition", "contains")),
            operand=str(cfg.get("value", "")),
        )
    if node.type == NodeKind.MESSAGE:
        return MessageNodeConfig(
            text=str(cfg.get("message", "")),
            message_type=str(cfg.get("messageType", "text")),
        )
    return TagNodeConfig(
        tag_name=str(cfg.get("tag", "")),
        action=TagAction(str(cfg.get("action", "add")).lower()),
    )


def from_editor_payload(
    payload: dict[str, Any],
    tenant_id: str,
    implicit_default_arm: bool = True,
) -> WorkflowVersion:
    """Convert one editor workflow dict into an unpublished WorkflowVersion.

    Raises:
        WorkflowValidationError: if the payload does not have the editor shape
            or a node's config cannot be converted.
    """
    try:
        editor = EditorWorkflow.model_validate(payload)
    except ValidationError as exc:
        raise WorkflowValidationError(
            f"Malformed editor payload: {exc.error_count()} error(s)",
            violations=[GraphViolation(
                code=ViolationCode.INVALID_NODE_CONFIG,
                message=str(exc),
            )],
        ) from exc

    nodes: list[WorkflowNode] = []
    violations: list[GraphViolation] = []
    for raw in editor.nodes:
        try:
            config = _node_config(raw)
        except (ValueError, ValidationError) as exc:
            violations.append(GraphViolation(
                code=ViolationCode.INVALID_NODE_CONFIG,
                message=f"Node '{raw.id}': {exc}",
                node_ids=[raw.id],
            ))
            continue
        nodes.append(WorkflowNode(id=raw.id, kind=raw.type, label=raw.data.label, config=config))
    if violations:
        raise WorkflowValidationError(
            f"Editor workflow {editor.name!r} has invalid node configs.",
            violations=violations,
        )

    condition_ids = {n.id for n in nodes if n.kind == NodeKind.CONDITION}
    edges = [
        WorkflowEdge(
            id=e.id,
            source_node_id=e.source,
            target_node_id=e.target,
            is_default=e.is_default,
            guard=(
                ConditionNodeConfig(predicate=e.guard.condition, operand=e.guard.value)
                if e.guard is not None else None
            ),
        )
        for e in editor.edges
    ]

    if implicit_default_arm:
        for condition_id in condition_ids:
            arms = [i for i, e in enumerate(edges) if e.source_node_id == condition_id]
            if len(arms) >= 2 and not any(edges[i].is_default for i in arms):
                last = arms[-1]
                edges[last] = edges[last].model_copy(update={"is_default": True})

    fields: dict[str, Any] = {
        "tenant_id": tenant_id,
        "name": editor.name,
        "description": editor.description,
        "trigger_kind": editor.trigger,
        "is_active": editor.status.upper() == "ACTIVE",
        "nodes": nodes,
        "edges": edges,
    }
    if editor.id:
        fields["workflow_id"] = editor.id
    return WorkflowVersion(**fields)


def load_workflow_file(
    path: Path,
    tenant_id: str,
    implicit_default_arm: bool = True,
) -> list[WorkflowVersion]:
    """Load a JSON or YAML file holding one editor workflow or a list of them.

    A top-level ``{"workflows": [...]}`` wrapper is also accepted.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Workflow file not found: {p}")
    raw = yaml.safe_load(p.read_text(encoding="utf-8"))  # JSON is valid YAML
    if isinstance(raw, dict) and "workflows" in raw:
        raw = raw["workflows"]
    if isinstance(raw, dict):
        raw = [raw]
    return [
        from_editor_payload(item, tenant_id, implicit_default_arm=implicit_default_arm)
        for item in (raw or [])
    ]
