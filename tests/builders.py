"""Small constructors for typed graphs and events used across the test suite."""

from pathlib import Path
from typing import Optional

from autoflow.types import (
    ConditionNodeConfig,
    InboundEvent,
    MessageNodeConfig,
    NodeKind,
    TagAction,
    TagNodeConfig,
    TriggerKind,
    TriggerNodeConfig,
    WorkflowEdge,
    WorkflowNode,
    WorkflowVersion,
)

TENANT = "tenant-demo"
CONTACT = "+15550001111"


def trigger(node_id: str, keywords: Optional[list[str]] = None) -> WorkflowNode:
    kind = TriggerKind.KEYWORD if keywords is not None else TriggerKind.MESSAGE_RECEIVED
    return WorkflowNode(
        id=node_id,
        kind=NodeKind.TRIGGER,
        config=TriggerNodeConfig(trigger_type=kind, keywords=keywords or []),
    )


def condition(node_id: str, operand: str, predicate: str = "contains") -> WorkflowNode:
    return WorkflowNode(
        id=node_id,
        kind=NodeKind.CONDITION,
        config=ConditionNodeConfig(predicate=predicate, operand=operand),
    )


def message(node_id: str, text: str, message_type: str = "text") -> WorkflowNode:
    return WorkflowNode(
        id=node_id,
        kind=NodeKind.MESSAGE,
        config=MessageNodeConfig(text=text, message_type=message_type),
    )


def tag(node_id: str, name: str, action: TagAction = TagAction.ADD) -> WorkflowNode:
    return WorkflowNode(id=node_id, kind=NodeKind.TAG, config=TagNodeConfig(tag_name=name, action=action))


def edge(source: str, target: str, is_default: bool = False, guard=None, edge_id: Optional[str] = None) -> WorkflowEdge:
    return WorkflowEdge(
        id=edge_id or f"{source}->{target}",
        source_node_id=source,
        target_node_id=target,
        is_default=is_default,
        guard=guard,
    )


def version(nodes, edges, name: str = "wf", **fields) -> WorkflowVersion:
    kinds = {
        n.config.trigger_type for n in nodes
        if n.kind == NodeKind.TRIGGER and isinstance(n.config, TriggerNodeConfig)
    }
    fields.setdefault("trigger_kind", kinds.pop() if len(kinds) == 1 else TriggerKind.MESSAGE_RECEIVED)
    return WorkflowVersion(tenant_id=fields.pop("tenant_id", TENANT), name=name, nodes=nodes, edges=edges, **fields)


def event(text: str, event_id: str = "evt-1", contact: str = CONTACT, tenant_id: str = TENANT) -> InboundEvent:
    return InboundEvent(tenant_id=tenant_id, contact_whatsapp_id=contact, text=text, event_id=event_id)


SEED_FILE = Path(__file__).parent / "fixtures" / "seed_workflows.json"

WELCOME_REPLY = "👋 Welcome to AutomationService! How can we assist you today?"
URGENT_REPLY = "🚨 We understand this is urgent. Our support team will respond within 1 hour."
STANDARD_SUPPORT_REPLY = "📞 Thank you for contacting AutomationService. We'll respond within 24 hours."
HOT_LEAD_REPLY = "🔥 Thanks for your interest! Our sales team will contact you within 2 business hours."
STANDARD_LEAD_REPLY = "Thank you for your interest. We'll get back to you soon."
