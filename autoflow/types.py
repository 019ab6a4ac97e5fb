"""All shared types, enums, and type aliases. Everything imports from here."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ──────────────────────────────────────────────────────────────

class TriggerKind(str, Enum):
    MESSAGE_RECEIVED = "message_received"   # any inbound message
    KEYWORD = "keyword"                     # substring match on keywords

class NodeKind(str, Enum):
    TRIGGER = "trigger"       # entry point, fans out to every child
    CONDITION = "condition"   # first-match-wins over its arms
    MESSAGE = "message"       # outbound send via the gateway
    TAG = "tag"               # add/remove a contact tag

class TagAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"

class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

class NodeOutcome(str, Enum):
    PASSED = "passed"         # trigger fired / condition arm taken
    NO_MATCH = "no_match"     # condition with no passing arm (dead end)
    DELIVERED = "delivered"   # action applied
    SKIPPED = "skipped"       # already delivered by an earlier attempt of this run
    RETRYING = "retrying"     # transient failure, another attempt scheduled
    FAILED = "failed"

class FailureReason(str, Enum):
    NODE_FAILED = "node_failed"
    RETRIES_EXHAUSTED = "retries_exhausted"
    RUN_TIMEOUT = "run_timeout"
    WORKFLOW_DEACTIVATED = "workflow_deactivated"
    UNSUPPORTED_PREDICATE = "unsupported_predicate"
    GRAPH_NOT_FOUND = "graph_not_found"
    STORE_UNAVAILABLE = "store_unavailable"

class ClaimResult(str, Enum):
    CLAIMED = "claimed"
    ALREADY_EXISTS = "already_exists"

class ViolationCode(str, Enum):
    CYCLE_DETECTED = "cycle_detected"
    DANGLING_EDGE = "dangling_edge"
    UNREACHABLE_NODE = "unreachable_node"
    DUPLICATE_NODE_ID = "duplicate_node_id"
    DUPLICATE_EDGE_ID = "duplicate_edge_id"
    INVALID_ENTRY = "invalid_entry"
    NO_TRIGGER = "no_trigger"
    INVALID_NODE_CONFIG = "invalid_node_config"
    UNSUPPORTED_PREDICATE = "unsupported_predicate"
    INVALID_DEFAULT_ARM = "invalid_default_arm"
    TOO_MANY_NODES = "too_many_nodes"


# ── Node configuration payloads (tagged by kind) ───────────────────────

class TriggerNodeConfig(BaseModel):
    kind: Literal["trigger"] = "trigger"
    trigger_type: TriggerKind = TriggerKind.MESSAGE_RECEIVED
    keywords: list[str] = Field(default_factory=list)

class ConditionNodeConfig(BaseModel):
    kind: Literal["condition"] = "condition"
    predicate: str = "contains"         # key into the predicate registry
    operand: str = ""

class MessageNodeConfig(BaseModel):
    kind: Literal["message"] = "message"
    text: str
    message_type: str = "text"          # checked at send time

class TagNodeConfig(BaseModel):
    kind: Literal["tag"] = "tag"
    tag_name: str
    action: TagAction = TagAction.ADD

NodeConfig = Annotated[
    Union[TriggerNodeConfig, ConditionNodeConfig, MessageNodeConfig, TagNodeConfig],
    Field(discriminator="kind"),
]


# ── Graph ──────────────────────────────────────────────────────────────

class WorkflowNode(BaseModel):
    """A unit of work in a workflow version."""
    id: str                             # unique within the version
    kind: NodeKind
    label: str = ""
    config: NodeConfig

class WorkflowEdge(BaseModel):
    """Directed link. Position in WorkflowVersion.edges is the declared order."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_node_id: str
    target_node_id: str
    is_default: bool = False            # condition arm taken when no earlier arm passed
    guard: Optional[ConditionNodeConfig] = None  # overrides the source condition's predicate

class RetryPolicy(BaseModel):
    """Per-node retry budget for transient action failures."""
    max_attempts: int = 3
    base_delay: float = 0.5             # seconds before the second attempt
    max_delay: float = 8.0
    multiplier: float = 2.0
    jitter: float = 0.1                 # +/- fraction applied to each delay

class WorkflowVersion(BaseModel):
    """Immutable published snapshot of a tenant's automation graph."""
    workflow_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    name: str
    description: str = ""
    trigger_kind: TriggerKind = TriggerKind.MESSAGE_RECEIVED
    version: int = 1
    is_active: bool = True
    nodes: list[WorkflowNode] = Field(default_factory=list)
    edges: list[WorkflowEdge] = Field(default_factory=list)
    retry_policy: Optional[RetryPolicy] = None  # None = config defaults
    created_at: datetime = Field(default_factory=_utcnow)
    published_at: datetime = Field(default_factory=_utcnow)

class GraphViolation(BaseModel):
    """One structural problem found by the validator."""
    code: ViolationCode
    message: str
    node_ids: list[str] = Field(default_factory=list)
    edge_ids: list[str] = Field(default_factory=list)


# ── Messaging ──────────────────────────────────────────────────────────

class InboundEvent(BaseModel):
    """Inbound WhatsApp message delivered by the gateway."""
    tenant_id: str
    contact_whatsapp_id: str
    text: str = ""
    received_at: datetime = Field(default_factory=_utcnow)
    event_id: str                       # idempotency anchor

class OutboundMessage(BaseModel):
    tenant_id: str
    contact_whatsapp_id: str
    message_type: str
    body: str
    idempotency_key: str

class DeliveryReceipt(BaseModel):
    idempotency_key: str
    message_id: str = ""
    duplicate: bool = False             # gateway had already accepted this key

class Contact(BaseModel):
    tenant_id: str
    whatsapp_id: str
    name: str = ""
    tags: list[str] = Field(default_factory=list)
    version: int = 0                    # bumped on every tag write (CAS token)


# ── Matching ───────────────────────────────────────────────────────────

class TriggerMatch(BaseModel):
    workflow_id: str
    version: int
    entry_node_ids: list[str]

class MatchFailure(BaseModel):
    trigger_kind: TriggerKind
    reason: str

class MatchResult(BaseModel):
    matches: list[TriggerMatch] = Field(default_factory=list)
    failures: list[MatchFailure] = Field(default_factory=list)


# ── Runs ───────────────────────────────────────────────────────────────

class RunKey(BaseModel):
    """Idempotency key of a run: one per (workflow version, contact, event)."""
    model_config = ConfigDict(frozen=True)

    workflow_id: str
    workflow_version: int
    contact_id: str
    event_id: str

    def __str__(self) -> str:
        return f"{self.workflow_id}:v{self.workflow_version}:{self.contact_id}:{self.event_id}"

    @classmethod
    def parse(cls, value: str) -> "RunKey":
        """Inverse of str(). event_id may itself contain colons."""
        try:
            workflow_id, version, contact_id, event_id = value.split(":", 3)
            return cls(
                workflow_id=workflow_id,
                workflow_version=int(version.lstrip("v")),
                contact_id=contact_id,
                event_id=event_id,
            )
        except ValueError as exc:
            raise ValueError(f"Malformed run key: {value!r}") from exc

class NodeVisit(BaseModel):
    node_id: str
    outcome: NodeOutcome
    attempts: int = 1
    error: Optional[str] = None
    at: datetime = Field(default_factory=_utcnow)

class RunRecord(BaseModel):
    """Ledger entry for one run."""
    run_key: RunKey
    tenant_id: str
    status: RunStatus = RunStatus.PENDING
    event: Optional[InboundEvent] = None        # kept for manual replay
    entry_node_ids: list[str] = Field(default_factory=list)
    visited_node_ids: list[str] = Field(default_factory=list)
    visits: list[NodeVisit] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    failure_reason: Optional[FailureReason] = None

    @property
    def key(self) -> str:
        return str(self.run_key)

    def delivered_node_ids(self) -> set[str]:
        return {v.node_id for v in self.visits if v.outcome == NodeOutcome.DELIVERED}

class ActionResult(BaseModel):
    node_id: str
    delivered: bool
    detail: str = ""

class EventOutcome(BaseModel):
    """What one inbound event produced: settled runs plus anything that kept a run from starting."""
    event_id: str
    records: list[RunRecord] = Field(default_factory=list)
    match_failures: list[MatchFailure] = Field(default_factory=list)
    run_errors: list[str] = Field(default_factory=list)
