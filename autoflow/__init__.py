"""autoflow: WhatsApp workflow automation execution engine.

Usage:
    from autoflow import InboundEvent, build_runtime

    runtime = build_runtime()
    await runtime.workflow_manager.publish(tenant_id, "Welcome", nodes, edges)
    records = await runtime.coordinator.handle_event(InboundEvent(...))
"""

from autoflow.types import (
    WorkflowVersion, WorkflowNode, WorkflowEdge, RetryPolicy, InboundEvent,
    OutboundMessage, Contact, RunKey, RunRecord, NodeVisit,
    TriggerKind, NodeKind, RunStatus, NodeOutcome, FailureReason, ClaimResult,
)
from autoflow.exceptions import (
    AutoflowError, WorkflowValidationError, WorkflowNotFound, UnsupportedPredicate,
    RetryableActionError, FatalActionError, RetriesExhausted, VersionConflict,
    RunTimeout, WorkflowDeactivated, RunNotFound, RunStateError,
)
from autoflow.core.runtime import Runtime, build_runtime
from autoflow.version import __version__

__all__ = [
    "WorkflowVersion", "WorkflowNode", "WorkflowEdge", "RetryPolicy", "InboundEvent",
    "OutboundMessage", "Contact", "RunKey", "RunRecord", "NodeVisit",
    "TriggerKind", "NodeKind", "RunStatus", "NodeOutcome", "FailureReason", "ClaimResult",
    "AutoflowError", "WorkflowValidationError", "WorkflowNotFound", "UnsupportedPredicate",
    "RetryableActionError", "FatalActionError", "RetriesExhausted", "VersionConflict",
    "RunTimeout", "WorkflowDeactivated", "RunNotFound", "RunStateError",
    "Runtime", "build_runtime",
    "__version__",
]
