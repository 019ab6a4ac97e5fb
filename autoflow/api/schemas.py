"""Pydantic models for API request/response. Mirrors types.py for API I/O."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from autoflow.types import MatchFailure, RunRecord


# ── Requests ──

class InboundMessageRequest(BaseModel):
    contact_whatsapp_id: str = Field(..., min_length=1)    # "+15550001111"
    text: str = Field("", max_length=4096)
    event_id: str = Field(..., min_length=1)               # gateway message id
    received_at: Optional[datetime] = None


# ── Responses ──

class RunSummary(BaseModel):
    run_key: str
    tenant_id: str
    status: str
    visited_node_ids: list[str]
    failure_reason: Optional[str] = None
    last_error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: RunRecord) -> "RunSummary":
        return cls(
            run_key=record.key,
            tenant_id=record.tenant_id,
            status=record.status.value,
            visited_node_ids=list(record.visited_node_ids),
            failure_reason=record.failure_reason.value if record.failure_reason else None,
            last_error=record.last_error,
            created_at=record.created_at,
            completed_at=record.completed_at,
        )


class RunDetail(RunSummary):
    visits: list[dict[str, Any]]

    @classmethod
    def from_record(cls, record: RunRecord) -> "RunDetail":
        summary = RunSummary.from_record(record)
        return cls(
            **summary.model_dump(),
            visits=[v.model_dump(mode="json") for v in record.visits],
        )


class WebhookResponse(BaseModel):
    """Runs started by one inbound message.

    ``match_failures`` lists trigger kinds whose workflows could not be fetched
    in time; those workflows were not considered and have no run.
    ``run_errors`` lists matched workflows whose run could not be claimed.
    """
    event_id: str
    runs: list[RunSummary]
    match_failures: list[MatchFailure] = Field(default_factory=list)
    run_errors: list[str] = Field(default_factory=list)


class RunListResponse(BaseModel):
    runs: list[RunSummary]
    total: int
    limit: int
    offset: int


class WorkflowPublishedResponse(BaseModel):
    workflow_id: str
    version: int
    name: str
    is_active: bool


class HealthResponse(BaseModel):
    status: str
    version: str
    services: dict[str, bool]
