"""All ORM models. These map 1:1 to the Pydantic types but are SQLAlchemy models.

Tables: workflows, workflow_versions, contacts, runs
All tables have tenant_id for isolation. Indexes on common query patterns.
"""

from sqlalchemy import Column, String, Integer, DateTime, JSON, Boolean, Text, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase
from datetime import datetime, timezone
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class WorkflowModel(Base):
    """One row per workflow. Holds the activation flag shared by all versions."""
    __tablename__ = "workflows"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    trigger_kind = Column(String, nullable=False, default="message_received")
    latest_version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("ix_workflow_tenant_kind", "tenant_id", "trigger_kind", "is_active"),)


class WorkflowVersionModel(Base):
    """Immutable published snapshot. Never updated after insert."""
    __tablename__ = "workflow_versions"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    workflow_id = Column(String, nullable=False, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    trigger_kind = Column(String, nullable=False)
    nodes = Column(JSON, nullable=False, default=list)
    edges = Column(JSON, nullable=False, default=list)
    retry_policy = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    published_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("workflow_id", "version", name="uq_workflow_version"),)


class ContactModel(Base):
    __tablename__ = "contacts"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String, nullable=False, index=True)
    whatsapp_id = Column(String, nullable=False)
    name = Column(String, default="")
    tags = Column(JSON, default=list)
    version = Column(Integer, nullable=False, default=0)   # CAS token for tags
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("ix_contact_tenant_whatsapp", "tenant_id", "whatsapp_id", unique=True),)


class RunModel(Base):
    """Run ledger. The primary key on run_key is the cross-process claim."""
    __tablename__ = "runs"
    run_key = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    workflow_id = Column(String, nullable=False, index=True)
    workflow_version = Column(Integer, nullable=False)
    contact_id = Column(String, nullable=False)
    event_id = Column(String, nullable=False)
    status = Column(String, default="pending")
    event = Column(JSON, nullable=True)
    entry_node_ids = Column(JSON, default=list)
    visited_node_ids = Column(JSON, default=list)
    visits = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    failure_reason = Column(String, nullable=True)

    __table_args__ = (Index("ix_run_tenant_status_created", "tenant_id", "status", "created_at"),)
