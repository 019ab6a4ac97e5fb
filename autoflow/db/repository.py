"""Data access layer. Every query is tenant- or key-scoped.

This is the ONLY layer that talks to the database.  Each method opens its own
short-lived session from the injected factory, because concurrent branches of
one run share the repository.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from autoflow.db.models import ContactModel, RunModel, WorkflowModel, WorkflowVersionModel
from autoflow.exceptions import StoreUnavailable, VersionConflict
from autoflow.types import (
    Contact,
    FailureReason,
    InboundEvent,
    NodeVisit,
    RetryPolicy,
    RunKey,
    RunRecord,
    RunStatus,
    TriggerKind,
    WorkflowEdge,
    WorkflowNode,
    WorkflowVersion,
)

_TERMINAL = (RunStatus.COMPLETED.value, RunStatus.FAILED.value)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything in autoflow is UTC-aware."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_version(row: WorkflowVersionModel, is_active: bool = True) -> WorkflowVersion:
    return WorkflowVersion(
        workflow_id=row.workflow_id,
        tenant_id=row.tenant_id,
        name=row.name,
        description=row.description or "",
        trigger_kind=TriggerKind(row.trigger_kind),
        version=row.version,
        is_active=is_active,
        nodes=[WorkflowNode.model_validate(n) for n in row.nodes or []],
        edges=[WorkflowEdge.model_validate(e) for e in row.edges or []],
        retry_policy=RetryPolicy.model_validate(row.retry_policy) if row.retry_policy else None,
        created_at=_aware(row.created_at),
        published_at=_aware(row.published_at),
    )


def _to_contact(row: ContactModel) -> Contact:
    return Contact(
        tenant_id=row.tenant_id,
        whatsapp_id=row.whatsapp_id,
        name=row.name or "",
        tags=list(row.tags or []),
        version=row.version,
    )


def _to_record(row: RunModel) -> RunRecord:
    return RunRecord(
        run_key=RunKey(
            workflow_id=row.workflow_id,
            workflow_version=row.workflow_version,
            contact_id=row.contact_id,
            event_id=row.event_id,
        ),
        tenant_id=row.tenant_id,
        status=RunStatus(row.status),
        event=InboundEvent.model_validate(row.event) if row.event else None,
        entry_node_ids=list(row.entry_node_ids or []),
        visited_node_ids=list(row.visited_node_ids or []),
        visits=[NodeVisit.model_validate(v) for v in row.visits or []],
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        last_error=row.last_error,
        failure_reason=FailureReason(row.failure_reason) if row.failure_reason else None,
    )


def _run_values(record: RunRecord) -> dict:
    return {
        "status": record.status.value,
        "event": record.event.model_dump(mode="json") if record.event else None,
        "entry_node_ids": list(record.entry_node_ids),
        "visited_node_ids": list(record.visited_node_ids),
        "visits": [v.model_dump(mode="json") for v in record.visits],
        "started_at": record.started_at,
        "completed_at": record.completed_at,
        "last_error": record.last_error,
        "failure_reason": record.failure_reason.value if record.failure_reason else None,
    }


class Repository:
    """All database operations."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session = session_factory

    # ── Workflows ──
    async def save_workflow_version(self, version: WorkflowVersion) -> None:
        """Insert a published snapshot and bump the workflow's latest version."""
        async with self._session() as session:
            session.add(WorkflowVersionModel(
                workflow_id=version.workflow_id,
                tenant_id=version.tenant_id,
                version=version.version,
                name=version.name,
                description=version.description,
                trigger_kind=version.trigger_kind.value,
                nodes=[n.model_dump(mode="json") for n in version.nodes],
                edges=[e.model_dump(mode="json") for e in version.edges],
                retry_policy=version.retry_policy.model_dump() if version.retry_policy else None,
                created_at=version.created_at,
                published_at=version.published_at,
            ))
            workflow = await session.get(WorkflowModel, version.workflow_id)
            if workflow is None:
                session.add(WorkflowModel(
                    id=version.workflow_id,
                    tenant_id=version.tenant_id,
                    name=version.name,
                    trigger_kind=version.trigger_kind.value,
                    latest_version=version.version,
                    is_active=version.is_active,
                    created_at=version.created_at,
                ))
            else:
                workflow.name = version.name
                workflow.trigger_kind = version.trigger_kind.value
                workflow.latest_version = max(workflow.latest_version, version.version)
            await session.commit()

    async def get_workflow_version(self, workflow_id: str, version: int) -> Optional[WorkflowVersion]:
        async with self._session() as session:
            result = await session.execute(
                select(WorkflowVersionModel, WorkflowModel.is_active)
                .join(WorkflowModel, WorkflowModel.id == WorkflowVersionModel.workflow_id)
                .where(
                    WorkflowVersionModel.workflow_id == workflow_id,
                    WorkflowVersionModel.version == version,
                )
            )
            row = result.first()
            return _to_version(row[0], row[1]) if row else None

    async def get_latest_workflow_version(self, workflow_id: str) -> Optional[WorkflowVersion]:
        async with self._session() as session:
            workflow = await session.get(WorkflowModel, workflow_id)
            if workflow is None:
                return None
        return await self.get_workflow_version(workflow_id, workflow.latest_version)

    async def get_active_workflows(
        self, tenant_id: str, trigger_kind: TriggerKind
    ) -> list[WorkflowVersion]:
        """Latest version of each active workflow of *trigger_kind*, oldest workflow first."""
        async with self._session() as session:
            result = await session.execute(
                select(WorkflowVersionModel)
                .join(WorkflowModel, and_(
                    WorkflowModel.id == WorkflowVersionModel.workflow_id,
                    WorkflowModel.latest_version == WorkflowVersionModel.version,
                ))
                .where(
                    WorkflowModel.tenant_id == tenant_id,
                    WorkflowModel.trigger_kind == trigger_kind.value,
                    WorkflowModel.is_active.is_(True),
                )
                .order_by(WorkflowModel.created_at, WorkflowModel.id)
            )
            return [_to_version(row) for row in result.scalars().all()]

    async def set_workflow_active(self, workflow_id: str, active: bool) -> None:
        async with self._session() as session:
            await session.execute(
                update(WorkflowModel).where(WorkflowModel.id == workflow_id).values(is_active=active)
            )
            await session.commit()

    async def is_workflow_active(self, workflow_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                select(WorkflowModel.is_active).where(WorkflowModel.id == workflow_id)
            )
            return bool(result.scalar_one_or_none())

    # ── Contacts ──
    async def get_contact(self, tenant_id: str, whatsapp_id: str) -> Contact:
        """Current contact snapshot, created with no tags on first sight."""
        try:
            async with self._session() as session:
                row = await self._find_contact(session, tenant_id, whatsapp_id)
                if row is not None:
                    return _to_contact(row)
                row = ContactModel(tenant_id=tenant_id, whatsapp_id=whatsapp_id, tags=[], version=0)
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError:
                    # another writer created it first
                    await session.rollback()
                    row = await self._find_contact(session, tenant_id, whatsapp_id)
                return _to_contact(row)
        except OperationalError as exc:
            raise StoreUnavailable(f"Contact read failed: {exc}") from exc

    async def update_contact_tags(
        self,
        tenant_id: str,
        whatsapp_id: str,
        expected_version: int,
        new_tags: list[str],
    ) -> Contact:
        """Compare-and-set on ``contacts.version``.

        Raises:
            VersionConflict: the row is no longer at *expected_version*.
            StoreUnavailable: the database could not be reached.
        """
        try:
            async with self._session() as session:
                result = await session.execute(
                    update(ContactModel)
                    .where(
                        ContactModel.tenant_id == tenant_id,
                        ContactModel.whatsapp_id == whatsapp_id,
                        ContactModel.version == expected_version,
                    )
                    .values(tags=list(new_tags), version=expected_version + 1)
                )
                await session.commit()
                if result.rowcount == 1:
                    return Contact(
                        tenant_id=tenant_id,
                        whatsapp_id=whatsapp_id,
                        tags=list(new_tags),
                        version=expected_version + 1,
                    )
                row = await self._find_contact(session, tenant_id, whatsapp_id)
        except OperationalError as exc:
            raise StoreUnavailable(f"Contact tag update failed: {exc}") from exc

        actual = row.version if row is not None else -1
        raise VersionConflict(
            f"Contact {whatsapp_id} is at version {actual}, expected {expected_version}",
            expected_version=expected_version,
            actual_version=actual,
        )

    @staticmethod
    async def _find_contact(session, tenant_id: str, whatsapp_id: str) -> Optional[ContactModel]:
        result = await session.execute(
            select(ContactModel).where(
                ContactModel.tenant_id == tenant_id,
                ContactModel.whatsapp_id == whatsapp_id,
            )
        )
        return result.scalar_one_or_none()

    # ── Runs ──
    async def create_run(self, record: RunRecord) -> bool:
        """Insert the ledger row. False if the run key already exists."""
        key = record.run_key
        async with self._session() as session:
            session.add(RunModel(
                run_key=record.key,
                tenant_id=record.tenant_id,
                workflow_id=key.workflow_id,
                workflow_version=key.workflow_version,
                contact_id=key.contact_id,
                event_id=key.event_id,
                created_at=record.created_at,
                **_run_values(record),
            ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def save_run(self, record: RunRecord) -> None:
        async with self._session() as session:
            await session.execute(
                update(RunModel).where(RunModel.run_key == record.key).values(**_run_values(record))
            )
            await session.commit()

    async def get_run(self, run_key: str) -> Optional[RunRecord]:
        async with self._session() as session:
            row = await session.get(RunModel, run_key)
            return _to_record(row) if row else None

    async def list_runs(
        self,
        tenant_id: str,
        status: Optional[RunStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[RunRecord]:
        """Paginated run history for a tenant, newest first."""
        query = select(RunModel).where(RunModel.tenant_id == tenant_id)
        if status is not None:
            query = query.where(RunModel.status == status.value)
        query = query.order_by(RunModel.created_at.desc()).limit(limit).offset(offset)
        async with self._session() as session:
            result = await session.execute(query)
            return [_to_record(row) for row in result.scalars().all()]

    async def purge_runs(self, cutoff: datetime) -> int:
        """Delete settled runs that finished before *cutoff*. Returns rows deleted."""
        async with self._session() as session:
            result = await session.execute(
                delete(RunModel).where(
                    RunModel.status.in_(_TERMINAL),
                    func.coalesce(RunModel.completed_at, RunModel.created_at) < cutoff,
                )
            )
            await session.commit()
            return result.rowcount or 0
