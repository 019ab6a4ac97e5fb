"""Run ledger. One record per run key, claimed at most once.

An in-memory index is always maintained.  If a repository (DB) is available,
records are also persisted, and the repository's unique key on ``run_key`` is
the cross-process arbiter for claims.  An optional claim guard (Redis
``SET NX``) can front the repository so that duplicate deliveries are
rejected before touching the database.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from autoflow.exceptions import RunNotFound, RunStateError
from autoflow.types import (
    ClaimResult,
    FailureReason,
    InboundEvent,
    NodeOutcome,
    NodeVisit,
    RunKey,
    RunRecord,
    RunStatus,
)

logger = logging.getLogger(__name__)

_TERMINAL = (RunStatus.COMPLETED, RunStatus.FAILED)


class RunLedger:
    """Claim, track and settle runs."""

    def __init__(self, repository=None, claim_guard=None, retention_seconds: float = 7 * 24 * 3600):
        """
        Args:
            repository:        Injected DB repository for persistence. Can be None
                               for in-memory only mode.
            claim_guard:       Optional fast-path guard with
                               ``async claim(run_key, ttl_seconds) -> bool``.
            retention_seconds: Age after which settled runs are evicted.
        """
        self._records: dict[str, RunRecord] = {}
        self._repository = repository
        self._claim_guard = claim_guard
        self._retention = timedelta(seconds=retention_seconds)
        self._lock = asyncio.Lock()

    async def claim(
        self,
        run_key: RunKey,
        tenant_id: str,
        event: Optional[InboundEvent] = None,
        entry_node_ids: Optional[list[str]] = None,
    ) -> ClaimResult:
        """Atomically create a PENDING record for *run_key*.

        Exactly one of any number of concurrent callers gets CLAIMED. Everyone
        else, including callers in other processes sharing the repository,
        gets ALREADY_EXISTS.
        """
        key = str(run_key)
        record = RunRecord(
            run_key=run_key,
            tenant_id=tenant_id,
            event=event,
            entry_node_ids=list(entry_node_ids or []),
        )
        async with self._lock:
            if key in self._records:
                return ClaimResult.ALREADY_EXISTS
            self._records[key] = record

        try:
            if self._claim_guard is not None:
                won = await self._claim_guard.claim(key, int(self._retention.total_seconds()))
                if not won:
                    await self._release(key)
                    return ClaimResult.ALREADY_EXISTS
            if self._repository is not None:
                if not await self._repository.create_run(record):
                    await self._release(key)
                    return ClaimResult.ALREADY_EXISTS
        except BaseException:
            await self._release(key)
            raise

        logger.debug("Claimed run %s", key)
        return ClaimResult.CLAIMED

    async def _release(self, key: str) -> None:
        async with self._lock:
            self._records.pop(key, None)

    async def start(self, run_key: RunKey) -> RunRecord:
        """PENDING -> RUNNING."""
        record = await self._require(run_key)
        if record.status != RunStatus.PENDING:
            raise RunStateError(
                f"Run {record.key} cannot start from {record.status.value}", run_key=record.key
            )
        record.status = RunStatus.RUNNING
        record.started_at = datetime.now(timezone.utc)
        await self._save(record)
        return record

    async def record_visit(
        self,
        run_key: RunKey,
        node_id: str,
        outcome: NodeOutcome,
        attempts: int = 1,
        error: Optional[str] = None,
    ) -> RunRecord:
        """Append a node visit. ``visited_node_ids`` only grows, once per node."""
        record = await self._require(run_key)
        record.visits.append(
            NodeVisit(node_id=node_id, outcome=outcome, attempts=attempts, error=error)
        )
        if outcome != NodeOutcome.RETRYING and node_id not in record.visited_node_ids:
            record.visited_node_ids.append(node_id)
        await self._save(record)
        return record

    async def complete(
        self,
        run_key: RunKey,
        status: RunStatus,
        failure_reason: Optional[FailureReason] = None,
        error: Optional[str] = None,
    ) -> RunRecord:
        """Settle the run as COMPLETED or FAILED. A settled run cannot be settled again."""
        if status not in _TERMINAL:
            raise ValueError(f"complete() needs a terminal status, got {status.value}")
        record = await self._require(run_key)
        if record.status in _TERMINAL:
            raise RunStateError(
                f"Run {record.key} is already {record.status.value}", run_key=record.key
            )
        record.status = status
        record.completed_at = datetime.now(timezone.utc)
        record.failure_reason = failure_reason if status == RunStatus.FAILED else None
        if error:
            record.last_error = error
        await self._save(record)
        logger.info(
            "Run %s %s%s", record.key, status.value,
            f" ({failure_reason.value})" if record.failure_reason else "",
        )
        return record

    async def reopen(self, run_key: RunKey) -> RunRecord:
        """FAILED -> RUNNING, for manual replay. Visits are kept."""
        record = await self._require(run_key)
        if record.status != RunStatus.FAILED:
            raise RunStateError(
                f"Only failed runs can be replayed; {record.key} is {record.status.value}",
                run_key=record.key,
            )
        record.status = RunStatus.RUNNING
        record.completed_at = None
        record.failure_reason = None
        await self._save(record)
        return record

    async def get(self, run_key) -> Optional[RunRecord]:
        """Look up a run by RunKey or its string form."""
        key = str(run_key)
        record = self._records.get(key)
        if record is None and self._repository is not None:
            record = await self._repository.get_run(key)
            if record is not None:
                self._records[key] = record
        return record

    async def list_runs(
        self,
        tenant_id: str,
        status: Optional[RunStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[RunRecord]:
        """Paginated run history for a tenant, newest first."""
        if self._repository is not None:
            return await self._repository.list_runs(
                tenant_id, status=status, limit=limit, offset=offset
            )
        runs = [
            r for r in self._records.values()
            if r.tenant_id == tenant_id and (status is None or r.status == status)
        ]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return runs[offset: offset + limit]

    async def evict_expired(self, now: Optional[datetime] = None) -> int:
        """Drop settled runs older than the retention window. Returns count evicted."""
        cutoff = (now or datetime.now(timezone.utc)) - self._retention
        async with self._lock:
            expired = [
                key for key, r in self._records.items()
                if r.status in _TERMINAL and (r.completed_at or r.created_at) < cutoff
            ]
            for key in expired:
                del self._records[key]
        purged = len(expired)
        if self._repository is not None:
            purged = max(purged, await self._repository.purge_runs(cutoff))
        if purged:
            logger.info("Evicted %d expired runs", purged)
        return purged

    async def _require(self, run_key) -> RunRecord:
        record = await self.get(run_key)
        if record is None:
            raise RunNotFound(f"Run {run_key} not found", run_key=str(run_key))
        return record

    async def _save(self, record: RunRecord) -> None:
        if self._repository is not None:
            await self._repository.save_run(record)
