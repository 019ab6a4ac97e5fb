"""Run ledger inspection and manual replay."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from autoflow.api.schemas import RunDetail, RunListResponse, RunSummary
from autoflow.exceptions import RunNotFound, RunStateError, WorkflowError
from autoflow.types import RunKey, RunStatus

router = APIRouter(tags=["runs"])


def _parse_key(run_key: str) -> RunKey:
    try:
        return RunKey.parse(run_key)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/runs", response_model=RunListResponse)
async def list_runs(
    request: Request,
    tenant_id: str = Query(..., min_length=1),
    status: Optional[RunStatus] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Paginated run history for one tenant, newest first."""
    ledger = request.app.state.runtime.ledger
    records = await ledger.list_runs(tenant_id, status=status, limit=limit, offset=offset)
    return RunListResponse(
        runs=[RunSummary.from_record(r) for r in records],
        total=len(records),
        limit=limit,
        offset=offset,
    )


@router.get("/runs/{run_key}", response_model=RunDetail)
async def get_run(request: Request, run_key: str):
    ledger = request.app.state.runtime.ledger
    record = await ledger.get(_parse_key(run_key))
    if record is None:
        raise HTTPException(status_code=404, detail=f"Run {run_key} not found")
    return RunDetail.from_record(record)


@router.post("/runs/{run_key}/replay", response_model=RunDetail)
async def replay_run(request: Request, run_key: str):
    """Re-run a FAILED run. Nodes delivered by the earlier attempt are skipped."""
    coordinator = request.app.state.runtime.coordinator
    try:
        record = await coordinator.replay(_parse_key(run_key))
    except RunNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except RunStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except WorkflowError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return RunDetail.from_record(record)
