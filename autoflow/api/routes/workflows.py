"""Operator workflow import and activation.

Graph editing lives in the visual editor; this router only accepts the
editor's saved JSON and publishes it.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, HTTPException, Query, Request

from autoflow.api.schemas import WorkflowPublishedResponse
from autoflow.exceptions import WorkflowNotFound, WorkflowValidationError
from autoflow.workflows.editor import from_editor_payload

logger = logging.getLogger(__name__)
router = APIRouter(tags=["workflows"])


def _published(version) -> WorkflowPublishedResponse:
    return WorkflowPublishedResponse(
        workflow_id=version.workflow_id,
        version=version.version,
        name=version.name,
        is_active=version.is_active,
    )


@router.post("/workflows/{tenant_id}", response_model=WorkflowPublishedResponse, status_code=201)
async def publish_workflow(
    request: Request,
    tenant_id: str,
    payload: dict[str, Any] = Body(...),
    workflow_id: Optional[str] = Query(None, description="Publish as the next version of this workflow"),
):
    """Publish an editor workflow. Structural problems come back as 422 with every violation."""
    runtime = request.app.state.runtime
    try:
        draft = from_editor_payload(
            payload, tenant_id, implicit_default_arm=runtime.config.implicit_default_arm
        )
        if workflow_id:
            draft = draft.model_copy(update={"workflow_id": workflow_id})
        version = await runtime.workflow_manager.publish_version(draft)
    except WorkflowValidationError as exc:
        raise HTTPException(status_code=422, detail={
            "error": str(exc),
            "violations": [
                v.model_dump(mode="json") if hasattr(v, "model_dump") else str(v)
                for v in exc.violations
            ],
        })
    except WorkflowNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return _published(version)


@router.post("/workflows/{tenant_id}/{workflow_id}/activate", response_model=WorkflowPublishedResponse)
async def activate_workflow(request: Request, tenant_id: str, workflow_id: str):
    try:
        version = await request.app.state.runtime.workflow_manager.activate(tenant_id, workflow_id)
    except WorkflowNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return _published(version)


@router.post("/workflows/{tenant_id}/{workflow_id}/deactivate", response_model=WorkflowPublishedResponse)
async def deactivate_workflow(request: Request, tenant_id: str, workflow_id: str):
    """Stop matching new events. In-flight runs fail at their next node."""
    try:
        version = await request.app.state.runtime.workflow_manager.deactivate(tenant_id, workflow_id)
    except WorkflowNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return _published(version)
