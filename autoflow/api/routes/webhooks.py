"""POST /v1/webhooks/whatsapp/{tenant_id}: inbound messages from the gateway."""

import logging

from fastapi import APIRouter, Request

from autoflow.api.schemas import InboundMessageRequest, RunSummary, WebhookResponse
from autoflow.types import InboundEvent

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])


@router.post("/webhooks/whatsapp/{tenant_id}", response_model=WebhookResponse)
async def receive_message(request: Request, tenant_id: str, body: InboundMessageRequest):
    """Match the message against the tenant's active workflows and run them.

    Redelivery of the same ``event_id`` is accepted and answered with an
    empty run list; the original runs are not repeated.  Trigger kinds that
    timed out while matching are reported in ``match_failures``.
    """
    fields = body.model_dump(exclude_none=True)
    event = InboundEvent(tenant_id=tenant_id, **fields)
    coordinator = request.app.state.runtime.coordinator
    outcome = await coordinator.dispatch(event)
    logger.info(
        f"[webhook] tenant={tenant_id} event={event.event_id} runs={len(outcome.records)} "
        f"match_failures={len(outcome.match_failures)} run_errors={len(outcome.run_errors)}"
    )
    return WebhookResponse(
        event_id=event.event_id,
        runs=[RunSummary.from_record(r) for r in outcome.records],
        match_failures=outcome.match_failures,
        run_errors=outcome.run_errors,
    )
