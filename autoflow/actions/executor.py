"""ActionExecutor: side-effecting handlers for message and tag nodes.

Error contract:
  - RetryableActionError: transient (gateway unavailable, store unavailable,
    tag CAS still losing after ``cas_max_attempts`` fresh reads).  The
    coordinator may retry the node.
  - FatalActionError: the node is misconfigured (unknown message type, empty
    tag name) or the gateway rejected the request.  Never retried.

Message sends carry ``idempotency_key = f"{run_key}:{node_id}"`` so any retry
or replay of the same node in the same run maps onto the same gateway key.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from autoflow.actions.gateway import MessagingGateway
from autoflow.db.store import ContactStore
from autoflow.exceptions import (
    FatalActionError,
    GatewayRejected,
    GatewayUnavailable,
    RetryableActionError,
    StoreUnavailable,
    VersionConflict,
)
from autoflow.types import (
    ActionResult,
    Contact,
    InboundEvent,
    MessageNodeConfig,
    NodeKind,
    OutboundMessage,
    RunKey,
    TagAction,
    TagNodeConfig,
    WorkflowNode,
)

logger = logging.getLogger(__name__)

SUPPORTED_MESSAGE_TYPES = frozenset({"text", "image", "document", "audio", "video", "template"})

_TEMPLATE_RE = re.compile(r"\{\{([^}]+)\}\}")


def idempotency_key(run_key: RunKey, node_id: str) -> str:
    return f"{run_key}:{node_id}"


def render_template(text: str, event: InboundEvent, contact: Optional[Contact]) -> str:
    """Substitute ``{{event.x}}`` / ``{{contact.x}}`` references in *text*.

    Unknown references render as an empty string.
    """
    context: dict[str, Any] = {
        "event": event.model_dump(),
        "contact": contact.model_dump() if contact is not None else {},
    }

    def _substitute(match: re.Match) -> str:  # type: ignore[type-arg]
        val: Any = context
        for part in match.group(1).strip().split("."):
            val = val.get(part) if isinstance(val, dict) else None
            if val is None:
                return ""
        return str(val)

    return _TEMPLATE_RE.sub(_substitute, text)


class ActionExecutor:
    """Executes message and tag nodes.

    Args:
        gateway:          MessagingGateway for outbound sends.
        contact_store:    ContactStore with compare-and-set tag updates.
        cas_max_attempts: fresh-read attempts per tag write before giving up.
    """

    def __init__(
        self,
        gateway: MessagingGateway,
        contact_store: ContactStore,
        cas_max_attempts: int = 5,
    ) -> None:
        self._gateway = gateway
        self._contacts = contact_store
        self._cas_max_attempts = cas_max_attempts

    async def execute(
        self,
        node: WorkflowNode,
        run_key: RunKey,
        event: InboundEvent,
        contact: Optional[Contact] = None,
    ) -> ActionResult:
        if node.kind == NodeKind.MESSAGE and isinstance(node.config, MessageNodeConfig):
            return await self._send_message(node, node.config, run_key, event, contact)
        if node.kind == NodeKind.TAG and isinstance(node.config, TagNodeConfig):
            return await self._apply_tag(node, node.config, event)
        raise FatalActionError(
            f"Node '{node.id}' ({node.kind.value}) is not an action node.",
            node_id=node.id,
        )

    # ── message ──────────────────────────────────────────────────────────────

    async def _send_message(
        self,
        node: WorkflowNode,
        config: MessageNodeConfig,
        run_key: RunKey,
        event: InboundEvent,
        contact: Optional[Contact],
    ) -> ActionResult:
        if config.message_type not in SUPPORTED_MESSAGE_TYPES:
            raise FatalActionError(
                f"Node '{node.id}': unsupported message type {config.message_type!r}",
                node_id=node.id,
            )

        message = OutboundMessage(
            tenant_id=event.tenant_id,
            contact_whatsapp_id=event.contact_whatsapp_id,
            message_type=config.message_type,
            body=render_template(config.text, event, contact),
            idempotency_key=idempotency_key(run_key, node.id),
        )
        try:
            receipt = await self._gateway.send(message)
        except GatewayUnavailable as exc:
            raise RetryableActionError(str(exc), node_id=node.id) from exc
        except GatewayRejected as exc:
            raise FatalActionError(str(exc), node_id=node.id) from exc

        logger.info(
            "Sent %s message node=%s to=%s key=%s duplicate=%s",
            message.message_type, node.id, message.contact_whatsapp_id,
            message.idempotency_key, receipt.duplicate,
        )
        return ActionResult(
            node_id=node.id,
            delivered=True,
            detail="duplicate" if receipt.duplicate else receipt.message_id,
        )

    # ── tag ──────────────────────────────────────────────────────────────────

    async def _apply_tag(
        self,
        node: WorkflowNode,
        config: TagNodeConfig,
        event: InboundEvent,
    ) -> ActionResult:
        if not config.tag_name.strip():
            raise FatalActionError(f"Node '{node.id}': empty tag name", node_id=node.id)

        tenant_id, whatsapp_id = event.tenant_id, event.contact_whatsapp_id
        for attempt in range(1, self._cas_max_attempts + 1):
            try:
                contact = await self._contacts.get_contact(tenant_id, whatsapp_id)
                tags = list(contact.tags)
                if config.action == TagAction.ADD:
                    if config.tag_name in tags:
                        return ActionResult(node_id=node.id, delivered=True, detail="unchanged")
                    tags.append(config.tag_name)
                else:
                    if config.tag_name not in tags:
                        return ActionResult(node_id=node.id, delivered=True, detail="unchanged")
                    tags.remove(config.tag_name)

                await self._contacts.update_contact_tags(
                    tenant_id, whatsapp_id, contact.version, tags
                )
            except VersionConflict as exc:
                logger.debug(
                    "Tag CAS conflict node=%s contact=%s attempt=%d: %s",
                    node.id, whatsapp_id, attempt, exc,
                )
                continue
            except StoreUnavailable as exc:
                raise RetryableActionError(str(exc), node_id=node.id) from exc

            logger.info(
                "Tag %s %r on contact=%s node=%s",
                config.action.value, config.tag_name, whatsapp_id, node.id,
            )
            return ActionResult(node_id=node.id, delivered=True, detail=config.action.value)

        raise RetryableActionError(
            f"Node '{node.id}': tag update lost {self._cas_max_attempts} "
            f"compare-and-set races on contact {whatsapp_id}",
            node_id=node.id,
        )
