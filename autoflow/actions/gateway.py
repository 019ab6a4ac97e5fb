"""Messaging gateway adapters.

The engine only needs ``async send(OutboundMessage) -> DeliveryReceipt``.
Every send carries an idempotency key; the gateway is expected to accept a
repeated key without delivering twice.

``HttpMessagingGateway`` talks to the WhatsApp gateway service over HTTP.
``InMemoryGateway`` records deliveries locally and is what the CLI simulator
uses.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Optional, Protocol, runtime_checkable

import httpx

from autoflow.exceptions import GatewayRejected, GatewayUnavailable
from autoflow.types import DeliveryReceipt, OutboundMessage

logger = logging.getLogger(__name__)

# Status codes the gateway may answer differently on a later attempt
_RETRYABLE_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})


@runtime_checkable
class MessagingGateway(Protocol):
    async def send(self, message: OutboundMessage) -> DeliveryReceipt:
        ...


class HttpMessagingGateway:
    """POSTs outbound messages to ``{base_url}/messages``.

    Raises GatewayUnavailable for timeouts, transport errors, 408/425/429 and
    5xx, and GatewayRejected for any other non-2xx status.  A 409 means the
    gateway already accepted this idempotency key and is returned as a
    duplicate receipt.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
        )

    async def send(self, message: OutboundMessage) -> DeliveryReceipt:
        payload = {
            "tenant_id": message.tenant_id,
            "to": message.contact_whatsapp_id,
            "type": message.message_type,
            "body": message.body,
        }
        try:
            response = await self._client.post(
                "/messages",
                json=payload,
                headers={"Idempotency-Key": message.idempotency_key},
            )
        except httpx.TimeoutException as exc:
            raise GatewayUnavailable(f"Gateway timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise GatewayUnavailable(f"Gateway unreachable: {exc}") from exc

        if response.status_code == 409:
            logger.info("Gateway already accepted key=%s", message.idempotency_key)
            return DeliveryReceipt(idempotency_key=message.idempotency_key, duplicate=True)
        if response.status_code in _RETRYABLE_STATUS:
            raise GatewayUnavailable(
                f"Gateway returned {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise GatewayRejected(
                f"Gateway rejected message: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )

        data: dict = {}
        try:
            data = response.json()
        except ValueError:
            pass
        return DeliveryReceipt(
            idempotency_key=message.idempotency_key,
            message_id=str(data.get("message_id", "")),
            duplicate=bool(data.get("duplicate", False)),
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpMessagingGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class InMemoryGateway:
    """Records deliveries and de-duplicates on idempotency key.

    ``failures`` is a queue of exceptions raised by successive ``send`` calls
    before they reach the delivery log; ``delay`` stalls every call.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.failures: list[Exception] = []
        self.delivered: list[OutboundMessage] = []
        self.attempts = 0
        self._by_key: dict[str, DeliveryReceipt] = {}

    async def send(self, message: OutboundMessage) -> DeliveryReceipt:
        self.attempts += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)

        existing = self._by_key.get(message.idempotency_key)
        if existing is not None:
            return existing.model_copy(update={"duplicate": True})

        receipt = DeliveryReceipt(
            idempotency_key=message.idempotency_key,
            message_id=f"wamid.{uuid.uuid4().hex[:16]}",
        )
        self._by_key[message.idempotency_key] = receipt
        self.delivered.append(message)
        return receipt

    def bodies(self) -> list[str]:
        return [m.body for m in self.delivered]
