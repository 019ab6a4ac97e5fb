"""Tests for the HTTP messaging gateway (respx-mocked) and InMemoryGateway."""

import json

import httpx
import pytest
import pytest_asyncio
import respx

from autoflow.actions.gateway import HttpMessagingGateway, InMemoryGateway, MessagingGateway
from autoflow.exceptions import GatewayRejected, GatewayUnavailable
from autoflow.types import OutboundMessage

BASE = "http://gateway.test"


def _message(key="wf:v1:+1:evt:m1"):
    return OutboundMessage(
        tenant_id="t1",
        contact_whatsapp_id="+15550001111",
        message_type="text",
        body="hello",
        idempotency_key=key,
    )


@pytest_asyncio.fixture
async def gateway():
    gw = HttpMessagingGateway(BASE, token="secret", timeout_seconds=1.0)
    yield gw
    await gw.close()


@pytest.mark.asyncio
@respx.mock
async def test_send_posts_payload_with_idempotency_header(gateway):
    route = respx.post(f"{BASE}/messages").mock(
        return_value=httpx.Response(200, json={"message_id": "wamid.1"})
    )
    receipt = await gateway.send(_message())

    assert receipt.message_id == "wamid.1"
    assert receipt.duplicate is False
    request = route.calls.last.request
    assert request.headers["Idempotency-Key"] == "wf:v1:+1:evt:m1"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body == {"tenant_id": "t1", "to": "+15550001111", "type": "text", "body": "hello"}


@pytest.mark.asyncio
@respx.mock
async def test_409_is_duplicate_receipt(gateway):
    respx.post(f"{BASE}/messages").mock(return_value=httpx.Response(409))
    receipt = await gateway.send(_message())
    assert receipt.duplicate is True


@pytest.mark.asyncio
@respx.mock
async def test_duplicate_flag_from_body(gateway):
    respx.post(f"{BASE}/messages").mock(
        return_value=httpx.Response(200, json={"message_id": "wamid.1", "duplicate": True})
    )
    assert (await gateway.send(_message())).duplicate is True


@pytest.mark.asyncio
@respx.mock
async def test_non_json_success_body(gateway):
    respx.post(f"{BASE}/messages").mock(return_value=httpx.Response(202, text="accepted"))
    receipt = await gateway.send(_message())
    assert receipt.message_id == ""


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 500, 503])
@respx.mock
async def test_retryable_statuses(gateway, status):
    respx.post(f"{BASE}/messages").mock(return_value=httpx.Response(status))
    with pytest.raises(GatewayUnavailable) as exc_info:
        await gateway.send(_message())
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 422])
@respx.mock
async def test_rejected_statuses(gateway, status):
    respx.post(f"{BASE}/messages").mock(return_value=httpx.Response(status, text="bad"))
    with pytest.raises(GatewayRejected) as exc_info:
        await gateway.send(_message())
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
@respx.mock
async def test_timeout_is_unavailable(gateway):
    respx.post(f"{BASE}/messages").mock(side_effect=httpx.ReadTimeout("slow"))
    with pytest.raises(GatewayUnavailable, match="timed out"):
        await gateway.send(_message())


@pytest.mark.asyncio
@respx.mock
async def test_connect_error_is_unavailable(gateway):
    respx.post(f"{BASE}/messages").mock(side_effect=httpx.ConnectError("refused"))
    with pytest.raises(GatewayUnavailable, match="unreachable"):
        await gateway.send(_message())


# ── InMemoryGateway ──────────────────────────────────────────────────────────


def test_gateways_satisfy_protocol():
    assert isinstance(InMemoryGateway(), MessagingGateway)
    assert isinstance(HttpMessagingGateway(BASE), MessagingGateway)


@pytest.mark.asyncio
async def test_in_memory_dedupes_on_key():
    gw = InMemoryGateway()
    first = await gw.send(_message())
    second = await gw.send(_message())
    assert second.duplicate is True
    assert second.message_id == first.message_id
    assert gw.attempts == 2
    assert gw.bodies() == ["hello"]


@pytest.mark.asyncio
async def test_in_memory_failure_queue():
    gw = InMemoryGateway()
    gw.failures.append(GatewayUnavailable("flaky"))
    with pytest.raises(GatewayUnavailable):
        await gw.send(_message())
    await gw.send(_message())
    assert len(gw.delivered) == 1
