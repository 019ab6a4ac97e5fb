"""Tests for TriggerMatcher and trigger firing rules."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from autoflow.triggers.event_bus import EVENT_TRIGGER_MATCH_FAILED, EventBus
from autoflow.triggers.matcher import TriggerMatcher, trigger_fires
from autoflow.types import TriggerKind, TriggerNodeConfig
from autoflow.workflows.manager import WorkflowManager

from builders import TENANT, edge, event, message, trigger


@pytest_asyncio.fixture
async def manager(config, seed_versions):
    manager = WorkflowManager(config=config)
    for draft in seed_versions:
        await manager.publish_version(draft)
    return manager


# ── trigger_fires ────────────────────────────────────────────────────────────


def test_message_received_fires_on_anything():
    assert trigger_fires(TriggerNodeConfig(), "") is True
    assert trigger_fires(TriggerNodeConfig(), "whatever") is True


@pytest.mark.parametrize("text,expected", [
    ("I need HELP", True),
    ("helpful people", True),
    ("nothing to see", False),
    ("", False),
])
def test_keyword_substring_case_insensitive(text, expected):
    config = TriggerNodeConfig(trigger_type=TriggerKind.KEYWORD, keywords=["help"])
    assert trigger_fires(config, text) is expected


def test_keyword_trigger_without_keywords_never_fires():
    config = TriggerNodeConfig(trigger_type=TriggerKind.KEYWORD, keywords=[])
    assert trigger_fires(config, "anything") is False


# ── TriggerMatcher ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_welcome_matches_every_message(manager):
    matcher = TriggerMatcher(manager)
    result = await matcher.match(TENANT, event("good morning"))
    assert [m.workflow_id for m in result.matches] == ["wf-welcome"]
    assert result.matches[0].entry_node_ids == ["trigger_1"]
    assert result.failures == []


@pytest.mark.asyncio
async def test_keyword_matches_in_creation_order(manager):
    matcher = TriggerMatcher(manager)
    result = await matcher.match(TENANT, event("can I get help with the price?"))
    assert [m.workflow_id for m in result.matches] == ["wf-welcome", "wf-support", "wf-lead"]
    assert all(m.version == 1 for m in result.matches)


@pytest.mark.asyncio
async def test_inactive_workflow_not_matched(manager):
    await manager.deactivate(TENANT, "wf-welcome")
    result = await TriggerMatcher(manager).match(TENANT, event("urgent support please"))
    assert [m.workflow_id for m in result.matches] == ["wf-support"]


@pytest.mark.asyncio
async def test_other_tenant_sees_nothing(manager):
    result = await TriggerMatcher(manager).match("tenant-other", event("help", tenant_id="tenant-other"))
    assert result.matches == []


@pytest.mark.asyncio
async def test_only_firing_triggers_are_entry_nodes(config):
    manager = WorkflowManager(config=config)
    await manager.publish(
        TENANT, "Two doors",
        [trigger("any"), trigger("kw", keywords=["demo"]), message("m", "hi")],
        [edge("any", "m"), edge("kw", "m")],
    )
    matcher = TriggerMatcher(manager)
    assert (await matcher.match(TENANT, event("hello"))).matches[0].entry_node_ids == ["any"]
    assert (await matcher.match(TENANT, event("demo"))).matches[0].entry_node_ids == ["any", "kw"]


@pytest.mark.asyncio
async def test_slow_fetch_is_partial_failure(manager):
    """A kind whose fetch times out is reported; the other kind still matches."""

    class SlowKeywordSource:
        async def get_active_workflows(self, tenant_id, kind):
            if kind == TriggerKind.KEYWORD:
                await asyncio.sleep(1)
            return await manager.get_active_workflows(tenant_id, kind)

    bus = EventBus()
    seen = []
    bus.subscribe(EVENT_TRIGGER_MATCH_FAILED, seen.append)

    matcher = TriggerMatcher(SlowKeywordSource(), event_bus=bus, timeout_seconds=0.05)
    result = await matcher.match(TENANT, event("help me", event_id="evt-slow"))

    assert [m.workflow_id for m in result.matches] == ["wf-welcome"]
    assert [f.trigger_kind for f in result.failures] == [TriggerKind.KEYWORD]
    assert len(seen) == 1
    assert seen[0]["event_id"] == "evt-slow"
    assert seen[0]["failures"][0]["trigger_kind"] == "keyword"


@pytest.mark.asyncio
async def test_fetches_each_kind_once(manager):
    source = AsyncMock()
    source.get_active_workflows = AsyncMock(return_value=[])
    await TriggerMatcher(source).match(TENANT, event("x"))
    kinds = sorted(c.args[1].value for c in source.get_active_workflows.await_args_list)
    assert kinds == ["keyword", "message_received"]
