"""Tests for run lifecycle callbacks and the event bus."""

import json
import logging

import pytest

from autoflow.callbacks import LoggingCallback, RunCallback
from autoflow.triggers.event_bus import EventBus

DATA = {
    "run_key": "wf-1:v1:+1:evt-1",
    "tenant_id": "t1",
    "status": "failed",
    "visited": ["trigger_1"],
    "failure_reason": "run_timeout",
    "error": "Run exceeded its 5.0s budget",
}


def _lines(caplog):
    return [json.loads(r.getMessage()) for r in caplog.records if r.name == "autoflow.audit"]


@pytest.mark.asyncio
async def test_logging_callback_is_run_callback():
    assert isinstance(LoggingCallback(), RunCallback)


@pytest.mark.asyncio
async def test_run_failed_logged_at_error(caplog):
    caplog.set_level(logging.INFO, logger="autoflow.audit")
    await LoggingCallback()("run_failed", DATA)
    [line] = _lines(caplog)
    assert line["event"] == "run_failed"
    assert line["failure_reason"] == "run_timeout"
    assert line["ts"].endswith("Z")
    assert caplog.records[-1].levelno == logging.ERROR


@pytest.mark.asyncio
async def test_run_completed_logged_at_info(caplog):
    caplog.set_level(logging.INFO, logger="autoflow.audit")
    await LoggingCallback()("run_completed", {**DATA, "status": "completed", "error": None})
    [line] = _lines(caplog)
    assert line["event"] == "run_completed"
    assert line["visited"] == ["trigger_1"]
    assert caplog.records[-1].levelno == logging.INFO


@pytest.mark.asyncio
async def test_unknown_event_ignored(caplog):
    caplog.set_level(logging.INFO, logger="autoflow.audit")
    await LoggingCallback()("run_exploded", DATA)
    assert _lines(caplog) == []


@pytest.mark.asyncio
async def test_subclass_only_overrides_what_it_needs():
    seen = []

    class Recorder(RunCallback):
        async def on_run_skipped(self, data, **kwargs):
            seen.append(data["run_key"])

    recorder = Recorder()
    await recorder("run_skipped", DATA)
    await recorder("run_started", DATA)
    assert seen == [DATA["run_key"]]


@pytest.mark.asyncio
async def test_event_bus_sync_and_async_subscribers():
    bus = EventBus()
    got = []

    async def async_handler(data):
        got.append(("async", data))

    bus.subscribe("run.completed", got.append)
    bus.subscribe("run.completed", async_handler)
    await bus.emit("run.completed", 1)
    assert got == [1, ("async", 1)]


@pytest.mark.asyncio
async def test_event_bus_failing_subscriber_does_not_block_others():
    bus = EventBus()
    got = []

    def broken(data):
        raise RuntimeError("boom")

    bus.subscribe("run.failed", broken)
    bus.subscribe("run.failed", got.append)
    await bus.emit("run.failed", "x")
    assert got == ["x"]


@pytest.mark.asyncio
async def test_event_bus_unsubscribe():
    bus = EventBus()
    got = []
    bus.subscribe("run.started", got.append)
    bus.unsubscribe("run.started", got.append)
    bus.unsubscribe("run.started", got.append)
    await bus.emit("run.started", "x")
    assert got == []
