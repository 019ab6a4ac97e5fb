"""Tests for per-node retry with capped exponential backoff."""

from unittest.mock import AsyncMock

import pytest

from autoflow.core.retry import backoff_delay, policy_from_config, run_with_retry
from autoflow.exceptions import FatalActionError, RetriesExhausted, RetryableActionError
from autoflow.types import RetryPolicy


def _flaky(failures: int, result="ok"):
    """Callable that raises RetryableActionError *failures* times, then returns."""
    calls = {"n": 0}

    async def call():
        calls["n"] += 1
        if calls["n"] <= failures:
            raise RetryableActionError(f"transient #{calls['n']}", node_id="m1")
        return result

    return call, calls


def test_policy_from_config(config):
    policy = policy_from_config(config)
    assert policy.max_attempts == 3
    assert policy.base_delay == 0.0
    assert policy.jitter == 0.0


def test_backoff_doubles_and_caps():
    policy = RetryPolicy(base_delay=0.5, multiplier=2.0, max_delay=3.0, jitter=0.0)
    assert [backoff_delay(policy, n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 3.0]


def test_backoff_jitter_stays_in_band():
    policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=10.0, jitter=0.25)
    for _ in range(50):
        assert 0.75 <= backoff_delay(policy, 1) <= 1.25


@pytest.mark.asyncio
async def test_success_first_try():
    call, calls = _flaky(0)
    sleep = AsyncMock()
    result, attempts = await run_with_retry(call, RetryPolicy(), sleep=sleep)
    assert (result, attempts) == ("ok", 1)
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_recovers_after_transient_failures():
    call, calls = _flaky(2)
    sleep = AsyncMock()
    on_retry = AsyncMock()
    policy = RetryPolicy(max_attempts=3, base_delay=0.5, jitter=0.0)

    result, attempts = await run_with_retry(call, policy, node_id="m1", on_retry=on_retry, sleep=sleep)

    assert (result, attempts) == ("ok", 3)
    assert [c.args[0] for c in on_retry.await_args_list] == [1, 2]
    assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]


@pytest.mark.asyncio
async def test_exhausted_raises_with_attempt_count():
    call, calls = _flaky(10)
    with pytest.raises(RetriesExhausted, match="m1") as exc_info:
        await run_with_retry(call, RetryPolicy(max_attempts=3), node_id="m1", sleep=AsyncMock())
    assert exc_info.value.attempts == 3
    assert exc_info.value.node_id == "m1"
    assert isinstance(exc_info.value.__cause__, RetryableActionError)
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_fatal_not_retried():
    call = AsyncMock(side_effect=FatalActionError("bad config"))
    with pytest.raises(FatalActionError):
        await run_with_retry(call, RetryPolicy(max_attempts=5), sleep=AsyncMock())
    assert call.await_count == 1


@pytest.mark.asyncio
async def test_zero_attempts_still_tries_once():
    call, calls = _flaky(1)
    with pytest.raises(RetriesExhausted):
        await run_with_retry(call, RetryPolicy(max_attempts=0), sleep=AsyncMock())
    assert calls["n"] == 1
