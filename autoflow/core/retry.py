"""Per-node retry with capped exponential backoff.

Only RetryableActionError is retried.  Anything else propagates on the
first attempt.  Each failed attempt is reported through ``on_retry`` so the
coordinator can record it in the run ledger before sleeping.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional

from autoflow.exceptions import RetriesExhausted, RetryableActionError
from autoflow.types import RetryPolicy


def policy_from_config(config: Any) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.node_retry_max_attempts,
        base_delay=config.node_retry_base_delay,
        max_delay=config.node_retry_max_delay,
        jitter=config.node_retry_jitter,
    )


def backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    """Seconds to wait after failed attempt number *attempt* (1-based)."""
    delay = min(policy.max_delay, policy.base_delay * policy.multiplier ** (attempt - 1))
    if policy.jitter:
        delay *= 1 + random.uniform(-policy.jitter, policy.jitter)
    return max(0.0, delay)


async def run_with_retry(
    call: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    node_id: str = "",
    on_retry: Optional[Callable[[int, RetryableActionError], Awaitable[None]]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> tuple[Any, int]:
    """Await ``call()`` until it succeeds or the policy's attempts run out.

    Returns:
        (result, attempts_used)

    Raises:
        RetriesExhausted: after ``policy.max_attempts`` retryable failures.
    """
    attempt = 1
    while True:
        try:
            return await call(), attempt
        except RetryableActionError as exc:
            if attempt >= max(1, policy.max_attempts):
                raise RetriesExhausted(
                    f"Node '{node_id}' failed {attempt} time(s): {exc}",
                    node_id=node_id,
                    attempts=attempt,
                ) from exc
            if on_retry is not None:
                await on_retry(attempt, exc)
            await sleep(backoff_delay(policy, attempt))
            attempt += 1
