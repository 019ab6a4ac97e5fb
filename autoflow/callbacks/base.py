"""Base callback protocol for run lifecycle hooks.

The coordinator calls every registered callback as ``cb(event, data)`` at key
points of a run.  Subclass this protocol to observe or instrument runs
without modifying core logic; ``__call__`` dispatches ``event`` to the
matching ``on_<event>`` method.

Usage:
    class MyCallback(RunCallback):
        async def on_run_failed(self, data, **kw):
            page_oncall(data["run_key"], data["error"])

    coordinator = ExecutionCoordinator(..., callbacks=[MyCallback()])
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class RunCallback(Protocol):
    """Protocol defining hooks for run lifecycle events.

    All methods are optional. ``data`` is the same dict the coordinator
    publishes on the event bus.
    """

    async def __call__(self, event: str, data: dict) -> None:
        handler = getattr(self, f"on_{event}", None)
        if handler is not None:
            await handler(data)

    async def on_run_started(self, data: dict, **kwargs: Any) -> None:
        """Called after a run is claimed and moved to RUNNING (or reopened for replay)."""
        ...

    async def on_run_completed(self, data: dict, **kwargs: Any) -> None:
        ...

    async def on_run_failed(self, data: dict, **kwargs: Any) -> None:
        """Called once a run settles as FAILED. ``data['failure_reason']`` is set."""
        ...

    async def on_run_skipped(self, data: dict, **kwargs: Any) -> None:
        """Called when a duplicate delivery loses the ledger claim."""
        ...
