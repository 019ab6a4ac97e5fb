"""Structured JSON logging callback for run lifecycle events."""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from autoflow.callbacks.base import RunCallback

logger = logging.getLogger("autoflow.audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class LoggingCallback(RunCallback):
    """Emits one self-contained JSON log line per run lifecycle event.

    Each line carries ``event`` and ``ts`` plus the fields relevant to the
    event.  INFO for normal events, ERROR for failed runs.  Logger name:
    ``autoflow.audit`` (configure in your logging setup).

    Instances are plain callables, so they can be passed straight to the
    coordinator:

        coordinator = ExecutionCoordinator(..., callbacks=[LoggingCallback()])
    """

    async def on_run_started(self, data: dict, **kwargs: Any) -> None:
        logger.info(json.dumps({
            "event": "run_started",
            "ts": _now(),
            "run_key": data.get("run_key", ""),
            "tenant_id": data.get("tenant_id", ""),
            "workflow": data.get("workflow", ""),
        }))

    async def on_run_completed(self, data: dict, **kwargs: Any) -> None:
        logger.info(json.dumps({
            "event": "run_completed",
            "ts": _now(),
            "run_key": data.get("run_key", ""),
            "tenant_id": data.get("tenant_id", ""),
            "visited": data.get("visited", []),
            "error": data.get("error"),
        }))

    async def on_run_failed(self, data: dict, **kwargs: Any) -> None:
        logger.error(json.dumps({
            "event": "run_failed",
            "ts": _now(),
            "run_key": data.get("run_key", ""),
            "tenant_id": data.get("tenant_id", ""),
            "failure_reason": data.get("failure_reason"),
            "error": str(data.get("error") or "")[:200],
            "visited": data.get("visited", []),
        }))

    async def on_run_skipped(self, data: dict, **kwargs: Any) -> None:
        logger.info(json.dumps({
            "event": "run_skipped",
            "ts": _now(),
            "run_key": data.get("run_key", ""),
            "tenant_id": data.get("tenant_id", ""),
        }))
