"""TriggerMatcher: decides which workflows an inbound event activates.

Matching itself is pure and in-memory.  The only suspension is fetching the
tenant's active workflows from the store, once per trigger kind, and each
fetch is bounded by ``trigger_match_timeout_seconds``.  A fetch that times
out is a partial-match failure: it is logged, reported in
``MatchResult.failures`` and emitted on the event bus, and is never retried.
Workflows of the other trigger kinds still match.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from autoflow.db.store import WorkflowSource
from autoflow.triggers.event_bus import EVENT_TRIGGER_MATCH_FAILED, EventBus
from autoflow.types import (
    InboundEvent,
    MatchFailure,
    MatchResult,
    NodeKind,
    TriggerKind,
    TriggerMatch,
    TriggerNodeConfig,
    WorkflowVersion,
)

logger = logging.getLogger(__name__)


def trigger_fires(config: TriggerNodeConfig, text: str) -> bool:
    """True if a trigger node with *config* fires for message *text*.

    MESSAGE_RECEIVED fires on every message.  KEYWORD fires when any keyword
    is a case-insensitive substring of the text; an empty keyword list is a
    misconfiguration and fires on nothing.
    """
    if config.trigger_type == TriggerKind.MESSAGE_RECEIVED:
        return True
    if config.trigger_type == TriggerKind.KEYWORD:
        haystack = (text or "").lower()
        return any(kw and kw.lower() in haystack for kw in config.keywords)
    return False


class TriggerMatcher:
    """Selects candidate workflows for an inbound event.

    Args:
        workflow_source: anything with
            ``async get_active_workflows(tenant_id, trigger_kind)``
            (WorkflowManager or Repository).
        event_bus:       optional EventBus for ``trigger.match_failed``.
        timeout_seconds: bound on each per-kind fetch.
    """

    def __init__(
        self,
        workflow_source: WorkflowSource,
        event_bus: Optional[EventBus] = None,
        timeout_seconds: float = 2.0,
    ) -> None:
        self._source = workflow_source
        self._event_bus = event_bus
        self._timeout = timeout_seconds

    async def match(self, tenant_id: str, event: InboundEvent) -> MatchResult:
        kinds = list(TriggerKind)
        fetched = await asyncio.gather(*[self._fetch(tenant_id, kind) for kind in kinds])

        candidates: list[WorkflowVersion] = []
        failures: list[MatchFailure] = []
        seen: set[str] = set()
        for kind, versions in zip(kinds, fetched):
            if versions is None:
                failures.append(MatchFailure(
                    trigger_kind=kind,
                    reason=f"fetching {kind.value} workflows exceeded {self._timeout}s",
                ))
                continue
            for version in versions:
                if version.workflow_id not in seen:
                    seen.add(version.workflow_id)
                    candidates.append(version)

        # Creation order across kinds; sort is stable so store order breaks ties
        candidates.sort(key=lambda v: v.created_at)

        matches: list[TriggerMatch] = []
        for version in candidates:
            entry_ids = self.entry_nodes(version, event)
            if entry_ids:
                matches.append(TriggerMatch(
                    workflow_id=version.workflow_id,
                    version=version.version,
                    entry_node_ids=entry_ids,
                ))

        if failures:
            for failure in failures:
                logger.warning(
                    "Trigger match partial failure tenant=%s event=%s kind=%s: %s",
                    tenant_id, event.event_id, failure.trigger_kind.value, failure.reason,
                )
            if self._event_bus is not None:
                await self._event_bus.emit(EVENT_TRIGGER_MATCH_FAILED, {
                    "tenant_id": tenant_id,
                    "event_id": event.event_id,
                    "failures": [f.model_dump(mode="json") for f in failures],
                })

        logger.debug(
            "Matched %d/%d workflows for tenant=%s event=%s",
            len(matches), len(candidates), tenant_id, event.event_id,
        )
        return MatchResult(matches=matches, failures=failures)

    @staticmethod
    def entry_nodes(version: WorkflowVersion, event: InboundEvent) -> list[str]:
        """IDs of the trigger nodes of *version* that fire for *event*."""
        return [
            node.id for node in version.nodes
            if node.kind == NodeKind.TRIGGER
            and isinstance(node.config, TriggerNodeConfig)
            and trigger_fires(node.config, event.text)
        ]

    async def _fetch(self, tenant_id: str, kind: TriggerKind) -> Optional[list[WorkflowVersion]]:
        try:
            return await asyncio.wait_for(
                self._source.get_active_workflows(tenant_id, kind),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            return None
