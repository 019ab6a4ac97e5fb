"""autoflow triggers: inbound event matching and lifecycle event bus."""

from autoflow.triggers.event_bus import (
    EVENT_RUN_COMPLETED,
    EVENT_RUN_FAILED,
    EVENT_RUN_SKIPPED,
    EVENT_RUN_STARTED,
    EVENT_TRIGGER_MATCH_FAILED,
    EventBus,
)
from autoflow.triggers.matcher import TriggerMatcher, trigger_fires

__all__ = [
    "EventBus",
    "EVENT_RUN_STARTED",
    "EVENT_RUN_COMPLETED",
    "EVENT_RUN_FAILED",
    "EVENT_RUN_SKIPPED",
    "EVENT_TRIGGER_MATCH_FAILED",
    "TriggerMatcher",
    "trigger_fires",
]
