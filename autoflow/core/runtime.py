"""Component wiring shared by the API lifespan, the CLI and tests.

Everything is passed explicitly; there is no process-wide client.  With no
repository the runtime is fully in-memory (InMemoryStore contacts,
WorkflowManager-held workflows, in-memory ledger).
"""

from typing import Any, Optional

from autoflow.actions.executor import ActionExecutor
from autoflow.actions.gateway import InMemoryGateway
from autoflow.callbacks.logging import LoggingCallback
from autoflow.config import AutoflowConfig
from autoflow.config import config as default_config
from autoflow.core.coordinator import ExecutionCoordinator
from autoflow.core.ledger import RunLedger
from autoflow.db.memory import InMemoryStore
from autoflow.triggers.event_bus import EventBus
from autoflow.triggers.matcher import TriggerMatcher
from autoflow.workflows.conditions import ConditionEvaluator
from autoflow.workflows.manager import WorkflowManager


class Runtime:
    """Holder for one fully wired engine."""

    def __init__(
        self,
        config: AutoflowConfig,
        workflow_manager: WorkflowManager,
        ledger: RunLedger,
        coordinator: ExecutionCoordinator,
        gateway: Any,
        contacts: Any,
        event_bus: EventBus,
    ) -> None:
        self.config = config
        self.workflow_manager = workflow_manager
        self.ledger = ledger
        self.coordinator = coordinator
        self.gateway = gateway
        self.contacts = contacts
        self.event_bus = event_bus

    def __repr__(self) -> str:
        return f"Runtime(gateway={type(self.gateway).__name__}, contacts={type(self.contacts).__name__})"


def build_runtime(
    cfg: Optional[AutoflowConfig] = None,
    repository: Any = None,
    gateway: Any = None,
    contact_store: Any = None,
    claim_guard: Any = None,
    event_bus: Optional[EventBus] = None,
    callbacks: Optional[list] = None,
) -> Runtime:
    """Wire matcher, evaluator, executor, ledger and coordinator.

    Args:
        cfg:           AutoflowConfig; defaults to the process config.
        repository:    SQL Repository. Backs workflows, contacts and the ledger
                       when given.
        gateway:       MessagingGateway; an InMemoryGateway when omitted.
        contact_store: ContactStore; the repository, else an InMemoryStore.
        claim_guard:   Optional RedisClaimGuard in front of the ledger.
        event_bus:     EventBus for lifecycle events; a fresh one when omitted.
        callbacks:     Coordinator callbacks; ``[LoggingCallback()]`` when omitted.
    """
    cfg = cfg or default_config
    event_bus = event_bus or EventBus()
    gateway = gateway if gateway is not None else InMemoryGateway()
    contacts = contact_store or repository or InMemoryStore()

    workflow_manager = WorkflowManager(repository=repository, config=cfg)
    matcher = TriggerMatcher(
        workflow_manager,
        event_bus=event_bus,
        timeout_seconds=cfg.trigger_match_timeout_seconds,
    )
    executor = ActionExecutor(gateway, contacts, cas_max_attempts=cfg.tag_cas_max_attempts)
    ledger = RunLedger(
        repository=repository,
        claim_guard=claim_guard,
        retention_seconds=cfg.run_retention_seconds,
    )
    coordinator = ExecutionCoordinator(
        workflow_manager=workflow_manager,
        matcher=matcher,
        evaluator=ConditionEvaluator(),
        executor=executor,
        ledger=ledger,
        contact_store=contacts,
        config=cfg,
        event_bus=event_bus,
        callbacks=[LoggingCallback()] if callbacks is None else callbacks,
    )
    return Runtime(cfg, workflow_manager, ledger, coordinator, gateway, contacts, event_bus)
