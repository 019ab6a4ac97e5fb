"""ExecutionCoordinator: drives one run per (workflow version, contact, event).

Lifecycle of a run:

    claim (ledger) ──► PENDING ──► RUNNING ──► COMPLETED | FAILED

Walk rules while RUNNING:
  - a node runs once every edge into it from the active part of the graph has
    settled and at least one of those edges was taken.  Edges settle untaken
    when their source was a condition that chose another arm, a branch that
    aborted, or a node that never ran.  Nodes therefore run in topological
    order and a join node runs once, after all of its parents.
  - trigger nodes fan out: every outgoing edge is taken and the branches run
    concurrently.
  - condition nodes are first-match-wins over their outgoing arms in declared
    order.  No passing arm is a silent dead end.
  - message / tag nodes go through the ActionExecutor.  RetryableActionError
    retries that single node with backoff; other branches are untouched.
  - deactivation is checked at every node boundary.

Failure rules:
  - FatalActionError / UnsupportedPredicate abort only the branch they occur
    on.  The run still COMPLETES if another branch reached a terminal node or
    a dead end, and FAILS if no branch survived.
  - RetriesExhausted, WorkflowDeactivated and the run timeout fail the whole
    run and cancel sibling branches.

Replay of a FAILED run re-walks the graph from the recorded entry nodes.
Nodes already DELIVERED in an earlier attempt are recorded as SKIPPED and not
re-executed, so no outbound message is sent twice for the same run.
"""

import asyncio
import inspect
import logging
from collections import deque
from typing import Optional, Union

from autoflow.actions.executor import ActionExecutor
from autoflow.config import AutoflowConfig
from autoflow.config import config as default_config
from autoflow.core.ledger import RunLedger
from autoflow.core.retry import policy_from_config, run_with_retry
from autoflow.db.store import ContactStore
from autoflow.exceptions import (
    FatalActionError,
    RetriesExhausted,
    RetryableActionError,
    RunNotFound,
    RunStateError,
    RunTimeout,
    StoreUnavailable,
    UnsupportedPredicate,
    WorkflowDeactivated,
    WorkflowNotFound,
    WorkflowVersionNotFoundError,
)
from autoflow.triggers.event_bus import (
    EVENT_RUN_COMPLETED,
    EVENT_RUN_FAILED,
    EVENT_RUN_SKIPPED,
    EVENT_RUN_STARTED,
    EventBus,
)
from autoflow.triggers.matcher import TriggerMatcher
from autoflow.types import (
    ClaimResult,
    Contact,
    EventOutcome,
    FailureReason,
    InboundEvent,
    NodeKind,
    NodeOutcome,
    RetryPolicy,
    RunKey,
    RunRecord,
    RunStatus,
    TriggerMatch,
    WorkflowEdge,
)
from autoflow.workflows.conditions import ConditionEvaluator
from autoflow.workflows.dag import reachable_from
from autoflow.workflows.graph import CompiledGraph
from autoflow.workflows.manager import WorkflowManager

logger = logging.getLogger(__name__)


class _RunState:
    """Mutable bookkeeping for one walk of one run."""

    def __init__(
        self,
        graph: CompiledGraph,
        run_key: RunKey,
        event: InboundEvent,
        policy: RetryPolicy,
        delivered: set[str],
    ) -> None:
        self.graph = graph
        self.run_key = run_key
        self.event = event
        self.contact: Optional[Contact] = None
        self.policy = policy
        self.delivered = delivered          # node ids delivered by an earlier attempt
        self.started: set[str] = set()      # node ids already entered on this walk
        self.pending: dict[str, int] = {}   # unsettled incoming edges per live node
        self.activated: set[str] = set()    # live nodes with at least one taken incoming edge
        self.terminals = 0                  # branches that ended cleanly
        self.branch_failures: list[tuple[FailureReason, str]] = []


class ExecutionCoordinator:
    """Matches inbound events to workflows and executes the resulting runs.

    Args:
        workflow_manager: WorkflowManager (``load_version``, ``is_active``).
        matcher:          TriggerMatcher.
        evaluator:        ConditionEvaluator.
        executor:         ActionExecutor.
        ledger:           RunLedger.
        contact_store:    ContactStore, read once per run for the condition snapshot.
        config:           AutoflowConfig. Defaults to the process config.
        event_bus:        Optional EventBus for run lifecycle events.
        callbacks:        Plain async callables ``async def cb(event, data)``.
    """

    def __init__(
        self,
        workflow_manager: WorkflowManager,
        matcher: TriggerMatcher,
        evaluator: ConditionEvaluator,
        executor: ActionExecutor,
        ledger: RunLedger,
        contact_store: ContactStore,
        config: Optional[AutoflowConfig] = None,
        event_bus: Optional[EventBus] = None,
        callbacks: Optional[list] = None,
    ) -> None:
        self.workflow_manager = workflow_manager
        self.matcher = matcher
        self.evaluator = evaluator
        self.executor = executor
        self.ledger = ledger
        self.contact_store = contact_store
        self.config = config or default_config
        self.callbacks = callbacks or []
        self._event_bus = event_bus

    # ── Entry points ──────────────────────────────────────────────────────────

    async def handle_event(self, event: InboundEvent) -> list[RunRecord]:
        """Match *event* and execute every matched workflow concurrently.

        Returns the settled record of each run this call executed.  Matches
        whose run key was already claimed are skipped and not returned.
        """
        outcome = await self.dispatch(event)
        return outcome.records

    async def dispatch(self, event: InboundEvent) -> EventOutcome:
        """Like ``handle_event`` but also reports what kept runs from starting.

        A run whose claim or start raised does not take its siblings down; the
        error is logged and listed in ``run_errors``.  Trigger match timeouts
        are listed in ``match_failures``.
        """
        result = await self.matcher.match(event.tenant_id, event)
        outcome = EventOutcome(event_id=event.event_id, match_failures=result.failures)
        if not result.matches:
            logger.info(
                f"[Coordinator] No workflow matched tenant={event.tenant_id} "
                f"event={event.event_id}"
            )
            return outcome

        results = await asyncio.gather(
            *[self.execute(m, event) for m in result.matches], return_exceptions=True
        )
        for match, res in zip(result.matches, results):
            if isinstance(res, BaseException):
                if not isinstance(res, Exception):
                    raise res
                logger.error(
                    f"[Coordinator] Run of {match.workflow_id} v{match.version} "
                    f"for event={event.event_id} did not start: {res}"
                )
                outcome.run_errors.append(f"{match.workflow_id}: {res}")
            elif res is not None:
                outcome.records.append(res)
        return outcome

    async def execute(self, match: TriggerMatch, event: InboundEvent) -> Optional[RunRecord]:
        """Claim and run one matched workflow. Returns None if the claim was lost."""
        run_key = RunKey(
            workflow_id=match.workflow_id,
            workflow_version=match.version,
            contact_id=event.contact_whatsapp_id,
            event_id=event.event_id,
        )
        claim = await self.ledger.claim(
            run_key, event.tenant_id, event=event, entry_node_ids=match.entry_node_ids
        )
        if claim == ClaimResult.ALREADY_EXISTS:
            logger.info(f"[Coordinator] Run {run_key} already claimed, skipping")
            data = {"run_key": str(run_key), "tenant_id": event.tenant_id}
            await self._fire_callbacks("run_skipped", data)
            await self._emit(EVENT_RUN_SKIPPED, data)
            return None

        # A claimed run always reaches a terminal status from here on.
        try:
            await self.ledger.start(run_key)
            graph = await self.workflow_manager.load_version(match.workflow_id, match.version)
        except (WorkflowNotFound, WorkflowVersionNotFoundError) as exc:
            return await self._settle(
                run_key, event.tenant_id, RunStatus.FAILED, FailureReason.GRAPH_NOT_FOUND, str(exc)
            )
        except StoreUnavailable as exc:
            logger.error(f"[Coordinator] Run {run_key} could not start: {exc}")
            return await self._settle(
                run_key, event.tenant_id, RunStatus.FAILED, FailureReason.STORE_UNAVAILABLE, str(exc)
            )
        return await self._run(graph, run_key, event, match.entry_node_ids, delivered=set())

    async def replay(self, run_key: Union[RunKey, str]) -> RunRecord:
        """Manually re-run a FAILED run under the same run key.

        Raises:
            RunNotFound:   no ledger entry for *run_key*.
            RunStateError: the run is not FAILED, or carries no event to replay.
        """
        if isinstance(run_key, str):
            run_key = RunKey.parse(run_key)
        record = await self.ledger.get(run_key)
        if record is None:
            raise RunNotFound(f"Run {run_key} not found", run_key=str(run_key))
        if record.status != RunStatus.FAILED:
            raise RunStateError(
                f"Only failed runs can be replayed; {record.key} is {record.status.value}",
                run_key=record.key,
            )
        if record.event is None:
            raise RunStateError(
                f"Run {record.key} has no recorded event to replay", run_key=record.key
            )

        graph = await self.workflow_manager.load_version(
            run_key.workflow_id, run_key.workflow_version
        )
        delivered = record.delivered_node_ids()
        await self.ledger.reopen(run_key)
        logger.info(
            f"[Coordinator] Replaying {record.key} "
            f"(skipping {len(delivered)} delivered node(s))"
        )
        return await self._run(
            graph, run_key, record.event, record.entry_node_ids, delivered=delivered
        )

    # ── Run driver ────────────────────────────────────────────────────────────

    async def _run(
        self,
        graph: CompiledGraph,
        run_key: RunKey,
        event: InboundEvent,
        entry_node_ids: list[str],
        delivered: set[str],
    ) -> RunRecord:
        tenant_id = event.tenant_id
        data = {"run_key": str(run_key), "tenant_id": tenant_id, "workflow": graph.version.name}
        await self._fire_callbacks("run_started", data)
        await self._emit(EVENT_RUN_STARTED, data)

        state = _RunState(
            graph, run_key, event,
            graph.version.retry_policy or policy_from_config(self.config),
            delivered,
        )
        try:
            await self._drive(state, entry_node_ids)

        except RunTimeout as exc:
            return await self._settle(
                run_key, tenant_id, RunStatus.FAILED, FailureReason.RUN_TIMEOUT, str(exc)
            )
        except WorkflowDeactivated as exc:
            return await self._settle(
                run_key, tenant_id, RunStatus.FAILED, FailureReason.WORKFLOW_DEACTIVATED, str(exc)
            )
        except RetriesExhausted as exc:
            return await self._settle(
                run_key, tenant_id, RunStatus.FAILED, FailureReason.RETRIES_EXHAUSTED, str(exc)
            )
        except StoreUnavailable as exc:
            return await self._settle(
                run_key, tenant_id, RunStatus.FAILED, FailureReason.STORE_UNAVAILABLE, str(exc)
            )
        except Exception as exc:
            logger.error(f"[Coordinator] Run {run_key} crashed: {exc}", exc_info=True)
            return await self._settle(
                run_key, tenant_id, RunStatus.FAILED, FailureReason.NODE_FAILED, str(exc)
            )

        first_error = state.branch_failures[0][1] if state.branch_failures else None
        if state.terminals or not state.branch_failures:
            return await self._settle(
                run_key, tenant_id, RunStatus.COMPLETED, error=first_error
            )
        return await self._settle(
            run_key, tenant_id, RunStatus.FAILED, state.branch_failures[0][0], first_error
        )

    async def _drive(self, state: _RunState, entry_node_ids: list[str]) -> None:
        """Walk the graph under the whole-run budget, contact read included."""
        timeout = self.config.run_timeout_seconds
        try:
            await asyncio.wait_for(self._walk(state, entry_node_ids), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise RunTimeout(
                f"Run exceeded its {timeout}s budget",
                run_key=str(state.run_key),
                timeout_seconds=timeout,
            ) from exc

    async def _walk(self, state: _RunState, entry_node_ids: list[str]) -> None:
        event = state.event
        state.contact = await self.contact_store.get_contact(
            event.tenant_id, event.contact_whatsapp_id
        )

        graph = state.graph
        entries = [nid for nid in entry_node_ids if nid in graph.nodes]
        if not entries:
            entries = [n.id for n in graph.trigger_nodes()]
        live = reachable_from(entries, graph.version.edges)
        state.pending = {
            nid: sum(1 for e in graph.incoming(nid) if e.source_node_id in live)
            for nid in live
        }
        await self._fan_out([self._visit(state, nid) for nid in entries])

    async def _visit(self, state: _RunState, node_id: str) -> None:
        """Run *node_id*, then every child it makes ready."""
        if node_id in state.started:
            return
        state.started.add(node_id)

        graph = state.graph
        if not await self.workflow_manager.is_active(graph.workflow_id, graph.number):
            raise WorkflowDeactivated(
                f"Workflow {graph.workflow_id} was deactivated before node '{node_id}'",
                run_key=str(state.run_key),
            )

        node = graph.node(node_id)
        edges = graph.outgoing(node_id)
        # None: this path stopped here (dead end or aborted branch)
        taken: Optional[list[WorkflowEdge]] = None

        if node.kind == NodeKind.TRIGGER:
            await self.ledger.record_visit(state.run_key, node_id, NodeOutcome.PASSED)
            taken = edges

        elif node.kind == NodeKind.CONDITION:
            try:
                arm = self.evaluator.select_arm(node, edges, state.event, state.contact)
            except UnsupportedPredicate as exc:
                await self._branch_failed(state, node_id, FailureReason.UNSUPPORTED_PREDICATE, exc)
            else:
                if arm is None:
                    await self.ledger.record_visit(state.run_key, node_id, NodeOutcome.NO_MATCH)
                    state.terminals += 1
                else:
                    await self.ledger.record_visit(state.run_key, node_id, NodeOutcome.PASSED)
                    taken = [arm]

        elif node_id in state.delivered:
            await self.ledger.record_visit(state.run_key, node_id, NodeOutcome.SKIPPED)
            taken = edges

        else:
            try:
                attempts = await self._execute_action(state, node)
            except FatalActionError as exc:
                await self._branch_failed(state, node_id, FailureReason.NODE_FAILED, exc)
            except RetriesExhausted as exc:
                await self.ledger.record_visit(
                    state.run_key, node_id, NodeOutcome.FAILED,
                    attempts=exc.attempts, error=str(exc),
                )
                raise
            else:
                await self.ledger.record_visit(
                    state.run_key, node_id, NodeOutcome.DELIVERED, attempts=attempts
                )
                taken = edges

        if taken is not None and not edges:
            state.terminals += 1
        ready = self._settle_edges(state, edges, {e.id for e in taken or []})
        if ready:
            await self._fan_out([self._visit(state, nid) for nid in ready])

    @staticmethod
    def _settle_edges(state: _RunState, edges: list[WorkflowEdge], taken_ids: set[str]) -> list[str]:
        """Settle *edges* and return the children that are now ready, in topological order.

        A child is ready once all of its live incoming edges have settled and
        at least one was taken.  A child whose live edges all settled untaken
        never runs, and its own outgoing edges settle untaken in turn.
        """
        graph = state.graph
        ready: list[str] = []
        queue = deque((e, e.id in taken_ids) for e in edges)
        while queue:
            edge, was_taken = queue.popleft()
            target = edge.target_node_id
            if was_taken:
                state.activated.add(target)
            state.pending[target] -= 1
            if state.pending[target]:
                continue
            if target in state.activated:
                ready.append(target)
            else:
                queue.extend((e, False) for e in graph.outgoing(target))
        return sorted(ready, key=graph.position.__getitem__)

    async def _execute_action(self, state: _RunState, node) -> int:
        async def _on_retry(attempt: int, exc: RetryableActionError) -> None:
            logger.warning(
                f"[Coordinator] Node '{node.id}' attempt {attempt} failed, retrying: {exc}"
            )
            await self.ledger.record_visit(
                state.run_key, node.id, NodeOutcome.RETRYING, attempts=attempt, error=str(exc)
            )

        _, attempts = await run_with_retry(
            lambda: self.executor.execute(node, state.run_key, state.event, state.contact),
            state.policy,
            node_id=node.id,
            on_retry=_on_retry,
        )
        return attempts

    async def _branch_failed(
        self, state: _RunState, node_id: str, reason: FailureReason, exc: Exception
    ) -> None:
        logger.warning(f"[Coordinator] Branch aborted at '{node_id}' in {state.run_key}: {exc}")
        state.branch_failures.append((reason, str(exc)))
        await self.ledger.record_visit(state.run_key, node_id, NodeOutcome.FAILED, error=str(exc))

    @staticmethod
    async def _fan_out(coros: list) -> None:
        """Await branches concurrently. The first exception cancels the rest."""
        if len(coros) == 1:
            await coros[0]
            return
        tasks = [asyncio.ensure_future(c) for c in coros]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            pending = [t for t in tasks if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        errors = [t.exception() for t in tasks if not t.cancelled()]
        errors = [e for e in errors if e is not None]
        if errors:
            raise errors[0]

    # ── Settlement ────────────────────────────────────────────────────────────

    async def _settle(
        self,
        run_key: RunKey,
        tenant_id: str,
        status: RunStatus,
        reason: Optional[FailureReason] = None,
        error: Optional[str] = None,
    ) -> RunRecord:
        record = await self.ledger.complete(run_key, status, failure_reason=reason, error=error)
        data = {
            "run_key": record.key,
            "tenant_id": tenant_id,
            "status": record.status.value,
            "visited": list(record.visited_node_ids),
            "failure_reason": record.failure_reason.value if record.failure_reason else None,
            "error": record.last_error,
        }
        if status == RunStatus.COMPLETED:
            await self._fire_callbacks("run_completed", data)
            await self._emit(EVENT_RUN_COMPLETED, data)
        else:
            await self._fire_callbacks("run_failed", data)
            await self._emit(EVENT_RUN_FAILED, data)
        return record

    async def _emit(self, event: str, data: dict) -> None:
        if self._event_bus is not None:
            await self._event_bus.emit(event, data)

    async def _fire_callbacks(self, event: str, data: dict) -> None:
        """Invoke all registered callbacks for a lifecycle event."""
        for cb in self.callbacks:
            try:
                result = cb(event, data)
                if inspect.isawaitable(result):
                    await result
            except Exception as cb_exc:
                logger.warning(f"[Coordinator] Callback error on '{event}': {cb_exc}")
