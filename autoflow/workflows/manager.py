"""
WorkflowManager: publish, version and load workflow graphs.

Supports both in-memory operation (no repository, for tests and the CLI
simulator) and full persistence when a Repository is provided, matching the
pattern used by RunLedger.

Validation happens here, at publish time, and nowhere else.  Every
published version is compiled once and the CompiledGraph is cached, so
``load_version`` on the hot path is a dict lookup.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from autoflow.config import AutoflowConfig
from autoflow.exceptions import WorkflowNotFound, WorkflowVersionNotFoundError
from autoflow.types import (
    RetryPolicy,
    TriggerKind,
    WorkflowEdge,
    WorkflowNode,
    WorkflowVersion,
)

from .graph import CompiledGraph, compile_graph
from .validator import WorkflowValidator

logger = logging.getLogger(__name__)


class WorkflowManager:
    """
    Manages the lifecycle of WorkflowVersion objects.

    All methods are async for consistency with the rest of the framework even
    though in-memory operations are synchronous internally.

    Args:
        repository:  Optional Repository instance for persistence.
                     When None, all state is kept in-memory (useful for tests).
        validator:   WorkflowValidator instance.  A default instance is created
                     if not supplied.
        config:      AutoflowConfig instance.  A default instance is created if
                     not supplied.
    """

    def __init__(
        self,
        repository: Any = None,
        validator: Optional[WorkflowValidator] = None,
        config: Optional[AutoflowConfig] = None,
    ) -> None:
        self._repository = repository
        self._validator = validator or WorkflowValidator()
        self._config = config or AutoflowConfig()

        # workflow_id → ordered list of published versions (index = version - 1)
        self._versions: dict[str, list[WorkflowVersion]] = {}
        # (workflow_id, version) → compiled graph
        self._compiled: dict[tuple[str, int], CompiledGraph] = {}
        # workflow_id → active flag (applies to every version)
        self._active: dict[str, bool] = {}

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _compile(self, version: WorkflowVersion) -> CompiledGraph:
        key = (version.workflow_id, version.version)
        graph = self._compiled.get(key)
        if graph is None:
            graph = compile_graph(
                version, self._validator, max_nodes=self._config.max_workflow_nodes
            )
            self._compiled[key] = graph
        return graph

    def _remember(self, version: WorkflowVersion) -> None:
        history = self._versions.setdefault(version.workflow_id, [])
        if not history or history[-1].version < version.version:
            history.append(version)
        self._active.setdefault(version.workflow_id, version.is_active)

    async def _persist(self, method: str, *args: Any, **kwargs: Any) -> None:
        """Best-effort repository call; silently ignores NotImplementedError."""
        if self._repository is None:
            return
        fn = getattr(self._repository, method, None)
        if fn is None:
            return
        try:
            await fn(*args, **kwargs)
        except NotImplementedError:
            pass

    # ── Publish ───────────────────────────────────────────────────────────────

    async def publish(
        self,
        tenant_id: str,
        name: str,
        nodes: list[WorkflowNode],
        edges: list[WorkflowEdge],
        trigger_kind: TriggerKind = TriggerKind.MESSAGE_RECEIVED,
        description: str = "",
        workflow_id: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> WorkflowVersion:
        """
        Validate and publish a workflow graph.

        Without *workflow_id* a new workflow is created at version 1.  With
        an existing *workflow_id* the graph becomes the next version; earlier
        versions stay loadable so in-flight runs keep their snapshot.

        Raises:
            WorkflowValidationError: if the graph is structurally invalid.
            WorkflowNotFound: if *workflow_id* belongs to another tenant.
        """
        fields: dict[str, Any] = {
            "tenant_id": tenant_id,
            "name": name,
            "description": description,
            "trigger_kind": trigger_kind,
            "nodes": nodes,
            "edges": edges,
            "retry_policy": retry_policy,
        }
        if workflow_id is not None:
            fields["workflow_id"] = workflow_id
        return await self.publish_version(WorkflowVersion(**fields))

    async def publish_version(self, draft: WorkflowVersion) -> WorkflowVersion:
        """Publish a fully-built WorkflowVersion, assigning its version number."""
        now = datetime.now(tz=timezone.utc)
        updates: dict[str, Any] = {"published_at": now}

        try:
            latest = await self.get(draft.workflow_id, draft.tenant_id)
        except WorkflowNotFound:
            if draft.workflow_id in self._versions:
                raise
            latest = None

        if latest is None:
            updates["version"] = 1
        else:
            updates["version"] = latest.version + 1
            updates["created_at"] = latest.created_at
            updates["is_active"] = self._active.get(latest.workflow_id, latest.is_active)

        version = draft.model_copy(update=updates)
        self._compile(version)
        self._remember(version)
        await self._persist("save_workflow_version", version)

        logger.info(
            "Published workflow %s (%r) v%d for tenant %s: %d nodes, %d edges",
            version.workflow_id, version.name, version.version,
            version.tenant_id, len(version.nodes), len(version.edges),
        )
        return version

    # ── Read ──────────────────────────────────────────────────────────────────

    async def get(self, workflow_id: str, tenant_id: str) -> WorkflowVersion:
        """
        Latest published version of a workflow.

        Raises:
            WorkflowNotFound: if not found or tenant mismatch.
        """
        history = self._versions.get(workflow_id)
        latest = history[-1] if history else None
        if latest is None and self._repository is not None:
            try:
                latest = await self._repository.get_latest_workflow_version(workflow_id)
                if latest is not None:
                    self._remember(latest)
            except (NotImplementedError, AttributeError):
                pass

        if latest is None or latest.tenant_id != tenant_id:
            raise WorkflowNotFound(
                f"Workflow '{workflow_id}' not found.", workflow_id=workflow_id
            )
        return latest

    async def list_versions(self, workflow_id: str, tenant_id: str) -> list[WorkflowVersion]:
        await self.get(workflow_id, tenant_id)
        return list(self._versions.get(workflow_id, []))

    async def load_version(self, workflow_id: str, version: int) -> CompiledGraph:
        """
        Compiled graph of one exact version.

        Raises:
            WorkflowNotFound: if the workflow is unknown.
            WorkflowVersionNotFoundError: if the workflow exists but not this version.
        """
        graph = self._compiled.get((workflow_id, version))
        if graph is not None:
            return graph

        snapshot: Optional[WorkflowVersion] = None
        if self._repository is not None:
            try:
                snapshot = await self._repository.get_workflow_version(workflow_id, version)
            except (NotImplementedError, AttributeError):
                snapshot = None
        if snapshot is not None:
            self._remember(snapshot)
            return self._compile(snapshot)

        if workflow_id not in self._versions:
            raise WorkflowNotFound(
                f"Workflow '{workflow_id}' not found.", workflow_id=workflow_id
            )
        raise WorkflowVersionNotFoundError(
            f"Workflow '{workflow_id}' has no version {version}.",
            workflow_id=workflow_id,
            version=version,
        )

    async def get_active_workflows(
        self, tenant_id: str, trigger_kind: TriggerKind
    ) -> list[WorkflowVersion]:
        """Latest version of every active workflow of *trigger_kind*, oldest first."""
        if self._repository is not None:
            try:
                versions = await self._repository.get_active_workflows(tenant_id, trigger_kind)
                for version in versions:
                    self._remember(version)
                return versions
            except NotImplementedError:
                pass

        latest = [
            history[-1] for wf_id, history in self._versions.items()
            if history
            and history[-1].tenant_id == tenant_id
            and history[-1].trigger_kind == trigger_kind
            and self._active.get(wf_id, True)
        ]
        # dict order is insertion order, so ties on created_at keep publish order
        return sorted(latest, key=lambda v: v.created_at)

    # ── Activation ────────────────────────────────────────────────────────────

    async def activate(self, tenant_id: str, workflow_id: str) -> WorkflowVersion:
        return await self._set_active(tenant_id, workflow_id, True)

    async def deactivate(self, tenant_id: str, workflow_id: str) -> WorkflowVersion:
        """Stop new matches and cancel in-flight runs at their next node boundary."""
        return await self._set_active(tenant_id, workflow_id, False)

    async def _set_active(self, tenant_id: str, workflow_id: str, active: bool) -> WorkflowVersion:
        latest = await self.get(workflow_id, tenant_id)
        self._active[workflow_id] = active
        await self._persist("set_workflow_active", workflow_id, active)
        logger.info("Workflow %s %s", workflow_id, "activated" if active else "deactivated")
        return latest.model_copy(update={"is_active": active})

    async def is_active(self, workflow_id: str, version: int) -> bool:
        """Polled by the coordinator at every node boundary of a run on *version*."""
        if self._repository is not None:
            try:
                return await self._repository.is_workflow_active(workflow_id)
            except (NotImplementedError, AttributeError):
                pass
        return self._active.get(workflow_id, False)
