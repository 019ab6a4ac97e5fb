"""Collaborator contracts the engine depends on.

The engine never imports SQLAlchemy directly; it talks to these protocols.
``Repository`` (SQL) and ``InMemoryStore`` + ``WorkflowManager`` implement
them.
"""

from typing import Protocol, runtime_checkable

from autoflow.types import Contact, TriggerKind, WorkflowVersion


@runtime_checkable
class WorkflowSource(Protocol):
    async def get_active_workflows(
        self, tenant_id: str, trigger_kind: TriggerKind
    ) -> list[WorkflowVersion]:
        """Latest version of each active workflow of *trigger_kind*, oldest first."""
        ...


@runtime_checkable
class ContactStore(Protocol):
    async def get_contact(self, tenant_id: str, whatsapp_id: str) -> Contact:
        """Current contact snapshot. Unknown contacts are created with no tags."""
        ...

    async def update_contact_tags(
        self,
        tenant_id: str,
        whatsapp_id: str,
        expected_version: int,
        new_tags: list[str],
    ) -> Contact:
        """Compare-and-set the tag set.

        Raises:
            VersionConflict: if the stored version is not *expected_version*.
        """
        ...
