"""In-memory ContactStore for tests, the CLI simulator and single-process use."""

from __future__ import annotations

import asyncio
from typing import Optional

from autoflow.exceptions import VersionConflict
from autoflow.types import Contact


class InMemoryStore:
    """Contacts keyed by (tenant_id, whatsapp_id) with versioned tag sets."""

    def __init__(self, contacts: Optional[list[Contact]] = None) -> None:
        self._contacts: dict[tuple[str, str], Contact] = {}
        self._lock = asyncio.Lock()
        for contact in contacts or []:
            self._contacts[(contact.tenant_id, contact.whatsapp_id)] = contact

    async def get_contact(self, tenant_id: str, whatsapp_id: str) -> Contact:
        async with self._lock:
            key = (tenant_id, whatsapp_id)
            contact = self._contacts.get(key)
            if contact is None:
                contact = Contact(tenant_id=tenant_id, whatsapp_id=whatsapp_id)
                self._contacts[key] = contact
            return contact.model_copy(deep=True)

    async def update_contact_tags(
        self,
        tenant_id: str,
        whatsapp_id: str,
        expected_version: int,
        new_tags: list[str],
    ) -> Contact:
        async with self._lock:
            key = (tenant_id, whatsapp_id)
            current = self._contacts.get(key) or Contact(tenant_id=tenant_id, whatsapp_id=whatsapp_id)
            if current.version != expected_version:
                raise VersionConflict(
                    f"Contact {whatsapp_id} is at version {current.version}, "
                    f"expected {expected_version}",
                    expected_version=expected_version,
                    actual_version=current.version,
                )
            updated = current.model_copy(update={
                "tags": list(new_tags),
                "version": current.version + 1,
            })
            self._contacts[key] = updated
            return updated.model_copy(deep=True)

    async def upsert_contact(self, contact: Contact) -> Contact:
        async with self._lock:
            self._contacts[(contact.tenant_id, contact.whatsapp_id)] = contact
            return contact
