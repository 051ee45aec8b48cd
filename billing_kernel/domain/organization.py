"""
Organization identity lookups (``billing_kernel.domain.organization``).

Organizations live outside the billing engine.  The reconciliation service
asks an ``OrganizationDirectory`` whether an organization exists before it
bills it or summarizes it.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Protocol
from uuid import UUID


class OrganizationDirectory(Protocol):
    """Pluggable interface for organization identity."""

    def exists(self, organization_id: UUID) -> bool:
        """Return True if the organization is known."""
        ...


class InMemoryOrganizationDirectory:
    """Directory backed by a set of ids.  Used by tests and local tooling."""

    def __init__(self, organization_ids: Iterable[UUID] = ()):
        self._lock = threading.Lock()
        self._ids: set[UUID] = set(organization_ids)

    def register(self, organization_id: UUID) -> None:
        with self._lock:
            self._ids.add(organization_id)

    def exists(self, organization_id: UUID) -> bool:
        with self._lock:
            return organization_id in self._ids
