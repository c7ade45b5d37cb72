"""Abstract interfaces (Protocol classes) for the audit trail engine.

Defines the contracts between the time machine and its collaborators using
Python's typing.Protocol. The recorder and reconstructor depend on these
protocols, never on concrete adapters, so tests can swap in doubles.

Protocols defined:
- IAuditLogStore   - append-only audit record storage
- IPartyFallback   - default actor/tenant when no explicit or ambient value exists
- IPostCreateHook  - best-effort side effects after an audit record is persisted
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from aumos_audit_trail.core.references import ActorByName, ActorByReference, EntityRef

if TYPE_CHECKING:
    from aumos_audit_trail.time_machine.events import AuditRecord, PendingAudit


class IAuditLogStore(Protocol):
    """Storage contract for AuditRecords, keyed by entity reference."""

    async def insert_next_version(self, pending: PendingAudit) -> AuditRecord:
        """Atomically assign the next version for pending.entity and persist it.

        Args:
            pending: The diffed, actor-resolved record awaiting a version.

        Returns:
            The persisted AuditRecord with version and created_at set.

        Raises:
            VersionConflict: If a concurrent writer took the computed version.
            StorageUnavailable: If the store cannot be reached.
        """
        ...

    async def list_for_entity(
        self,
        entity: EntityRef,
        max_version: int | None = None,
    ) -> list[AuditRecord]:
        """Return records for an entity ordered by version ascending.

        Args:
            entity: The audited entity.
            max_version: Optional inclusive upper bound on version.

        Returns:
            Records in ascending version order. Empty if none exist.
        """
        ...

    async def find_latest_at(self, entity: EntityRef, timestamp: datetime) -> AuditRecord | None:
        """Return the record with the greatest created_at <= timestamp, or None."""
        ...

    async def max_version(self, entity: EntityRef) -> int | None:
        """Return the highest version recorded for an entity, or None."""
        ...


class IPartyFallback(Protocol):
    """Supplies a default actor or tenant when none is explicit or ambient.

    Implementations raise ActorResolutionFailure (or LookupError/AttributeError
    from a broken association chain) when they cannot answer; the resolver logs
    it and falls through to the next stage.
    """

    async def default_tenant(self, entity: EntityRef) -> ActorByReference | ActorByName | None:
        """Return the tenant that owns the entity, if known."""
        ...

    async def default_actor(
        self,
        entity: EntityRef,
        tenant: ActorByReference | ActorByName | None,
    ) -> ActorByReference | ActorByName | None:
        """Return a default actor, e.g. the tenant's owner or a system account."""
        ...


class IPostCreateHook(Protocol):
    """Best-effort side effect run after an audit record is persisted."""

    async def after_create(self, record: AuditRecord) -> None:
        """React to a newly persisted record. Failures never roll it back."""
        ...
