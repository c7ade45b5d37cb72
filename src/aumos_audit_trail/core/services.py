"""Service facade for the audit trail engine.

AuditTrailService is what a host application holds on to. It composes the
ChangeRecorder (writes) and the Reconstructor (reads) over a single
IAuditLogStore and contains no storage or framework code of its own.

Typical wiring at startup:

    settings = Settings()
    setup_logging(settings.log_level, settings.log_format)
    service = await AuditTrailService.from_settings(settings, registry=registry)

and in the host's save/delete hook:

    await service.record_change(EntityRef(entity_id=user.id, entity_type="User"),
                                "update", before=old_attrs, after=new_attrs)
"""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from aumos_audit_trail.adapters.sql_store import SqlAuditLogStore, create_audit_schema, init_audit_db
from aumos_audit_trail.core.interfaces import IAuditLogStore, IPartyFallback, IPostCreateHook
from aumos_audit_trail.core.references import EntityRef
from aumos_audit_trail.core.registry import EntityTypeRegistry
from aumos_audit_trail.observability import get_logger
from aumos_audit_trail.settings import Settings
from aumos_audit_trail.time_machine.events import AuditAction, AuditRecord, Revision, Skipped
from aumos_audit_trail.time_machine.reconstructor import Reconstructor
from aumos_audit_trail.time_machine.recorder import ChangeRecorder

logger = get_logger(__name__)


class AuditTrailService:
    """Audit record creation and historical reconstruction for tracked entities.

    Args:
        store: Append-only audit log store shared by writes and reads.
        registry: Tracked type registrations.
        settings: Engine settings.
        fallback: Optional default actor/tenant collaborator.
        hooks: Post-create side effects.
    """

    def __init__(
        self,
        store: IAuditLogStore,
        registry: EntityTypeRegistry | None = None,
        settings: Settings | None = None,
        fallback: IPartyFallback | None = None,
        hooks: Sequence[IPostCreateHook] = (),
    ) -> None:
        self._store = store
        self.registry = registry or EntityTypeRegistry()
        self.settings = settings or Settings()
        self.recorder = ChangeRecorder(
            store,
            registry=self.registry,
            settings=self.settings,
            fallback=fallback,
            hooks=hooks,
        )
        self.reconstructor = Reconstructor(store, registry=self.registry)

    @classmethod
    async def from_settings(
        cls,
        settings: Settings,
        registry: EntityTypeRegistry | None = None,
        fallback: IPartyFallback | None = None,
        hooks: Sequence[IPostCreateHook] = (),
        create_schema: bool = True,
    ) -> "AuditTrailService":
        """Initialize the audit database and build a SQL-backed service.

        Args:
            settings: Engine settings, including the audit DB URL and pool.
            registry: Tracked type registrations.
            fallback: Optional default actor/tenant collaborator.
            hooks: Post-create side effects.
            create_schema: Create the audits table if it does not exist yet.

        Returns:
            A ready service. Call close_audit_db() at shutdown.
        """
        session_factory = await init_audit_db(
            settings.audit_db_url,
            pool_size=settings.audit_db_pool_size,
            max_overflow=settings.audit_db_max_overflow,
            pool_timeout=settings.audit_db_pool_timeout,
        )
        if create_schema:
            await create_audit_schema()
        logger.info("Audit trail service ready", service_name=settings.service_name)
        return cls(
            SqlAuditLogStore(session_factory),
            registry=registry,
            settings=settings,
            fallback=fallback,
            hooks=hooks,
        )

    async def record_change(
        self,
        entity: EntityRef,
        action: AuditAction | str,
        before: Mapping[str, Any] | None = None,
        after: Mapping[str, Any] | None = None,
        *,
        actor: Any = None,
        tenant: Any = None,
        comment: str | None = None,
    ) -> AuditRecord | Skipped:
        """Record one lifecycle event. See ChangeRecorder.record_change."""
        return await self.recorder.record_change(
            entity,
            action,
            before,
            after,
            actor=actor,
            tenant=tenant,
            comment=comment,
        )

    async def history(self, entity: EntityRef) -> list[AuditRecord]:
        """Return every audit record for the entity, oldest first."""
        return await self.recorder.history(entity)

    async def reconstruct(self, entity: EntityRef, version: int) -> Revision | None:
        return await self.reconstructor.reconstruct(entity, version)

    async def revision_at(self, entity: EntityRef, timestamp: datetime) -> Revision | None:
        return await self.reconstructor.revision_at(entity, timestamp)

    async def relative(
        self,
        entity: EntityRef,
        offset: int,
        from_version: int | None = None,
    ) -> Revision | None:
        return await self.reconstructor.relative(entity, offset, from_version=from_version)

    async def previous(self, entity: EntityRef, from_version: int | None = None) -> Revision | None:
        return await self.reconstructor.previous(entity, from_version=from_version)

    async def revisions(self, entity: EntityRef, from_version: int | None = None) -> list[Revision]:
        return await self.reconstructor.revisions(entity, from_version=from_version)

    def materialize(self, revision: Revision) -> Any:
        """Turn a revision into a host instance via the registered factory."""
        return self.reconstructor.materialize(revision)
