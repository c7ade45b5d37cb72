"""Audit record creation for tracked entity lifecycle events.

The host's lifecycle hook calls ChangeRecorder.record_change exactly once per
logical save or delete. Each call walks the same states:

    pending → diffed → versioned → persisted
                 └──→ skipped   (empty update, auditing disabled, or storage outage)

Version assignment and persistence are a single atomic store call. Post-create
hooks run afterwards and are best-effort: a failing hook is logged, the record
stands.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import Any

from aumos_audit_trail.core.interfaces import IAuditLogStore, IPartyFallback, IPostCreateHook
from aumos_audit_trail.core.references import EntityRef
from aumos_audit_trail.core.registry import EntityTypeRegistry
from aumos_audit_trail.errors import NoOpChange, StorageUnavailable
from aumos_audit_trail.observability import get_logger
from aumos_audit_trail.settings import Settings
from aumos_audit_trail.time_machine.changeset import ChangeSet
from aumos_audit_trail.time_machine.context import ActorContext
from aumos_audit_trail.time_machine.events import AuditAction, AuditRecord, PendingAudit, Skipped
from aumos_audit_trail.time_machine.resolution import PartyResolver
from aumos_audit_trail.time_machine.versioning import VersionAssigner

logger = get_logger(__name__)


class RecordState(StrEnum):
    """States an audit creation passes through."""

    PENDING = "pending"
    DIFFED = "diffed"
    VERSIONED = "versioned"
    PERSISTED = "persisted"
    SKIPPED = "skipped"


class ChangeRecorder:
    """Creates AuditRecords from host lifecycle events.

    Args:
        store: Append-only audit log store.
        registry: Tracked type registrations (schema, denylist, defaults).
        settings: Engine settings (retry bound, failure policy, default denylist).
        fallback: Optional default actor/tenant collaborator.
        hooks: Post-create side effects, run in order after persistence.
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
        self._registry = registry or EntityTypeRegistry()
        self._settings = settings or Settings()
        self._resolver = PartyResolver(fallback=fallback, registry=self._registry)
        self._assigner = VersionAssigner(
            store.insert_next_version,
            max_retries=self._settings.version_conflict_retries,
            backoff_seconds=self._settings.version_conflict_backoff_seconds,
        )
        self._hooks = list(hooks)

    def compute_change_set(
        self,
        entity: EntityRef,
        action: AuditAction,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
    ) -> ChangeSet:
        """Diff before/after for entity using its registration, if any."""
        tracked = self._registry.find(entity.entity_type)
        default_excluded = self._settings.non_audited_attributes
        excluded = tracked.excluded(default_excluded) if tracked is not None else default_excluded
        return ChangeSet.compute(action, before, after, tracked=tracked, excluded=excluded)

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
        """Record one lifecycle event of a tracked entity.

        Args:
            entity: The audited entity.
            action: create | update | destroy.
            before: Typed attribute values before the event.
            after: Typed attribute values after the event.
            actor: Explicit actor; overrides the ambient context.
            tenant: Explicit tenant; overrides the ambient context.
            comment: Optional note stored on the record.

        Returns:
            The persisted AuditRecord, or Skipped when nothing was written.

        Raises:
            VersionConflict: If version assignment kept losing races.
            StorageUnavailable: If the store failed and block_on_audit_failure is set.
        """
        action = AuditAction(action)
        log = logger.bind(entity_type=entity.entity_type, entity_id=entity.entity_id, action=action.value)
        state = RecordState.PENDING

        if not ActorContext.auditing_enabled():
            log.debug("Auditing disabled, skipping", state=RecordState.SKIPPED.value)
            return Skipped(entity=entity, action=action, reason="auditing_disabled")

        try:
            change_set = self.compute_change_set(entity, action, before, after).require_changes()
        except NoOpChange:
            log.debug("No attribute changes, skipping", state=RecordState.SKIPPED.value)
            return Skipped(entity=entity, action=action, reason="no_changes")
        state = RecordState.DIFFED
        log.debug("Change set computed", state=state.value, attributes=change_set.attribute_names())

        resolved_tenant = await self._resolver.resolve_tenant(entity, explicit=tenant)
        resolved_actor = await self._resolver.resolve_actor(entity, resolved_tenant, explicit=actor)
        pending = PendingAudit(
            entity=entity,
            actor=resolved_actor,
            tenant=resolved_tenant,
            action=action,
            change_set=change_set.changes,
            comment=comment,
        )

        try:
            record = await self._assigner.assign(pending)
        except StorageUnavailable as exc:
            if self._settings.block_on_audit_failure:
                log.error("Audit store unavailable, blocking mutation", state=state.value, error=str(exc))
                raise
            log.error("Audit store unavailable, record dropped", state=RecordState.SKIPPED.value, error=str(exc))
            return Skipped(entity=entity, action=action, reason="storage_unavailable")

        log.debug("Version assigned", state=RecordState.VERSIONED.value, version=record.version)
        log.info("Audit record persisted", state=RecordState.PERSISTED.value, version=record.version)

        await self._run_hooks(record)
        return record

    async def _run_hooks(self, record: AuditRecord) -> None:
        for hook in self._hooks:
            try:
                await hook.after_create(record)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Post-create audit hook failed",
                    hook=type(hook).__name__,
                    entity_type=record.entity.entity_type,
                    entity_id=record.entity.entity_id,
                    version=record.version,
                    error=str(exc),
                )

    async def history(self, entity: EntityRef) -> list[AuditRecord]:
        """Return every audit record for entity in ascending version order."""
        return await self._store.list_for_entity(entity)
