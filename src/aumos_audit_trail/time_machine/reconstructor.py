"""Historical state reconstruction for audited entities.

Given the ordered audit records of one entity, rebuilds its attribute state at
any version by folding each record's new values over an accumulating map:

    v1 create  {name: (None, "Brandon"), username: (None, "brandon")}
    v2 update  {name: ("Brandon", "Foobar")}
    v3 update  {name: ("Foobar", "Awesome")}

    reconstruct(v2) -> {name: "Foobar", username: "brandon"}, version=2

A destroy record has no new values; folding it applies its old values, which
hold the entity's full final attribute set. Gaps left by deleted records are
tolerated: the state simply reflects the last change available before the
target. History defects never raise: bad entries are logged and skipped.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from aumos_audit_trail.core.interfaces import IAuditLogStore
from aumos_audit_trail.core.references import EntityRef
from aumos_audit_trail.core.registry import EntityTypeRegistry, TrackedType
from aumos_audit_trail.errors import MalformedHistory
from aumos_audit_trail.observability import get_logger
from aumos_audit_trail.time_machine.changeset import normalize
from aumos_audit_trail.time_machine.events import AuditAction, AuditRecord, Revision

logger = get_logger(__name__)


def _value_to_apply(record: AuditRecord, attr: str, values: Any) -> Any:
    """Pick the value a record contributes for one attribute.

    Raises:
        MalformedHistory: If values is not an (old, new) pair.
    """
    if not isinstance(values, (tuple, list)) or len(values) != 2:
        raise MalformedHistory(
            f"Change for {attr!r} at version {record.version} is not an (old, new) pair",
            entity_type=record.entity.entity_type,
            entity_id=record.entity.entity_id,
        )
    old_value, new_value = values
    return old_value if record.action is AuditAction.DESTROY else new_value


def apply_record(
    attributes: dict[str, Any],
    record: AuditRecord,
    tracked: TrackedType | None = None,
) -> dict[str, Any]:
    """Fold one record's changes into attributes in place.

    Attributes unknown to the tracked type's current schema are ignored; known
    ones are cast back to their declared type (stored JSON loses datetimes
    and decimals).

    Args:
        attributes: The accumulating attribute map.
        record: The record to apply.
        tracked: Optional registration providing the current schema.

    Returns:
        The same attributes dict.
    """
    change_set = record.change_set
    if not isinstance(change_set, Mapping):
        logger.warning(
            "Skipping audit record with malformed change set",
            entity_type=record.entity.entity_type,
            entity_id=record.entity.entity_id,
            version=record.version,
        )
        return attributes

    for attr, values in change_set.items():
        if tracked is not None and not tracked.knows(attr):
            logger.debug(
                "Ignoring attribute missing from current schema",
                entity_type=record.entity.entity_type,
                attribute=attr,
                version=record.version,
            )
            continue
        try:
            value = _value_to_apply(record, attr, values)
        except MalformedHistory as exc:
            logger.warning("Skipping malformed audit change", attribute=attr, **exc.log_context())
            continue
        attr_type = tracked.attributes.get(attr) if tracked is not None else None
        attributes[attr] = normalize(value, attr_type)
    return attributes


def reconstruct_attributes(
    records: Iterable[AuditRecord],
    tracked: TrackedType | None = None,
) -> dict[str, Any]:
    """Fold records (ascending version order) into a single attribute map."""
    attributes: dict[str, Any] = {}
    for record in records:
        apply_record(attributes, record, tracked)
    return attributes


class Reconstructor:
    """Rebuilds an entity's attribute state at a version, time or offset.

    Args:
        store: The audit log store to read records from.
        registry: Optional registry used to drop attributes that no longer
            exist on the entity type and to materialize host instances.
    """

    def __init__(self, store: IAuditLogStore, registry: EntityTypeRegistry | None = None) -> None:
        self._store = store
        self._registry = registry or EntityTypeRegistry()

    def _tracked(self, entity: EntityRef) -> TrackedType | None:
        return self._registry.find(entity.entity_type)

    async def reconstruct(self, entity: EntityRef, target_version: int) -> Revision | None:
        """Reconstruct the entity's state as of target_version.

        Args:
            entity: The audited entity.
            target_version: The version to rebuild. The result carries this
                version even if the last applied record has a lower one.

        Returns:
            The Revision, or None when no record exists at or below the target.
        """
        if target_version < 1:
            return None
        records = await self._store.list_for_entity(entity, max_version=target_version)
        if not records:
            logger.debug(
                "No audit history to reconstruct",
                entity_type=entity.entity_type,
                entity_id=entity.entity_id,
                target_version=target_version,
            )
            return None

        return Revision(
            entity=entity,
            version=target_version,
            attributes=reconstruct_attributes(records, self._tracked(entity)),
            created_at=records[-1].created_at,
        )

    async def revision_at(self, entity: EntityRef, timestamp: datetime) -> Revision | None:
        """Reconstruct the entity as of the latest record created at or before timestamp.

        Returns:
            The Revision, or None if the entity had no record by then.
        """
        record = await self._store.find_latest_at(entity, timestamp)
        if record is None:
            return None
        return await self.reconstruct(entity, record.version)

    async def relative(
        self,
        entity: EntityRef,
        offset: int,
        from_version: int | None = None,
    ) -> Revision | None:
        """Reconstruct the version offset steps before from_version.

        Args:
            entity: The audited entity.
            offset: How many versions to step back (0 = from_version itself).
            from_version: Starting point; defaults to the entity's latest version.

        Returns:
            The Revision, or None if the target falls below version 1 or the
            entity has no history.
        """
        if from_version is None:
            from_version = await self._store.max_version(entity)
            if from_version is None:
                return None
        target = from_version - offset
        if target < 1:
            return None
        return await self.reconstruct(entity, target)

    async def previous(self, entity: EntityRef, from_version: int | None = None) -> Revision | None:
        """Reconstruct the revision immediately before from_version (or the latest)."""
        return await self.relative(entity, 1, from_version=from_version)

    async def revisions(self, entity: EntityRef, from_version: int | None = None) -> list[Revision]:
        """Return one Revision per audit record, oldest first.

        Args:
            entity: The audited entity.
            from_version: Only return revisions at or after this version.

        Returns:
            Revisions in ascending version order. Empty if there is no history.
        """
        tracked = self._tracked(entity)
        attributes: dict[str, Any] = {}
        result: list[Revision] = []
        for record in await self._store.list_for_entity(entity):
            apply_record(attributes, record, tracked)
            if from_version is not None and record.version < from_version:
                continue
            result.append(
                Revision(
                    entity=entity,
                    version=record.version,
                    attributes=dict(attributes),
                    created_at=record.created_at,
                )
            )
        return result

    def materialize(self, revision: Revision) -> Any:
        """Hand a revision to the entity type's registered factory.

        Returns:
            The factory's host instance, or the plain attribute map (with the
            version marker) when the type has no factory.
        """
        factory = self._registry.factory_for(revision.entity.entity_type)
        if factory is None:
            return revision.as_dict()
        return factory(revision.as_dict())
