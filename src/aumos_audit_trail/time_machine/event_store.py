"""Append-only in-memory audit log store.

Stores AuditRecord instances keyed by entity reference, each list sorted by
version. Version assignment happens under a per-entity lock so concurrent
writers (threads or tasks) on the same entity never share a version, while
writers on different entities never contend.

In production this is backed by SqlAuditLogStore; the in-memory store keeps
tests hermetic and serves single-process deployments.
"""

from __future__ import annotations

import bisect
import threading
from datetime import datetime, timezone

from aumos_audit_trail.core.references import EntityRef
from aumos_audit_trail.errors import VersionConflict
from aumos_audit_trail.time_machine.events import AuditRecord, PendingAudit
from aumos_audit_trail.time_machine.versioning import next_version

_EntityKey = tuple[str, str]


def _key(entity: EntityRef) -> _EntityKey:
    return (entity.entity_type, entity.entity_id)


class InMemoryAuditLogStore:
    """Append-only store for AuditRecord instances.

    Maintains per-entity record lists sorted by version with a parallel list
    of version ints for bisect lookups.
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        # { (entity_type, entity_id): list[AuditRecord] } sorted by version ascending
        self._records: dict[_EntityKey, list[AuditRecord]] = {}
        # Parallel list of version ints for bisect operations
        self._versions: dict[_EntityKey, list[int]] = {}
        self._locks: dict[_EntityKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: _EntityKey) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _append_locked(self, key: _EntityKey, record: AuditRecord) -> None:
        versions = self._versions.setdefault(key, [])
        records = self._records.setdefault(key, [])
        index = bisect.bisect_left(versions, record.version)
        if index < len(versions) and versions[index] == record.version:
            raise VersionConflict(
                f"Version {record.version} already exists for {record.entity}",
                entity_type=record.entity.entity_type,
                entity_id=record.entity.entity_id,
                version=record.version,
            )
        versions.insert(index, record.version)
        records.insert(index, record)

    async def insert_next_version(self, pending: PendingAudit) -> AuditRecord:
        """Assign max(version) + 1 and append, atomically per entity.

        Args:
            pending: The record awaiting a version.

        Returns:
            The persisted AuditRecord.
        """
        key = _key(pending.entity)
        with self._lock_for(key):
            versions = self._versions.get(key)
            record = pending.to_record(next_version(versions[-1] if versions else None))
            self._append_locked(key, record)
        return record

    def append(self, record: AuditRecord) -> None:
        """Append an already-versioned record (imports, replays, fixtures).

        Raises:
            VersionConflict: If the entity already has a record with that version.
        """
        key = _key(record.entity)
        with self._lock_for(key):
            self._append_locked(key, record)

    async def list_for_entity(
        self,
        entity: EntityRef,
        max_version: int | None = None,
    ) -> list[AuditRecord]:
        """Return records for an entity in ascending version order.

        Args:
            entity: The audited entity.
            max_version: Optional inclusive upper bound on version.

        Returns:
            A copy of the matching records.
        """
        key = _key(entity)
        records = self._records.get(key, [])
        if max_version is None:
            return list(records)
        high = bisect.bisect_right(self._versions.get(key, []), max_version)
        return records[:high]

    async def find_latest_at(self, entity: EntityRef, timestamp: datetime) -> AuditRecord | None:
        """Return the record with the greatest created_at <= timestamp.

        Args:
            entity: The audited entity.
            timestamp: Upper bound (inclusive). Naive values are treated as UTC.

        Returns:
            The matching record, or None if the entity had no record by then.
        """
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        latest: AuditRecord | None = None
        for record in self._records.get(_key(entity), []):
            if record.created_at <= timestamp and (
                latest is None or (record.created_at, record.version) >= (latest.created_at, latest.version)
            ):
                latest = record
        return latest

    async def max_version(self, entity: EntityRef) -> int | None:
        versions = self._versions.get(_key(entity))
        return versions[-1] if versions else None

    def delete_record(self, entity: EntityRef, version: int) -> bool:
        """Remove one record. Operator action only; the engine never calls this.

        Returns:
            True if a record was removed.
        """
        key = _key(entity)
        with self._lock_for(key):
            versions = self._versions.get(key, [])
            index = bisect.bisect_left(versions, version)
            if index < len(versions) and versions[index] == version:
                del versions[index]
                del self._records[key][index]
                return True
        return False

    def count(self, entity: EntityRef) -> int:
        """Return the number of records stored for an entity."""
        return len(self._records.get(_key(entity), []))
