"""Audit record schema for the time machine.

Every create, update or destroy of a tracked entity is captured as one
immutable AuditRecord and appended to the audit log store. The record carries
only the attribute-level diff, not a full snapshot; full state at any version
is rebuilt by the Reconstructor folding diffs in version order.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from aumos_audit_trail.core.references import ActorByName, ActorByReference, EntityRef, Party


def utc_now() -> datetime:
    """Return current UTC time."""
    return datetime.now(timezone.utc)


class AuditAction(StrEnum):
    """Lifecycle event that produced an audit record."""

    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"


class AuditRecord(BaseModel):
    """Append-only log entry for one lifecycle event of a tracked entity.

    Attributes:
        id: Unique identifier of the record.
        entity: Reference to the audited entity.
        actor: Who performed the change, resolved at creation time.
        tenant: Owning tenant/business, resolved at creation time.
        action: create | update | destroy.
        change_set: attribute → (old_value, new_value). For create the old value is
            None; for destroy the new value is None and the old values hold the
            full final attribute set.
        version: Per-entity sequence number, starting at 1.
        comment: Optional caller-supplied note.
        created_at: UTC timestamp set once at persistence time.
    """

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, description="Unique record identifier")
    entity: EntityRef = Field(..., description="The audited entity")
    actor: Party | None = Field(default=None, description="Who performed the change")
    tenant: Party | None = Field(default=None, description="Owning tenant/business")
    action: AuditAction = Field(..., description="Lifecycle event kind")
    change_set: dict[str, tuple[Any, Any]] = Field(
        default_factory=dict, description="attribute → (old_value, new_value)"
    )
    version: int = Field(..., ge=1, description="Per-entity sequence number")
    comment: str | None = Field(default=None, description="Caller-supplied note")
    created_at: datetime = Field(default_factory=utc_now, description="Persistence time (UTC)")

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def new_attributes(self) -> dict[str, Any]:
        """Return the changed attributes with their new values."""
        return {attr: values[1] for attr, values in self.change_set.items()}

    def old_attributes(self) -> dict[str, Any]:
        """Return the changed attributes with their old values."""
        return {attr: values[0] for attr, values in self.change_set.items()}

    @property
    def username(self) -> str | None:
        """Display name of the actor when it was recorded by name only."""
        return self.actor.name if isinstance(self.actor, ActorByName) else None

    @property
    def actor_ref(self) -> EntityRef | None:
        """EntityRef of the actor when it was recorded by reference."""
        return self.actor.as_entity_ref() if isinstance(self.actor, ActorByReference) else None


class PendingAudit(BaseModel):
    """An audit record that has been diffed but not yet versioned.

    The store stamps version and created_at atomically when it persists it.
    """

    model_config = ConfigDict(frozen=True)

    entity: EntityRef
    actor: Party | None = None
    tenant: Party | None = None
    action: AuditAction
    change_set: dict[str, tuple[Any, Any]]
    comment: str | None = None

    def to_record(self, version: int, created_at: datetime | None = None) -> AuditRecord:
        return AuditRecord(
            entity=self.entity,
            actor=self.actor,
            tenant=self.tenant,
            action=self.action,
            change_set=self.change_set,
            version=version,
            comment=self.comment,
            created_at=created_at or utc_now(),
        )


class Skipped(BaseModel):
    """Result of record_change when no audit record was persisted."""

    model_config = ConfigDict(frozen=True)

    entity: EntityRef
    action: AuditAction
    reason: str = Field(..., description="no_changes | auditing_disabled | storage_unavailable")


class Revision(BaseModel):
    """Reconstructed attribute state of an entity at one version.

    Attributes:
        entity: The entity the state belongs to.
        version: The requested version (not necessarily the last applied record).
        attributes: Plain attribute map; turning it into a host instance is the
            registered factory's job.
        created_at: Timestamp of the last record folded into this state.
    """

    model_config = ConfigDict(frozen=True)

    entity: EntityRef
    version: int
    attributes: dict[str, Any]
    created_at: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return the attributes merged with the version marker."""
        return {**self.attributes, "version": self.version}
