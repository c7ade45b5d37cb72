"""SQLAlchemy ORM models for the audit log database.

Models:
- AuditRow - one row per AuditRecord (table `audits`)

The table is append-only. Rows are written only via SqlAuditLogStore, and the
unique constraint on (entity_id, entity_type, version) is what turns a lost
version race into an IntegrityError instead of a duplicate version.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

VERSION_CONSTRAINT = "uq_audits_entity_version"


class Base(DeclarativeBase):
    """Declarative base for audit log tables."""


class AuditRow(Base):
    """Persisted AuditRecord.

    Actor and tenant are each stored as either (id, type) or name; exactly one
    of the two representations is populated per party.

    Attributes:
        id: Record UUID.
        entity_id: Identifier of the audited entity.
        entity_type: Registry tag of the audited entity.
        actor_id / actor_type: Actor recorded by reference.
        actor_name: Actor recorded by display name.
        tenant_id / tenant_type: Tenant recorded by reference.
        tenant_name: Tenant recorded by display name.
        action: create | update | destroy.
        change_set: JSON object of attribute → [old, new].
        version: Per-entity sequence number.
        comment: Optional caller-supplied note.
        created_at: Persistence timestamp (UTC).
    """

    __tablename__ = "audits"
    __table_args__ = (
        UniqueConstraint("entity_id", "entity_type", "version", name=VERSION_CONSTRAINT),
        Index("ix_audits_entity", "entity_id", "entity_type"),
        Index("ix_audits_actor", "actor_id", "actor_type"),
        Index("ix_audits_tenant", "tenant_id", "tenant_type"),
        Index("ix_audits_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Identifier of the audited entity",
    )
    entity_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Registry tag of the audited entity type",
    )
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Actor display name when not recorded by reference",
    )
    tenant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tenant_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tenant_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Tenant display name when not recorded by reference",
    )
    action: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="create | update | destroy",
    )
    change_set: Mapped[dict] = mapped_column(  # type: ignore[type-arg]
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
        comment="attribute → [old_value, new_value]",
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Strictly increasing per (entity_id, entity_type), starting at 1",
    )
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Immutable persistence timestamp (UTC)",
    )
