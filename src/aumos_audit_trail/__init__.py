"""AumOS Audit Trail - per-entity audit records and historical reconstruction.

Records every create, update and destroy of a tracked entity as an immutable,
versioned, attributed change set, and rebuilds the entity's attribute state
at any past version or timestamp.
"""

from aumos_audit_trail.core.references import ActorByName, ActorByReference, EntityRef, Party
from aumos_audit_trail.core.registry import EntityTypeRegistry, TrackedType
from aumos_audit_trail.core.services import AuditTrailService
from aumos_audit_trail.settings import Settings
from aumos_audit_trail.time_machine.context import (
    ActorContext,
    audit_as,
    audit_as_tenant,
    with_actor,
    with_tenant,
    without_auditing,
)
from aumos_audit_trail.time_machine.events import AuditAction, AuditRecord, Revision, Skipped

__all__ = [
    "ActorByName",
    "ActorByReference",
    "ActorContext",
    "AuditAction",
    "AuditRecord",
    "AuditTrailService",
    "EntityRef",
    "EntityTypeRegistry",
    "Party",
    "Revision",
    "Settings",
    "Skipped",
    "TrackedType",
    "audit_as",
    "audit_as_tenant",
    "with_actor",
    "with_tenant",
    "without_auditing",
]
