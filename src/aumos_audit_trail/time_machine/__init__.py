"""AumOS Audit Time Machine - change capture and historical state reconstruction.

Captures each lifecycle event of a tracked entity as an append-only,
per-entity versioned AuditRecord, and folds those records back into the
entity's attribute state at any past version, timestamp or offset.
"""

from __future__ import annotations

from aumos_audit_trail.time_machine.events import AuditAction, AuditRecord, PendingAudit, Revision, Skipped
from aumos_audit_trail.time_machine.event_store import InMemoryAuditLogStore
from aumos_audit_trail.time_machine.reconstructor import Reconstructor
from aumos_audit_trail.time_machine.recorder import ChangeRecorder

__all__ = [
    "AuditAction",
    "AuditRecord",
    "ChangeRecorder",
    "InMemoryAuditLogStore",
    "PendingAudit",
    "Reconstructor",
    "Revision",
    "Skipped",
]
