"""Error taxonomy for the audit trail engine.

Only StorageUnavailable and an exhausted VersionConflict ever reach callers
of the public API. The remaining errors are raised and handled internally:

- NoOpChange             - an update produced an empty diff; the recorder skips it
- ActorResolutionFailure - one stage of the actor/tenant fallback chain failed
- MalformedHistory       - a stored change_set cannot be folded during reconstruction
- UnknownEntityType      - an entity_type tag has no registration
"""

from __future__ import annotations


class AuditTrailError(Exception):
    """Base class for all audit trail errors.

    Args:
        message: Human-readable description.
        entity_type: Type tag of the entity involved, if any.
        entity_id: Identifier of the entity involved, if any.
    """

    transient: bool = False

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.entity_id = entity_id

    def log_context(self) -> dict[str, str | None]:
        """Return structured fields suitable for logger keyword arguments."""
        return {
            "error": type(self).__name__,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
        }


class NoOpChange(AuditTrailError):
    """An update produced an empty change set. Signals "skip persistence"."""


class VersionConflict(AuditTrailError):
    """A concurrent writer already holds the version we tried to insert.

    Args:
        message: Human-readable description.
        entity_type: Type tag of the contended entity.
        entity_id: Identifier of the contended entity.
        version: The version number that collided.
    """

    transient = True

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        version: int | None = None,
    ) -> None:
        super().__init__(message, entity_type=entity_type, entity_id=entity_id)
        self.version = version

    def log_context(self) -> dict[str, str | None]:
        context = super().log_context()
        context["version"] = str(self.version) if self.version is not None else None
        return context


class ActorResolutionFailure(AuditTrailError):
    """A fallback stage could not produce an actor or tenant."""


class MalformedHistory(AuditTrailError):
    """A stored change_set references unknown or incompatible data."""


class StorageUnavailable(AuditTrailError):
    """The audit log store could not be reached or refused the operation."""

    transient = True


class UnknownEntityType(AuditTrailError):
    """No TrackedType is registered for the given entity_type tag."""
