"""Registry of tracked entity types.

Each audited type registers a TrackedType under a stable tag. The tag is what
gets persisted in AuditRecord.entity.entity_type; reconstruction and actor
references go back through the registry instead of resolving class names.

Example:
    registry = EntityTypeRegistry()
    registry.register(
        TrackedType(
            type_tag="User",
            attributes={"name": str, "username": str, "logins": int, "activated": bool},
            defaults={"logins": 0},
            model_class=User,
            factory=lambda attrs: User(**attrs),
        )
    )
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from aumos_audit_trail.core.references import EntityRef
from aumos_audit_trail.errors import UnknownEntityType


@dataclass(frozen=True)
class TrackedType:
    """Registration for one audited entity type.

    Attributes:
        type_tag: Stable tag persisted as entity_type.
        attributes: Attribute name → Python type. Drives typed normalization and
            lets reconstruction drop attributes that no longer exist. Empty means
            schema-less: every attribute is accepted and compared raw.
        defaults: Attribute name → default value. Creates omit attributes still
            at their default.
        non_audited: Attributes excluded from change sets. None falls back to
            Settings.non_audited_attributes.
        model_class: Host class whose instances are referenced with this tag.
        id_attribute: Attribute on model_class instances holding the identifier.
        factory: Builds a host instance from a reconstructed attribute map.
    """

    type_tag: str
    attributes: Mapping[str, type] = field(default_factory=dict)
    defaults: Mapping[str, Any] = field(default_factory=dict)
    non_audited: frozenset[str] | None = None
    model_class: type | None = None
    id_attribute: str = "id"
    factory: Callable[[dict[str, Any]], Any] | None = None

    def knows(self, attribute: str) -> bool:
        """Return True if the attribute exists on the current schema."""
        return not self.attributes or attribute in self.attributes

    def excluded(self, default: Iterable[str]) -> frozenset[str]:
        return self.non_audited if self.non_audited is not None else frozenset(default)


class EntityTypeRegistry:
    """Maps entity_type tags to their TrackedType registrations."""

    def __init__(self, tracked_types: Iterable[TrackedType] = ()) -> None:
        self._by_tag: dict[str, TrackedType] = {}
        self._by_class: dict[type, TrackedType] = {}
        for tracked in tracked_types:
            self.register(tracked)

    def register(self, tracked: TrackedType) -> TrackedType:
        """Register (or replace) a tracked type.

        Args:
            tracked: The registration to store under tracked.type_tag.

        Returns:
            The same registration, for chaining.
        """
        self._by_tag[tracked.type_tag] = tracked
        if tracked.model_class is not None:
            self._by_class[tracked.model_class] = tracked
        return tracked

    def find(self, type_tag: str) -> TrackedType | None:
        return self._by_tag.get(type_tag)

    def get(self, type_tag: str) -> TrackedType:
        """Return the registration for a tag.

        Raises:
            UnknownEntityType: If the tag was never registered.
        """
        tracked = self._by_tag.get(type_tag)
        if tracked is None:
            raise UnknownEntityType(
                f"Entity type {type_tag!r} is not registered for auditing",
                entity_type=type_tag,
            )
        return tracked

    def __contains__(self, type_tag: object) -> bool:
        return type_tag in self._by_tag

    def reference_for(self, instance: Any) -> EntityRef | None:
        """Build an EntityRef for a host model instance, if its class is registered."""
        for klass in type(instance).__mro__:
            tracked = self._by_class.get(klass)
            if tracked is not None:
                entity_id = getattr(instance, tracked.id_attribute, None)
                if entity_id is None:
                    return None
                return EntityRef(entity_id=entity_id, entity_type=tracked.type_tag)
        return None

    def factory_for(self, type_tag: str) -> Callable[[dict[str, Any]], Any] | None:
        tracked = self.find(type_tag)
        return tracked.factory if tracked is not None else None
