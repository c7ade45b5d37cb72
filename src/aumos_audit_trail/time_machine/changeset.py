"""Attribute-level change sets.

Given the host's before/after attribute mappings for one lifecycle event,
produce the attribute → (old, new) diff stored on an AuditRecord.

Values are compared after casting both sides to the attribute's declared type,
so 0 and "0" on an int column, or True, 1 and "1" on a bool column, are the
same value and never show up as a change.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from aumos_audit_trail.core.registry import TrackedType
from aumos_audit_trail.errors import NoOpChange
from aumos_audit_trail.time_machine.events import AuditAction

_TRUE_STRINGS = frozenset({"1", "t", "true", "y", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "f", "false", "n", "no", "off"})


def _cast_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"not a boolean: {value!r}")


def _cast_int(value: Any) -> int:
    if isinstance(value, str):
        value = value.strip()
        try:
            return int(value)
        except ValueError:
            value = Decimal(value)
    if isinstance(value, (float, Decimal)) and value != int(value):
        raise ValueError(f"not an integer: {value!r}")
    return int(value)


def _cast_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip())
    raise TypeError(f"not a datetime: {value!r}")


def _cast_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip())
    raise TypeError(f"not a date: {value!r}")


_CASTERS: dict[type, Any] = {
    bool: _cast_bool,
    int: _cast_int,
    float: float,
    Decimal: lambda value: Decimal(str(value).strip()),
    str: str,
    datetime: _cast_datetime,
    date: _cast_date,
}


def normalize(value: Any, attr_type: type | None) -> Any:
    """Cast a value to the attribute's declared type for comparison.

    Blank strings on non-string attributes become None. Values that cannot be
    cast are returned unchanged and compared raw.

    Args:
        value: Raw attribute value from the host.
        attr_type: Declared Python type, or None for schema-less attributes.

    Returns:
        The typed value.
    """
    if value is None or attr_type is None:
        return value
    if attr_type is not str and isinstance(value, str) and not value.strip():
        return None
    caster = _CASTERS.get(attr_type)
    try:
        if caster is not None:
            return caster(value)
        return value if isinstance(value, attr_type) else attr_type(value)
    except (TypeError, ValueError, ArithmeticError, InvalidOperation):
        return value


@dataclass(frozen=True)
class ChangeSet:
    """The diff for a single create/update/destroy event.

    Attributes:
        action: Lifecycle event the diff belongs to.
        changes: attribute → (old_value, new_value).
    """

    action: AuditAction
    changes: dict[str, tuple[Any, Any]] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def attribute_names(self) -> list[str]:
        return sorted(self.changes)

    def require_changes(self) -> ChangeSet:
        """Return self, or raise NoOpChange for an empty update.

        Raises:
            NoOpChange: If this is an update with nothing to record.
        """
        if self.action is AuditAction.UPDATE and not self.changes:
            raise NoOpChange("Update produced no attribute changes")
        return self

    @classmethod
    def compute(
        cls,
        action: AuditAction,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
        tracked: TrackedType | None = None,
        excluded: Iterable[str] = (),
    ) -> ChangeSet:
        """Compute the change set for one lifecycle event.

        Args:
            action: create, update or destroy.
            before: Attribute values before the event (ignored for create).
            after: Attribute values after the event (ignored for destroy).
            tracked: Registration supplying attribute types, defaults and the
                current schema. None means schema-less raw comparison.
            excluded: Attribute names that are never audited.

        Returns:
            The computed ChangeSet. May be empty.
        """
        skip = frozenset(excluded)
        before = before or {}
        after = after or {}

        def audited(attr: str) -> bool:
            return attr not in skip and (tracked is None or tracked.knows(attr))

        def typed(attr: str, value: Any) -> Any:
            attr_type = tracked.attributes.get(attr) if tracked is not None else None
            return normalize(value, attr_type)

        changes: dict[str, tuple[Any, Any]] = {}

        if action is AuditAction.CREATE:
            defaults = tracked.defaults if tracked is not None else {}
            for attr, value in after.items():
                if not audited(attr):
                    continue
                new_value = typed(attr, value)
                if new_value is None:
                    continue
                if attr in defaults and typed(attr, defaults[attr]) == new_value:
                    continue
                changes[attr] = (None, new_value)

        elif action is AuditAction.UPDATE:
            attributes = list(after) + [attr for attr in before if attr not in after]
            for attr in attributes:
                if not audited(attr):
                    continue
                old_value = typed(attr, before.get(attr))
                new_value = typed(attr, after.get(attr))
                if old_value != new_value:
                    changes[attr] = (old_value, new_value)

        else:
            for attr, value in before.items():
                if audited(attr):
                    changes[attr] = (typed(attr, value), None)

        return cls(action=action, changes=changes)
