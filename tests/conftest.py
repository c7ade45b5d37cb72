"""Test fixtures for aumos-audit-trail.

Provides:
- settings: Settings with default denylist and retry bound
- registry: EntityTypeRegistry with a typed "User" registration
- store: Empty InMemoryAuditLogStore
- recorder: ChangeRecorder over the in-memory store
- reconstructor: Reconstructor over the in-memory store
- user_ref: EntityRef for the test user
- mock_fallback: AsyncMock IPartyFallback returning None by default
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest

from aumos_audit_trail.core.references import EntityRef
from aumos_audit_trail.core.registry import EntityTypeRegistry, TrackedType
from aumos_audit_trail.settings import Settings
from aumos_audit_trail.time_machine.event_store import InMemoryAuditLogStore
from aumos_audit_trail.time_machine.reconstructor import Reconstructor
from aumos_audit_trail.time_machine.recorder import ChangeRecorder


@dataclass
class User:
    """Minimal host model used as an audited entity and as an actor."""

    id: int | None = None
    name: str | None = None
    username: str | None = None
    password: str | None = None
    logins: int = 0
    activated: bool | None = None
    suspended_at: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class Company:
    """Host model used as a tenant."""

    id: int | None = None
    name: str | None = None


USER_ATTRIBUTES: dict[str, type] = {
    "name": str,
    "username": str,
    "password": str,
    "logins": int,
    "activated": bool,
    "suspended_at": datetime,
}


def build_user(attrs: dict[str, Any]) -> User:
    """Factory used to materialize reconstructed User revisions."""
    known = {key: value for key, value in attrs.items() if key in USER_ATTRIBUTES}
    return User(**known)


@pytest.fixture()
def settings() -> Settings:
    """Return Settings with defaults; no environment overrides are read in tests."""
    return Settings(_env_file=None)


@pytest.fixture()
def registry() -> EntityTypeRegistry:
    """Registry with User and Company registered."""
    return EntityTypeRegistry(
        [
            TrackedType(
                type_tag="User",
                attributes=USER_ATTRIBUTES,
                defaults={"logins": 0},
                model_class=User,
                factory=build_user,
            ),
            TrackedType(type_tag="Company", attributes={"name": str}, model_class=Company),
        ]
    )


@pytest.fixture()
def store() -> InMemoryAuditLogStore:
    """Return an empty in-memory audit log store."""
    return InMemoryAuditLogStore()


@pytest.fixture()
def recorder(
    store: InMemoryAuditLogStore,
    registry: EntityTypeRegistry,
    settings: Settings,
) -> ChangeRecorder:
    """ChangeRecorder over the in-memory store without fallback or hooks."""
    return ChangeRecorder(store, registry=registry, settings=settings)


@pytest.fixture()
def reconstructor(store: InMemoryAuditLogStore, registry: EntityTypeRegistry) -> Reconstructor:
    """Reconstructor over the same in-memory store as the recorder fixture."""
    return Reconstructor(store, registry=registry)


@pytest.fixture()
def user_ref() -> EntityRef:
    """EntityRef of the audited test user."""
    return EntityRef(entity_id="1", entity_type="User")


@pytest.fixture()
def mock_fallback() -> AsyncMock:
    """IPartyFallback double; both defaults return None unless configured."""
    fallback = AsyncMock()
    fallback.default_tenant.return_value = None
    fallback.default_actor.return_value = None
    return fallback
