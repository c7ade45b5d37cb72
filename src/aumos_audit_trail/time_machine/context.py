"""Ambient actor and tenant context.

Lets code that cannot receive an actor explicitly (a generic save hook, a
background job) still attribute its audit records:

    with audit_as(ActorByName(name="nightly-import")):
        await recorder.record_change(...)

    await awith_actor(current_user, service.rename, user_id, "Foobar")

Values live in contextvars.ContextVar, so each thread and each asyncio task
sees only its own activation. Nested activations shadow the outer one and
restore it on exit, including exit by exception.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, TypeVar

from aumos_audit_trail.core.references import ActorByName, ActorByReference, to_party

T = TypeVar("T")

_current_actor: ContextVar[ActorByReference | ActorByName | None] = ContextVar(
    "aumos_audit_actor", default=None
)
_current_tenant: ContextVar[ActorByReference | ActorByName | None] = ContextVar(
    "aumos_audit_tenant", default=None
)
_auditing_disabled: ContextVar[bool] = ContextVar("aumos_audit_disabled", default=False)


class ActorContext:
    """Read access to the ambient actor, tenant and auditing switch."""

    @staticmethod
    def current_actor() -> ActorByReference | ActorByName | None:
        """Return the ambient actor, or None if no activation is in effect."""
        return _current_actor.get()

    @staticmethod
    def current_tenant() -> ActorByReference | ActorByName | None:
        """Return the ambient tenant, or None if no activation is in effect."""
        return _current_tenant.get()

    @staticmethod
    def auditing_enabled() -> bool:
        return not _auditing_disabled.get()


@contextmanager
def audit_as(actor: Any) -> Iterator[ActorByReference | ActorByName | None]:
    """Activate an actor for the duration of the block.

    Args:
        actor: A Party, EntityRef or plain display name.

    Yields:
        The activated Party.
    """
    party = to_party(actor)
    token = _current_actor.set(party)
    try:
        yield party
    finally:
        _current_actor.reset(token)


@contextmanager
def audit_as_tenant(tenant: Any) -> Iterator[ActorByReference | ActorByName | None]:
    """Activate a tenant/business for the duration of the block."""
    party = to_party(tenant)
    token = _current_tenant.set(party)
    try:
        yield party
    finally:
        _current_tenant.reset(token)


@contextmanager
def without_auditing() -> Iterator[None]:
    """Suppress audit creation for the duration of the block."""
    token = _auditing_disabled.set(True)
    try:
        yield
    finally:
        _auditing_disabled.reset(token)


def with_actor(actor: Any, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Call fn with actor activated as the ambient actor.

    The ambient value is restored as soon as fn returns or raises. Coroutine
    functions must be awaited inside the activation; use awith_actor for those.

    Args:
        actor: A Party, EntityRef or plain display name.
        fn: The callable to run.
        *args: Positional arguments for fn.
        **kwargs: Keyword arguments for fn.

    Returns:
        Whatever fn returns.
    """
    with audit_as(actor):
        return fn(*args, **kwargs)


def with_tenant(tenant: Any, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Call fn with tenant activated as the ambient tenant."""
    with audit_as_tenant(tenant):
        return fn(*args, **kwargs)


async def awith_actor(actor: Any, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Await fn(*args, **kwargs) with actor activated as the ambient actor."""
    with audit_as(actor):
        return await fn(*args, **kwargs)


async def awith_tenant(tenant: Any, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Await fn(*args, **kwargs) with tenant activated as the ambient tenant."""
    with audit_as_tenant(tenant):
        return await fn(*args, **kwargs)
