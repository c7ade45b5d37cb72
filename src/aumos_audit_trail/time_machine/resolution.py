"""Actor and tenant resolution for new audit records.

Each party is resolved through an explicit, ordered chain of stages. A stage
either returns a Party, returns None (no opinion) or fails; failures are
logged and the next stage is tried. Exhausting the chain yields None, never
an exception.

Tenant: explicit argument → ambient tenant → fallback.default_tenant(entity) → None
Actor:  explicit argument → ambient actor → fallback.default_actor(entity, tenant) → None
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from aumos_audit_trail.core.interfaces import IPartyFallback
from aumos_audit_trail.core.references import ActorByName, ActorByReference, EntityRef, to_party
from aumos_audit_trail.core.registry import EntityTypeRegistry
from aumos_audit_trail.errors import ActorResolutionFailure
from aumos_audit_trail.observability import get_logger
from aumos_audit_trail.time_machine.context import ActorContext

logger = get_logger(__name__)

PartyValue = ActorByReference | ActorByName
Stage = tuple[str, Callable[[], Awaitable[PartyValue | None]]]

# Failures a stage may report; anything else is a programming error and propagates.
_STAGE_FAILURES = (ActorResolutionFailure, LookupError, AttributeError)


class PartyResolver:
    """Resolves the actor and tenant recorded on an audit record.

    Args:
        fallback: Optional collaborator supplying defaults.
        registry: Optional registry used to reference host model instances
            passed as explicit actors or tenants.
    """

    def __init__(
        self,
        fallback: IPartyFallback | None = None,
        registry: EntityTypeRegistry | None = None,
    ) -> None:
        self._fallback = fallback
        self._registry = registry

    async def resolve_tenant(self, entity: EntityRef, explicit: Any = None) -> PartyValue | None:
        """Resolve the tenant for a record on entity.

        Args:
            entity: The audited entity.
            explicit: Caller-supplied tenant; wins over every other source.

        Returns:
            The resolved tenant, or None.
        """
        stages: list[Stage] = [
            ("explicit", self._constant(to_party(explicit, self._registry))),
            ("ambient", self._constant(ActorContext.current_tenant())),
        ]
        if self._fallback is not None:
            fallback = self._fallback
            stages.append(("fallback", lambda: fallback.default_tenant(entity)))
        return await self._first_of("tenant", entity, stages)

    async def resolve_actor(
        self,
        entity: EntityRef,
        tenant: PartyValue | None = None,
        explicit: Any = None,
    ) -> PartyValue | None:
        """Resolve the actor for a record on entity.

        Args:
            entity: The audited entity.
            tenant: The already-resolved tenant, handed to the fallback.
            explicit: Caller-supplied actor; wins over every other source.

        Returns:
            The resolved actor, or None.
        """
        stages: list[Stage] = [
            ("explicit", self._constant(to_party(explicit, self._registry))),
            ("ambient", self._constant(ActorContext.current_actor())),
        ]
        if self._fallback is not None:
            fallback = self._fallback
            stages.append(("fallback", lambda: fallback.default_actor(entity, tenant)))
        return await self._first_of("actor", entity, stages)

    @staticmethod
    def _constant(value: PartyValue | None) -> Callable[[], Awaitable[PartyValue | None]]:
        async def stage() -> PartyValue | None:
            return value

        return stage

    async def _first_of(self, role: str, entity: EntityRef, stages: list[Stage]) -> PartyValue | None:
        for name, stage in stages:
            try:
                party = await stage()
            except _STAGE_FAILURES as exc:
                logger.warning(
                    "Audit party resolution stage failed",
                    role=role,
                    stage=name,
                    entity_type=entity.entity_type,
                    entity_id=entity.entity_id,
                    error=str(exc),
                )
                continue
            if party is not None:
                logger.debug("Audit party resolved", role=role, stage=name, party=party.display())
                return party

        logger.debug(
            "No audit party resolved",
            role=role,
            entity_type=entity.entity_type,
            entity_id=entity.entity_id,
        )
        return None
