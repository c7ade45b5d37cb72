"""Request-scoped audit context for ASGI applications.

AuditContextMiddleware reads the acting user and tenant from request headers
and activates them as the ambient actor/tenant for the whole request, so
audit records written anywhere downstream are attributed without passing the
actor through every call.

Header values are either "Type:id" (recorded by reference) or a plain name:

    X-Actor-Id: User:42        → ActorByReference(party_type="User", party_id="42")
    X-Actor-Id: nightly-import → ActorByName(name="nightly-import")
"""

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

from aumos_audit_trail.core.references import ActorByName, ActorByReference
from aumos_audit_trail.observability import get_logger
from aumos_audit_trail.time_machine.context import audit_as, audit_as_tenant

logger = get_logger(__name__)


def party_from_header(value: str | None) -> ActorByReference | ActorByName | None:
    """Parse a header value into a Party, or None when blank."""
    if value is None or not value.strip():
        return None
    value = value.strip()
    party_type, sep, party_id = value.partition(":")
    if sep and party_type and party_id:
        return ActorByReference(party_id=party_id, party_type=party_type)
    return ActorByName(name=value)


class AuditContextMiddleware:
    """Pure ASGI middleware activating the ambient actor and tenant per request.

    Args:
        app: The downstream ASGI application.
        actor_header: Header carrying the actor.
        tenant_header: Header carrying the tenant.
    """

    def __init__(
        self,
        app: ASGIApp,
        actor_header: str = "X-Actor-Id",
        tenant_header: str = "X-Tenant-Id",
    ) -> None:
        self.app = app
        self.actor_header = actor_header
        self.tenant_header = tenant_header

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        actor = party_from_header(headers.get(self.actor_header))
        tenant = party_from_header(headers.get(self.tenant_header))
        if actor is not None or tenant is not None:
            logger.debug(
                "Audit context bound for request",
                path=scope.get("path"),
                actor=actor.display() if actor else None,
                tenant=tenant.display() if tenant else None,
            )

        with audit_as(actor), audit_as_tenant(tenant):
            await self.app(scope, receive, send)
