"""Settings for aumos-audit-trail.

Environment variable prefix: AUMOS_AUDIT_

Covers:
- Audit log database (separate connection pool for append-only writes)
- Version assignment retry bound
- Storage-failure policy (block the triggering mutation or not)
- Default attribute denylist for change sets
- Logging and request-context headers
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for aumos-audit-trail.

    Environment variable prefix: AUMOS_AUDIT_
    """

    service_name: str = "aumos-audit-trail"

    # -------------------------------------------------------------------------
    # Audit log database
    # -------------------------------------------------------------------------

    audit_db_url: str = Field(
        default="sqlite+aiosqlite:///./audits.db",
        description="SQLAlchemy async URL for the audit log database.",
    )
    audit_db_pool_size: int = Field(
        default=5,
        description="Connection pool size for the audit DB. Keep small, audit writes are append-only.",
    )
    audit_db_max_overflow: int = Field(
        default=2,
        description="Max overflow connections above audit_db_pool_size.",
    )
    audit_db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for an audit DB connection before raising an error.",
    )

    # -------------------------------------------------------------------------
    # Audit creation policy
    # -------------------------------------------------------------------------

    version_conflict_retries: int = Field(
        default=3,
        ge=0,
        description="How many times a writer recomputes its version after losing a race "
        "before VersionConflict is surfaced as a transient failure.",
    )
    version_conflict_backoff_seconds: float = Field(
        default=0.01,
        ge=0,
        description="Base of the jittered exponential backoff between version conflict retries.",
    )
    block_on_audit_failure: bool = Field(
        default=False,
        description="When true, StorageUnavailable during audit creation propagates to the "
        "caller and aborts the triggering mutation. When false it is logged and skipped.",
    )
    non_audited_attributes: list[str] = Field(
        default_factory=lambda: ["id", "created_at", "updated_at", "lock_version", "password"],
        description="Attributes never written to a change set unless a tracked type overrides them.",
    )

    # -------------------------------------------------------------------------
    # Logging and request context
    # -------------------------------------------------------------------------

    log_level: str = Field(default="INFO", description="Minimum log level.")
    log_format: str = Field(default="json", description="json | console")
    actor_header: str = Field(
        default="X-Actor-Id",
        description="Request header carrying the acting user for AuditContextMiddleware.",
    )
    tenant_header: str = Field(
        default="X-Tenant-Id",
        description="Request header carrying the acting tenant for AuditContextMiddleware.",
    )

    model_config = SettingsConfigDict(env_prefix="AUMOS_AUDIT_")
