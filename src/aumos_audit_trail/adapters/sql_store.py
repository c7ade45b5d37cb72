"""SQL audit log store - SQLAlchemy async persistence for AuditRecords.

This module is the ONLY place that connects to AUMOS_AUDIT_AUDIT_DB_URL.

Key exports:
- init_audit_db(...)        - Call at startup to initialize the audit engine
- close_audit_db()          - Call at shutdown to dispose the engine
- get_audit_db_session()    - FastAPI dependency for audit DB sessions
- create_audit_schema()     - Create the `audits` table and its indexes
- SqlAuditLogStore          - Append-only store implementing IAuditLogStore

Each insert_next_version call runs in its own transaction: read max(version),
insert max + 1, commit. Writers on the same entity are serialized by a
per-entity asyncio.Lock within the process and, on PostgreSQL, by a
transaction-scoped advisory lock across processes. Any race that still gets
through collides on the (entity_id, entity_type, version) unique constraint;
the loser gets VersionConflict and the VersionAssigner retries it.
"""

import asyncio
import weakref
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any

from pydantic_core import to_jsonable_python
from sqlalchemy import func, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from aumos_audit_trail.core.models import VERSION_CONSTRAINT, AuditRow, Base
from aumos_audit_trail.core.references import ActorByName, ActorByReference, EntityRef
from aumos_audit_trail.errors import StorageUnavailable, VersionConflict
from aumos_audit_trail.observability import get_logger
from aumos_audit_trail.time_machine.events import AuditAction, AuditRecord, PendingAudit
from aumos_audit_trail.time_machine.versioning import next_version

logger = get_logger(__name__)

# Module-level engine and session factory, initialized by init_audit_db()
_audit_engine: AsyncEngine | None = None
_audit_session_factory: async_sessionmaker[AsyncSession] | None = None

_UNAVAILABLE = (OperationalError, InterfaceError, ConnectionError, TimeoutError)


async def init_audit_db(
    audit_db_url: str,
    pool_size: int = 5,
    max_overflow: int = 2,
    pool_timeout: int = 30,
) -> async_sessionmaker[AsyncSession]:
    """Initialize the audit database engine and session factory.

    Must be called once at application startup before any audit writes.

    Args:
        audit_db_url: SQLAlchemy async URL for the audit database.
        pool_size: Connection pool size (ignored for SQLite).
        max_overflow: Max overflow connections above pool_size (ignored for SQLite).
        pool_timeout: Seconds to wait for a connection (ignored for SQLite).

    Returns:
        The session factory, also kept module-level for get_audit_db_session().
    """
    global _audit_engine, _audit_session_factory  # noqa: PLW0603

    engine_kwargs: dict[str, Any] = {
        # Echo is explicitly disabled; audit queries must not log values
        "echo": False,
        "pool_pre_ping": True,
    }
    if make_url(audit_db_url).get_backend_name() != "sqlite":
        engine_kwargs.update(pool_size=pool_size, max_overflow=max_overflow, pool_timeout=pool_timeout)

    logger.info("Initializing audit log engine", pool_size=pool_size, max_overflow=max_overflow)
    _audit_engine = create_async_engine(audit_db_url, **engine_kwargs)
    _audit_session_factory = async_sessionmaker(
        bind=_audit_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    logger.info("Audit log engine initialized")
    return _audit_session_factory


async def close_audit_db() -> None:
    """Dispose the audit database engine.

    After this call no further audit writes can occur until init_audit_db()
    is called again.
    """
    global _audit_engine, _audit_session_factory  # noqa: PLW0603

    if _audit_engine is not None:
        logger.info("Disposing audit log engine")
        await _audit_engine.dispose()
        _audit_engine = None
        _audit_session_factory = None


def get_audit_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the module-level session factory.

    Raises:
        RuntimeError: If init_audit_db() has not been called yet.
    """
    if _audit_session_factory is None:
        raise RuntimeError(
            "Audit log database has not been initialized. "
            "Call init_audit_db() in the application lifespan handler."
        )
    return _audit_session_factory


async def get_audit_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an audit database session.

    Yields:
        AsyncSession: A session connected to the audit database.

    Raises:
        RuntimeError: If init_audit_db() has not been called yet.
    """
    async with get_audit_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_audit_schema(engine: AsyncEngine | None = None) -> None:
    """Create the audits table, its indexes and unique constraint if missing."""
    target = engine or _audit_engine
    if target is None:
        raise RuntimeError("No audit engine available; call init_audit_db() first.")
    async with target.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _split_party(party: ActorByReference | ActorByName | None) -> tuple[str | None, str | None, str | None]:
    """Return (id, type, name) columns for a party."""
    if isinstance(party, ActorByReference):
        return party.party_id, party.party_type, None
    if isinstance(party, ActorByName):
        return None, None, party.name
    return None, None, None


def _join_party(
    party_id: str | None,
    party_type: str | None,
    name: str | None,
) -> ActorByReference | ActorByName | None:
    if party_id is not None and party_type is not None:
        return ActorByReference(party_id=party_id, party_type=party_type)
    if name:
        return ActorByName(name=name)
    return None


def _is_version_collision(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return VERSION_CONSTRAINT in message or "audits.version" in message


class SqlAuditLogStore:
    """Append-only AuditRecord store on the audit database.

    Has no update or delete methods: removing history is an operator action
    performed outside the engine.

    Args:
        session_factory: Factory from init_audit_db(). Defaults to the
            module-level factory.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or get_audit_session_factory()
        # Entries vanish once no writer holds the lock
        self._entity_locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, entity: EntityRef) -> asyncio.Lock:
        key = (entity.entity_type, entity.entity_id)
        lock = self._entity_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._entity_locks[key] = lock
        return lock

    @staticmethod
    async def _lock_entity_rows(session: AsyncSession, entity: EntityRef) -> None:
        """Take a transaction-scoped advisory lock on PostgreSQL; no-op elsewhere."""
        if session.get_bind().dialect.name != "postgresql":
            return
        await session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": str(entity)},
        )

    @staticmethod
    def _to_row(record: AuditRecord) -> AuditRow:
        actor_id, actor_type, actor_name = _split_party(record.actor)
        tenant_id, tenant_type, tenant_name = _split_party(record.tenant)
        return AuditRow(
            id=record.id,
            entity_id=record.entity.entity_id,
            entity_type=record.entity.entity_type,
            actor_id=actor_id,
            actor_type=actor_type,
            actor_name=actor_name,
            tenant_id=tenant_id,
            tenant_type=tenant_type,
            tenant_name=tenant_name,
            action=record.action.value,
            change_set=to_jsonable_python(record.change_set),
            version=record.version,
            comment=record.comment,
            created_at=record.created_at,
        )

    @staticmethod
    def _to_record(row: AuditRow) -> AuditRecord:
        return AuditRecord(
            id=row.id,
            entity=EntityRef(entity_id=row.entity_id, entity_type=row.entity_type),
            actor=_join_party(row.actor_id, row.actor_type, row.actor_name),
            tenant=_join_party(row.tenant_id, row.tenant_type, row.tenant_name),
            action=AuditAction(row.action),
            change_set=_readable_change_set(row),
            version=row.version,
            comment=row.comment,
            created_at=_utc(row.created_at),
        )

    async def insert_next_version(self, pending: PendingAudit) -> AuditRecord:
        """Assign max(version) + 1 for the entity and insert, in one transaction.

        Args:
            pending: The record awaiting a version.

        Returns:
            The persisted AuditRecord.

        Raises:
            VersionConflict: If a concurrent writer committed the same version first.
            StorageUnavailable: If the database cannot be reached.
        """
        entity = pending.entity
        current: int | None = None
        lock = self._lock_for(entity)
        try:
            async with lock, self._session_factory() as session, session.begin():
                await self._lock_entity_rows(session, entity)
                stmt = select(func.max(AuditRow.version)).where(
                    AuditRow.entity_id == entity.entity_id,
                    AuditRow.entity_type == entity.entity_type,
                )
                current = (await session.execute(stmt)).scalar()
                record = pending.to_record(next_version(current))
                session.add(self._to_row(record))
        except IntegrityError as exc:
            if not _is_version_collision(exc):
                raise StorageUnavailable(
                    f"Audit log store rejected the record: {exc.orig}",
                    entity_type=entity.entity_type,
                    entity_id=entity.entity_id,
                ) from exc
            raise VersionConflict(
                f"Version already taken for {entity}",
                entity_type=entity.entity_type,
                entity_id=entity.entity_id,
                version=next_version(current),
            ) from exc
        except _UNAVAILABLE as exc:
            raise StorageUnavailable(
                f"Audit log store unavailable: {exc}",
                entity_type=entity.entity_type,
                entity_id=entity.entity_id,
            ) from exc

        logger.info(
            "Audit record written",
            record_id=str(record.id),
            entity_type=entity.entity_type,
            entity_id=entity.entity_id,
            action=record.action.value,
            version=record.version,
        )
        return record

    async def list_for_entity(
        self,
        entity: EntityRef,
        max_version: int | None = None,
    ) -> list[AuditRecord]:
        """Return records for an entity ordered by version ascending."""
        stmt = select(AuditRow).where(
            AuditRow.entity_id == entity.entity_id,
            AuditRow.entity_type == entity.entity_type,
        )
        if max_version is not None:
            stmt = stmt.where(AuditRow.version <= max_version)
        stmt = stmt.order_by(AuditRow.version.asc())
        rows = await self._fetch(stmt, entity)
        return [self._to_record(row) for row in rows]

    async def find_latest_at(self, entity: EntityRef, timestamp: datetime) -> AuditRecord | None:
        """Return the record with the greatest created_at <= timestamp, or None."""
        stmt = (
            select(AuditRow)
            .where(
                AuditRow.entity_id == entity.entity_id,
                AuditRow.entity_type == entity.entity_type,
                AuditRow.created_at <= _utc(timestamp),
            )
            .order_by(AuditRow.created_at.desc(), AuditRow.version.desc())
            .limit(1)
        )
        rows = await self._fetch(stmt, entity)
        return self._to_record(rows[0]) if rows else None

    async def max_version(self, entity: EntityRef) -> int | None:
        stmt = select(func.max(AuditRow.version)).where(
            AuditRow.entity_id == entity.entity_id,
            AuditRow.entity_type == entity.entity_type,
        )
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalar()
        except _UNAVAILABLE as exc:
            raise StorageUnavailable(
                f"Audit log store unavailable: {exc}",
                entity_type=entity.entity_type,
                entity_id=entity.entity_id,
            ) from exc

    async def _fetch(self, stmt: Any, entity: EntityRef) -> list[AuditRow]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except _UNAVAILABLE as exc:
            raise StorageUnavailable(
                f"Audit log store unavailable: {exc}",
                entity_type=entity.entity_type,
                entity_id=entity.entity_id,
            ) from exc


def _readable_change_set(row: AuditRow) -> dict[str, tuple[Any, Any]]:
    """Return the row's change set, dropping entries that are not [old, new] pairs."""
    raw = row.change_set
    if not isinstance(raw, dict):
        logger.warning(
            "Stored change set is not an object",
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            version=row.version,
        )
        return {}
    readable: dict[str, tuple[Any, Any]] = {}
    for attr, values in raw.items():
        if isinstance(values, (list, tuple)) and len(values) == 2:
            readable[str(attr)] = (values[0], values[1])
        else:
            logger.warning(
                "Dropping malformed stored change",
                entity_type=row.entity_type,
                entity_id=row.entity_id,
                version=row.version,
                attribute=str(attr),
            )
    return readable
