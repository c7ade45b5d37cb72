"""Tests for InMemoryAuditLogStore and VersionAssigner.

Covers: max+1 version assignment, concurrent writers on one entity, retry on
VersionConflict, ordering, max_version filtering, find_latest_at and
operator deletes.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from aumos_audit_trail.core.references import EntityRef
from aumos_audit_trail.errors import VersionConflict
from aumos_audit_trail.time_machine import versioning
from aumos_audit_trail.time_machine.event_store import InMemoryAuditLogStore
from aumos_audit_trail.time_machine.events import AuditAction, AuditRecord, PendingAudit
from aumos_audit_trail.time_machine.versioning import VersionAssigner, next_version

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_pending(entity: EntityRef, name: str = "Brandon") -> PendingAudit:
    return PendingAudit(
        entity=entity,
        action=AuditAction.UPDATE,
        change_set={"name": (None, name)},
    )


def make_record(entity: EntityRef, version: int, created_at: datetime) -> AuditRecord:
    return AuditRecord(
        entity=entity,
        action=AuditAction.UPDATE,
        change_set={"name": (None, f"v{version}")},
        version=version,
        created_at=created_at,
    )


# ---------------------------------------------------------------------------
# next_version / VersionAssigner
# ---------------------------------------------------------------------------


class TestNextVersion:
    def test_first_version_is_one(self) -> None:
        assert next_version(None) == 1

    def test_increments_current_max(self) -> None:
        assert next_version(3) == 4


class TestVersionAssigner:
    """Bounded retry around the store's atomic insert."""

    @pytest.mark.asyncio()
    async def test_retries_after_conflict(self, user_ref: EntityRef) -> None:
        expected = make_pending(user_ref).to_record(2)
        insert = AsyncMock(side_effect=[VersionConflict("taken", version=1), expected])

        record = await VersionAssigner(insert, max_retries=3).assign(make_pending(user_ref))

        assert record is expected
        assert insert.await_count == 2

    @pytest.mark.asyncio()
    async def test_raises_after_retries_exhausted(self, user_ref: EntityRef) -> None:
        insert = AsyncMock(side_effect=VersionConflict("taken", version=1))

        with pytest.raises(VersionConflict) as exc_info:
            await VersionAssigner(insert, max_retries=2).assign(make_pending(user_ref))

        assert exc_info.value.transient is True
        assert insert.await_count == 3

    @pytest.mark.asyncio()
    async def test_retries_wait_a_bounded_jittered_backoff(
        self, user_ref: EntityRef, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        sleep = AsyncMock()
        monkeypatch.setattr(versioning.asyncio, "sleep", sleep)
        expected = make_pending(user_ref).to_record(3)
        insert = AsyncMock(side_effect=[VersionConflict("taken"), VersionConflict("taken"), expected])

        await VersionAssigner(insert, max_retries=3, backoff_seconds=0.5).assign(make_pending(user_ref))

        delays = [call.args[0] for call in sleep.await_args_list]
        assert len(delays) == 2
        assert 0 <= delays[0] <= 1.0
        assert 0 <= delays[1] <= 2.0

    @pytest.mark.asyncio()
    async def test_zero_backoff_never_sleeps(self, user_ref: EntityRef, monkeypatch: pytest.MonkeyPatch) -> None:
        sleep = AsyncMock()
        monkeypatch.setattr(versioning.asyncio, "sleep", sleep)
        insert = AsyncMock(side_effect=[VersionConflict("taken"), make_pending(user_ref).to_record(2)])

        await VersionAssigner(insert, backoff_seconds=0).assign(make_pending(user_ref))

        sleep.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_zero_retries_tries_once(self, user_ref: EntityRef) -> None:
        insert = AsyncMock(side_effect=VersionConflict("taken"))

        with pytest.raises(VersionConflict):
            await VersionAssigner(insert, max_retries=0).assign(make_pending(user_ref))

        assert insert.await_count == 1


# ---------------------------------------------------------------------------
# InMemoryAuditLogStore
# ---------------------------------------------------------------------------


class TestInsertNextVersion:
    @pytest.mark.asyncio()
    async def test_versions_start_at_one_and_increase(
        self, store: InMemoryAuditLogStore, user_ref: EntityRef
    ) -> None:
        first = await store.insert_next_version(make_pending(user_ref, "a"))
        second = await store.insert_next_version(make_pending(user_ref, "b"))

        assert (first.version, second.version) == (1, 2)
        assert await store.max_version(user_ref) == 2

    @pytest.mark.asyncio()
    async def test_versions_are_per_entity(self, store: InMemoryAuditLogStore, user_ref: EntityRef) -> None:
        other = EntityRef(entity_id="2", entity_type="User")
        await store.insert_next_version(make_pending(user_ref))
        record = await store.insert_next_version(make_pending(other))

        assert record.version == 1

    @pytest.mark.asyncio()
    async def test_same_id_different_type_is_a_different_entity(
        self, store: InMemoryAuditLogStore, user_ref: EntityRef
    ) -> None:
        company = EntityRef(entity_id=user_ref.entity_id, entity_type="Company")
        await store.insert_next_version(make_pending(user_ref))

        assert (await store.insert_next_version(make_pending(company))).version == 1

    @pytest.mark.asyncio()
    async def test_concurrent_tasks_get_consecutive_versions(
        self, store: InMemoryAuditLogStore, user_ref: EntityRef
    ) -> None:
        records = await asyncio.gather(
            *(store.insert_next_version(make_pending(user_ref, str(i))) for i in range(20))
        )

        assert sorted(record.version for record in records) == list(range(1, 21))

    def test_concurrent_threads_get_consecutive_versions(
        self, store: InMemoryAuditLogStore, user_ref: EntityRef
    ) -> None:
        def write(i: int) -> int:
            record = asyncio.run(store.insert_next_version(make_pending(user_ref, str(i))))
            return record.version

        with ThreadPoolExecutor(max_workers=8) as pool:
            versions = list(pool.map(write, range(40)))

        assert sorted(versions) == list(range(1, 41))
        assert store.count(user_ref) == 40


class TestAppend:
    def test_duplicate_version_raises_conflict(self, store: InMemoryAuditLogStore, user_ref: EntityRef) -> None:
        store.append(make_record(user_ref, 1, T0))

        with pytest.raises(VersionConflict) as exc_info:
            store.append(make_record(user_ref, 1, T0))

        assert exc_info.value.version == 1

    @pytest.mark.asyncio()
    async def test_out_of_order_appends_are_listed_in_version_order(
        self, store: InMemoryAuditLogStore, user_ref: EntityRef
    ) -> None:
        for version in (3, 1, 2):
            store.append(make_record(user_ref, version, T0 + timedelta(minutes=version)))

        records = await store.list_for_entity(user_ref)

        assert [record.version for record in records] == [1, 2, 3]


class TestQueries:
    @pytest.mark.asyncio()
    async def test_list_respects_max_version(self, store: InMemoryAuditLogStore, user_ref: EntityRef) -> None:
        for version in (1, 2, 3):
            store.append(make_record(user_ref, version, T0))

        records = await store.list_for_entity(user_ref, max_version=2)

        assert [record.version for record in records] == [1, 2]

    @pytest.mark.asyncio()
    async def test_unknown_entity_has_no_history(self, store: InMemoryAuditLogStore, user_ref: EntityRef) -> None:
        assert await store.list_for_entity(user_ref) == []
        assert await store.max_version(user_ref) is None
        assert await store.find_latest_at(user_ref, T0) is None

    @pytest.mark.asyncio()
    async def test_find_latest_at_picks_greatest_created_at_not_after_timestamp(
        self, store: InMemoryAuditLogStore, user_ref: EntityRef
    ) -> None:
        store.append(make_record(user_ref, 1, T0))
        store.append(make_record(user_ref, 2, T0 + timedelta(hours=1)))
        store.append(make_record(user_ref, 3, T0 + timedelta(hours=2)))

        found = await store.find_latest_at(user_ref, T0 + timedelta(hours=1, minutes=30))

        assert found is not None
        assert found.version == 2

    @pytest.mark.asyncio()
    async def test_find_latest_at_is_inclusive_and_accepts_naive_utc(
        self, store: InMemoryAuditLogStore, user_ref: EntityRef
    ) -> None:
        store.append(make_record(user_ref, 1, T0))

        found = await store.find_latest_at(user_ref, T0.replace(tzinfo=None))

        assert found is not None
        assert found.version == 1

    @pytest.mark.asyncio()
    async def test_find_latest_at_before_first_record_is_none(
        self, store: InMemoryAuditLogStore, user_ref: EntityRef
    ) -> None:
        store.append(make_record(user_ref, 1, T0))

        assert await store.find_latest_at(user_ref, T0 - timedelta(seconds=1)) is None


class TestDeleteRecord:
    @pytest.mark.asyncio()
    async def test_deleting_middle_record_leaves_gap(
        self, store: InMemoryAuditLogStore, user_ref: EntityRef
    ) -> None:
        for version in (1, 2, 3):
            store.append(make_record(user_ref, version, T0))

        assert store.delete_record(user_ref, 2) is True
        records = await store.list_for_entity(user_ref)

        assert [record.version for record in records] == [1, 3]
        assert (await store.insert_next_version(make_pending(user_ref))).version == 4

    def test_deleting_missing_version_returns_false(
        self, store: InMemoryAuditLogStore, user_ref: EntityRef
    ) -> None:
        assert store.delete_record(user_ref, 7) is False
