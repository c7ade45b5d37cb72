"""Tests for historical state reconstruction.

Covers: reconstruct at a version, gaps from deleted records, revision_at,
relative/previous stepping, revisions(from_version), destroy records,
schema drift, malformed history and materialization.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from aumos_audit_trail.core.references import EntityRef
from aumos_audit_trail.core.registry import EntityTypeRegistry
from aumos_audit_trail.time_machine.event_store import InMemoryAuditLogStore
from aumos_audit_trail.time_machine.events import AuditAction, AuditRecord
from aumos_audit_trail.time_machine.reconstructor import Reconstructor, reconstruct_attributes
from aumos_audit_trail.time_machine.recorder import ChangeRecorder
from tests.conftest import User

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_record(
    entity: EntityRef,
    version: int,
    change_set: dict,
    action: AuditAction = AuditAction.UPDATE,
    created_at: datetime | None = None,
) -> AuditRecord:
    return AuditRecord(
        entity=entity,
        action=action,
        change_set=change_set,
        version=version,
        created_at=created_at or T0 + timedelta(minutes=version),
    )


async def rename_history(recorder: ChangeRecorder, user_ref: EntityRef) -> None:
    """Brandon (v1) → Foobar (v2) → Awesome (v3)."""
    await recorder.record_change(user_ref, "create", after={"name": "Brandon", "username": "brandon"})
    await recorder.record_change(user_ref, "update", before={"name": "Brandon"}, after={"name": "Foobar"})
    await recorder.record_change(user_ref, "update", before={"name": "Foobar"}, after={"name": "Awesome"})


# ---------------------------------------------------------------------------
# reconstruct
# ---------------------------------------------------------------------------


class TestReconstruct:
    @pytest.mark.asyncio()
    async def test_each_version_rebuilds_its_state(
        self, recorder: ChangeRecorder, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        await rename_history(recorder, user_ref)

        names = [(await reconstructor.reconstruct(user_ref, version)).attributes["name"] for version in (1, 2, 3)]

        assert names == ["Brandon", "Foobar", "Awesome"]

    @pytest.mark.asyncio()
    async def test_first_revision_matches_create_attributes(
        self, recorder: ChangeRecorder, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        await rename_history(recorder, user_ref)

        revision = await reconstructor.reconstruct(user_ref, 1)

        assert revision.as_dict() == {"name": "Brandon", "username": "brandon", "version": 1}

    @pytest.mark.asyncio()
    async def test_no_history_returns_none(self, reconstructor: Reconstructor, user_ref: EntityRef) -> None:
        assert await reconstructor.reconstruct(user_ref, 1) is None

    @pytest.mark.asyncio()
    async def test_version_below_one_returns_none(
        self, recorder: ChangeRecorder, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        await rename_history(recorder, user_ref)

        assert await reconstructor.reconstruct(user_ref, 0) is None

    @pytest.mark.asyncio()
    async def test_deleted_record_leaves_state_of_previous_change(
        self,
        store: InMemoryAuditLogStore,
        recorder: ChangeRecorder,
        reconstructor: Reconstructor,
        user_ref: EntityRef,
    ) -> None:
        await rename_history(recorder, user_ref)
        store.delete_record(user_ref, 2)

        revision = await reconstructor.reconstruct(user_ref, 2)

        assert revision.version == 2
        assert revision.attributes["name"] == "Brandon"

    @pytest.mark.asyncio()
    async def test_stored_strings_are_cast_back_to_declared_types(
        self, store: InMemoryAuditLogStore, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        store.append(
            make_record(
                user_ref,
                1,
                {"logins": (None, "3"), "suspended_at": (None, T0.isoformat())},
                action=AuditAction.CREATE,
            )
        )

        revision = await reconstructor.reconstruct(user_ref, 1)

        assert revision.attributes == {"logins": 3, "suspended_at": T0}


# ---------------------------------------------------------------------------
# destroy, schema drift, malformed history
# ---------------------------------------------------------------------------


class TestHistoryDefects:
    @pytest.mark.asyncio()
    async def test_destroyed_entity_without_prior_history_is_reconstructable(
        self, store: InMemoryAuditLogStore, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        store.append(
            make_record(
                user_ref,
                4,
                {"name": ("Awesome", None), "username": ("brandon", None)},
                action=AuditAction.DESTROY,
            )
        )

        revision = await reconstructor.reconstruct(user_ref, 4)

        assert revision.attributes == {"name": "Awesome", "username": "brandon"}

    @pytest.mark.asyncio()
    async def test_attribute_missing_from_schema_is_ignored(
        self, store: InMemoryAuditLogStore, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        store.append(
            make_record(user_ref, 1, {"name": (None, "Brandon"), "nickname": (None, "b")}, AuditAction.CREATE)
        )

        revision = await reconstructor.reconstruct(user_ref, 1)

        assert revision.attributes == {"name": "Brandon"}

    @pytest.mark.asyncio()
    async def test_unregistered_type_keeps_every_attribute(self, store: InMemoryAuditLogStore) -> None:
        ref = EntityRef(entity_id="9", entity_type="Invoice")
        store.append(make_record(ref, 1, {"total": (None, "10.00")}, AuditAction.CREATE))

        revision = await Reconstructor(store, EntityTypeRegistry()).reconstruct(ref, 1)

        assert revision.attributes == {"total": "10.00"}

    def test_non_pair_change_is_skipped(self, user_ref: EntityRef) -> None:
        good = make_record(user_ref, 1, {"name": (None, "Brandon")}, AuditAction.CREATE)
        bad = good.model_copy(update={"version": 2, "change_set": {"name": "Foobar", "username": (None, "b")}})

        assert reconstruct_attributes([good, bad]) == {"name": "Brandon", "username": "b"}

    def test_non_mapping_change_set_is_skipped(self, user_ref: EntityRef) -> None:
        good = make_record(user_ref, 1, {"name": (None, "Brandon")}, AuditAction.CREATE)
        bad = good.model_copy(update={"version": 2, "change_set": ["name", "Foobar"]})

        assert reconstruct_attributes([good, bad]) == {"name": "Brandon"}


# ---------------------------------------------------------------------------
# revision_at / relative / previous / revisions
# ---------------------------------------------------------------------------


class TestNavigation:
    @pytest.mark.asyncio()
    async def test_revision_at_uses_latest_record_not_after_timestamp(
        self, store: InMemoryAuditLogStore, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        store.append(make_record(user_ref, 1, {"name": (None, "Brandon")}, AuditAction.CREATE, T0))
        store.append(make_record(user_ref, 2, {"name": ("Brandon", "Foobar")}, created_at=T0 + timedelta(days=1)))

        revision = await reconstructor.revision_at(user_ref, T0 + timedelta(hours=12))

        assert revision.version == 1
        assert revision.attributes["name"] == "Brandon"

    @pytest.mark.asyncio()
    async def test_revision_at_before_first_record_is_none(
        self, store: InMemoryAuditLogStore, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        store.append(make_record(user_ref, 1, {"name": (None, "Brandon")}, AuditAction.CREATE, T0))

        assert await reconstructor.revision_at(user_ref, T0 - timedelta(days=1)) is None

    @pytest.mark.asyncio()
    async def test_previous_steps_back_one_version(
        self, recorder: ChangeRecorder, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        await rename_history(recorder, user_ref)

        revision = await reconstructor.previous(user_ref)

        assert revision.version == 2
        assert revision.attributes["name"] == "Foobar"

    @pytest.mark.asyncio()
    async def test_previous_can_be_chained_until_none(
        self, recorder: ChangeRecorder, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        await rename_history(recorder, user_ref)

        names = []
        revision = await reconstructor.previous(user_ref)
        while revision is not None:
            names.append(revision.attributes["name"])
            revision = await reconstructor.previous(user_ref, from_version=revision.version)

        assert names == ["Foobar", "Brandon"]

    @pytest.mark.asyncio()
    async def test_relative_offset_beyond_history_is_none(
        self, recorder: ChangeRecorder, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        await rename_history(recorder, user_ref)

        assert (await reconstructor.relative(user_ref, 2)).attributes["name"] == "Brandon"
        assert await reconstructor.relative(user_ref, 3) is None

    @pytest.mark.asyncio()
    async def test_relative_without_history_is_none(self, reconstructor: Reconstructor, user_ref: EntityRef) -> None:
        assert await reconstructor.relative(user_ref, 0) is None

    @pytest.mark.asyncio()
    async def test_revisions_lists_every_version(
        self, recorder: ChangeRecorder, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        await rename_history(recorder, user_ref)

        revisions = await reconstructor.revisions(user_ref)

        assert [revision.version for revision in revisions] == [1, 2, 3]
        assert [revision.attributes["name"] for revision in revisions] == ["Brandon", "Foobar", "Awesome"]
        assert all(revision.attributes["username"] == "brandon" for revision in revisions)

    @pytest.mark.asyncio()
    async def test_revisions_from_version_keeps_accumulated_state(
        self, recorder: ChangeRecorder, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        await rename_history(recorder, user_ref)

        revisions = await reconstructor.revisions(user_ref, from_version=2)

        assert [revision.version for revision in revisions] == [2, 3]
        assert revisions[0].attributes == {"name": "Foobar", "username": "brandon"}


# ---------------------------------------------------------------------------
# materialize
# ---------------------------------------------------------------------------


class TestMaterialize:
    @pytest.mark.asyncio()
    async def test_registered_factory_builds_host_instance(
        self, recorder: ChangeRecorder, reconstructor: Reconstructor, user_ref: EntityRef
    ) -> None:
        await rename_history(recorder, user_ref)
        revision = await reconstructor.reconstruct(user_ref, 2)

        user = reconstructor.materialize(revision)

        assert user == User(name="Foobar", username="brandon")

    @pytest.mark.asyncio()
    async def test_unregistered_type_returns_plain_map(self, store: InMemoryAuditLogStore) -> None:
        ref = EntityRef(entity_id="9", entity_type="Invoice")
        store.append(make_record(ref, 1, {"total": (None, 10)}, AuditAction.CREATE))
        reconstructor = Reconstructor(store)

        revision = await reconstructor.reconstruct(ref, 1)

        assert reconstructor.materialize(revision) == {"total": 10, "version": 1}
