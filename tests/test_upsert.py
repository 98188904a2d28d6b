"""Tests for the upsert coordinator."""

import asyncio

import pytest

from recordsync.exceptions import TargetError, ValidationError
from recordsync.loaders.memory_loader import MemoryLoader
from recordsync.models.record import NaturalKey, TransformedRecord, UpsertAction
from recordsync.models.schema import MappingTable, UpsertPolicy
from recordsync.services.upsert import UpsertCoordinator


def contact(email, **data):
    return TransformedRecord(
        source_id=email,
        object_type="contacts",
        data={"email": email, **data},
        primary_key="email",
    )


class TestUpsert:
    async def test_first_upsert_creates(self, target, upserter):
        result = await upserter.upsert("contacts", NaturalKey("email", "a@b.c"), contact("a@b.c", firstname="Ann"))

        assert result.action == UpsertAction.CREATED
        assert result.id
        assert target.all("contacts") == [
            {"id": result.id, "properties": {"email": "a@b.c", "firstname": "Ann"}},
        ]

    async def test_second_upsert_updates_same_entity(self, target, upserter):
        first = await upserter.upsert("contacts", ("email", "a@b.c"), contact("a@b.c", firstname="Ann"))
        second = await upserter.upsert("contacts", ("email", "a@b.c"), contact("a@b.c", firstname="Anna"))

        assert second.action == UpsertAction.UPDATED
        assert second.id == first.id
        assert target.calls["create"] == 1
        assert target.calls["update"] == 1
        assert len(target.all("contacts")) == 1
        assert target.all("contacts")[0]["properties"]["firstname"] == "Anna"

    async def test_skip_policy_leaves_existing_list_alone(self, target, upserter):
        existing_id = target.seed("lists", {"name": "Newsletter", "size": 10})
        record = TransformedRecord("7", "lists", {"name": "Newsletter", "size": 99}, primary_key="name")

        result = await upserter.upsert("lists", NaturalKey("name", "Newsletter"), record)

        assert result.action == UpsertAction.UNCHANGED
        assert result.id == existing_id
        assert target.calls["update"] == 0
        assert target.entities["lists"][existing_id]["size"] == 10

    async def test_policy_override(self, target, upserter):
        existing_id = target.seed("lists", {"name": "Newsletter"})
        record = TransformedRecord("7", "lists", {"name": "Newsletter", "size": 5}, primary_key="name")

        result = await upserter.upsert("lists", ("name", "Newsletter"), record, policy=UpsertPolicy.UPDATE)

        assert result.action == UpsertAction.UPDATED
        assert target.entities["lists"][existing_id]["size"] == 5

    async def test_upsert_record_uses_table_key(self, target, upserter, contact_table):
        result = await upserter.upsert_record(contact("a@b.c"), contact_table)

        assert result.natural_key == "a@b.c"
        assert result.action == UpsertAction.CREATED

    async def test_dry_run_never_writes(self, target):
        target.seed("contacts", {"email": "old@b.c"})
        upserter = UpsertCoordinator(target, dry_run=True)

        created = await upserter.upsert("contacts", ("email", "new@b.c"), contact("new@b.c"))
        updated = await upserter.upsert("contacts", ("email", "old@b.c"), contact("old@b.c", firstname="X"))

        assert created.action == UpsertAction.CREATED
        assert created.id == ""
        assert updated.action == UpsertAction.UPDATED
        assert target.calls["create"] == 0
        assert target.calls["update"] == 0
        assert target.calls["find"] == 2
        assert len(target.all("contacts")) == 1

    async def test_missing_primary_key_is_validation_error(self, target, upserter):
        record = TransformedRecord("1", "contacts", {"firstname": "Ann"}, primary_key="email")

        with pytest.raises(ValidationError):
            await upserter.upsert("contacts", ("email", None), record)

        assert target.calls["find"] == 0

    async def test_blank_natural_key_is_validation_error(self, upserter):
        with pytest.raises(ValidationError):
            await upserter.upsert("contacts", ("email", "  "), contact("a@b.c"))

    async def test_create_without_id_is_target_error(self, target, upserter):
        async def create(object_type, properties):
            return {"properties": properties}

        target.create = create

        with pytest.raises(TargetError):
            await upserter.upsert("contacts", ("email", "a@b.c"), contact("a@b.c"))

    async def test_concurrent_upserts_of_one_key_create_once(self):
        target = MemoryLoader(latency=0.01)
        upserter = UpsertCoordinator(target)

        results = await asyncio.gather(*(
            upserter.upsert("contacts", ("email", "same@b.c"), contact("same@b.c", n=i))
            for i in range(5)
        ))

        assert target.calls["create"] == 1
        assert len(target.all("contacts")) == 1
        assert [r.action for r in results].count(UpsertAction.CREATED) == 1
        assert len({r.id for r in results}) == 1

    async def test_concurrent_upserts_of_distinct_keys(self):
        target = MemoryLoader(latency=0.01)
        upserter = UpsertCoordinator(target)

        await asyncio.gather(*(
            upserter.upsert("contacts", ("email", f"{i}@b.c"), contact(f"{i}@b.c"))
            for i in range(4)
        ))

        assert target.calls["create"] == 4

    async def test_table_on_found_overrides_default(self, target, upserter):
        existing_id = target.seed("lists", {"name": "Newsletter"})
        table = MappingTable.from_dict({
            "object_type": "lists", "primary_key": "name", "on_found": "update", "fields": {"name": "name"},
        })
        record = TransformedRecord("7", "lists", {"name": "Newsletter", "size": 5}, primary_key="name")

        result = await upserter.upsert_record(record, table)

        assert result.action == UpsertAction.UPDATED
        assert target.entities["lists"][existing_id]["size"] == 5


class TestKeyLocks:
    async def test_locks_are_released_after_sequential_upserts(self, upserter):
        for i in range(50):
            await upserter.upsert("contacts", ("email", f"{i}@b.c"), contact(f"{i}@b.c"))

        assert upserter._locks == {}
        assert upserter._lock_users == {}

    async def test_locks_are_released_after_concurrent_upserts(self):
        upserter = UpsertCoordinator(MemoryLoader(latency=0.01))

        await asyncio.gather(*(
            upserter.upsert("contacts", ("email", f"{i % 3}@b.c"), contact(f"{i % 3}@b.c"))
            for i in range(9)
        ))

        assert upserter._locks == {}
        assert upserter._lock_users == {}

    async def test_lock_is_released_when_upsert_fails(self, target, upserter):
        async def create(object_type, properties):
            raise TargetError("rejected", status_code=400)

        target.create = create

        with pytest.raises(TargetError):
            await upserter.upsert("contacts", ("email", "a@b.c"), contact("a@b.c"))

        assert upserter._locks == {}
