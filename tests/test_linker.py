"""Tests for the association linker."""

from unittest.mock import AsyncMock

import pytest

from recordsync.exceptions import AuthError, ConfigurationError, TargetError, ValidationError
from recordsync.models.record import AssociationEdge
from recordsync.services.linker import AssociationLinker


@pytest.fixture
def seeded(target):
    for contact_id in ("1", "2", "3"):
        target.seed("contacts", {"email": f"{contact_id}@b.c"}, record_id=contact_id)
    for company_id in ("a", "b", "c"):
        target.seed("companies", {"name": company_id}, record_id=company_id)
    return target


@pytest.fixture
def linker(seeded, registry):
    return AssociationLinker(seeded, registry)


class TestLink:
    async def test_link_uses_registered_code(self, linker, seeded):
        edge = await linker.link("contacts", "1", "companies", "a")

        assert edge == AssociationEdge("contacts", "1", "companies", "a", 279)
        assert seeded.associations == [edge]

    async def test_reverse_direction_has_its_own_code(self, linker):
        edge = await linker.link("companies", "a", "contacts", "1")

        assert edge.association_type_id == 280

    async def test_unregistered_pair_sends_nothing(self, linker, seeded):
        with pytest.raises(ConfigurationError):
            await linker.link("companies", "a", "campaigns", "x")

        assert seeded.calls["association"] == 0
        assert seeded.associations == []

    async def test_blank_id_is_rejected(self, linker, seeded):
        with pytest.raises(ValidationError):
            await linker.link("contacts", "", "companies", "a")

        assert seeded.calls["association"] == 0


class TestLinkBatch:
    async def test_malformed_pair_is_reported_without_sending(self, linker, seeded):
        result = await linker.link_batch(
            "contacts", "companies", [("1", "a"), ("2", ""), {"from_id": "3", "to_id": "c"}]
        )

        assert len(result.results) == 2
        assert len(result.errors) == 1
        assert result.errors[0]["index"] == 1
        assert not result.success
        assert seeded.edges("contacts", "companies") == [("1", "a"), ("3", "c")]

    async def test_unregistered_pair_raises_before_any_call(self, linker, seeded):
        with pytest.raises(ConfigurationError):
            await linker.link_batch("companies", "lists", [("a", "1")])

        assert seeded.calls["batch_association"] == 0

    async def test_missing_endpoint_reported_by_target(self, linker):
        result = await linker.link_batch("contacts", "companies", [("1", "a"), ("1", "zzz")])

        assert len(result.results) == 1
        assert result.errors[0]["to_id"] == "zzz"

    async def test_pairs_are_chunked(self, seeded, registry):
        linker = AssociationLinker(seeded, registry, batch_size=2)

        result = await linker.link_batch(
            "contacts", "companies", [("1", "a"), ("2", "b"), ("3", "c"), ("1", "b"), ("2", "c")]
        )

        assert seeded.calls["batch_association"] == 3
        assert len(result.results) == 5
        assert result.success

    async def test_failed_chunk_reports_every_pair(self, seeded, registry):
        seeded.batch_create_associations = AsyncMock(side_effect=[
            {"results": [{"ok": 1}, {"ok": 2}], "errors": []},
            TargetError("batch rejected", status_code=400),
        ])
        linker = AssociationLinker(seeded, registry, batch_size=2)

        result = await linker.link_batch("contacts", "companies", [("1", "a"), ("2", "b"), ("3", "c")])

        assert len(result.results) == 2
        assert result.errors == [{
            "from_type": "contacts",
            "from_id": "3",
            "to_type": "companies",
            "to_id": "c",
            "association_type_id": 279,
            "error": "batch rejected",
        }]

    async def test_fatal_chunk_error_propagates(self, seeded, registry):
        seeded.batch_create_associations = AsyncMock(side_effect=AuthError("token revoked"))
        linker = AssociationLinker(seeded, registry)

        with pytest.raises(AuthError):
            await linker.link_batch("contacts", "companies", [("1", "a")])

    async def test_category_is_passed_through(self, seeded, registry):
        seeded.batch_create_associations = AsyncMock(return_value={"results": [], "errors": []})
        linker = AssociationLinker(seeded, registry)

        await linker.link_batch("contacts", "campaigns", [("1", "x")])

        seeded.batch_create_associations.assert_awaited_once_with(
            "contacts", "campaigns", [AssociationEdge("contacts", "1", "campaigns", "x", 501)], "DEFINED"
        )
