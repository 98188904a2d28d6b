"""Shared fixtures for the recordsync tests."""

import pytest

from recordsync.extractors.memory_extractor import MemoryExtractor
from recordsync.extractors.reader import SourceReader
from recordsync.loaders.memory_loader import MemoryLoader
from recordsync.models.migration import PaginationStyle, SourceConfig, SourceType
from recordsync.models.schema import AssociationRegistry, MappingTable
from recordsync.services.upsert import UpsertCoordinator


@pytest.fixture
def contact_table() -> MappingTable:
    return MappingTable.from_dict({
        "name": "leads-to-contacts",
        "object_type": "contacts",
        "primary_key": "email",
        "display_name_field": "company",
        "constants": {"lifecyclestage": "lead"},
        "fields": {
            "email": "email",
            "firstName": "firstname",
            "company": "company",
            "interests": {"kind": "array_join", "target_field": "interests"},
            "owner": {"kind": "nested_object_name", "target_field": "owner_name"},
            "score": {"kind": "type_coerced", "target_field": "score", "coerce": "integer"},
        },
    })


@pytest.fixture
def list_table() -> MappingTable:
    return MappingTable.from_dict({
        "object_type": "lists",
        "primary_key": "name",
        "constants": {"objectTypeId": "0-1", "processingType": "MANUAL"},
        "fields": {"name": "name"},
    })


@pytest.fixture
def registry() -> AssociationRegistry:
    return AssociationRegistry.from_dict({
        "contacts": {"TO": {"companies": 279, "campaigns": 501}},
        "companies": {"TO": {"contacts": 280}},
    })


@pytest.fixture
def target() -> MemoryLoader:
    return MemoryLoader()


@pytest.fixture
def upserter(target) -> UpsertCoordinator:
    return UpsertCoordinator(target)


@pytest.fixture
def make_lead():
    """Factory for raw source items."""
    def _make(n: int, **extra) -> dict:
        return {"id": str(n), "email": f"lead{n}@example.com", "firstName": f"Lead {n}", **extra}
    return _make


@pytest.fixture
def make_reader():
    """Factory for a SourceReader over in-memory pages."""
    def _make(pages, pagination=PaginationStyle.TOKEN, page_size=100, failures=None, token_provider=None):
        source = SourceConfig(
            type=SourceType.MEMORY,
            object_type="leads",
            pagination=pagination,
            page_size=page_size,
        )
        extractor = MemoryExtractor(pages, source=source, failures=failures)
        return SourceReader(extractor, token_provider=token_provider)
    return _make