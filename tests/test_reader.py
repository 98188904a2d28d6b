"""Tests for the page reader."""

import pytest

from recordsync.exceptions import AuthError, FetchError, TransientNetworkError
from recordsync.extractors.base import RawPage
from recordsync.extractors.memory_extractor import MemoryExtractor
from recordsync.extractors.reader import SourceReader
from recordsync.models.migration import Cursor, PaginationStyle, SourceConfig, SourceType
from recordsync.services.auth import StaticTokenProvider


class CappedExtractor(MemoryExtractor):
    """Serves at most two items per page whatever limit is asked for."""

    async def fetch_page(self, params):
        raw = await super().fetch_page(params)
        return RawPage(items=raw.items[:2])


class TestOffsetPaging:
    async def test_advances_until_empty_page(self, make_reader, make_lead):
        reader = make_reader([[make_lead(i) for i in range(5)]], pagination=PaginationStyle.OFFSET, page_size=2)

        cursor = reader.first_cursor()
        sizes = []
        while cursor is not None:
            page = await reader.fetch(cursor)
            sizes.append(len(page))
            cursor = page.next_cursor

        assert sizes == [2, 2, 1, 0]
        assert reader.connector.calls[1] == {"limit": 2, "offset": 2}
        assert reader.connector.calls[3] == {"limit": 2, "offset": 5}

    async def test_capped_source_pages_are_not_lost(self, make_lead):
        reader = SourceReader(CappedExtractor(
            [[make_lead(i) for i in range(6)]],
            source=SourceConfig(
                type=SourceType.MEMORY, object_type="leads", pagination=PaginationStyle.OFFSET, page_size=5
            ),
        ))

        cursor = reader.first_cursor()
        ids = []
        while cursor is not None:
            page = await reader.fetch(cursor)
            ids.extend(r.id for r in page.records)
            cursor = page.next_cursor

        assert ids == [str(i) for i in range(6)]
        assert [c["offset"] for c in reader.connector.calls] == [0, 2, 4, 6]

    async def test_exact_multiple_ends_with_empty_page(self, make_reader, make_lead):
        reader = make_reader([[make_lead(i) for i in range(4)]], pagination=PaginationStyle.OFFSET, page_size=2)

        page = await reader.fetch(Cursor(offset=4, limit=2))

        assert len(page) == 0
        assert page.is_last

    async def test_first_cursor(self, make_reader):
        reader = make_reader([], pagination=PaginationStyle.OFFSET, page_size=50)

        assert reader.first_cursor() == Cursor(offset=0, limit=50)


class TestTokenPaging:
    async def test_follows_tokens_until_none(self, make_reader, make_lead):
        reader = make_reader([[make_lead(1), make_lead(2)], [make_lead(3)]])

        first = await reader.fetch(reader.first_cursor())
        second = await reader.fetch(first.next_cursor)

        assert [r.id for r in first.records] == ["1", "2"]
        assert first.next_cursor.token == "1"
        assert [r.id for r in second.records] == ["3"]
        assert second.is_last

    async def test_records_carry_source_metadata(self, make_reader, make_lead):
        reader = make_reader([[make_lead(1)]])

        page = await reader.fetch(reader.first_cursor())

        record = page.records[0]
        assert record.object_type == "leads"
        assert record.data["email"] == "lead1@example.com"


class TestRejectedItems:
    async def test_duplicate_ids_keep_first(self, make_reader, make_lead):
        reader = make_reader([[make_lead(1), make_lead(2), make_lead(1, firstName="Dup")]])

        page = await reader.fetch(reader.first_cursor())

        assert [r.id for r in page.records] == ["1", "2"]
        assert page.records[0].data["firstName"] == "Lead 1"
        assert page.duplicates == ["1"]

    async def test_missing_id_is_rejected(self, make_reader):
        reader = make_reader([[{"email": "x@y.z"}, {"id": "", "email": "y@y.z"}]])

        page = await reader.fetch(reader.first_cursor())

        assert len(page) == 0
        assert [r["record_id"] for r in page.rejected] == ["#0", "#1"]
        assert {r["error_code"] for r in page.rejected} == {"MISSING_ID"}


class TestFetchFailures:
    async def test_auth_error_refreshes_once_then_succeeds(self, make_reader, make_lead):
        provider = StaticTokenProvider("key")
        reader = make_reader([[make_lead(1)]], failures=[AuthError("401")], token_provider=provider)

        page = await reader.fetch(reader.first_cursor())

        assert len(page) == 1
        assert provider.refresh_count == 1
        assert len(reader.connector.calls) == 2

    async def test_auth_error_twice_is_fetch_error(self, make_reader, make_lead):
        provider = StaticTokenProvider("key")
        reader = make_reader(
            [[make_lead(1)]], failures=[AuthError("401"), AuthError("401")], token_provider=provider
        )

        with pytest.raises(FetchError) as exc_info:
            await reader.fetch(reader.first_cursor())

        assert exc_info.value.fatal
        assert len(reader.connector.calls) == 2

    async def test_auth_error_without_provider_is_fetch_error(self, make_reader):
        reader = make_reader([[]], failures=[AuthError("401")])

        with pytest.raises(FetchError):
            await reader.fetch(reader.first_cursor())

    async def test_exhausted_retries_are_fetch_error(self, make_reader):
        reader = make_reader([[]], failures=[TransientNetworkError("503 after 3 retries")])

        with pytest.raises(FetchError, match="503"):
            await reader.fetch(reader.first_cursor())
