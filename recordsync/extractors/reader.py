"""Cursor-driven page reader over a source connector."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .base import BaseExtractor, Page, RawPage
from ..exceptions import AuthError, FetchError, SyncError
from ..models.migration import Cursor, PaginationStyle
from ..models.record import SourceRecord
from ..services.auth import TokenProvider

logger = logging.getLogger(__name__)


class SourceReader:
    """
    Fetch one page at a time and hand back the cursor for the next one.

    Offset cursors advance by the number of items the page held, so a
    source that caps pages below ``limit`` loses nothing; only an empty
    page ends the stream. Token cursors advance to whatever token the
    connector returned; no token ends the stream.

    A rejected token is refreshed once and the same page is retried once.
    Any other failure to read a page is a FetchError, since the cursor
    cannot move past a page that was never read.
    """

    def __init__(
        self,
        connector: BaseExtractor,
        token_provider: Optional[TokenProvider] = None,
    ):
        """
        Initialize the reader.

        Args:
            connector: Source connector
            token_provider: Provider to refresh when the source rejects a token
        """
        self.connector = connector
        self.token_provider = token_provider
        self.source = connector.source

    def first_cursor(self) -> Cursor:
        """The cursor for the first page."""
        return Cursor.start(self.source.pagination, self.source.page_size)

    async def fetch(self, cursor: Cursor) -> Page:
        """
        Fetch the page at ``cursor``.

        Raises:
            FetchError: If the page cannot be read
        """
        params = self.connector.build_params(cursor)
        raw = await self._fetch_raw(params, cursor)
        records, rejected = self._build_records(raw.items)

        page = Page(
            records=records,
            next_cursor=self._next_cursor(cursor, raw),
            rejected=rejected,
        )

        logger.debug(
            f"Fetched {len(raw.items)} {self.source.object_type} records "
            f"(cursor={cursor.to_dict()}, last={page.is_last})"
        )
        return page

    async def _fetch_raw(self, params: Dict[str, Any], cursor: Cursor) -> RawPage:
        refreshed = False
        while True:
            try:
                return await self.connector.fetch_page(params)
            except AuthError as e:
                if refreshed or self.token_provider is None:
                    raise FetchError(
                        f"Source rejected credentials for {self.source.object_type}: {e.message}",
                        details={"cursor": cursor.to_dict()},
                    ) from e
                logger.warning(f"Source returned 401 for {self.source.object_type}, refreshing token")
                await self.token_provider.refresh()
                refreshed = True
            except (SyncError, ValueError) as e:
                raise FetchError(
                    f"Failed to fetch {self.source.object_type} page: {e}",
                    details={"cursor": cursor.to_dict()},
                ) from e

    def _next_cursor(self, cursor: Cursor, raw: RawPage) -> Optional[Cursor]:
        if self.source.pagination == PaginationStyle.OFFSET:
            if raw.items:
                return cursor.advance(step=len(raw.items))
            return None
        if raw.next_token:
            return cursor.advance(raw.next_token)
        return None

    def _build_records(self, items: List[Dict[str, Any]]):
        records: List[SourceRecord] = []
        rejected: List[Dict[str, Any]] = []
        seen = set()
        extracted_at = datetime.utcnow()

        for idx, item in enumerate(items):
            record_id = item.get(self.source.id_field) if isinstance(item, dict) else None
            if record_id is None or record_id == "":
                rejected.append({
                    "record_id": f"#{idx}",
                    "error": f"Record at position {idx} has no '{self.source.id_field}'",
                    "error_code": "MISSING_ID",
                })
                continue

            record_id = str(record_id)
            if record_id in seen:
                logger.warning(f"Duplicate {self.source.object_type} id {record_id} in one page")
                rejected.append({
                    "record_id": record_id,
                    "error": f"Duplicate id {record_id} within page",
                    "error_code": "DUPLICATE_ID",
                })
                continue
            seen.add(record_id)

            records.append(SourceRecord(
                id=record_id,
                object_type=self.source.object_type,
                data=item,
                source_service=self.source.service,
                extracted_at=extracted_at,
            ))

        return records, rejected
