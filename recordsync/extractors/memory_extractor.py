"""In-memory source connector."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .base import BaseExtractor, RawPage
from ..models.migration import PaginationStyle, SourceConfig, SourceType

logger = logging.getLogger(__name__)


class MemoryExtractor(BaseExtractor):
    """
    Serve pre-built pages from memory.

    With token paging each page is served as-is and the token is the index
    of the next page. With offset paging the pages are flattened and sliced
    by offset/limit. Used for dry runs, previews and tests.
    """

    def __init__(
        self,
        pages: Sequence[List[Dict[str, Any]]],
        source: Optional[SourceConfig] = None,
        failures: Optional[List[BaseException]] = None,
    ):
        """
        Initialize the extractor.

        Args:
            pages: Pages of raw items
            source: Source configuration (a token-paged memory source by default)
            failures: Errors to raise, in order, before serving any page
        """
        super().__init__(source or SourceConfig(type=SourceType.MEMORY, object_type="records"))
        self.pages = [list(page) for page in pages]
        self.failures = list(failures or [])
        self.calls: List[Dict[str, Any]] = []

    async def fetch_page(self, params: Dict[str, Any]) -> RawPage:
        self.calls.append(dict(params))
        if self.failures:
            raise self.failures.pop(0)

        if self.source.pagination == PaginationStyle.OFFSET:
            items = [item for page in self.pages for item in page]
            offset = int(params.get(self.source.offset_param) or 0)
            limit = int(params.get(self.source.limit_param) or self.source.page_size)
            return RawPage(items=items[offset:offset + limit])

        index = int(params.get(self.source.token_param) or 0)
        if index >= len(self.pages):
            return RawPage()
        next_token = str(index + 1) if index + 1 < len(self.pages) else None
        return RawPage(items=self.pages[index], next_token=next_token)
