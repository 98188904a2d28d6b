"""Base source connector interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from ..models.record import SourceRecord
from ..models.migration import Cursor, PaginationStyle, SourceConfig

logger = logging.getLogger(__name__)


@dataclass
class RawPage:
    """One page exactly as the connector received it."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    next_token: Optional[str] = None


@dataclass
class Page:
    """A page of source records plus the cursor for the page after it."""
    records: List[SourceRecord] = field(default_factory=list)
    next_cursor: Optional[Cursor] = None
    rejected: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def duplicates(self) -> List[str]:
        """Ids that appeared more than once in this page."""
        return [r["record_id"] for r in self.rejected if r.get("error_code") == "DUPLICATE_ID"]

    @property
    def is_last(self) -> bool:
        return self.next_cursor is None

    def __len__(self) -> int:
        return len(self.records)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "records": [r.to_dict() for r in self.records],
            "next_cursor": self.next_cursor.to_dict() if self.next_cursor else None,
            "rejected": self.rejected,
        }


class BaseExtractor(ABC):
    """
    Base class for all source connectors.

    A connector knows how to fetch one raw page given query parameters.
    It does not track cursors, refresh tokens or build SourceRecords; the
    SourceReader does that on top of it.
    """

    def __init__(self, source: SourceConfig):
        """
        Initialize the connector.

        Args:
            source: Source configuration
        """
        self.source = source

    @abstractmethod
    async def fetch_page(self, params: Dict[str, Any]) -> RawPage:
        """
        Fetch one page.

        Args:
            params: Pagination parameters built by ``build_params``

        Returns:
            RawPage with the items and the next-page token, if any
        """
        pass

    def build_params(self, cursor: Cursor) -> Dict[str, Any]:
        """Translate a cursor into pagination parameters."""
        params: Dict[str, Any] = {}
        if cursor.limit:
            params[self.source.limit_param] = cursor.limit
        if self.source.pagination == PaginationStyle.OFFSET:
            params[self.source.offset_param] = cursor.offset or 0
        elif cursor.token:
            params[self.source.token_param] = cursor.token
        return params

    def validate_source(self) -> List[str]:
        """
        Validate the source configuration.

        Returns:
            List of validation error messages
        """
        errors = []

        if not self.source.object_type:
            errors.append("Source object_type is required")

        if self.source.page_size < 1:
            errors.append("Source page_size must be >= 1")

        return errors

    async def aclose(self) -> None:
        """Release connector resources."""
        pass


SourceConnector = BaseExtractor
