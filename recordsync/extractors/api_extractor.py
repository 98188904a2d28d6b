"""API-based source connector for paginated REST endpoints."""

import logging
from typing import Any, Dict, List, Optional

from .base import BaseExtractor, RawPage
from ..models.migration import SourceConfig
from ..utils.http import APIClient, raise_for_status

logger = logging.getLogger(__name__)


def dig(data: Any, path: str) -> Any:
    """Follow a dotted path (e.g. ``paging.next.after``) through nested dicts."""
    if not path:
        return data
    value = data
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class APIExtractor(BaseExtractor):
    """
    Source connector for REST APIs.

    Supports:
    - Offset/limit paging (``?offset=200&limit=100``)
    - Token paging (``nextPageToken``, ``paging.next.after``)
    - Next-link paging, where the token is a full URL (``@odata.nextLink``)
    - Rate limiting and bounded retry via APIClient

    A 401 surfaces as AuthError; the SourceReader owns the refresh.
    """

    def __init__(self, source: SourceConfig, client: APIClient):
        """
        Initialize the API extractor.

        Args:
            source: Source configuration
            client: HTTP client bound to the source base URL
        """
        super().__init__(source)
        self.client = client

    async def fetch_page(self, params: Dict[str, Any]) -> RawPage:
        token = params.get(self.source.token_param)
        if isinstance(token, str) and token.startswith(("http://", "https://")):
            # Next links already carry every query parameter.
            path, query = token, None
        else:
            path, query = self.source.endpoint, {**self.source.params, **params}

        response = await self.client.request("GET", path, params=query, refresh_on_auth=False)
        raise_for_status(response)
        data = response.json()

        return RawPage(
            items=self._extract_items(data),
            next_token=self._extract_next_token(data),
        )

    def _extract_items(self, data: Any) -> List[Dict[str, Any]]:
        items = dig(data, self.source.records_path)
        if items is None:
            return []
        if not isinstance(items, list):
            items = [items]
        return items

    def _extract_next_token(self, data: Any) -> Optional[str]:
        token = dig(data, self.source.next_token_path)
        if token in (None, ""):
            return None
        return str(token)

    def validate_source(self) -> List[str]:
        """Validate the API source configuration."""
        errors = super().validate_source()

        if not self.source.base_url:
            errors.append("API source requires base_url")

        return errors

    async def aclose(self) -> None:
        await self.client.aclose()
