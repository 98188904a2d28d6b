"""Generic API loader for REST target services."""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from .base import BaseLoader
from ..models.record import AssociationEdge
from ..utils.http import APIClient, raise_for_status

logger = logging.getLogger(__name__)


class APILoader(BaseLoader):
    """
    Target connector for REST APIs.

    Every path is a template filled with ``object_type``, ``record_id``,
    ``key``, ``value``, ``from_type``, ``from_id``, ``to_type``, ``to_id``,
    ``list_id``.
    A ``find`` template containing ``{value}`` is a direct GET where 404
    means absent; otherwise ``find`` posts a search filter body.
    """

    DEFAULT_ENDPOINTS = {
        "find": "/{object_type}/search",
        "create": "/{object_type}",
        "update": "/{object_type}/{record_id}",
        "association": "/associations/{from_type}/{from_id}/{to_type}/{to_id}",
        "batch_association": "/associations/{from_type}/{to_type}/batch/create",
        "add_members": "/lists/{list_id}/memberships/add",
    }

    def __init__(
        self,
        client: APIClient,
        target_service: str = "",
        batch_size: int = 100,
        endpoints: Optional[Dict[str, str]] = None,
        properties_key: Optional[str] = "properties",
    ):
        """
        Initialize the API loader.

        Args:
            client: HTTP client bound to the target base URL
            target_service: Name of the target service
            batch_size: Max items per batch request
            endpoints: Overrides for DEFAULT_ENDPOINTS
            properties_key: Envelope key for entity properties (None to send them bare)
        """
        super().__init__(target_service, batch_size)
        self.client = client
        self.endpoints = {**self.DEFAULT_ENDPOINTS, **(endpoints or {})}
        self.properties_key = properties_key

    def _get_endpoint(self, operation: str, **values: Any) -> str:
        """Fill the endpoint template for an operation."""
        encoded = {k: quote(str(v), safe="") for k, v in values.items()}
        return self.endpoints[operation].format(**encoded)

    def _wrap(self, properties: Dict[str, Any]) -> Dict[str, Any]:
        if self.properties_key:
            return {self.properties_key: properties}
        return properties

    async def find(self, object_type: str, key: str, value: Any) -> Optional[Dict[str, Any]]:
        template = self.endpoints["find"]
        path = self._get_endpoint("find", object_type=object_type, key=key, value=value)

        if "{value}" in template:
            response = await self.client.request("GET", path)
            if response.status_code == 404:
                return None
            raise_for_status(response)
            return response.json() or None

        body = {
            "filterGroups": [{"filters": [{"propertyName": key, "operator": "EQ", "value": value}]}],
            "properties": [key],
            "limit": 1,
        }
        response = await self.client.request("POST", path, json=body)
        if response.status_code == 404:
            return None
        raise_for_status(response)
        results = response.json().get("results") or []
        return results[0] if results else None

    async def create(self, object_type: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        path = self._get_endpoint("create", object_type=object_type)
        return await self.client.request_json("POST", path, json=self._wrap(properties))

    async def update(self, object_type: str, record_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        path = self._get_endpoint("update", object_type=object_type, record_id=record_id)
        return await self.client.request_json("PATCH", path, json=self._wrap(properties))

    async def create_association(
        self,
        from_type: str,
        from_id: str,
        to_type: str,
        to_id: str,
        type_id: int,
        category: str = "DEFINED"
    ) -> Dict[str, Any]:
        path = self._get_endpoint(
            "association", from_type=from_type, from_id=from_id, to_type=to_type, to_id=to_id
        )
        return await self.client.request_json(
            "PUT", path, json=[{"associationCategory": category, "associationTypeId": type_id}]
        )

    async def batch_create_associations(
        self,
        from_type: str,
        to_type: str,
        inputs: List[AssociationEdge],
        category: str = "DEFINED"
    ) -> Dict[str, List[Any]]:
        path = self._get_endpoint("batch_association", from_type=from_type, to_type=to_type)
        body = {
            "inputs": [
                {
                    "from": {"id": edge.from_id},
                    "to": {"id": edge.to_id},
                    "types": [{
                        "associationCategory": category,
                        "associationTypeId": edge.association_type_id,
                    }],
                }
                for edge in inputs
            ]
        }
        data = await self.client.request_json("POST", path, json=body)
        return {"results": data.get("results", []), "errors": data.get("errors", [])}

    async def add_members(self, list_id: str, member_ids: List[str]) -> Dict[str, List[Any]]:
        path = self._get_endpoint("add_members", list_id=list_id)
        data = await self.client.request_json("PUT", path, json=list(member_ids))

        if "recordIdsAdded" in data or "recordIdsMissing" in data:
            return {
                "results": data.get("recordIdsAdded", []),
                "errors": [
                    {"id": str(member_id), "error": "Record does not exist"}
                    for member_id in data.get("recordIdsMissing", [])
                ],
            }
        return {"results": data.get("results", []), "errors": data.get("errors", [])}

    def validate_connection(self) -> List[str]:
        errors = []
        for operation, template in self.endpoints.items():
            if not template.startswith("/"):
                errors.append(f"Endpoint for {operation} must start with '/': {template}")
        return errors

    async def aclose(self) -> None:
        await self.client.aclose()
