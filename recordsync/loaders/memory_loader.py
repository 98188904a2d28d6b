"""In-memory target connector."""

import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional, Tuple

from .base import BaseLoader
from ..exceptions import NotFoundError, ValidationError
from ..models.record import AssociationEdge

logger = logging.getLogger(__name__)


class MemoryLoader(BaseLoader):
    """
    Keep target entities and associations in dictionaries.

    Used for previews and tests. ``latency`` makes every call yield to
    the event loop for that long, which exposes lookup/create races.
    """

    def __init__(self, target_service: str = "memory", batch_size: int = 100, latency: float = 0.0):
        super().__init__(target_service, batch_size)
        self.latency = latency
        self.entities: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.associations: List[AssociationEdge] = []
        self.memberships: Dict[str, List[str]] = {}
        self.calls: Dict[str, int] = {
            "find": 0, "create": 0, "update": 0, "association": 0, "batch_association": 0, "add_members": 0,
        }
        self._ids = itertools.count(1)

    async def _tick(self, operation: str) -> None:
        self.calls[operation] += 1
        await asyncio.sleep(self.latency)

    def seed(self, object_type: str, properties: Dict[str, Any], record_id: Optional[str] = None) -> str:
        """Insert an entity directly, bypassing call counters."""
        record_id = record_id or str(next(self._ids))
        self.entities.setdefault(object_type, {})[record_id] = dict(properties)
        return record_id

    def all(self, object_type: str) -> List[Dict[str, Any]]:
        """Every stored entity of a type as ``{"id", "properties"}``."""
        return [
            {"id": record_id, "properties": dict(props)}
            for record_id, props in self.entities.get(object_type, {}).items()
        ]

    async def find(self, object_type: str, key: str, value: Any) -> Optional[Dict[str, Any]]:
        await self._tick("find")
        for record_id, props in self.entities.get(object_type, {}).items():
            if props.get(key) == value:
                return {"id": record_id, "properties": dict(props)}
        return None

    async def create(self, object_type: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        await self._tick("create")
        record_id = self.seed(object_type, properties)
        return {"id": record_id, "properties": dict(properties)}

    async def update(self, object_type: str, record_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        await self._tick("update")
        stored = self.entities.get(object_type, {}).get(record_id)
        if stored is None:
            raise NotFoundError(f"{object_type} {record_id} does not exist")
        stored.update(properties)
        return {"id": record_id, "properties": dict(stored)}

    def _check_edge(self, from_type: str, from_id: str, to_type: str, to_id: str) -> None:
        for object_type, record_id in ((from_type, from_id), (to_type, to_id)):
            if record_id not in self.entities.get(object_type, {}):
                raise NotFoundError(f"{object_type} {record_id} does not exist")

    async def create_association(
        self,
        from_type: str,
        from_id: str,
        to_type: str,
        to_id: str,
        type_id: int,
        category: str = "DEFINED"
    ) -> Dict[str, Any]:
        await self._tick("association")
        if not from_id or not to_id:
            raise ValidationError("Association endpoints must have ids")
        self._check_edge(from_type, from_id, to_type, to_id)
        edge = AssociationEdge(from_type, str(from_id), to_type, str(to_id), int(type_id))
        if edge not in self.associations:
            self.associations.append(edge)
        return edge.to_dict()

    async def batch_create_associations(
        self,
        from_type: str,
        to_type: str,
        inputs: List[AssociationEdge],
        category: str = "DEFINED"
    ) -> Dict[str, List[Any]]:
        await self._tick("batch_association")
        results: List[Any] = []
        errors: List[Dict[str, Any]] = []

        for edge in inputs:
            try:
                self._check_edge(from_type, edge.from_id, to_type, edge.to_id)
            except NotFoundError as e:
                errors.append({**edge.to_dict(), "error": e.message})
                continue
            if edge not in self.associations:
                self.associations.append(edge)
            results.append(edge.to_dict())

        return {"results": results, "errors": errors}

    async def add_members(self, list_id: str, member_ids: List[str]) -> Dict[str, List[Any]]:
        await self._tick("add_members")
        known = {record_id for entities in self.entities.values() for record_id in entities}
        members = self.memberships.setdefault(str(list_id), [])
        results: List[Any] = []
        errors: List[Dict[str, Any]] = []

        for member_id in map(str, member_ids):
            if member_id not in known:
                errors.append({"id": member_id, "error": "Record does not exist"})
                continue
            if member_id not in members:
                members.append(member_id)
                results.append(member_id)

        return {"results": results, "errors": errors}

    def edges(self, from_type: str, to_type: str) -> List[Tuple[str, str]]:
        """``(from_id, to_id)`` pairs stored for a type pair."""
        return [
            (e.from_id, e.to_id) for e in self.associations
            if e.from_type == from_type and e.to_type == to_type
        ]
