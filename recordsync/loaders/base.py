"""Base target connector interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging

from ..models.record import AssociationEdge

logger = logging.getLogger(__name__)


class BaseLoader(ABC):
    """
    Base class for target connectors.

    Loaders find, create and update entities in the target system, create
    association edges between them and add entities to static lists.
    Batch calls are not atomic: they return
    ``{"results": [...], "errors": [...]}`` and the caller reconciles item
    by item.
    """

    def __init__(self, target_service: str = "", batch_size: int = 100):
        """
        Initialize the loader.

        Args:
            target_service: Name of the target service
            batch_size: Max items per batch request
        """
        self.target_service = target_service
        self.batch_size = batch_size

    @abstractmethod
    async def find(self, object_type: str, key: str, value: Any) -> Optional[Dict[str, Any]]:
        """
        Find one entity whose property ``key`` equals ``value``.

        Returns:
            The entity (with at least an ``id``) or None if absent
        """
        pass

    @abstractmethod
    async def create(self, object_type: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        """Create an entity and return it."""
        pass

    @abstractmethod
    async def update(self, object_type: str, record_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        """Update an entity's properties and return it."""
        pass

    @abstractmethod
    async def create_association(
        self,
        from_type: str,
        from_id: str,
        to_type: str,
        to_id: str,
        type_id: int,
        category: str = "DEFINED"
    ) -> Dict[str, Any]:
        """Create one typed association edge."""
        pass

    @abstractmethod
    async def add_members(self, list_id: str, member_ids: List[str]) -> Dict[str, List[Any]]:
        """
        Add entities to a static list.

        Returns:
            ``{"results": [added ids], "errors": [{"id", "error"}]}``
        """
        pass

    async def batch_create_associations(
        self,
        from_type: str,
        to_type: str,
        inputs: List[AssociationEdge],
        category: str = "DEFINED"
    ) -> Dict[str, List[Any]]:
        """
        Create several association edges of one ``(from_type, to_type)`` pair.

        The default sends one request per edge and collects failures.
        """
        results: List[Any] = []
        errors: List[Dict[str, Any]] = []

        for edge in inputs:
            try:
                await self.create_association(
                    from_type, edge.from_id, to_type, edge.to_id, edge.association_type_id, category
                )
                results.append(edge.to_dict())
            except Exception as e:
                errors.append({**edge.to_dict(), "error": str(e)})

        return {"results": results, "errors": errors}

    def validate_connection(self) -> List[str]:
        """Validate the loader configuration."""
        return []

    async def aclose(self) -> None:
        """Release connector resources."""
        pass


TargetConnector = BaseLoader
