"""Typed association edges between migrated entities."""

import logging
from typing import TYPE_CHECKING, Any, List, Sequence, Tuple

from ..exceptions import ValidationError, is_fatal
from ..models.record import AssociationEdge, BatchResult
from ..models.schema import AssociationRegistry
from .scheduler import chunked

if TYPE_CHECKING:
    from ..loaders.base import BaseLoader

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class AssociationLinker:
    """
    Create association edges whose type code comes from a static registry.

    An unregistered ``(from_type, to_type)`` pair raises ConfigurationError
    before anything is sent.
    """

    def __init__(
        self,
        target: "BaseLoader",
        registry: AssociationRegistry,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        """
        Initialize the linker.

        Args:
            target: Target connector
            registry: Association-type codes
            batch_size: Max edges per batch request
        """
        self.target = target
        self.registry = registry
        self.batch_size = batch_size

    async def link(self, from_type: str, from_id: Any, to_type: str, to_id: Any) -> AssociationEdge:
        """
        Create one edge.

        Raises:
            ConfigurationError: If the type pair is not registered
            ValidationError: If either endpoint id is empty
        """
        type_id = self.registry.resolve(from_type, to_type)
        if _is_blank(from_id) or _is_blank(to_id):
            raise ValidationError(
                f"Cannot link {from_type} -> {to_type} without both ids",
                details={"from_id": from_id, "to_id": to_id},
            )

        edge = AssociationEdge(from_type, str(from_id), to_type, str(to_id), type_id)
        await self.target.create_association(
            from_type, edge.from_id, to_type, edge.to_id, type_id, self.registry.category
        )
        logger.debug(f"Linked {from_type} {edge.from_id} -> {to_type} {edge.to_id} ({type_id})")
        return edge

    async def link_batch(
        self,
        from_type: str,
        to_type: str,
        pairs: Sequence[Tuple[Any, Any]],
    ) -> BatchResult:
        """
        Create many edges of one type pair.

        Malformed pairs are reported without being sent. Valid pairs go out
        in chunks of ``batch_size``; a chunk that fails outright reports all
        of its pairs as errors.

        Raises:
            ConfigurationError: If the type pair is not registered
        """
        type_id = self.registry.resolve(from_type, to_type)
        result = BatchResult()
        edges: List[AssociationEdge] = []

        for index, pair in enumerate(pairs):
            from_id, to_id = _unpack(pair)
            if _is_blank(from_id) or _is_blank(to_id):
                result.errors.append({
                    "index": index,
                    "from_id": from_id,
                    "to_id": to_id,
                    "error": "Missing association endpoint id",
                })
                continue
            edges.append(AssociationEdge(from_type, str(from_id), to_type, str(to_id), type_id))

        for chunk in chunked(edges, self.batch_size):
            try:
                response = await self.target.batch_create_associations(
                    from_type, to_type, list(chunk), self.registry.category
                )
            except Exception as e:
                if is_fatal(e):
                    raise
                logger.error(f"Association batch {from_type} -> {to_type} of {len(chunk)} failed: {e}")
                result.errors.extend({**edge.to_dict(), "error": str(e)} for edge in chunk)
                continue

            result.results.extend(response.get("results", []))
            result.errors.extend(response.get("errors", []))

        logger.info(
            f"Linked {from_type} -> {to_type}: {len(result.results)} created, {len(result.errors)} errors"
        )
        return result


def _unpack(pair: Any) -> Tuple[Any, Any]:
    if isinstance(pair, dict):
        return pair.get("from_id"), pair.get("to_id")
    if isinstance(pair, (list, tuple)) and len(pair) == 2:
        return pair[0], pair[1]
    return None, None


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""
