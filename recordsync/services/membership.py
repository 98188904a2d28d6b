"""Static list membership on the target."""

import logging
from typing import TYPE_CHECKING, Optional, Sequence

from ..exceptions import ConfigurationError, NotFoundError, is_fatal
from ..models.migration import MembershipRule
from ..models.record import BatchResult, SourceRecord
from ..utils.logging import log_success
from .scheduler import chunked

if TYPE_CHECKING:
    from ..loaders.base import BaseLoader

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class ListMembership:
    """
    Resolve source records to target entities and add them to one list.

    Adds go out in chunks of ``batch_size``. They are not atomic: each
    chunk reports ``results`` and ``errors`` on its own, and a chunk that
    fails outright reports every id it carried.
    """

    def __init__(
        self,
        target: "BaseLoader",
        rule: MembershipRule,
        batch_size: int = DEFAULT_BATCH_SIZE,
        dry_run: bool = False,
    ):
        """
        Initialize the membership service.

        Args:
            target: Target connector
            rule: Which list, and how to find each member
            batch_size: Max ids per add request
            dry_run: Look up but never add
        """
        self.target = target
        self.rule = rule
        self.batch_size = batch_size
        self.dry_run = dry_run

    async def resolve_list(self) -> str:
        """
        The target id of the list members are added to.

        Raises:
            ConfigurationError: If no list has the configured name
        """
        rule = self.rule
        if rule.list_id:
            return rule.list_id

        found = await self._find(rule.list_type, rule.list_lookup_property, rule.list_name)
        if not found or not found.get("id"):
            raise ConfigurationError(
                f"No target {rule.list_type} with {rule.list_lookup_property}={rule.list_name}"
            )
        logger.info(f"Found target {rule.list_type} {found['id']} for '{rule.list_name}'")
        return str(found["id"])

    async def resolve_member(self, record: SourceRecord) -> Optional[str]:
        """The target id of the record's counterpart, or None if it has none."""
        rule = self.rule
        value = record.get_field(rule.source_field)
        if value is None or value == "":
            logger.info(f"Record {record.id} has no {rule.source_field}")
            return None

        found = await self._find(rule.member_type, rule.lookup_property, value)
        if not found or not found.get("id"):
            logger.info(f"No {rule.member_type} with {rule.lookup_property}={value} for record {record.id}")
            return None
        return str(found["id"])

    async def add(self, list_id: str, member_ids: Sequence[str]) -> BatchResult:
        """
        Add ``member_ids`` to the list in chunks of ``batch_size``.

        Returns:
            BatchResult whose errors carry the ``id`` that was not added
        """
        result = BatchResult()

        for chunk in chunked(list(member_ids), self.batch_size):
            if self.dry_run:
                logger.info(f"[dry-run] would add {len(chunk)} members to {self.rule.list_type} {list_id}")
                result.results.extend(chunk)
                continue

            try:
                response = await self.target.add_members(list_id, list(chunk))
            except Exception as e:
                if is_fatal(e):
                    raise
                logger.error(f"Adding {len(chunk)} members to {self.rule.list_type} {list_id} failed: {e}")
                result.errors.extend({"id": member_id, "error": str(e)} for member_id in chunk)
                continue

            result.results.extend(response.get("results", []))
            result.errors.extend(response.get("errors", []))

        if member_ids and not self.dry_run:
            log_success(
                logger,
                f"Added {len(member_ids) - len(result.errors)} members to {self.rule.list_type} {list_id}",
                list_id=list_id,
            )
        return result

    async def _find(self, object_type: str, key: str, value) -> Optional[dict]:
        try:
            return await self.target.find(object_type, key, value)
        except NotFoundError:
            return None
