"""Idempotent create-or-update against a target connector."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Optional, Tuple, Union

from ..exceptions import NotFoundError, TargetError, ValidationError
from ..models.record import NaturalKey, TargetRecord, TransformedRecord, UpsertAction
from ..models.schema import MappingTable, UpsertPolicy, default_policy_for
from ..utils.logging import log_success

if TYPE_CHECKING:
    from ..loaders.base import BaseLoader

logger = logging.getLogger(__name__)

LockKey = Tuple[str, str, str]


class UpsertCoordinator:
    """
    Look up by natural key, then create, update or leave alone.

    At most one logical create happens per natural key: a per-key lock
    serializes lookup-then-create between coroutines of this process.
    A key's lock lives only while some coroutine holds or waits for it.
    Across processes only a unique constraint on the target can give the
    same guarantee.
    """

    def __init__(self, target: "BaseLoader", dry_run: bool = False):
        """
        Initialize the coordinator.

        Args:
            target: Target connector
            dry_run: Look up but never write
        """
        self.target = target
        self.dry_run = dry_run
        self._locks: Dict[LockKey, asyncio.Lock] = {}
        self._lock_users: Dict[LockKey, int] = {}

    @asynccontextmanager
    async def _key_lock(self, object_type: str, key: NaturalKey) -> AsyncIterator[None]:
        lock_key = (object_type, key.property, str(key.value))
        lock = self._locks.get(lock_key)
        if lock is None:
            lock = self._locks[lock_key] = asyncio.Lock()
        self._lock_users[lock_key] = self._lock_users.get(lock_key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[lock_key] -= 1
            if not self._lock_users[lock_key]:
                del self._lock_users[lock_key]
                del self._locks[lock_key]

    async def upsert_record(self, record: TransformedRecord, table: MappingTable) -> TargetRecord:
        """Upsert using the natural key and policy declared by a mapping table."""
        key = NaturalKey(table.lookup_property, record.data.get(table.lookup_property))
        return await self.upsert(record.object_type, key, record, policy=table.upsert_policy)

    async def upsert(
        self,
        object_type: str,
        natural_key: Union[NaturalKey, Tuple[str, Any]],
        record: TransformedRecord,
        policy: Optional[UpsertPolicy] = None,
    ) -> TargetRecord:
        """
        Create or update the entity identified by ``natural_key``.

        Args:
            object_type: Target object type
            natural_key: Property and value used for the lookup
            record: Transformed record to persist
            policy: What to do if the entity exists (defaults by object type)

        Returns:
            TargetRecord with the action taken

        Raises:
            ValidationError: If the record lacks its primary key or the key value is empty
            TargetError: If the target rejects the write
        """
        if not isinstance(natural_key, NaturalKey):
            natural_key = NaturalKey(*natural_key)

        record.require()
        if natural_key.value is None or str(natural_key.value).strip() == "":
            raise ValidationError(
                f"Empty natural key '{natural_key.property}' on {object_type} record {record.source_id}",
                details={"field": natural_key.property, "record_id": record.source_id},
            )

        policy = policy or default_policy_for(object_type)

        async with self._key_lock(object_type, natural_key):
            try:
                existing = await self.target.find(object_type, natural_key.property, natural_key.value)
            except NotFoundError:
                existing = None

            if existing is None:
                return await self._create(object_type, natural_key, record)

            existing_id = str(existing.get("id", ""))
            if policy == UpsertPolicy.SKIP:
                logger.info(f"{object_type} {natural_key} already exists ({existing_id}), skipping")
                return TargetRecord(
                    id=existing_id,
                    object_type=object_type,
                    properties=existing.get("properties", {}),
                    natural_key=str(natural_key.value),
                    action=UpsertAction.UNCHANGED,
                )

            return await self._update(object_type, natural_key, existing_id, record)

    async def _create(self, object_type: str, key: NaturalKey, record: TransformedRecord) -> TargetRecord:
        if self.dry_run:
            logger.info(f"[dry-run] would create {object_type} {key}")
            return TargetRecord(
                id="",
                object_type=object_type,
                properties=dict(record.data),
                natural_key=str(key.value),
                action=UpsertAction.CREATED,
            )

        created = await self.target.create(object_type, dict(record.data))
        created_id = created.get("id") if isinstance(created, dict) else None
        if not created_id:
            raise TargetError(f"Target returned no id for new {object_type} {key}")

        log_success(logger, f"Created {object_type} {key} -> {created_id}", record_id=record.source_id)
        return TargetRecord(
            id=str(created_id),
            object_type=object_type,
            properties=created.get("properties", dict(record.data)),
            natural_key=str(key.value),
            action=UpsertAction.CREATED,
        )

    async def _update(
        self,
        object_type: str,
        key: NaturalKey,
        existing_id: str,
        record: TransformedRecord
    ) -> TargetRecord:
        if self.dry_run:
            logger.info(f"[dry-run] would update {object_type} {existing_id} ({key})")
            return TargetRecord(
                id=existing_id,
                object_type=object_type,
                properties=dict(record.data),
                natural_key=str(key.value),
                action=UpsertAction.UPDATED,
            )

        updated = await self.target.update(object_type, existing_id, dict(record.data))
        log_success(logger, f"Updated {object_type} {existing_id} ({key})", record_id=record.source_id)
        return TargetRecord(
            id=existing_id,
            object_type=object_type,
            properties=updated.get("properties", dict(record.data)) if isinstance(updated, dict) else dict(record.data),
            natural_key=str(key.value),
            action=UpsertAction.UPDATED,
        )
