"""Migration runner - drives the page loop from source to target."""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from .exceptions import ConfigurationError, SyncError, is_fatal
from .extractors.base import BaseExtractor, Page
from .extractors.api_extractor import APIExtractor
from .extractors.file_extractor import FileExtractor
from .extractors.reader import SourceReader
from .loaders.base import BaseLoader
from .loaders.api_loader import APILoader
from .loaders.memory_loader import MemoryLoader
from .models.migration import (
    AssociationRule,
    AuthConfig,
    MigrationConfig,
    MigrationRun,
    MigrationState,
    SourceType,
    TargetType,
    resolve_env,
)
from .models.record import ItemResult, SourceRecord, TransformedRecord
from .models.schema import AssociationRegistry, MappingTable
from .services.auth import ClientCredentialsTokenProvider, StaticTokenProvider, TokenProvider
from .services.linker import AssociationLinker
from .services.membership import ListMembership
from .services.scheduler import RateLimiter, run_batch
from .services.transformer import TransformEngine, format_display_name
from .services.upsert import UpsertCoordinator
from .utils.http import APIClient
from .utils.logging import log_success

logger = logging.getLogger(__name__)


def build_token_provider(auth: Optional[AuthConfig]) -> Optional[TokenProvider]:
    """
    Create the token provider described by an auth block.

    Raises:
        ConfigurationError: If the auth type is unknown or a secret is missing
    """
    if auth is None or auth.type == "none":
        return None

    if auth.type == "bearer":
        return StaticTokenProvider(resolve_env(auth.token_env), refresh_margin=auth.refresh_margin)

    if auth.type == "client_credentials":
        if not auth.token_url:
            raise ConfigurationError("client_credentials auth requires token_url")
        return ClientCredentialsTokenProvider(
            token_url=auth.token_url,
            client_id=resolve_env(auth.client_id_env),
            client_secret=resolve_env(auth.client_secret_env),
            scope=auth.scope,
            method=auth.token_method,
            refresh_margin=auth.refresh_margin,
        )

    raise ConfigurationError(f"Unsupported auth type: {auth.type}")


class MigrationRunner:
    """
    Runs one migration as a state machine over source pages.

    Handles:
    - Page fetching through SourceReader
    - Transformation of every record of a page
    - Bounded fan-out of upserts
    - Batched association linking per page
    - Per-item fault isolation and counting
    - Halting on fatal errors

    Pages are processed strictly one after another. Nothing is checkpointed;
    a new run starts from the first page.
    """

    def __init__(
        self,
        reader: SourceReader,
        table: Optional[MappingTable],
        upserter: Optional[UpsertCoordinator],
        transformer: Optional[TransformEngine] = None,
        linker: Optional[AssociationLinker] = None,
        association: Optional[AssociationRule] = None,
        name: str = "",
        concurrency: int = 1,
        inter_item_delay: float = 0.0,
        page_delay: float = 0.0,
        single_page: bool = False,
        max_pages: Optional[int] = None,
        report_dir: Optional[str] = None,
        sleep=asyncio.sleep,
    ):
        """
        Initialize the runner.

        Args:
            reader: Source page reader
            table: Mapping table for the source object type
            upserter: Upsert coordinator bound to the target
            transformer: Transform engine
            linker: Association linker (required with ``association``)
            association: Rule linking each migrated record to an existing one
            name: Run name for logs and reports
            concurrency: Max items in flight per page
            inter_item_delay: Seconds between items
            page_delay: Seconds between pages
            single_page: Stop after the first page
            max_pages: Stop after this many pages
            report_dir: Where to write the JSON run report (None to skip)
            sleep: Sleep coroutine, injectable for tests
        """
        if concurrency < 1:
            raise ConfigurationError(f"concurrency must be >= 1, got {concurrency}")
        if association is not None and linker is None:
            raise ConfigurationError("An association rule needs an association linker")

        self.reader = reader
        self.table = table
        self.upserter = upserter
        self.transformer = transformer or TransformEngine()
        self.linker = linker
        self.association = association
        self.name = name
        self.concurrency = concurrency
        self.inter_item_delay = inter_item_delay
        self.page_delay = page_delay
        self.single_page = single_page
        self.max_pages = max_pages
        self.report_dir = report_dir
        self._sleep = sleep

        self.current_run: Optional[MigrationRun] = None
        self._halted = False

    @classmethod
    def from_config(cls, config: MigrationConfig) -> "MigrationRunner":
        """
        Build connectors and services from a migration config.

        A config carrying a membership rule builds a MembershipRunner.

        Raises:
            ConfigurationError: If the config is incomplete or a secret is missing
        """
        table = None
        if config.membership is None:
            if config.mapping is not None:
                table = MappingTable.from_dict(config.mapping)
            elif config.mapping_file:
                table = MappingTable.from_json_file(config.mapping_file)
            else:
                raise ConfigurationError("Migration config needs mapping_file or an inline mapping")

        source_auth = build_token_provider(config.source.auth)
        extractor = cls._create_extractor(config, source_auth)
        problems = extractor.validate_source()
        if problems:
            raise ConfigurationError(f"Invalid source: {'; '.join(problems)}")

        loader = cls._create_loader(config)
        problems = loader.validate_connection()
        if problems:
            raise ConfigurationError(f"Invalid target: {'; '.join(problems)}")

        reader = SourceReader(extractor, token_provider=source_auth)
        options = dict(
            name=config.name,
            concurrency=config.concurrency,
            inter_item_delay=config.inter_item_delay,
            page_delay=config.page_delay,
            single_page=config.single_page,
            max_pages=config.max_pages,
            report_dir=config.log_dir,
        )

        if config.membership is not None:
            members = ListMembership(
                loader, config.membership, batch_size=config.target.batch_size, dry_run=config.dry_run
            )
            return MembershipRunner(reader, members, **options)

        linker = None
        if config.association is not None:
            if config.association_registry_file:
                registry = AssociationRegistry.from_json_file(config.association_registry_file)
            elif config.associations:
                registry = AssociationRegistry.from_dict(config.associations)
            else:
                raise ConfigurationError("An association rule needs an association registry")
            linker = AssociationLinker(loader, registry, batch_size=config.target.batch_size)

        return cls(
            reader=reader,
            table=table,
            upserter=UpsertCoordinator(loader, dry_run=config.dry_run),
            linker=linker,
            association=config.association,
            **options,
        )

    @staticmethod
    def _create_extractor(config: MigrationConfig, token_provider: Optional[TokenProvider]) -> BaseExtractor:
        """Create an appropriate connector for the source."""
        source = config.source
        if source.type == SourceType.API:
            if not source.base_url:
                raise ConfigurationError("API source requires base_url")
            client = APIClient(
                base_url=source.base_url,
                token_provider=token_provider,
                rate_limiter=RateLimiter(source.rate_limit),
                timeout=source.timeout,
                **source.retry_config,
            )
            return APIExtractor(source, client)
        elif source.type == SourceType.FILE:
            return FileExtractor(source)
        else:
            raise ConfigurationError(f"Source type '{source.type.value}' cannot be built from config")

    @staticmethod
    def _create_loader(config: MigrationConfig) -> BaseLoader:
        """Create an appropriate connector for the target."""
        target = config.target
        if target.type == TargetType.MEMORY:
            return MemoryLoader(target_service=target.service or "memory", batch_size=target.batch_size)

        if not target.base_url:
            raise ConfigurationError("API target requires base_url")
        client = APIClient(
            base_url=target.base_url,
            token_provider=build_token_provider(target.auth),
            rate_limiter=RateLimiter(target.rate_limit),
            timeout=target.timeout,
            **target.retry_config,
        )
        return APILoader(
            client,
            target_service=target.service,
            batch_size=target.batch_size,
            endpoints=target.endpoints,
        )

    @property
    def target(self) -> BaseLoader:
        return self.upserter.target

    @property
    def dry_run(self) -> bool:
        return self.upserter.dry_run

    async def run(self) -> MigrationRun:
        """
        Run the migration until the source is exhausted or a fatal error occurs.

        Returns:
            MigrationRun with final state, counters and per-item errors
        """
        self.current_run = MigrationRun(name=self.name, dry_run=self.dry_run)
        self.current_run.started_at = datetime.utcnow()
        self._halted = False
        logger.info(f"=== MIGRATION STARTED: {self.name or self.reader.source.object_type} ===")

        try:
            self._transition(MigrationState.FETCHING_PAGE)
            await self._prepare()
            cursor = self.reader.first_cursor()

            while True:
                self.current_run.cursor = cursor
                page = await self.reader.fetch(cursor)
                self.current_run.stats.pages += 1
                self.current_run.stats.records_seen += len(page.records) + len(page.rejected)
                self._record_rejected(page)

                if not page.records and page.next_cursor is None:
                    self._transition(MigrationState.COMPLETED)
                    break

                self._transition(MigrationState.TRANSFORMING_BATCH)
                transformed = self._transform_page(page)

                self._transition(MigrationState.PERSISTING_BATCH)
                await self._persist_page(transformed)

                logger.info(
                    f"Page {self.current_run.stats.pages}: migrated={self.current_run.stats.migrated} "
                    f"failed={self.current_run.stats.failed} not_found={self.current_run.stats.not_found}"
                )

                if self._is_last_page(page):
                    self._transition(MigrationState.COMPLETED)
                    break

                if self.page_delay > 0:
                    await self._sleep(self.page_delay)
                cursor = page.next_cursor
                self._transition(MigrationState.FETCHING_PAGE)

            log_success(
                logger,
                f"=== MIGRATION COMPLETED: {self.current_run.stats.migrated} migrated, "
                f"{self.current_run.stats.failed} failed, {self.current_run.stats.not_found} not found ===",
                **self.current_run.stats.to_dict(),
            )

        except Exception as e:
            logger.error(f"Migration failed in {self.current_run.state.value}: {e}", exc_info=not isinstance(e, SyncError))
            self.current_run.failure = {
                "state": self.current_run.state.value,
                "error": str(e),
                "error_code": getattr(e, "error_code", type(e).__name__),
                "timestamp": datetime.utcnow().isoformat(),
            }
            self._transition(MigrationState.FAILED)

        finally:
            self.current_run.completed_at = datetime.utcnow()
            if self.report_dir:
                self._save_report()

        return self.current_run

    async def aclose(self) -> None:
        """Close source and target connectors."""
        await self.reader.connector.aclose()
        await self.target.aclose()

    async def __aenter__(self) -> "MigrationRunner":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _prepare(self) -> None:
        """Resolve whatever the run needs from the target before the first page."""
        pass

    def _transition(self, state: MigrationState) -> None:
        previous = self.current_run.state
        self.current_run.transition(state)
        logger.debug(f"State {previous.value} -> {state.value}")

    def _is_last_page(self, page: Page) -> bool:
        if page.next_cursor is None:
            return True
        if self.single_page:
            logger.info("Single-page mode, stopping after the first page")
            return True
        if self.max_pages is not None and self.current_run.stats.pages >= self.max_pages:
            logger.info(f"Reached max_pages={self.max_pages}, stopping")
            return True
        return False

    def _record_rejected(self, page: Page) -> None:
        for rejected in page.rejected:
            self.current_run.stats.failed += 1
            self.current_run.errors.append({**rejected, "page": self.current_run.stats.pages})

    def _record_failure(self, record_id: str, error: Any, error_code: Optional[str] = None) -> None:
        self.current_run.stats.failed += 1
        self.current_run.errors.append({
            "record_id": record_id,
            "error": str(error),
            "error_code": error_code or getattr(error, "error_code", type(error).__name__),
            "page": self.current_run.stats.pages,
        })
        logger.error(f"Record {record_id} failed: {error}")

    def _record_batch_error(self, error: Dict[str, Any], error_code: str) -> None:
        """Keep a batch error that names no record of the page in the report."""
        self.current_run.errors.append({
            **error,
            "record_id": None,
            "error_code": error_code,
            "page": self.current_run.stats.pages,
        })
        logger.error(f"Batch error on page {self.current_run.stats.pages}: {error}")

    def _transform_page(self, page: Page) -> List[Tuple[SourceRecord, TransformedRecord]]:
        """Transform every record of the page; a failing record is counted and dropped."""
        transformed = []
        for record in page.records:
            try:
                result = self.transformer.transform(record, self.table)
            except (SyncError, ValueError, TypeError) as e:
                self._record_failure(record.id, e)
                continue
            for warning in result.warnings:
                logger.warning(f"Record {record.id}: {warning}")
            transformed.append((record, result))
        return transformed

    async def _persist_page(self, items: List[Tuple[SourceRecord, TransformedRecord]]) -> None:
        outcomes = await run_batch(
            items,
            self._persist_item,
            concurrency=self.concurrency,
            inter_item_delay=self.inter_item_delay,
        )

        persisted: List[Tuple[SourceRecord, ItemResult]] = []
        fatal: Optional[BaseException] = None
        for outcome in outcomes:
            source, _ = outcome.item
            if outcome.error is not None:
                if is_fatal(outcome.error):
                    fatal = fatal or outcome.error
                    continue
                self._record_failure(source.id, outcome.error)
                continue

            result: Optional[ItemResult] = outcome.result
            if result is None:
                # Not attempted because the run was halting.
                continue
            persisted.append((source, result))

        unlinked: Set[str] = set()
        try:
            if fatal is None:
                unlinked = await self._link_page(persisted)
        finally:
            for source, result in persisted:
                if source.id in unlinked:
                    continue
                self.current_run.stats.migrated += 1
                if result.not_found:
                    self.current_run.stats.not_found += 1

        if fatal is not None:
            raise fatal

    async def _persist_item(self, item: Tuple[SourceRecord, TransformedRecord]) -> Optional[ItemResult]:
        if self._halted:
            return None

        source, record = item
        try:
            target = await self.upserter.upsert_record(record, self.table)
            result = ItemResult(
                record_id=source.id,
                success=True,
                target_id=target.id,
                action=target.action,
            )
            if self.association is not None:
                found, result.link = await self._resolve_association(source, target.id)
                result.not_found = not found
            return result
        except Exception as e:
            if is_fatal(e):
                self._halted = True
            raise

    async def _resolve_association(
        self,
        source: SourceRecord,
        target_id: str,
    ) -> Tuple[bool, Optional[Tuple[str, str]]]:
        """
        Find the related record named by the rule and orient the edge to it.

        Returns:
            ``(found, (from_id, to_id))``; the pair is None when there is
            nothing to link
        """
        rule = self.association
        value = source.get_field(rule.source_field)
        if value is None or value == "":
            return True, None
        if rule.display_name:
            value = format_display_name(value)

        related = await self.target.find(rule.to_type, rule.lookup_property, value)
        if related is None:
            logger.warning(f"No {rule.to_type} with {rule.lookup_property}={value} for record {source.id}")
            return False, None

        related_id = str(related.get("id", ""))
        if not target_id:
            logger.info(f"[dry-run] would link {self.table.object_type} to {rule.to_type} {related_id}")
            return True, None

        if rule.reverse:
            return True, (related_id, target_id)
        return True, (target_id, related_id)

    async def _link_page(self, persisted: List[Tuple[SourceRecord, ItemResult]]) -> Set[str]:
        """
        Create the page's association edges with one batched link call.

        Returns:
            Ids of the source records whose edge was not created; each is
            already counted failed
        """
        pending = [(source, result.link) for source, result in persisted if result.link is not None]
        if not pending:
            return set()

        rule = self.association
        if rule.reverse:
            from_type, to_type = rule.to_type, self.table.object_type
        else:
            from_type, to_type = self.table.object_type, rule.to_type

        try:
            batch = await self.linker.link_batch(from_type, to_type, [pair for _, pair in pending])
        except Exception as e:
            if is_fatal(e):
                raise
            for source, _ in pending:
                self._record_failure(source.id, e)
            return {source.id for source, _ in pending}

        by_pair: Dict[Tuple[str, str], List[str]] = {}
        for source, (from_id, to_id) in pending:
            by_pair.setdefault((from_id, to_id), []).append(source.id)

        failed: Set[str] = set()
        for error in batch.errors:
            record_ids = by_pair.get((str(error.get("from_id")), str(error.get("to_id"))))
            if not record_ids:
                self._record_batch_error(error, "ASSOCIATION_FAILED")
                continue
            for record_id in record_ids:
                if record_id not in failed:
                    failed.add(record_id)
                    self._record_failure(
                        record_id, error.get("error", "Association not created"), error_code="ASSOCIATION_FAILED"
                    )
        return failed

    def _save_report(self) -> None:
        """Save the run report."""
        directory = Path(self.report_dir)
        directory.mkdir(parents=True, exist_ok=True)
        filepath = directory / f"migration_report_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.json"
        with open(filepath, "w") as f:
            json.dump(self.current_run.to_dict(), f, indent=2, default=str)
        logger.info(f"Saved migration report to {filepath}")

    def preview(self, items: List[Dict[str, Any]]) -> List[TransformedRecord]:
        """Transform raw items without touching the target."""
        source = self.reader.source
        records = [
            SourceRecord(
                id=str(item.get(source.id_field, f"preview-{i}")),
                object_type=source.object_type,
                data=item,
                source_service=source.service,
            )
            for i, item in enumerate(items)
        ]
        return self.transformer.transform_many(records, self.table)


class MembershipRunner(MigrationRunner):
    """
    Adds the target counterpart of every source record to one static list.

    Runs through the same page states as a migration. Records pass the
    transform phase unchanged; the persist phase looks up each record's
    target id under the usual fan-out and adds the found ids to the list
    in batches. A record without a counterpart counts as not found, and
    one the target refuses to add counts as failed. Nothing is created or
    updated.
    """

    def __init__(self, reader: SourceReader, members: ListMembership, **options: Any):
        """
        Initialize the runner.

        Args:
            reader: Source page reader over the list's members
            members: Membership service bound to the target
            **options: Paging and pacing options of MigrationRunner
        """
        super().__init__(reader, table=None, upserter=None, **options)
        self.members = members
        self.list_id: Optional[str] = None

    @property
    def target(self) -> BaseLoader:
        return self.members.target

    @property
    def dry_run(self) -> bool:
        return self.members.dry_run

    async def _prepare(self) -> None:
        self.list_id = await self.members.resolve_list()

    def _transform_page(self, page: Page) -> List[SourceRecord]:
        return list(page.records)

    async def _persist_page(self, records: List[SourceRecord]) -> None:
        outcomes = await run_batch(
            records,
            self._resolve_item,
            concurrency=self.concurrency,
            inter_item_delay=self.inter_item_delay,
        )

        found: List[Tuple[SourceRecord, str]] = []
        fatal: Optional[BaseException] = None
        for outcome in outcomes:
            record = outcome.item
            if outcome.error is not None:
                if is_fatal(outcome.error):
                    fatal = fatal or outcome.error
                    continue
                self._record_failure(record.id, outcome.error)
                continue

            result: Optional[ItemResult] = outcome.result
            if result is None:
                continue
            if result.not_found:
                self.current_run.stats.not_found += 1
                continue
            found.append((record, result.target_id))

        if fatal is not None:
            raise fatal
        if not found:
            return

        member_ids = list(dict.fromkeys(member_id for _, member_id in found))
        batch = await self.members.add(self.list_id, member_ids)

        rejected: Dict[str, Dict[str, Any]] = {}
        for error in batch.errors:
            if error.get("id") is None:
                self._record_batch_error(error, "MEMBERSHIP_FAILED")
            else:
                rejected[str(error["id"])] = error

        for record, member_id in found:
            error = rejected.get(member_id)
            if error is None:
                self.current_run.stats.migrated += 1
            else:
                self._record_failure(
                    record.id, error.get("error", "Not added to list"), error_code="MEMBERSHIP_FAILED"
                )

    async def _resolve_item(self, record: SourceRecord) -> Optional[ItemResult]:
        if self._halted:
            return None

        try:
            member_id = await self.members.resolve_member(record)
        except Exception as e:
            if is_fatal(e):
                self._halted = True
            raise
        return ItemResult(
            record_id=record.id,
            success=member_id is not None,
            target_id=member_id,
            not_found=member_id is None,
        )
