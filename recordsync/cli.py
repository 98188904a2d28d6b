"""Command line interface for the record synchronization engine."""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .exceptions import SyncError
from .models.migration import MigrationConfig
from .models.record import SourceRecord
from .models.schema import MappingTable
from .orchestrator import MigrationRunner
from .services.transformer import TransformEngine
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="recordsync",
        description="Record Sync - Migrate paginated records between systems"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run migration
    run_parser = subparsers.add_parser("run", help="Run a migration")
    run_parser.add_argument("--config", required=True, help="Path to migration config file")
    run_parser.add_argument("--dry-run", action="store_true", help="Look up but never write to the target")
    run_parser.add_argument("--single-page", action="store_true", help="Stop after the first page")
    run_parser.add_argument("--log-dir", help="Directory for JSON-lines logs and the run report")
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Preview transformation
    preview_parser = subparsers.add_parser("preview", help="Preview a transformation")
    preview_parser.add_argument("--mapping", required=True, help="Path to mapping file")
    preview_parser.add_argument("--input", required=True, help="Path to input JSON file")
    preview_parser.add_argument("--id-field", default="id", help="Source id field")
    preview_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(log_level, getattr(args, "log_dir", None))

    try:
        if args.command == "run":
            return asyncio.run(run_migration(args))
        return run_preview(args)
    except SyncError as e:
        logger.error(f"{e.error_code}: {e.message}")
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 1


async def run_migration(args) -> int:
    """Run a migration from config file."""
    config = MigrationConfig.from_json_file(args.config)

    if args.dry_run:
        config.dry_run = True
    if args.single_page:
        config.single_page = True
    if args.log_dir:
        config.log_dir = args.log_dir

    async with MigrationRunner.from_config(config) as runner:
        result = await runner.run()

    print("\n" + "=" * 60)
    print("MIGRATION COMPLETE" if result.succeeded else "MIGRATION FAILED")
    print("=" * 60)
    print(f"State: {result.state.value}")
    print(f"Pages: {result.stats.pages}")
    print(f"Migrated: {result.stats.migrated}")
    print(f"Failed: {result.stats.failed}")
    print(f"Not found: {result.stats.not_found}")
    if result.dry_run:
        print("Dry run: no changes were written")
    if result.failure:
        print(f"Error: {result.failure['error']}")
    if result.duration_seconds:
        print(f"Duration: {result.duration_seconds:.2f} seconds")

    return 0 if result.succeeded else 1


def run_preview(args) -> int:
    """Preview a transformation."""
    table = MappingTable.from_json_file(args.mapping)

    try:
        with open(args.input) as f:
            input_data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Cannot read input {args.input}: {e}")
        return 1

    if not isinstance(input_data, list):
        input_data = [input_data]

    for index, data in enumerate(input_data):
        if not isinstance(data, dict):
            logger.error(f"Input item {index} in {args.input} is not an object")
            return 1

    transformer = TransformEngine()

    for index, data in enumerate(input_data):
        record = SourceRecord(
            id=str(data.get(args.id_field, f"preview-{index}")),
            object_type=table.object_type,
            data=data,
        )
        result = transformer.transform(record, table)

        print(json.dumps(result.to_dict(), indent=2, default=str))
        print("-" * 40)

    return 0


if __name__ == "__main__":
    sys.exit(main())
