"""
Record Synchronization Engine

Moves records between SaaS systems one page at a time: extract from a source
API, reshape each record with a declarative mapping table, and write the
result idempotently to a target system.

Supports:
- Offset/limit and opaque-token pagination
- Declarative, type-directed field mappings
- Idempotent upsert by natural key (update or no-op on match)
- Typed associations between migrated entities, linked in batches
- Static list membership for already-migrated entities
- Rate-limited sequential or bounded-parallel persistence
- Per-item fault isolation with aggregate counters
"""

__version__ = "0.1.0"
