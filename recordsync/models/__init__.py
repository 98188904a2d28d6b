"""Data models for the synchronization engine."""

from .schema import (
    ValueKind,
    CoercionType,
    UpsertPolicy,
    ScalarMapping,
    ArrayJoinMapping,
    NestedObjectNameMapping,
    NestedJsonPathMapping,
    TypeCoercedMapping,
    FieldMappingEntry,
    MappingTable,
    AssociationRegistry,
    default_policy_for,
)
from .migration import (
    MigrationConfig,
    MigrationRun,
    MigrationState,
    MigrationStats,
    Cursor,
    PaginationStyle,
    SourceConfig,
    SourceType,
    TargetConfig,
    TargetType,
    AuthConfig,
    AssociationRule,
    MembershipRule,
)
from .record import (
    SourceRecord,
    TransformedRecord,
    TargetRecord,
    NaturalKey,
    AssociationEdge,
    ItemResult,
    BatchResult,
    UpsertAction,
)

__all__ = [
    "ValueKind",
    "CoercionType",
    "UpsertPolicy",
    "ScalarMapping",
    "ArrayJoinMapping",
    "NestedObjectNameMapping",
    "NestedJsonPathMapping",
    "TypeCoercedMapping",
    "FieldMappingEntry",
    "MappingTable",
    "AssociationRegistry",
    "default_policy_for",
    "MigrationConfig",
    "MigrationRun",
    "MigrationState",
    "MigrationStats",
    "Cursor",
    "PaginationStyle",
    "SourceConfig",
    "SourceType",
    "TargetConfig",
    "TargetType",
    "AuthConfig",
    "AssociationRule",
    "MembershipRule",
    "SourceRecord",
    "TransformedRecord",
    "TargetRecord",
    "NaturalKey",
    "AssociationEdge",
    "ItemResult",
    "BatchResult",
    "UpsertAction",
]
