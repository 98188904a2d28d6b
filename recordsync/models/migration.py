"""Migration execution and configuration models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import json
import os
import uuid

from ..exceptions import ConfigurationError


class MigrationState(str, Enum):
    """States of the page loop."""
    IDLE = "idle"
    FETCHING_PAGE = "fetching_page"
    TRANSFORMING_BATCH = "transforming_batch"
    PERSISTING_BATCH = "persisting_batch"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed transitions; FAILED is reachable from every state.
TRANSITIONS = {
    MigrationState.IDLE: {MigrationState.FETCHING_PAGE},
    MigrationState.FETCHING_PAGE: {MigrationState.TRANSFORMING_BATCH, MigrationState.COMPLETED},
    MigrationState.TRANSFORMING_BATCH: {MigrationState.PERSISTING_BATCH},
    MigrationState.PERSISTING_BATCH: {MigrationState.FETCHING_PAGE, MigrationState.COMPLETED},
    MigrationState.COMPLETED: set(),
    MigrationState.FAILED: set(),
}


class PaginationStyle(str, Enum):
    """How a source API pages its results."""
    OFFSET = "offset"  # offset/limit pair
    TOKEN = "token"  # opaque next-page token or link


class SourceType(str, Enum):
    """Kinds of source connectors."""
    API = "api"
    FILE = "file"
    MEMORY = "memory"


class TargetType(str, Enum):
    """Kinds of target connectors."""
    API = "api"
    MEMORY = "memory"


@dataclass(frozen=True)
class Cursor:
    """
    Position of the next page to fetch.

    Either an offset/limit pair or an opaque token. Cursors only move
    forward; there is no way to rebuild one after a restart.
    """
    offset: Optional[int] = None
    limit: Optional[int] = None
    token: Optional[str] = None

    @classmethod
    def start(cls, style: PaginationStyle, limit: int) -> "Cursor":
        """The cursor for the first page."""
        if style == PaginationStyle.OFFSET:
            return cls(offset=0, limit=limit)
        return cls(limit=limit)

    def advance(self, token: Optional[str] = None, step: Optional[int] = None) -> "Cursor":
        """
        The cursor for the page after this one.

        Offset cursors move by ``step`` (the number of items actually
        returned) when given, else by ``limit``.
        """
        if self.offset is not None:
            moved = self.limit if step is None else step
            return Cursor(offset=self.offset + (moved or 0), limit=self.limit)
        return Cursor(limit=self.limit, token=token)

    def to_dict(self) -> Dict[str, Any]:
        return {"offset": self.offset, "limit": self.limit, "token": self.token}


@dataclass
class MigrationStats:
    """Aggregate counters, mutated only by the runner."""
    migrated: int = 0
    failed: int = 0
    not_found: int = 0
    pages: int = 0
    records_seen: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "migrated": self.migrated,
            "failed": self.failed,
            "not_found": self.not_found,
            "pages": self.pages,
            "records_seen": self.records_seen,
        }


def resolve_env(name: Optional[str], required: bool = True) -> Optional[str]:
    """Read a secret from the environment by variable name."""
    if not name:
        return None
    value = os.environ.get(name)
    if not value and required:
        raise ConfigurationError(f"Missing required environment variable: {name}")
    return value


@dataclass
class AuthConfig:
    """How to obtain a bearer token. Secrets are named by env var, never stored."""
    type: str = "bearer"  # bearer, client_credentials, none
    token_env: Optional[str] = None
    token_url: Optional[str] = None
    token_method: str = "GET"
    client_id_env: Optional[str] = None
    client_secret_env: Optional[str] = None
    scope: Optional[str] = None
    refresh_margin: float = 60.0  # seconds before expiry to refresh early

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "token_env": self.token_env,
            "token_url": self.token_url,
            "token_method": self.token_method,
            "client_id_env": self.client_id_env,
            "client_secret_env": self.client_secret_env,
            "scope": self.scope,
            "refresh_margin": self.refresh_margin,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["AuthConfig"]:
        if not data:
            return None
        return cls(
            type=data.get("type", "bearer"),
            token_env=data.get("token_env"),
            token_url=data.get("token_url"),
            token_method=data.get("token_method", "GET"),
            client_id_env=data.get("client_id_env"),
            client_secret_env=data.get("client_secret_env"),
            scope=data.get("scope"),
            refresh_margin=data.get("refresh_margin", 60.0),
        )


def _default_retry_config() -> Dict[str, Any]:
    return {
        "max_retries": 3,
        "backoff_factor": 0.8,
        "max_backoff": 20.0,
    }


@dataclass
class SourceConfig:
    """Configuration for the source side of a migration."""
    type: SourceType
    object_type: str
    service: str = ""

    # For API sources
    base_url: Optional[str] = None
    endpoint: str = ""
    pagination: PaginationStyle = PaginationStyle.TOKEN
    page_size: int = 100
    limit_param: str = "limit"
    offset_param: str = "offset"
    token_param: str = "nextPageToken"
    records_path: str = "result"
    next_token_path: str = "nextPageToken"
    id_field: str = "id"
    params: Dict[str, Any] = field(default_factory=dict)
    auth: Optional[AuthConfig] = None
    timeout: float = 30.0

    # For file sources
    file_path: Optional[str] = None

    # General options
    rate_limit: Optional[float] = None  # Requests per second
    retry_config: Dict[str, Any] = field(default_factory=_default_retry_config)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "type": self.type.value,
            "object_type": self.object_type,
            "service": self.service,
            "base_url": self.base_url,
            "endpoint": self.endpoint,
            "pagination": self.pagination.value,
            "page_size": self.page_size,
            "limit_param": self.limit_param,
            "offset_param": self.offset_param,
            "token_param": self.token_param,
            "records_path": self.records_path,
            "next_token_path": self.next_token_path,
            "id_field": self.id_field,
            "params": self.params,
            "auth": self.auth.to_dict() if self.auth else None,
            "timeout": self.timeout,
            "file_path": self.file_path,
            "rate_limit": self.rate_limit,
            "retry_config": self.retry_config,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceConfig":
        """Create from dictionary representation."""
        try:
            return cls(
                type=SourceType(data.get("type", "api")),
                object_type=data["object_type"],
                service=data.get("service", ""),
                base_url=data.get("base_url"),
                endpoint=data.get("endpoint", ""),
                pagination=PaginationStyle(data.get("pagination", "token")),
                page_size=data.get("page_size", 100),
                limit_param=data.get("limit_param", "limit"),
                offset_param=data.get("offset_param", "offset"),
                token_param=data.get("token_param", "nextPageToken"),
                records_path=data.get("records_path", "result"),
                next_token_path=data.get("next_token_path", "nextPageToken"),
                id_field=data.get("id_field", "id"),
                params=data.get("params", {}),
                auth=AuthConfig.from_dict(data.get("auth")),
                timeout=data.get("timeout", 30.0),
                file_path=data.get("file_path"),
                rate_limit=data.get("rate_limit"),
                retry_config={**_default_retry_config(), **data.get("retry_config", {})},
            )
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"Invalid source configuration: {e}") from e


@dataclass
class TargetConfig:
    """Configuration for the target side of a migration."""
    type: TargetType = TargetType.API
    service: str = ""
    base_url: Optional[str] = None
    endpoints: Dict[str, str] = field(default_factory=dict)
    auth: Optional[AuthConfig] = None
    timeout: float = 30.0
    batch_size: int = 100
    rate_limit: Optional[float] = 10.0
    retry_config: Dict[str, Any] = field(default_factory=_default_retry_config)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "service": self.service,
            "base_url": self.base_url,
            "endpoints": self.endpoints,
            "auth": self.auth.to_dict() if self.auth else None,
            "timeout": self.timeout,
            "batch_size": self.batch_size,
            "rate_limit": self.rate_limit,
            "retry_config": self.retry_config,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TargetConfig":
        try:
            return cls(
                type=TargetType(data.get("type", "api")),
                service=data.get("service", ""),
                base_url=data.get("base_url"),
                endpoints=data.get("endpoints", {}),
                auth=AuthConfig.from_dict(data.get("auth")),
                timeout=data.get("timeout", 30.0),
                batch_size=data.get("batch_size", 100),
                rate_limit=data.get("rate_limit", 10.0),
                retry_config={**_default_retry_config(), **data.get("retry_config", {})},
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid target configuration: {e}") from e


@dataclass
class AssociationRule:
    """
    Link each migrated record to an existing target record.

    The value of ``source_field`` on the source record is looked up on
    ``to_type`` by ``lookup_property``. With ``reverse`` set, the edge
    points from the found record to the migrated one. With ``display_name``
    set, the value goes through the same bracket rule as display names
    before the lookup.
    """
    to_type: str
    source_field: str
    lookup_property: str
    reverse: bool = False
    display_name: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to_type": self.to_type,
            "source_field": self.source_field,
            "lookup_property": self.lookup_property,
            "reverse": self.reverse,
            "display_name": self.display_name,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["AssociationRule"]:
        if not data:
            return None
        try:
            return cls(
                to_type=data["to_type"],
                source_field=data["source_field"],
                lookup_property=data["lookup_property"],
                reverse=data.get("reverse", False),
                display_name=data.get("display_name", False),
            )
        except KeyError as e:
            raise ConfigurationError(f"Association rule missing {e}") from e


@dataclass
class MembershipRule:
    """
    Add each source record's target counterpart to one static target list.

    The list is ``list_id`` or else the ``list_type`` entity whose
    ``list_lookup_property`` equals ``list_name``, resolved once before the
    first page. A record's ``source_field`` is looked up on ``member_type``
    by ``lookup_property``; a record with no match counts as not found.
    """
    member_type: str = "contacts"
    source_field: str = "id"
    lookup_property: str = "id"
    list_id: Optional[str] = None
    list_name: Optional[str] = None
    list_type: str = "lists"
    list_lookup_property: str = "name"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_type": self.member_type,
            "source_field": self.source_field,
            "lookup_property": self.lookup_property,
            "list_id": self.list_id,
            "list_name": self.list_name,
            "list_type": self.list_type,
            "list_lookup_property": self.list_lookup_property,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["MembershipRule"]:
        if not data:
            return None
        if not data.get("list_id") and not data.get("list_name"):
            raise ConfigurationError("Membership rule needs list_id or list_name")
        return cls(
            member_type=data.get("member_type", "contacts"),
            source_field=data.get("source_field", "id"),
            lookup_property=data.get("lookup_property", "id"),
            list_id=str(data["list_id"]) if data.get("list_id") else None,
            list_name=data.get("list_name"),
            list_type=data.get("list_type", "lists"),
            list_lookup_property=data.get("list_lookup_property", "name"),
        )


@dataclass
class MigrationConfig:
    """Configuration for a migration."""
    name: str
    source: SourceConfig
    target: TargetConfig = field(default_factory=TargetConfig)
    description: str = ""

    # Mapping
    mapping_file: Optional[str] = None
    mapping: Optional[Dict[str, Any]] = None  # inline alternative to mapping_file

    # Associations
    association_registry_file: Optional[str] = None
    associations: Dict[str, Any] = field(default_factory=dict)
    association: Optional[AssociationRule] = None

    # List membership (replaces mapping and upsert)
    membership: Optional[MembershipRule] = None

    # Execution options
    concurrency: int = 1
    inter_item_delay: float = 0.1
    page_delay: float = 0.1
    single_page: bool = False
    max_pages: Optional[int] = None
    dry_run: bool = False

    # Output
    log_dir: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "description": self.description,
            "source": self.source.to_dict(),
            "target": self.target.to_dict(),
            "mapping_file": self.mapping_file,
            "association_registry_file": self.association_registry_file,
            "association": self.association.to_dict() if self.association else None,
            "membership": self.membership.to_dict() if self.membership else None,
            "concurrency": self.concurrency,
            "inter_item_delay": self.inter_item_delay,
            "page_delay": self.page_delay,
            "single_page": self.single_page,
            "max_pages": self.max_pages,
            "dry_run": self.dry_run,
            "log_dir": self.log_dir,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        if "source" not in data:
            raise ConfigurationError("Migration config requires a 'source' section")

        concurrency = data.get("concurrency", 1)
        if concurrency < 1:
            raise ConfigurationError(f"concurrency must be >= 1, got {concurrency}")

        membership = MembershipRule.from_dict(data.get("membership"))
        if membership is not None and data.get("association"):
            raise ConfigurationError("A membership run cannot also carry an association rule")

        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            source=SourceConfig.from_dict(data["source"]),
            target=TargetConfig.from_dict(data.get("target", {})),
            mapping_file=data.get("mapping_file"),
            mapping=data.get("mapping"),
            association_registry_file=data.get("association_registry_file"),
            associations=data.get("associations", {}),
            association=AssociationRule.from_dict(data.get("association")),
            membership=membership,
            concurrency=concurrency,
            inter_item_delay=data.get("inter_item_delay", 0.1),
            page_delay=data.get("page_delay", 0.1),
            single_page=data.get("single_page", False),
            max_pages=data.get("max_pages"),
            dry_run=data.get("dry_run", False),
            log_dir=data.get("log_dir"),
        )

    @classmethod
    def from_json_file(cls, file_path: str) -> "MigrationConfig":
        """Load configuration from a JSON file."""
        try:
            with open(file_path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read config file {file_path}: {e}") from e

        config = cls.from_dict(data)

        # Referenced files are relative to the config file.
        base_dir = os.path.dirname(os.path.abspath(file_path))
        for attr in ("mapping_file", "association_registry_file"):
            value = getattr(config, attr)
            if value and not os.path.isabs(value):
                setattr(config, attr, os.path.join(base_dir, value))
        if config.source.file_path and not os.path.isabs(config.source.file_path):
            config.source.file_path = os.path.join(base_dir, config.source.file_path)
        return config


@dataclass
class MigrationRun:
    """A complete migration run."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    state: MigrationState = MigrationState.IDLE
    dry_run: bool = False

    # Timing
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Progress
    stats: MigrationStats = field(default_factory=MigrationStats)
    cursor: Optional[Cursor] = None
    history: List[Dict[str, Any]] = field(default_factory=list)

    # Errors
    errors: List[Dict[str, Any]] = field(default_factory=list)
    failure: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state.value,
            "dry_run": self.dry_run,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "stats": self.stats.to_dict(),
            "cursor": self.cursor.to_dict() if self.cursor else None,
            "history": self.history,
            "errors": self.errors,
            "failure": self.failure,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def succeeded(self) -> bool:
        return self.state == MigrationState.COMPLETED

    def transition(self, new_state: MigrationState) -> None:
        """
        Move to a new state.

        Raises:
            RuntimeError: If the transition is not allowed
        """
        if new_state != MigrationState.FAILED and new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid transition {self.state.value} -> {new_state.value}")
        self.history.append({
            "from": self.state.value,
            "to": new_state.value,
            "at": datetime.utcnow().isoformat(),
        })
        self.state = new_state
