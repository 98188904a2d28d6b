"""Record models for synchronization data."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
from datetime import datetime

from ..exceptions import ValidationError


class UpsertAction(str, Enum):
    """What the upsert did on the target."""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class SourceRecord:
    """A record extracted from a source system."""
    id: str
    object_type: str
    data: Dict[str, Any]
    source_service: str = ""
    extracted_at: datetime = field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "object_type": self.object_type,
            "source_service": self.source_service,
            "data": self.data,
            "extracted_at": self.extracted_at.isoformat(),
            "metadata": self.metadata,
        }

    def get_field(self, path: str, default: Any = None) -> Any:
        """Get a field value by dot-notation path (e.g., 'address.city')."""
        parts = path.split(".")
        value = self.data
        for part in parts:
            if isinstance(value, dict):
                value = value.get(part)
            elif isinstance(value, list) and part.isdigit():
                idx = int(part)
                value = value[idx] if idx < len(value) else None
            else:
                return default
            if value is None:
                return default
        return value


@dataclass
class TransformedRecord:
    """
    A record reshaped for the target system.

    Holds no timestamps so two transforms of the same input compare equal.
    """
    source_id: str
    object_type: str
    data: Dict[str, Any]
    primary_key: str = "id"
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "source_id": self.source_id,
            "object_type": self.object_type,
            "primary_key": self.primary_key,
            "data": self.data,
            "warnings": self.warnings,
        }

    @property
    def key_value(self) -> Any:
        """Value of the primary key field, if any."""
        return self.data.get(self.primary_key)

    def require(self, *fields: str) -> None:
        """
        Ensure the primary key (and any extra fields) are present and non-empty.

        Raises:
            ValidationError: If a required field is missing or blank
        """
        for name in (self.primary_key,) + fields:
            value = self.data.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(
                    f"Missing required field '{name}' on {self.object_type} record {self.source_id}",
                    details={"field": name, "record_id": self.source_id},
                )


@dataclass(frozen=True)
class NaturalKey:
    """The target property and value used to find an existing entity."""
    property: str
    value: Any

    def __str__(self) -> str:
        return f"{self.property}={self.value}"


@dataclass
class TargetRecord:
    """An entity persisted in the target system."""
    id: str
    object_type: str
    properties: Dict[str, Any] = field(default_factory=dict)
    natural_key: Optional[str] = None
    action: UpsertAction = UpsertAction.UNCHANGED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "object_type": self.object_type,
            "natural_key": self.natural_key,
            "action": self.action.value,
            "properties": self.properties,
        }


@dataclass(frozen=True)
class AssociationEdge:
    """A typed, directed link between two target entities."""
    from_type: str
    from_id: str
    to_type: str
    to_id: str
    association_type_id: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "from_type": self.from_type,
            "from_id": self.from_id,
            "to_type": self.to_type,
            "to_id": self.to_id,
            "association_type_id": self.association_type_id,
        }


@dataclass
class ItemResult:
    """Outcome of persisting one record."""
    record_id: str
    success: bool = False
    target_id: Optional[str] = None
    action: Optional[UpsertAction] = None
    not_found: bool = False
    link: Optional[Tuple[str, str]] = None  # (from_id, to_id) still to be sent

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "record_id": self.record_id,
            "success": self.success,
            "target_id": self.target_id,
            "action": self.action.value if self.action else None,
            "not_found": self.not_found,
        }


@dataclass
class BatchResult:
    """Per-item results of a non-atomic batch call."""
    results: List[Any] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() if hasattr(r, "to_dict") else r for r in self.results],
            "errors": self.errors,
        }
