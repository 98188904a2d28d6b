"""Mapping tables and association registry models."""

from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union
from enum import Enum
import json

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..exceptions import ConfigurationError


class ValueKind(str, Enum):
    """Closed set of value kinds a mapping entry can declare."""
    SCALAR = "scalar"
    ARRAY_JOIN = "array_join"
    NESTED_OBJECT_NAME = "nested_object_name"
    NESTED_JSON_PATH = "nested_json_path"
    TYPE_COERCED = "type_coerced"


class CoercionType(str, Enum):
    """Conversions available to type_coerced entries."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    EPOCH_MS = "epoch_ms"
    EPOCH_SECONDS = "epoch_seconds"
    ISO_DATE = "iso_date"
    ISO_DATETIME = "iso_datetime"


class UpsertPolicy(str, Enum):
    """What to do when the natural key already exists on the target."""
    UPDATE = "update"
    SKIP = "skip"


# Entities edited by hand on the target after migration; never overwrite them.
SKIP_ON_FOUND_TYPES = frozenset({"lists", "list", "campaigns", "campaign", "marketing_events"})


def default_policy_for(object_type: str) -> UpsertPolicy:
    """Default upsert policy for an object type."""
    if object_type.lower() in SKIP_ON_FOUND_TYPES:
        return UpsertPolicy.SKIP
    return UpsertPolicy.UPDATE


class _MappingEntry(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    target_field: str = Field(alias="targetField")


class ScalarMapping(_MappingEntry):
    """Copy the value as-is (or as a string)."""
    kind: Literal["scalar"] = "scalar"
    stringify: bool = False


class ArrayJoinMapping(_MappingEntry):
    """Join list values into one delimited string."""
    kind: Literal["array_join"] = "array_join"
    separator: str = ";"


class NestedObjectNameMapping(_MappingEntry):
    """Take a name-like attribute out of a lookup object."""
    kind: Literal["nested_object_name"] = "nested_object_name"
    attribute: str = "name"
    fallbacks: Tuple[str, ...] = ("id", "_value")


class NestedJsonPathMapping(_MappingEntry):
    """Pull a sub-field (e.g. a locale label) and store it under a suffixed key."""
    kind: Literal["nested_json_path"] = "nested_json_path"
    path: str
    suffix: str = "name"

    @property
    def output_field(self) -> str:
        return f"{self.target_field}{self.suffix}"


class TypeCoercedMapping(_MappingEntry):
    """Numeric, boolean, epoch and date conversions."""
    kind: Literal["type_coerced"] = "type_coerced"
    coerce: CoercionType


FieldMappingEntry = Annotated[
    Union[
        ScalarMapping,
        ArrayJoinMapping,
        NestedObjectNameMapping,
        NestedJsonPathMapping,
        TypeCoercedMapping,
    ],
    Field(discriminator="kind"),
]


class MappingTable(BaseModel):
    """
    Declarative mapping from one source object to one target object type.

    Loaded whole from JSON and frozen. Each entry in ``fields`` is keyed by
    the source field name; a bare string value is shorthand for a scalar
    copy into that target field.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = ""
    object_type: str
    primary_key: str = "id"
    natural_key: Optional[str] = None
    display_name_field: Optional[str] = "name"
    on_found: Optional[UpsertPolicy] = None
    constants: Dict[str, Any] = Field(default_factory=dict)
    fields: Dict[str, FieldMappingEntry] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _expand_shorthand(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("fields"), dict):
            expanded = {}
            for source_field, entry in data["fields"].items():
                if isinstance(entry, str):
                    entry = {"kind": ValueKind.SCALAR.value, "target_field": entry}
                elif isinstance(entry, dict) and "kind" not in entry:
                    entry = {**entry, "kind": ValueKind.SCALAR.value}
                expanded[source_field] = entry
            data = {**data, "fields": expanded}
        return data

    @property
    def lookup_property(self) -> str:
        """Target property used for idempotent lookup."""
        return self.natural_key or self.primary_key

    @property
    def upsert_policy(self) -> UpsertPolicy:
        return self.on_found or default_policy_for(self.object_type)

    def target_fields(self) -> List[str]:
        """All target fields this table can produce."""
        result = list(self.constants.keys())
        for entry in self.fields.values():
            if isinstance(entry, NestedJsonPathMapping):
                result.append(entry.output_field)
            else:
                result.append(entry.target_field)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingTable":
        """Create from dictionary representation."""
        try:
            return cls.model_validate(data)
        except ValueError as e:
            raise ConfigurationError(f"Invalid mapping table: {e}") from e

    @classmethod
    def from_json_file(cls, file_path: str) -> "MappingTable":
        """Load a mapping table from a JSON file."""
        try:
            with open(file_path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read mapping file {file_path}: {e}") from e
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return self.model_dump(mode="json")


@dataclass
class AssociationRegistry:
    """Static association-type codes keyed by (from_type, to_type)."""
    codes: Dict[Tuple[str, str], int] = field(default_factory=dict)
    category: str = "DEFINED"

    def register(self, from_type: str, to_type: str, type_id: int) -> None:
        self.codes[(from_type, to_type)] = int(type_id)

    def resolve(self, from_type: str, to_type: str) -> int:
        """
        Look up the association code for a pair of object types.

        Raises:
            ConfigurationError: If the pair has no registered code
        """
        try:
            return self.codes[(from_type, to_type)]
        except KeyError:
            raise ConfigurationError(
                f"No association type registered for {from_type} -> {to_type}",
                details={"from_type": from_type, "to_type": to_type},
            ) from None

    def __contains__(self, pair: Tuple[str, str]) -> bool:
        return pair in self.codes

    @classmethod
    def from_dict(cls, data: Dict[str, Any], category: Optional[str] = None) -> "AssociationRegistry":
        """
        Create from a ``{from_type: {"TO": {to_type: id}}}`` structure.

        The ``"TO"`` level is optional.
        """
        data = dict(data)
        declared = data.pop("_category", "DEFINED")
        registry = cls(category=category or declared)
        for from_type, targets in data.items():
            if not isinstance(targets, dict):
                raise ConfigurationError(f"Invalid association entry for {from_type}")
            targets = targets.get("TO", targets)
            for to_type, type_id in targets.items():
                registry.register(from_type, to_type, type_id)
        return registry

    @classmethod
    def from_json_file(cls, file_path: str) -> "AssociationRegistry":
        """Load the registry from a JSON file."""
        try:
            with open(file_path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read association registry {file_path}: {e}") from e
        return cls.from_dict(data)
