"""Transformation engine for converting source records into target properties."""

import copy
import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List

from dateutil import parser as date_parser

from ..models.schema import (
    ValueKind,
    CoercionType,
    MappingTable,
    ScalarMapping,
    ArrayJoinMapping,
    NestedObjectNameMapping,
    NestedJsonPathMapping,
    TypeCoercedMapping,
)
from ..models.record import SourceRecord, TransformedRecord

logger = logging.getLogger(__name__)

TRUE_VALUES = frozenset({"true", "yes", "y", "1", "on"})
FALSE_VALUES = frozenset({"false", "no", "n", "0", "off"})


def format_display_name(value: Any) -> Any:
    """
    Replace parentheses with square brackets in a display name.

    Non-string values are returned unchanged.
    """
    if not isinstance(value, str):
        return value
    return value.replace("(", "[").replace(")", "]")


def _to_datetime(value: Any) -> datetime:
    """Parse a date-like value, treating numbers as epoch seconds and naive values as UTC."""
    if isinstance(value, bool):
        raise ValueError(f"not a date: {value!r}")
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        dt = date_parser.parse(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


class TransformEngine:
    """
    Turn a SourceRecord into a TransformedRecord using a MappingTable.

    The transform is a pure function of its two inputs: no I/O, no clocks,
    no state carried between calls. Each mapping entry is dispatched on its
    ``kind`` through a fixed registry.

    Rules:
    - Constants are applied first; mapped fields override them.
    - Missing or None source values are skipped.
    - A value that cannot be coerced is skipped and noted in ``warnings``.
    - Parentheses in the display-name field become square brackets.
    """

    def __init__(self):
        """Initialize the transform engine."""
        self._handlers = self._register_builtin_transforms()
        self._coercions = self._register_coercions()

    def _register_builtin_transforms(self) -> Dict[ValueKind, Callable[[Any, Any], Any]]:
        """Register the handler for each value kind."""
        return {
            ValueKind.SCALAR: self._transform_scalar,
            ValueKind.ARRAY_JOIN: self._transform_array_join,
            ValueKind.NESTED_OBJECT_NAME: self._transform_nested_object_name,
            ValueKind.NESTED_JSON_PATH: self._transform_nested_json_path,
            ValueKind.TYPE_COERCED: self._transform_type_coerced,
        }

    def _register_coercions(self) -> Dict[CoercionType, Callable[[Any], Any]]:
        return {
            CoercionType.STRING: _stringify,
            CoercionType.INTEGER: self._coerce_integer,
            CoercionType.NUMBER: self._coerce_number,
            CoercionType.BOOLEAN: self._coerce_boolean,
            CoercionType.EPOCH_MS: self._coerce_epoch_ms,
            CoercionType.EPOCH_SECONDS: self._coerce_epoch_seconds,
            CoercionType.ISO_DATE: lambda v: _to_datetime(v).date().isoformat(),
            CoercionType.ISO_DATETIME: lambda v: _to_datetime(v).isoformat(),
        }

    def transform(self, record: SourceRecord, table: MappingTable) -> TransformedRecord:
        """
        Transform one source record.

        Args:
            record: Record read from the source
            table: Mapping table for the record's object type

        Returns:
            TransformedRecord tagged with the table's object type
        """
        data: Dict[str, Any] = copy.deepcopy(table.constants)
        warnings: List[str] = []

        for source_field, entry in table.fields.items():
            value = self._get_source_value(record, source_field)
            if value is None:
                continue

            handler = self._handlers[ValueKind(entry.kind)]
            try:
                result = handler(entry, value)
            except (ValueError, TypeError, OverflowError) as e:
                warnings.append(
                    f"Field '{source_field}': could not convert {value!r} for '{entry.target_field}' ({e})"
                )
                logger.debug(f"Skipped {source_field} on record {record.id}: {e}")
                continue

            if result is None:
                continue

            output_field = (
                entry.output_field if isinstance(entry, NestedJsonPathMapping) else entry.target_field
            )
            data[output_field] = result

        display_field = table.display_name_field
        if display_field and display_field in data:
            data[display_field] = format_display_name(data[display_field])

        return TransformedRecord(
            source_id=record.id,
            object_type=table.object_type,
            data=data,
            primary_key=table.primary_key,
            warnings=warnings,
        )

    def transform_many(
        self,
        records: List[SourceRecord],
        table: MappingTable
    ) -> List[TransformedRecord]:
        """Transform a list of records in order."""
        return [self.transform(record, table) for record in records]

    def _get_source_value(self, record: SourceRecord, field_path: str) -> Any:
        """Exact key first, then a dotted path."""
        if field_path in record.data:
            return record.data[field_path]
        if "." in field_path:
            return record.get_field(field_path)
        return None

    # Value kinds

    def _transform_scalar(self, entry: ScalarMapping, value: Any) -> Any:
        """Copy the value, optionally as a string."""
        return _stringify(value) if entry.stringify else value

    def _transform_array_join(self, entry: ArrayJoinMapping, value: Any) -> Any:
        """Join list items with the separator; a non-list is copied as-is."""
        if isinstance(value, (list, tuple)):
            return entry.separator.join(_stringify(v) for v in value if v is not None)
        return value

    def _transform_nested_object_name(self, entry: NestedObjectNameMapping, value: Any) -> Any:
        """Name of a lookup object, falling back to its id and then a JSON dump."""
        if not isinstance(value, dict):
            return value

        for attribute in (entry.attribute,) + tuple(entry.fallbacks):
            candidate = value.get(attribute)
            if candidate not in (None, ""):
                return candidate

        return json.dumps(value, sort_keys=True)

    def _transform_nested_json_path(self, entry: NestedJsonPathMapping, value: Any) -> Any:
        """Sub-field of a JSON object (or JSON-encoded string)."""
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                return None

        for part in entry.path.split("."):
            if isinstance(value, dict):
                value = value.get(part)
            elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
                value = value[int(part)]
            else:
                return None
        return value

    def _transform_type_coerced(self, entry: TypeCoercedMapping, value: Any) -> Any:
        return self._coercions[CoercionType(entry.coerce)](value)

    # Coercions

    def _coerce_integer(self, value: Any) -> int:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        number = float(str(value).strip()) if not isinstance(value, float) else value
        if not number.is_integer():
            raise ValueError(f"{value!r} is not a whole number")
        return int(number)

    def _coerce_number(self, value: Any) -> float:
        if isinstance(value, bool):
            raise ValueError(f"{value!r} is not a number")
        if isinstance(value, (int, float)):
            return value
        return float(str(value).strip())

    def _coerce_boolean(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)) and value in (0, 1):
            return bool(value)
        text = str(value).strip().lower()
        if text in TRUE_VALUES:
            return True
        if text in FALSE_VALUES:
            return False
        raise ValueError(f"{value!r} is not a boolean")

    def _coerce_epoch_ms(self, value: Any) -> int:
        """Milliseconds since the epoch; numbers are taken to be milliseconds already."""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
        return int(_to_datetime(value).timestamp() * 1000)

    def _coerce_epoch_seconds(self, value: Any) -> int:
        """Seconds since the epoch; numbers are taken to be seconds already."""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
        return int(_to_datetime(value).timestamp())
