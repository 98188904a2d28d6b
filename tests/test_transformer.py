"""Tests for the transform engine."""

import copy

import pydantic
import pytest

from recordsync.exceptions import ConfigurationError
from recordsync.models.record import SourceRecord
from recordsync.models.schema import MappingTable, NestedJsonPathMapping, ScalarMapping
from recordsync.services.transformer import TransformEngine, format_display_name


def make_record(data, record_id="1"):
    return SourceRecord(id=record_id, object_type="leads", data=data)


def single_field_table(entry, display_name_field=None):
    return MappingTable.from_dict({
        "object_type": "contacts",
        "display_name_field": display_name_field,
        "fields": {"value": entry},
    })


@pytest.fixture
def engine():
    return TransformEngine()


class TestTransform:
    def test_maps_every_kind(self, engine, contact_table):
        record = make_record({
            "id": "1",
            "email": "ann@example.com",
            "firstName": "Ann",
            "company": "Acme (EU)",
            "interests": ["golf", "chess"],
            "owner": {"name": "Bob", "id": "7"},
            "score": "42",
        })

        result = engine.transform(record, contact_table)

        assert result.object_type == "contacts"
        assert result.source_id == "1"
        assert result.primary_key == "email"
        assert result.data == {
            "lifecyclestage": "lead",
            "email": "ann@example.com",
            "firstname": "Ann",
            "company": "Acme [EU]",
            "interests": "golf;chess",
            "owner_name": "Bob",
            "score": 42,
        }
        assert result.warnings == []

    def test_is_pure(self, engine, contact_table):
        data = {
            "email": "ann@example.com",
            "company": "Q1 (Draft)",
            "interests": ["a", "b"],
            "owner": {"name": "Bob"},
        }
        snapshot = copy.deepcopy(data)
        record = make_record(data)

        first = engine.transform(record, contact_table)
        second = engine.transform(record, contact_table)
        third = TransformEngine().transform(record, contact_table)

        assert first == second == third
        assert data == snapshot

    def test_missing_and_none_fields_are_skipped(self, engine, contact_table):
        result = engine.transform(make_record({"email": "a@b.c", "firstName": None}), contact_table)

        assert "firstname" not in result.data
        assert "company" not in result.data
        assert result.warnings == []

    def test_mapped_fields_override_constants(self, engine):
        table = MappingTable.from_dict({
            "object_type": "contacts",
            "constants": {"lifecyclestage": "lead", "source": "import"},
            "fields": {"stage": "lifecyclestage"},
        })

        result = engine.transform(make_record({"stage": "customer"}), table)

        assert result.data == {"lifecyclestage": "customer", "source": "import"}

    def test_constants_are_copied_per_record(self, engine):
        table = MappingTable.from_dict({
            "object_type": "contacts",
            "constants": {"tags": ["a", "b"], "meta": {"origin": "import"}},
            "fields": {"email": "email"},
        })

        first = engine.transform(make_record({"email": "a@b.c"}), table)
        first.data["tags"].append("mutated")
        first.data["meta"]["origin"] = "changed"
        second = engine.transform(make_record({"email": "d@e.f"}), table)

        assert table.constants == {"tags": ["a", "b"], "meta": {"origin": "import"}}
        assert second.data["tags"] == ["a", "b"]
        assert second.data["meta"] == {"origin": "import"}

    def test_dotted_source_path(self, engine):
        table = MappingTable.from_dict({
            "object_type": "contacts",
            "fields": {"address.city": "city"},
        })

        result = engine.transform(make_record({"address": {"city": "Lyon"}}), table)

        assert result.data == {"city": "Lyon"}


class TestDisplayName:
    def test_parentheses_become_brackets(self, engine, list_table):
        result = engine.transform(make_record({"name": "Q1 (Draft)"}), list_table)

        assert result.data["name"] == "Q1 [Draft]"

    def test_only_display_field_is_rewritten(self, engine, contact_table):
        result = engine.transform(
            make_record({"email": "a@b.c", "firstName": "Ann (Jr)", "company": "X (Y)"}),
            contact_table,
        )

        assert result.data["firstname"] == "Ann (Jr)"
        assert result.data["company"] == "X [Y]"

    def test_format_display_name(self):
        assert format_display_name("Webinar (2024) (EU)") == "Webinar [2024] [EU]"
        assert format_display_name("plain") == "plain"
        assert format_display_name(5) == 5


class TestValueKinds:
    def test_scalar_stringify(self, engine):
        table = single_field_table({"kind": "scalar", "target_field": "out", "stringify": True})

        assert engine.transform(make_record({"value": True}), table).data == {"out": "true"}
        assert engine.transform(make_record({"value": 12}), table).data == {"out": "12"}

    def test_array_join_custom_separator(self, engine):
        table = single_field_table({"kind": "array_join", "target_field": "out", "separator": ","})

        result = engine.transform(make_record({"value": ["a", None, 3]}), table)

        assert result.data == {"out": "a,3"}

    def test_array_join_copies_non_list(self, engine):
        table = single_field_table({"kind": "array_join", "target_field": "out"})

        assert engine.transform(make_record({"value": "single"}), table).data == {"out": "single"}

    @pytest.mark.parametrize("value, expected", [
        ({"name": "Acme", "id": "1"}, "Acme"),
        ({"id": "9"}, "9"),
        ({"_value": "guid-1"}, "guid-1"),
        ({"other": 1}, '{"other": 1}'),
        ("already flat", "already flat"),
    ])
    def test_nested_object_name_fallbacks(self, engine, value, expected):
        table = single_field_table({"kind": "nested_object_name", "target_field": "out"})

        assert engine.transform(make_record({"value": value}), table).data == {"out": expected}

    def test_nested_json_path_uses_suffixed_field(self, engine):
        table = single_field_table({"kind": "nested_json_path", "target_field": "status", "path": "en"})

        result = engine.transform(make_record({"value": {"en": "Open", "fr": "Ouvert"}}), table)

        assert result.data == {"statusname": "Open"}
        assert isinstance(table.fields["value"], NestedJsonPathMapping)
        assert table.target_fields() == ["statusname"]

    def test_nested_json_path_parses_json_strings(self, engine):
        table = single_field_table({
            "kind": "nested_json_path", "target_field": "label", "path": "labels.0", "suffix": "_text",
        })

        result = engine.transform(make_record({"value": '{"labels": ["first", "second"]}'}), table)

        assert result.data == {"label_text": "first"}

    def test_nested_json_path_skips_non_objects(self, engine):
        table = single_field_table({"kind": "nested_json_path", "target_field": "status", "path": "en"})

        assert engine.transform(make_record({"value": 5}), table).data == {}
        assert engine.transform(make_record({"value": "not json"}), table).data == {}


class TestCoercion:
    @pytest.mark.parametrize("coerce, value, expected", [
        ("integer", "42", 42),
        ("integer", "3.0", 3),
        ("integer", 7, 7),
        ("number", "1.5", 1.5),
        ("boolean", "yes", True),
        ("boolean", "FALSE", False),
        ("boolean", 1, True),
        ("string", 10, "10"),
        ("epoch_ms", "2024-01-01T00:00:00Z", 1704067200000),
        ("epoch_ms", 1704067200000, 1704067200000),
        ("epoch_seconds", "2024-01-01", 1704067200),
        ("iso_date", "2024-03-05T10:00:00", "2024-03-05"),
        ("iso_datetime", "2024-03-05 10:00", "2024-03-05T10:00:00+00:00"),
    ])
    def test_coercions(self, engine, coerce, value, expected):
        table = single_field_table({"kind": "type_coerced", "target_field": "out", "coerce": coerce})

        result = engine.transform(make_record({"value": value}), table)

        assert result.data == {"out": expected}
        assert result.warnings == []

    @pytest.mark.parametrize("coerce, value", [
        ("integer", "abc"),
        ("integer", "2.5"),
        ("number", "n/a"),
        ("boolean", "maybe"),
        ("iso_date", "not a date"),
    ])
    def test_failed_coercion_is_skipped_with_warning(self, engine, coerce, value):
        table = single_field_table({"kind": "type_coerced", "target_field": "out", "coerce": coerce})

        result = engine.transform(make_record({"value": value}), table)

        assert "out" not in result.data
        assert len(result.warnings) == 1
        assert "value" in result.warnings[0]


class TestMappingTable:
    def test_shorthand_entries_become_scalars(self):
        table = MappingTable.from_dict({
            "object_type": "contacts",
            "fields": {
                "a": "x",
                "b": {"targetField": "y", "stringify": True},
            },
        })

        assert table.fields["a"] == ScalarMapping(target_field="x")
        assert table.fields["b"].stringify is True
        assert table.fields["b"].target_field == "y"

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ConfigurationError):
            MappingTable.from_dict({
                "object_type": "contacts",
                "fields": {"a": {"kind": "regex", "target_field": "x"}},
            })

    def test_unknown_coercion_is_rejected(self):
        with pytest.raises(ConfigurationError):
            single_field_table({"kind": "type_coerced", "target_field": "x", "coerce": "money"})

    def test_table_is_frozen(self, contact_table):
        with pytest.raises(pydantic.ValidationError):
            contact_table.object_type = "companies"

    def test_lookup_property_defaults_to_primary_key(self, contact_table):
        assert contact_table.lookup_property == "email"

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "mapping.json"
        path.write_text('{"object_type": "lists", "primary_key": "name", "fields": {"name": "name"}}')

        table = MappingTable.from_json_file(str(path))

        assert table.object_type == "lists"
        assert table.to_dict()["fields"]["name"]["kind"] == "scalar"

    def test_missing_file_is_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            MappingTable.from_json_file(str(tmp_path / "nope.json"))
