"""
Tests for Notion property conversion and collection schemas
"""

import pytest

from workspace_sync.notion.properties import (
    MAX_TEXT_SEGMENT, PropertyKind, build_property, extract_value
)
from workspace_sync.sync.schemas import get_schema, supported_collections

from builders import (
    checkbox_prop, date_prop, multi_select_prop, number_prop, rule_properties, select_prop, text_prop,
    title_prop
)


class TestExtractValue:
    """Reducing typed properties to plain values"""

    def test_text_segments_joined(self):
        prop = {"type": "rich_text", "rich_text": [{"plain_text": "Hello "}, {"plain_text": "world"}]}

        assert extract_value(prop, PropertyKind.RICH_TEXT) == "Hello world"

    @pytest.mark.parametrize("prop,kind,expected", [
        (title_prop("Task"), PropertyKind.TITLE, "Task"),
        (title_prop(None), PropertyKind.TITLE, None),
        (number_prop(3), PropertyKind.NUMBER, 3),
        (select_prop("High"), PropertyKind.SELECT, "High"),
        (select_prop(None), PropertyKind.SELECT, None),
        (multi_select_prop(["a", "b"]), PropertyKind.MULTI_SELECT, ["a", "b"]),
        (multi_select_prop([]), PropertyKind.MULTI_SELECT, None),
        (checkbox_prop(False), PropertyKind.CHECKBOX, False),
        (date_prop("2024-03-01"), PropertyKind.DATE, "2024-03-01"),
        ({"type": "url", "url": "https://example.com"}, PropertyKind.URL, "https://example.com"),
    ])
    def test_extract(self, prop, kind, expected):
        assert extract_value(prop, kind) == expected

    def test_mistyped_property_extracts_none(self):
        assert extract_value(text_prop("Not a number"), PropertyKind.NUMBER) is None
        assert extract_value("garbage", PropertyKind.SELECT) is None

    def test_unsupported_kind_raises(self):
        with pytest.raises(ValueError):
            extract_value(title_prop("x"), "formula")


class TestBuildProperty:
    """Building write payloads"""

    def test_long_text_split_into_segments(self):
        prop = build_property("x" * (MAX_TEXT_SEGMENT + 10), PropertyKind.RICH_TEXT)

        segments = prop["rich_text"]
        assert len(segments) == 2
        assert len(segments[0]["text"]["content"]) == MAX_TEXT_SEGMENT

    def test_empty_select_clears_value(self):
        assert build_property(None, PropertyKind.SELECT) == {"select": None}
        assert build_property("High", PropertyKind.SELECT) == {"select": {"name": "High"}}


class TestCollectionSchema:
    """Schema field mapping"""

    def test_supported_collections(self):
        assert "tasks" in supported_collections()
        assert "journal" in supported_collections()
        assert get_schema("journal").table == "journal_entries"

    def test_tasks_accept_alternate_title_property(self):
        fields = get_schema("tasks").extract_fields({"Task Name": title_prop("Legacy title")})

        assert fields["title"] == "Legacy title"

    def test_rule_fields_extracted(self):
        fields = get_schema("rules").extract_fields(
            rule_properties("No phones", category="Optional", active=False, priority=3)
        )

        assert fields["category"] == "protocol"
        assert fields["status"] == "inactive"
        assert fields["priority"] == 3

    def test_unmapped_select_label_lowercased(self):
        fields = get_schema("tasks").extract_fields({"Priority": select_prop("Someday")})

        assert fields["priority"] == "someday"

    def test_to_properties_maps_back(self):
        properties = get_schema("rules").to_properties({"status": "active", "category": "protocol"})

        assert properties["Active"] == {"checkbox": True}
        assert properties["Rule Type"] == {"select": {"name": "Optional"}}

    def test_unknown_collection_gets_minimal_schema(self):
        schema = get_schema("recipes")

        assert schema.compare_fields == ("title", "description")
        assert schema.extract_fields({"Name": title_prop("Soup")})["title"] == "Soup"
