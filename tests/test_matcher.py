"""
Tests for record matching
"""

from workspace_sync.models.sync_models import SyncState, SyncStatus
from workspace_sync.sync.matcher import (
    MATCH_BY_EXTERNAL_ID, MATCH_BY_TITLE, RecordMatcher, differing_fields, normalize_title, values_equal
)
from workspace_sync.sync.schemas import get_schema

from builders import document, local_record, task_fields, task_properties


TASKS = get_schema("tasks")


class TestValuesEqual:
    """Field value comparison"""

    def test_empty_values_are_equivalent(self):
        """None, empty string and empty list compare equal"""
        assert values_equal(None, "")
        assert values_equal("", [])
        assert values_equal([], None)

    def test_strings_trim_but_keep_case(self):
        """Outer whitespace is ignored, case is not"""
        assert values_equal("  Buy milk ", "Buy milk")
        assert not values_equal("Buy milk", "buy milk")

    def test_numbers_compare_numerically(self):
        assert values_equal(3, 3.0)
        assert not values_equal(3, 4)

    def test_lists_ignore_order(self):
        assert values_equal(["a", "b"], ["b", "a"])
        assert not values_equal(["a"], ["a", "b"])

    def test_booleans_not_confused_with_numbers(self):
        assert values_equal(True, True)
        assert not values_equal(True, 1)


class TestNormalizeTitle:
    """Title normalization for fallback matching"""

    def test_normalization(self):
        assert normalize_title("  Buy   Milk! ") == "buy milk"
        assert normalize_title("ＣＡＦÉ") == normalize_title("café")

    def test_empty(self):
        assert normalize_title(None) == ""
        assert normalize_title("   ") == ""


class TestRecordMatcher:
    """Matching documents against local records"""

    def setup_method(self):
        self.matcher = RecordMatcher()

    def test_match_by_external_id(self):
        """A linked record pairs with its document even when titles differ"""
        doc = document("ext-1", task_properties("Renamed task"))
        record = local_record("loc-1", "tasks", task_fields("Original task"), external_id="ext-1")

        result = self.matcher.match(TASKS, [doc], [record])

        assert result.unmatched == []
        assert len(result.divergent) == 1
        pair = result.divergent[0]
        assert pair.match_type == MATCH_BY_EXTERNAL_ID
        assert pair.differing_fields == ["title"]

    def test_external_id_from_status_ledger(self):
        """A link recorded only in the status ledger is honoured"""
        doc = document("ext-1", task_properties("Task"))
        record = local_record("loc-1", "tasks", task_fields("Task"))
        statuses = {"loc-1": SyncStatus("tasks", "loc-1", SyncState.SYNCED, external_id="ext-1")}

        result = self.matcher.match(TASKS, [doc], [record], statuses)

        assert len(result.identical) == 1
        assert result.identical[0].match_type == MATCH_BY_EXTERNAL_ID

    def test_title_fallback_for_unlinked_record(self):
        """An unlinked record matches by normalized title"""
        doc = document("ext-1", task_properties("Buy Milk!"))
        record = local_record("loc-1", "tasks", task_fields("buy milk"))

        result = self.matcher.match(TASKS, [doc], [record])

        pairs = result.matched_pairs
        assert len(pairs) == 1
        assert pairs[0].match_type == MATCH_BY_TITLE
        assert pairs[0].is_fallback

    def test_ambiguous_local_title_left_unmatched(self):
        """Two local records with the same title never pair by title"""
        doc = document("ext-1", task_properties("Standup"))
        records = [
            local_record("loc-1", "tasks", task_fields("Standup")),
            local_record("loc-2", "tasks", task_fields("standup")),
        ]

        result = self.matcher.match(TASKS, [doc], records)

        assert [d.external_id for d in result.unmatched] == ["ext-1"]
        assert result.matched_pairs == []

    def test_ambiguous_external_title_left_unmatched(self):
        """Two documents with the same title never pair by title"""
        docs = [
            document("ext-1", task_properties("Standup")),
            document("ext-2", task_properties("Standup")),
        ]
        record = local_record("loc-1", "tasks", task_fields("Standup"))

        result = self.matcher.match(TASKS, docs, [record])

        assert len(result.unmatched) == 2
        assert result.matched_pairs == []

    def test_linked_record_not_used_for_title_fallback(self):
        """A record linked to another document is not a title candidate"""
        doc = document("ext-2", task_properties("Task"))
        record = local_record("loc-1", "tasks", task_fields("Task"), external_id="ext-1")

        result = self.matcher.match(TASKS, [doc], [record])

        assert [d.external_id for d in result.unmatched] == ["ext-2"]

    def test_every_document_lands_in_one_bucket(self):
        """Unmatched, identical and divergent partition the retrieved documents"""
        docs = [
            document("ext-1", task_properties("Same", priority="High")),
            document("ext-2", task_properties("Changed", priority="Low")),
            document("ext-3", task_properties("Brand new")),
        ]
        records = [
            local_record("loc-1", "tasks", task_fields("Same", priority="high"), external_id="ext-1"),
            local_record("loc-2", "tasks", task_fields("Changed", priority="high"), external_id="ext-2"),
        ]

        result = self.matcher.match(TASKS, docs, records)

        assert [p.local.id for p in result.identical] == ["loc-1"]
        assert [p.local.id for p in result.divergent] == ["loc-2"]
        assert [d.external_id for d in result.unmatched] == ["ext-3"]
        assert result.document_count == 3

    def test_duplicate_documents_dropped(self):
        doc = document("ext-1", task_properties("Task"))

        result = self.matcher.match(TASKS, [doc, doc], [])

        assert result.document_count == 1

    def test_select_labels_mapped_to_local_values(self):
        """Notion select labels are compared in their local form"""
        doc = document("ext-1", task_properties("Task", priority="High", status="In Progress"))
        record = local_record("loc-1", "tasks", task_fields("Task", priority="high", status="in_progress"),
                              external_id="ext-1")

        result = self.matcher.match(TASKS, [doc], [record])

        assert len(result.identical) == 1


def test_differing_fields_in_schema_order():
    """Differences are reported in schema field order"""
    local = task_fields("A", description="x", status="pending")
    external = task_fields("B", description="x", status="completed")

    assert differing_fields(TASKS, local, external) == ["title", "status"]
