"""
Unit tests for ImportHistoryService.
"""

import pytest

from exceptions import DatabaseError
from models.imports import ImportErrorEntry, ImportSummary
from services.import_history_service import ImportHistoryService


@pytest.fixture
def history(mock_supabase):
    return ImportHistoryService(mock_supabase)


def summary(import_id="imp-1", **overrides) -> ImportSummary:
    data = dict(
        import_id=import_id,
        entity_type="contacts",
        total_rows=3,
        processed_rows=3,
        created_count=2,
        updated_count=0,
        skipped_count=0,
        failed_count=1,
        errors=[ImportErrorEntry(row=4, message="Email: bad")],
    )
    data.update(overrides)
    return ImportSummary(**data)


class TestRecording:

    def test_lifecycle(self, history, mock_supabase):
        history.record_upload("imp-1", "contacts", "c.csv", "hash-1", 3)
        history.mark_processing("imp-1")
        history.record_completed(summary())

        row = mock_supabase.rows("data_imports")[0]
        assert row["status"] == "completed"
        assert row["created_count"] == 2
        assert row["errors"] == [{"row": 4, "message": "Email: bad"}]
        assert row["started_at"]
        assert row["completed_at"]

    def test_failure_recorded(self, history, mock_supabase):
        history.record_upload("imp-1", "contacts", None, "hash-1", 3)

        history.record_failed("imp-1", "x" * 5000)

        row = mock_supabase.rows("data_imports")[0]
        assert row["status"] == "failed"
        assert row["file_name"] == "unknown"
        assert len(row["errors"][0]["message"]) == 2000

    def test_write_errors_are_swallowed(self, history, mock_supabase):
        mock_supabase.set_table_error("data_imports", Exception("down"))

        history.record_upload("imp-1", "contacts", "c.csv", "hash-1", 3)
        history.record_completed(summary())


class TestDuplicateCheck:

    def test_completed_import_with_same_hash_found(self, history):
        history.record_upload("imp-1", "contacts", "c.csv", "hash-1", 3)
        history.record_completed(summary())

        previous = history.check_duplicate("contacts", "hash-1")

        assert previous["file_name"] == "c.csv"

    def test_pending_import_not_a_duplicate(self, history):
        history.record_upload("imp-1", "contacts", "c.csv", "hash-1", 3)

        assert history.check_duplicate("contacts", "hash-1") is None

    def test_other_entity_type_not_a_duplicate(self, history):
        history.record_upload("imp-1", "contacts", "c.csv", "hash-1", 3)
        history.record_completed(summary())

        assert history.check_duplicate("employees", "hash-1") is None

    def test_lookup_failure_returns_none(self, history, mock_supabase):
        mock_supabase.set_table_error("data_imports", Exception("down"))

        assert history.check_duplicate("contacts", "hash-1") is None


class TestListImports:

    def test_filters_by_entity_type(self, history):
        history.record_upload("imp-1", "contacts", "c.csv", "h1", 3)
        history.record_upload("imp-2", "employees", "e.csv", "h2", 5)

        entries = history.list_imports(entity_type="employees")

        assert [e.id for e in entries] == ["imp-2"]
        assert entries[0].total_rows == 5

    def test_failure_raises_database_error(self, history, mock_supabase):
        mock_supabase.set_table_error("data_imports", Exception("down"))

        with pytest.raises(DatabaseError):
            history.list_imports()
