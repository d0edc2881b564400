"""
Unit tests for entity resolution and manual matches.
"""

from datetime import date

import pytest

from exceptions import DatabaseError
from services.entity_resolver import EntityResolver, ResolvedRow, UnmatchedReferenceSet
from services.entity_store import SupabaseEntityStore
from services.import_profiles import get_import_profile
from services.manual_match_resolver import apply_manual_matches
from services.row_validator import MaterializedRow


@pytest.fixture
def opportunities():
    return get_import_profile("opportunities")


@pytest.fixture
def resolver(mock_supabase):
    mock_supabase.set_table_data("contacts", [
        {"id": "contact-1", "email": "Ann@Example.com"},
        {"id": "contact-2", "email": "bob@example.com"},
    ])
    mock_supabase.set_table_data("customers", [
        {"id": "cust-1", "name": "Acme Corp"},
    ])
    mock_supabase.set_table_data("opportunities", [
        {"id": "opp-1", "title": "Website Redesign"},
    ])
    return EntityResolver(SupabaseEntityStore(mock_supabase))


def opportunity(row_number: int, title: str, contact: str, customer: str = None, error: str = None):
    references = {"contact": contact}
    if customer:
        references["customer"] = customer
    return MaterializedRow(
        row_number=row_number,
        values={"title": title},
        references=references,
        error=error,
    )


# ===================
# RESOLUTION
# ===================

class TestResolve:

    def test_references_resolved_case_insensitively(self, resolver, opportunities):
        rows = [opportunity(2, "New Deal", "ann@example.com", "acme corp")]

        result = resolver.resolve(opportunities, rows)

        assert result.rows[0].references == {"contact": "contact-1", "customer": "cust-1"}
        assert result.rows[0].unresolved == {}
        assert not result.unmatched

    def test_unresolved_values_reported_once(self, resolver, opportunities):
        """A value shared by many rows appears once in the unmatched set."""
        rows = [
            opportunity(2, "Deal A", "ann@example.com", "globex"),
            opportunity(3, "Deal B", "ann@example.com", "globex"),
            opportunity(4, "Deal C", "zed@example.com", "initech"),
        ]

        result = resolver.resolve(opportunities, rows)

        assert result.unmatched.as_dict() == {
            "contact": ["zed@example.com"],
            "customer": ["globex", "initech"],
        }
        assert result.rows[0].unresolved == {"customer": "globex"}
        assert result.rows[0].is_valid

    def test_existing_entity_matched_by_natural_key(self, resolver, opportunities):
        rows = [
            opportunity(2, "website redesign", "ann@example.com"),
            opportunity(3, "Brand New", "ann@example.com"),
        ]

        result = resolver.resolve(opportunities, rows)

        assert result.rows[0].matched_id == "opp-1"
        assert result.rows[1].matched_id is None

    def test_invalid_rows_are_not_looked_up(self, resolver, opportunities, mock_supabase):
        rows = [opportunity(2, "Deal", "ghost@example.com", error="Title: bad")]

        result = resolver.resolve(opportunities, rows)

        assert result.rows[0].error == "Title: bad"
        assert not result.unmatched
        assert mock_supabase.table("contacts").calls == []

    def test_rows_keep_file_order(self, resolver, opportunities):
        rows = [opportunity(n, f"Deal {n}", "ann@example.com") for n in (2, 3, 4, 5)]

        result = resolver.resolve(opportunities, rows)

        assert [r.row_number for r in result.rows] == [2, 3, 4, 5]

    def test_lookup_failure_is_structural(self, resolver, opportunities, mock_supabase):
        mock_supabase.set_table_error("contacts", Exception("timeout"))

        with pytest.raises(DatabaseError):
            resolver.resolve(opportunities, [opportunity(2, "Deal", "ann@example.com")])

    def test_manual_matches_applied_during_resolve(self, resolver, opportunities):
        rows = [opportunity(2, "Deal", "ann@example.com", "globex")]

        result = resolver.resolve(
            opportunities, rows, manual_matches={"customer": {"GLOBEX": "cust-9"}}
        )

        assert result.rows[0].references["customer"] == "cust-9"
        assert result.unmatched.as_dict() == {"customer": ["globex"]}
        assert not result.remaining_unmatched

    def test_composite_key_uses_resolved_reference(self, mock_supabase):
        """Attendance is keyed by (employee id, date)."""
        mock_supabase.set_table_data("employees", [{"id": "emp-1", "employee_number": "E-001"}])
        mock_supabase.set_table_data("attendance_records", [
            {"id": "att-1", "employee_id": "emp-1", "date": "2024-02-01"},
        ])
        attendance = get_import_profile("attendance")
        resolver = EntityResolver(SupabaseEntityStore(mock_supabase))

        rows = [
            MaterializedRow(2, values={"date": date(2024, 2, 1)}, references={"employee": "E-001"}),
            MaterializedRow(3, values={"date": date(2024, 2, 2)}, references={"employee": "E-001"}),
        ]

        result = resolver.resolve(attendance, rows)

        assert result.rows[0].matched_id == "att-1"
        assert result.rows[1].matched_id is None


# ===================
# UNMATCHED SET
# ===================

class TestUnmatchedReferenceSet:

    def test_is_immutable(self):
        unmatched = UnmatchedReferenceSet((("customer", ("a", "b")),))

        with pytest.raises(Exception):
            unmatched.entries = ()

    def test_get_and_total(self):
        unmatched = UnmatchedReferenceSet((("customer", ("a", "b")), ("owner", ("c",))))

        assert unmatched.get("customer") == ("a", "b")
        assert unmatched.get("missing") == ()
        assert unmatched.total == 3


# ===================
# MANUAL MATCHES
# ===================

class TestApplyManualMatches:

    def test_fills_only_matching_slots(self, opportunities):
        rows = [
            ResolvedRow(2, values={"title": "A"}, unresolved={"customer": "globex"}),
            ResolvedRow(3, values={"title": "B"}, unresolved={"customer": "initech"}),
        ]

        result = apply_manual_matches(opportunities, rows, {"customer": {"Globex": "cust-7"}})

        assert result[0].references == {"customer": "cust-7"}
        assert result[0].unresolved == {}
        assert result[1].unresolved == {"customer": "initech"}

    def test_input_rows_not_modified(self, opportunities):
        row = ResolvedRow(2, unresolved={"customer": "globex"})

        apply_manual_matches(opportunities, [row], {"customer": {"globex": "cust-7"}})

        assert row.unresolved == {"customer": "globex"}
        assert row.references == {}

    def test_unknown_fields_ignored(self, opportunities):
        row = ResolvedRow(2, unresolved={"customer": "globex"})

        result = apply_manual_matches(opportunities, [row], {"title": {"globex": "x"}, "nope": {"a": "b"}})

        assert result[0].unresolved == {"customer": "globex"}

    def test_blank_targets_ignored(self, opportunities):
        row = ResolvedRow(2, unresolved={"customer": "globex"})

        result = apply_manual_matches(opportunities, [row], {"customer": {"globex": "  "}})

        assert result[0].unresolved == {"customer": "globex"}
