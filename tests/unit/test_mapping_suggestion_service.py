"""
Unit tests for column -> field mapping suggestions.
"""

import pytest

from models.import_field import FieldDefinition, FieldType
from services.import_profiles import get_import_profile
from services.mapping_suggestion_service import score_names, suggest_mappings
from utils.text_utils import normalize_header


class TestNormalization:
    """Header normalization used before scoring."""

    @pytest.mark.parametrize("raw,expected", [
        ("Teléfono", "telefono"),
        ("managerEmail", "manager email"),
        ("  Hire_Date (YYYY-MM-DD) ", "hire date yyyy mm dd"),
        ("E-mail", "e mail"),
        ("", ""),
    ])
    def test_normalize_header(self, raw, expected):
        assert normalize_header(raw) == expected


class TestScoring:
    """Pairwise similarity."""

    def test_exact_match_after_normalization(self):
        assert score_names("first_name", "First Name") == 1.0
        assert score_names("FIRST NAME", "firstName") == 1.0

    def test_whole_word_containment(self):
        assert score_names("Work Email", "Email") == 0.9

    def test_partial_word_is_not_containment(self):
        """'mail' inside 'email' is not a whole-word match."""
        assert score_names("Email", "mail") < 0.9

    def test_unrelated_names_score_low(self):
        assert score_names("Zip Code", "Salary") < 0.5

    def test_empty_name_scores_zero(self):
        assert score_names("", "Email") == 0.0


class TestSuggestMappings:
    """Greedy assignment of suggestions."""

    def test_obvious_columns_are_mapped(self):
        profile = get_import_profile("contacts")
        columns = ["E-mail", "First Name", "Last Name", "Phone Number", "Customer"]

        suggestions = suggest_mappings(columns, profile.fields, threshold=0.7)
        mapped = {s.target_field: s.source_column for s in suggestions}

        assert mapped["first_name"] == "First Name"
        assert mapped["last_name"] == "Last Name"
        assert mapped["phone"] == "Phone Number"
        assert mapped["customer"] == "Customer"

    def test_each_column_and_field_used_once(self):
        fields = [
            FieldDefinition("email", "Email", field_type=FieldType.EMAIL),
            FieldDefinition("manager", "Manager Email"),
        ]
        columns = ["Email", "Manager Email"]

        suggestions = suggest_mappings(columns, fields, threshold=0.7)

        assert {(s.target_field, s.source_column) for s in suggestions} == {
            ("email", "Email"),
            ("manager", "Manager Email"),
        }

    def test_ties_go_to_earlier_field(self):
        """Two fields scoring equally on one column: the first field wins."""
        fields = [
            FieldDefinition("primary_phone", "Phone"),
            FieldDefinition("backup_phone", "Phone"),
        ]

        suggestions = suggest_mappings(["Phone"], fields, threshold=0.7)

        assert len(suggestions) == 1
        assert suggestions[0].target_field == "primary_phone"

    def test_ties_go_to_earlier_column(self):
        fields = [FieldDefinition("phone", "Phone")]

        suggestions = suggest_mappings(["phone", "PHONE"], fields, threshold=0.7)

        assert suggestions[0].source_column == "phone"

    def test_below_threshold_is_not_suggested(self):
        fields = [FieldDefinition("hire_date", "Hire Date")]

        assert suggest_mappings(["Favourite Colour"], fields, threshold=0.7) == []

    def test_suggestions_are_deterministic(self):
        profile = get_import_profile("employees")
        columns = ["Mail", "Emp No", "Name", "Surname", "Title", "Start Date", "Boss Email", "Dept"]

        first = suggest_mappings(columns, profile.fields, threshold=0.5)
        second = suggest_mappings(list(columns), profile.fields, threshold=0.5)

        assert first == second

    def test_confidence_is_bounded(self):
        profile = get_import_profile("candidates")

        suggestions = suggest_mappings(["Email", "Stage", "Recruiter"], profile.fields, threshold=0.0)

        assert all(0.0 <= s.confidence <= 1.0 for s in suggestions)
