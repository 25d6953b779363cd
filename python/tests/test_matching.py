"""
Unit tests for normalization, similarity, term extraction and match finding.
"""

import pytest

from screening.errors import ValidationError
from screening.matcher import find_matches
from screening.models import WatchlistEntry
from screening.normalizer import normalize
from screening.similarity import similarity
from screening.subject import ScreeningSubject, extract_search_terms


class TestNormalize:
    """Tests for text normalization."""

    def test_lowercases_and_trims(self):
        assert normalize("  John DOE ") == "john doe"

    def test_collapses_whitespace(self):
        assert normalize("John \t\n  Doe") == "john doe"

    def test_strips_punctuation(self):
        assert normalize("O'Brien-Smith, Jr.") == "obriensmith jr"
        assert normalize("snake_case") == "snakecase"

    def test_keeps_digits_and_letters(self):
        assert normalize("Passport AB-123 456") == "passport ab123 456"
        assert normalize("José Müller") == "josé müller"

    def test_empty_and_none(self):
        assert normalize("") == ""
        assert normalize(None) == ""
        assert normalize(" .,;! ") == ""

    @pytest.mark.parametrize("text", ["John  Doe!", "  A--B  c ", "Ünïcödé Nämé", "x_y z"])
    def test_idempotent(self, text):
        once = normalize(text)
        assert normalize(once) == once


class TestSimilarity:
    """Tests for the bounded Levenshtein similarity."""

    def test_identical(self):
        assert similarity("john doe", "john doe") == 100.0

    def test_both_empty(self):
        assert similarity("", "") == 100.0

    def test_one_empty(self):
        assert similarity("", "x") == 0.0
        assert similarity("abc", "") == 0.0

    def test_single_insertion(self):
        # "jon doe" -> "john doe" is one insertion over 8 characters
        assert similarity("jon doe", "john doe") == pytest.approx(87.5)

    def test_completely_different(self):
        assert similarity("abc", "xyz") == 0.0

    @pytest.mark.parametrize("a,b", [("kitten", "sitting"), ("john", "jane roe"), ("", "abc")])
    def test_symmetric_and_bounded(self, a, b):
        score = similarity(a, b)
        assert score == similarity(b, a)
        assert 0.0 <= score <= 100.0

    def test_kitten_sitting(self):
        # distance 3 over 7 characters
        assert similarity("kitten", "sitting") == pytest.approx(4 / 7 * 100)


class TestSubject:
    """Tests for subject parsing and search term extraction."""

    def test_accepts_camel_and_snake_case(self):
        subject = ScreeningSubject.from_dict({"firstName": "John", "last_name": "Doe"})
        assert subject.first_name == "John"
        assert subject.last_name == "Doe"

    def test_unrecognized_attributes_kept_as_extra(self):
        subject = ScreeningSubject.from_dict({"fullName": "John Doe", "dateOfBirth": "1970-01-01"})
        assert subject.extra == {"dateOfBirth": "1970-01-01"}
        assert subject.to_dict() == {"full_name": "John Doe", "dateOfBirth": "1970-01-01"}

    def test_none_is_empty(self):
        assert ScreeningSubject.from_dict(None).is_empty()

    def test_non_mapping_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            ScreeningSubject.from_dict(["John Doe"])
        assert exc_info.value.code == "INVALID_SUBJECT"

    def test_non_string_attribute_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            ScreeningSubject.from_dict({"fullName": 42})
        assert exc_info.value.field == "fullName"

    def test_terms_in_fixed_order(self):
        subject = ScreeningSubject.from_dict({
            "passportNumber": "P123",
            "fullName": "John Doe",
            "lastName": "Doe",
            "firstName": "John",
        })
        terms = extract_search_terms(subject)
        assert [t.field for t in terms] == ["first_name", "last_name", "full_name", "passport_number"]
        assert [t.value for t in terms] == ["John", "Doe", "John Doe", "P123"]

    def test_blank_values_skipped(self):
        subject = ScreeningSubject.from_dict({"firstName": "   ", "lastName": "", "fullName": "John Doe"})
        terms = extract_search_terms(subject)
        assert [t.field for t in terms] == ["full_name"]

    def test_selected_fields_keep_fixed_order(self):
        subject = ScreeningSubject.from_dict({
            "passportNumber": "P123",
            "fullName": "John Doe",
            "firstName": "John",
        })
        terms = extract_search_terms(subject, ["passport_number", "first_name"])
        assert [t.field for t in terms] == ["first_name", "passport_number"]

    def test_unknown_selected_field(self):
        subject = ScreeningSubject.from_dict({"fullName": "John Doe"})
        with pytest.raises(ValueError, match="date_of_birth"):
            extract_search_terms(subject, ["full_name", "date_of_birth"])

    def test_only_extra_attributes_give_no_terms(self):
        subject = ScreeningSubject.from_dict({"email": "john@example.com"})
        assert extract_search_terms(subject) == []


class TestFindMatches:
    """Tests for threshold filtering and ordering."""

    @pytest.fixture
    def entries(self):
        return [
            WatchlistEntry.from_dict({"id": "1", "name": "John Doe"}),
            WatchlistEntry.from_dict({"id": "2", "name": "Jon Doe"}),
            WatchlistEntry.from_dict({"id": "3", "name": "Acme Trading Company"}),
            WatchlistEntry.from_dict({"id": "4", "name": "JOHN DOE!"}),
        ]

    def test_exact_and_fuzzy_matches(self, entries):
        matches = find_matches("John Doe", entries, threshold=75)
        assert [m.source_entry.id for m in matches] == ["1", "4", "2"]
        assert [m.similarity_score for m in matches] == pytest.approx([100.0, 100.0, 87.5])

    def test_never_below_threshold(self, entries):
        for threshold in (0, 50, 75, 90, 100):
            matches = find_matches("John Doe", entries, threshold=threshold)
            assert all(m.similarity_score >= threshold for m in matches)

    def test_sorted_descending(self, entries):
        matches = find_matches("Jon Doe", entries, threshold=0)
        scores = [m.similarity_score for m in matches]
        assert scores == sorted(scores, reverse=True)

    def test_threshold_is_inclusive(self, entries):
        matches = find_matches("John Doe", entries, threshold=87.5)
        assert "2" in [m.source_entry.id for m in matches]

    def test_ties_keep_entry_order(self, entries):
        matches = find_matches("john doe", entries, threshold=100)
        assert [m.source_entry.id for m in matches] == ["1", "4"]

    def test_empty_term_matches_nothing(self, entries):
        assert find_matches("", entries, threshold=0) == []
        assert find_matches("!!!", entries, threshold=0) == []

    def test_records_field_and_raw_value(self, entries):
        match = find_matches("John  Doe", entries, matched_field="full_name")[0]
        assert match.matched_field == "full_name"
        assert match.search_value == "John  Doe"

    def test_entries_not_mutated(self, entries):
        before = [e.to_dict() for e in entries]
        find_matches("John Doe", entries)
        assert [e.to_dict() for e in entries] == before

    def test_invalid_threshold(self, entries):
        with pytest.raises(ValueError):
            find_matches("John Doe", entries, threshold=101)
        with pytest.raises(ValueError):
            find_matches("John Doe", entries, threshold=-1)


class TestWatchlistEntry:
    """Tests for parsing watchlist records."""

    def test_position_is_role(self):
        entry = WatchlistEntry.from_dict({"name": "Jane Roe", "position": "Minister", "dob": "1960"})
        assert entry.role == "Minister"
        assert entry.attributes == {"dob": "1960"}

    def test_missing_name(self):
        with pytest.raises(ValueError):
            WatchlistEntry.from_dict({"country": "XX"})

    def test_generated_id(self):
        entry = WatchlistEntry.from_dict({"name": "Jane Roe"})
        assert entry.id
