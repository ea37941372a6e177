"""
Tests for query parsing and match policies.
"""

import pytest

from exif_extract import MatchPolicy, format_value, is_match, parse_extensions, parse_targets


class TestIsMatch:
    """Test the containment and exact policies."""

    def test_contains_any_target(self):
        assert is_match("sunset beach", ("city", "beach"))
        assert not is_match("city lights", ("beach", "sunset"))

    def test_contains_is_case_sensitive_and_literal(self):
        assert not is_match("Sunset Beach", ("beach",))
        assert not is_match("sunset beach", ("b*h",))
        assert is_match("a.b", (".",))

    def test_exact_policy(self):
        assert is_match("beach", ("city", "beach"), MatchPolicy.EXACT)
        assert not is_match("sunset beach", ("beach",), MatchPolicy.EXACT)

    def test_exact_policy_matches_one_entry_of_a_list_tag(self):
        items = ("sunset", "beach")
        assert is_match("sunset, beach", ("beach",), MatchPolicy.EXACT, items)
        assert not is_match("sunset, beach", ("bea",), MatchPolicy.EXACT, items)
        assert not is_match("sunset, beach", ("beach",), MatchPolicy.EXACT)

    @pytest.mark.parametrize("policy", list(MatchPolicy))
    def test_empty_value_never_matches(self, policy):
        assert not is_match("", ("beach",), policy)
        assert not is_match("", ("",), policy)

    @pytest.mark.parametrize("policy", list(MatchPolicy))
    def test_empty_target_is_ignored(self, policy):
        """A blank query term must not turn into a universal match."""
        assert not is_match("anything", ("",), policy)
        assert is_match("beach", ("", "beach"), policy)

    def test_no_targets(self):
        assert not is_match("beach", ())


class TestParsing:
    """Test parsing of comma-separated option values."""

    def test_targets_are_trimmed(self):
        assert parse_targets(" beach , sunset,city ") == ("beach", "sunset", "city")

    def test_empty_targets_are_dropped(self):
        assert parse_targets("beach,, ,") == ("beach",)
        assert parse_targets(" , ") == ()

    def test_extensions_get_a_leading_dot(self):
        assert parse_extensions("jpg, .jpeg") == frozenset({".jpg", ".jpeg"})

    def test_extension_case_is_preserved(self):
        assert parse_extensions(".JPG,.jpg") == frozenset({".JPG", ".jpg"})

    def test_blank_extensions(self):
        assert parse_extensions(" , ") == frozenset()


class TestFormatValue:
    """Test coercion of raw metadata values to strings."""

    def test_list_values_are_joined(self):
        assert format_value(["sunset", "", "beach"]) == "sunset, beach"

    def test_scalars(self):
        assert format_value(42) == "42"
        assert format_value(None) == ""
        assert format_value("city") == "city"

    def test_bytes_are_decoded(self):
        assert format_value(b"beach\x00") == "beach"
