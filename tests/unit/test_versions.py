"""Unit tests for tag ordering."""

from __future__ import annotations

from selenoid_cm.versions import limit, natural_key, sort_tags


class TestSortTags:
    def test_newest_first(self):
        assert sort_tags(["45.0", "7.0", "46.0"]) == ["46.0", "45.0", "7.0"]

    def test_numeric_not_lexicographic(self):
        """Should order 10.0 before 9.0."""
        assert sort_tags(["9.0", "10.0"]) == ["10.0", "9.0"]

    def test_latest_is_dropped(self):
        assert sort_tags(["latest", "1.2.0", "1.10.0"]) == ["1.10.0", "1.2.0"]

    def test_empty(self):
        assert sort_tags([]) == []

    def test_mixed_suffixes(self):
        assert sort_tags(["12.16", "63.0", "62.0-beta"]) == ["63.0", "62.0-beta", "12.16"]


class TestNaturalKey:
    def test_digit_runs_compare_as_numbers(self):
        assert natural_key("1.10.0") > natural_key("1.9.3")

    def test_equal_values(self):
        assert natural_key("46.0") == natural_key("46.0")


class TestLimit:
    def test_keeps_first_n(self):
        assert limit(["46.0", "45.0", "7.0"], 2) == ["46.0", "45.0"]

    def test_zero_keeps_all(self):
        assert limit(["46.0", "45.0", "7.0"], 0) == ["46.0", "45.0", "7.0"]

    def test_more_than_available(self):
        assert limit(["46.0"], 5) == ["46.0"]
