"""Tests for authority code helpers."""

from __future__ import annotations

from doa.src.hierarchy.codes import (
    ancestor_codes,
    clean_code,
    code_depth,
    code_sort_key,
    compare_codes,
    parent_of,
)

# ===================================================================
# clean_code / depth / parent
# ===================================================================


class TestCleanCode:
    """Tests for trailing-dot stripping."""

    def test_strips_trailing_dot(self):
        assert clean_code("3.8.1.") == "3.8.1"

    def test_strips_only_one_dot(self):
        assert clean_code("3..") == "3."

    def test_plain_code_unchanged(self):
        assert clean_code("4.2") == "4.2"

    def test_none_is_empty(self):
        assert clean_code(None) == ""


class TestDepthAndParent:
    """Tests for segment counting and parent derivation."""

    def test_depth_counts_segments(self):
        assert code_depth("4.2.3") == 3

    def test_depth_ignores_trailing_dot(self):
        assert code_depth("4.2.") == 2

    def test_depth_of_chapter(self):
        assert code_depth("7") == 1

    def test_parent_drops_last_segment(self):
        assert parent_of("4.2.3.2") == "4.2.3"

    def test_parent_of_chapter_is_empty(self):
        assert parent_of("4") == ""

    def test_parent_of_trailing_dot_code(self):
        assert parent_of("3.8.1.") == "3.8"

    def test_ancestor_codes(self):
        assert ancestor_codes("3.1.2") == ["3", "3.1", "3.1.2"]


# ===================================================================
# compare_codes
# ===================================================================


class TestCompareCodes:
    """Tests for numeric code comparison."""

    def test_numeric_not_lexicographic(self):
        assert compare_codes("2", "10") < 0

    def test_equal(self):
        assert compare_codes("4.2", "4.2") == 0

    def test_missing_segment_is_zero(self):
        assert compare_codes("1", "1.0") == 0

    def test_shorter_prefix_first(self):
        assert compare_codes("1", "1.1") < 0

    def test_non_numeric_segment_is_zero(self):
        assert compare_codes("x", "0") == 0

    def test_sort_key(self):
        codes = ["10", "2", "1", "1.10", "1.9"]
        assert sorted(codes, key=code_sort_key) == ["1", "1.9", "1.10", "2", "10"]
