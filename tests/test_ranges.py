"""Tests for compact point ID range formatting."""

from shardsweep.ranges import collapse_ranges, format_range, format_ranges


def test_format_ranges_collapses_runs():
    assert format_ranges([3, 4, 5, 9, 10, 15]) == "3..6,9..11,15..16"


def test_format_ranges_empty():
    assert format_ranges([]) == ""


def test_single_id_is_width_one_range():
    assert format_ranges([7]) == "7..8"
    assert collapse_ranges([7]) == [(7, 8)]


def test_repeated_id_starts_new_run():
    assert collapse_ranges([1, 2, 2, 3]) == [(1, 3), (2, 4)]


def test_format_range():
    assert format_range(200, 400) == "200..400"
