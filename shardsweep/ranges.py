"""Compact rendering of point ID lists for diagnostics."""

from typing import Iterable, List, Tuple


def collapse_ranges(ids: Iterable[int]) -> List[Tuple[int, int]]:
    """
    Collapse sorted IDs into half-open ``(start, end)`` runs.

    Consecutive IDs extend the current run; any gap (or a repeated ID) closes
    it and starts a new one.
    """
    ranges: List[Tuple[int, int]] = []
    start = end = None

    for point_id in ids:
        if start is None:
            start, end = point_id, point_id + 1
        elif point_id == end:
            end = point_id + 1
        else:
            ranges.append((start, end))
            start, end = point_id, point_id + 1

    if start is not None:
        ranges.append((start, end))

    return ranges


def format_ranges(ids: Iterable[int]) -> str:
    """
    Format sorted IDs as comma separated half-open ranges.

    >>> format_ranges([3, 4, 5, 9, 10, 15])
    '3..6,9..11,15..16'
    """
    return ",".join(f"{start}..{end}" for start, end in collapse_ranges(ids))


def format_range(start: int, end: int) -> str:
    return f"{start}..{end}"
