"""Line-range arithmetic: expand anchors by a context margin and merge.

All ranges are 1-based, inclusive ``(start, end)`` tuples.
"""

from typing import Iterable, List, Tuple

LineRange = Tuple[int, int]


def expand_range(start: int, end: int, context_lines: int, total_lines: int) -> LineRange:
    """Widen ``[start, end]`` by *context_lines* and clip to ``[1, total_lines]``."""
    return (
        max(1, start - context_lines),
        min(total_lines, end + context_lines),
    )


def expand_anchor(line: int, context_lines: int, total_lines: int) -> LineRange:
    """Range around a single anchor line."""
    return expand_range(line, line, context_lines, total_lines)


def merge_ranges(ranges: Iterable[LineRange]) -> List[LineRange]:
    """Merge overlapping *or adjacent* ranges.

    Input order does not matter. ``[(1, 5), (6, 10)]`` becomes ``[(1, 10)]``
    so two windows separated by nothing collapse into one snippet. The
    result is sorted by start, disjoint, and every range has start <= end.
    """
    merged: List[List[int]] = []
    for start, end in sorted(r for r in ranges if r[0] <= r[1]):
        if merged and start <= merged[-1][1] + 1:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return [(start, end) for start, end in merged]


def ranges_for_anchors(
    anchors: Iterable[int],
    context_lines: int,
    total_lines: int,
) -> List[LineRange]:
    """Expand each anchor line and merge the results."""
    return merge_ranges(
        expand_anchor(line, context_lines, total_lines) for line in anchors
    )


def count_in_range(lines: Iterable[int], line_range: LineRange) -> int:
    """Number of *lines* falling inside *line_range*."""
    start, end = line_range
    return sum(1 for line in lines if start <= line <= end)
