"""Sweep-merge of half-open tick intervals."""

from __future__ import annotations

from typing import Iterable, List, Tuple

Interval = Tuple[int, int]


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """Coalesce overlapping [start, end) intervals into disjoint runs.

    Intervals are sorted by start (stable, so equal starts keep input order)
    and an interval joins the running one when it starts before that one ends.
    Touching intervals stay separate.
    """
    ordered = sorted(intervals, key=lambda interval: interval[0])
    merged: List[Interval] = []
    for start, end in ordered:
        if end < start:
            raise ValueError(f"Interval end {end} precedes start {start}")
        if merged and start < merged[-1][1]:
            running_start, running_end = merged[-1]
            merged[-1] = (running_start, max(running_end, end))
        else:
            merged.append((start, end))
    return merged
