"""Phrase proximity helpers for sloppy phrase matching.

A phrase of ``n`` terms whose closest occurrences span ``s`` positions has a
sloppy distance of ``s - n``: zero when the terms are adjacent, growing with
every word in between.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence


def get_min_span(term_positions: Mapping[str, Sequence[int]]) -> float:
    """Calculate the minimum span containing at least one of each term.

    The span is the number of positions from first to last term inclusive,
    found with a sliding window over the merged, sorted positions.

    Returns:
        Minimum span, or infinity if any term is missing.
    """
    if not term_positions or any(not positions for positions in term_positions.values()):
        return float("inf")

    term_count = len(term_positions)
    if term_count == 1:
        return 1.0

    merged = sorted((position, term) for term, positions in term_positions.items() for position in positions)
    counts: dict[str, int] = {}
    covered = 0
    left = 0
    best = float("inf")
    for position, term in merged:
        counts[term] = counts.get(term, 0) + 1
        if counts[term] == 1:
            covered += 1
        while covered == term_count:
            left_position, left_term = merged[left]
            best = min(best, position - left_position + 1)
            counts[left_term] -= 1
            if counts[left_term] == 0:
                covered -= 1
            left += 1
    return best


def sloppy_distance(term_positions: Mapping[str, Sequence[int]]) -> float:
    """Return how many extra positions separate the phrase terms (0 = adjacent)."""
    span = get_min_span(term_positions)
    if span == float("inf"):
        return span
    return span - len(term_positions)
