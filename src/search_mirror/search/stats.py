"""Statistical helpers for BM25 style scoring.

Kept independent of any storage so the in-memory backend can score a match
query and a phrase query with the same weights.
"""

from __future__ import annotations

from collections.abc import Mapping
import math


def average_length(field_lengths: Mapping[str, int]) -> float:
    """Mean number of terms per document for one field."""
    if not field_lengths:
        return 0.0
    return sum(max(length, 0) for length in field_lengths.values()) / len(field_lengths)


def calculate_idf(doc_freq: int, total_docs: int, *, floor: float = 1e-6) -> float:
    """Return inverse document frequency with small-sample smoothing.

    Floored so common terms in tiny fixture corpora score near zero instead
    of negative.
    """

    if total_docs <= 0:
        return 0.0
    df = max(0, min(doc_freq, total_docs))
    ratio = max((total_docs - df + 0.5) / (df + 0.5), floor)
    return max(math.log(ratio + floor) + 1.0, floor)


def bm25(tf: float, doc_length: int, avg_doc_length: float, *, k1: float = 1.2, b: float = 0.75) -> float:
    """Compute the BM25 term weight without IDF.

    ``tf`` may be fractional: sloppy phrase matches contribute a frequency of
    ``1 / (distance + 1)`` per occurrence.
    """

    if tf <= 0:
        return 0.0
    normalized_length = doc_length / max(avg_doc_length, 1e-9)
    denominator = tf + k1 * (1 - b + b * normalized_length)
    return (tf * (k1 + 1)) / denominator
