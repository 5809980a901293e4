"""Re-sort primary-store results into search relevance order."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Any, TypeVar


T = TypeVar("T")


def reconcile(results: Sequence[T], ordered_keys: Iterable[Any], key_of: Callable[[T], Any]) -> list[T]:
    """Order ``results`` by ``ordered_keys``; results with no matching key keep their order at the end.

    Keys are compared as strings so an integer primary key matches the string
    association key stored in the index. The output is always a permutation
    of ``results``.
    """
    remaining = list(results)
    ordered: list[T] = []
    for key in ordered_keys:
        wanted = str(key)
        for position, result in enumerate(remaining):
            if str(key_of(result)) == wanted:
                ordered.append(remaining.pop(position))
                break
    return ordered + remaining
